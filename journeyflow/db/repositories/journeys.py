"""Journey persistence: the append-only record of finished visitor sessions."""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, NamedTuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from journeyflow.db.models import GraphNode, GraphVersion, UserJourney
from journeyflow.db.repositories.workflows import node_from_row
from journeyflow.errors import NotFoundError, PersistenceError
from journeyflow.workflow import FormNode

logger = logging.getLogger(__name__)


class LeadAnalytics(NamedTuple):
    total_visits: int
    total_leads: int
    completion_rate: float


def completion_rate(leads: int, visits: int) -> float:
    """``leads / visits * 100`` rounded half-up to one decimal; 0 without visits."""
    if visits <= 0:
        return 0.0
    rate = Decimal(leads) * 100 / Decimal(visits)
    return float(rate.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


class JourneyRepository:
    """Repository for user journeys (leads)."""

    def __init__(self, db: Session):
        self.db = db

    def save(self, version_id: str, email: str, summary: dict[str, Any]) -> UserJourney:
        """
        Insert one journey row.  Never updates: resubmitting adds another row.

        Raises:
            PersistenceError: the insert failed and was rolled back
        """
        journey = UserJourney(version_id=version_id, email=email, summary=summary)
        try:
            self.db.add(journey)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Saving journey for version %s failed", version_id)
            raise PersistenceError("Your report could not be saved. Please try again.") from exc

        self.db.refresh(journey)
        logger.info("Saved journey %s for version %s", journey.id, version_id)
        return journey

    def list_leads(self, version_id: str) -> list[UserJourney]:
        """All journeys of a version, newest first."""
        return (
            self.db.query(UserJourney)
            .filter(UserJourney.version_id == version_id)
            .order_by(UserJourney.created_at.desc())
            .all()
        )

    def analytics(self, version_id: str) -> LeadAnalytics:
        version = self.db.query(GraphVersion).filter(GraphVersion.id == version_id).first()
        if version is None:
            raise NotFoundError(f"Version {version_id} not found")

        visits = version.visit_count or 0
        leads = self.db.query(UserJourney).filter(UserJourney.version_id == version_id).count()
        return LeadAnalytics(visits, leads, completion_rate(leads, visits))

    def question_mapping(self, version_id: str) -> dict[str, str]:
        """Question id -> question text across every form node of a version.

        Used to label journey variables stored without their question text.
        """
        mapping: dict[str, str] = {}
        rows = self.db.query(GraphNode).filter(GraphNode.version_id == version_id).all()
        for row in rows:
            node = node_from_row(row)
            if isinstance(node, FormNode):
                for question in node.form_config.questions:
                    mapping[question.id] = question.text or question.id
        return mapping
