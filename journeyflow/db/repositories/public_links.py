"""Share tokens: one active opaque token per version, plus its visit counter."""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import update
from sqlalchemy.orm import Session

from journeyflow.db.models import GraphVersion
from journeyflow.errors import NotFoundError

logger = logging.getLogger(__name__)

INVALID_LINK_MESSAGE = "Invalid or expired preview link"


class PublicLinkRepository:
    """Repository for public share links."""

    def __init__(self, db: Session):
        self.db = db

    def _version(self, version_id: str) -> GraphVersion:
        version = self.db.query(GraphVersion).filter(GraphVersion.id == version_id).first()
        if version is None:
            raise NotFoundError(f"Version {version_id} not found")
        return version

    def get_or_create(self, version_id: str, force: bool = False) -> str:
        """
        Return the version's token, minting one if needed.

        Args:
            version_id: Version to share
            force: Replace an existing token; the old one stops resolving
                immediately and the visit counter starts again at zero

        Returns:
            The active token
        """
        version = self._version(version_id)
        if version.public_token and not force:
            return version.public_token

        version.public_token = str(uuid.uuid4())
        version.visit_count = 0
        self.db.commit()
        logger.info("Issued public link for version %s (force=%s)", version_id, force)
        return version.public_token

    def get(self, version_id: str) -> str | None:
        return self._version(version_id).public_token

    def revoke(self, version_id: str) -> bool:
        version = self._version(version_id)
        if not version.public_token:
            return False
        version.public_token = None
        self.db.commit()
        logger.info("Revoked public link for version %s", version_id)
        return True

    def resolve(self, token: str) -> GraphVersion:
        """The version behind *token*; unknown and cleared tokens look the same."""
        version = None
        if token:
            version = (
                self.db.query(GraphVersion).filter(GraphVersion.public_token == token).first()
            )
        if version is None:
            raise NotFoundError(INVALID_LINK_MESSAGE)
        return version

    def record_visit(self, token: str) -> bool:
        """Increment the visit counter in a single UPDATE.  False if no row matched."""
        result = self.db.execute(
            update(GraphVersion)
            .where(GraphVersion.public_token == token)
            .values(visit_count=GraphVersion.visit_count + 1)
        )
        self.db.commit()
        return result.rowcount > 0
