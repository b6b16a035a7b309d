"""Tests for the public share-token gateway."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from journeyflow.db.models import GraphVersion
from journeyflow.db.repositories.projects import ProjectRepository
from journeyflow.db.repositories.public_links import PublicLinkRepository
from journeyflow.db.repositories.variables import VariableRepository
from journeyflow.db.repositories.workflows import WorkflowRepository
from journeyflow.errors import ConfigurationError, NotFoundError
from journeyflow.services.public_access import PublicAccessGateway
from journeyflow.session import SessionStatus


@pytest.fixture
def shared(db, scenario_graph):
    """A published scenario graph with a public token and one project variable."""
    project = ProjectRepository(db).create_project("user-1", "Demo")
    VariableRepository(db).upsert(project.id, "brand", "Acme")
    workflows = WorkflowRepository(db)
    version = workflows.get_workflow(project.id).version
    workflows.sync_workflow(version.id, scenario_graph.nodes, scenario_graph.edges)
    workflows.publish(version.id)
    token = PublicLinkRepository(db).get_or_create(version.id)
    return version.id, token


def _visits(db, version_id: str) -> int:
    db.expire_all()
    return db.get(GraphVersion, version_id).visit_count


class TestResolveToken:
    def test_known_token(self, db, shared):
        version_id, token = shared
        assert PublicAccessGateway(db).resolve_token(token) == version_id

    @pytest.mark.parametrize("token", ["", "not-a-token"])
    def test_unknown_token(self, db, shared, token):
        with pytest.raises(NotFoundError, match="Invalid or expired preview link"):
            PublicAccessGateway(db).resolve_token(token)

    def test_revoked_token_looks_like_unknown(self, db, shared):
        version_id, token = shared
        PublicLinkRepository(db).revoke(version_id)
        with pytest.raises(NotFoundError, match="Invalid or expired preview link"):
            PublicAccessGateway(db).resolve_token(token)


class TestSnapshot:
    def test_prompts_and_conditions_are_resolved(self, db, shared):
        version_id, token = shared
        wire = PublicAccessGateway(db).load_snapshot(token).to_dict()

        assert wire["versionId"] == version_id
        assert wire["variables"] == {"brand": "Acme"}
        by_key = {n["nodeKey"]: n for n in wire["nodes"]}
        assert by_key["A"]["resolvedSystemPrompt"] == "You greet visitors of Acme."
        assert by_key["A"]["systemPromptTemplate"] == "You greet visitors of @brand."
        assert by_key["F"]["resolvedSystemPrompt"] == ""
        assert wire["edges"][0]["resolvedLlmPrompt"] == "user confirms"

    def test_snapshot_does_not_count_a_visit(self, db, shared):
        version_id, token = shared
        PublicAccessGateway(db).load_snapshot(token)
        assert _visits(db, version_id) == 0


class TestStartSession:
    def test_starts_at_the_start_node_and_counts_one_visit(self, db, shared, fake_oracle):
        version_id, token = shared
        session = PublicAccessGateway(db).start_session(token, fake_oracle)

        assert session.status is SessionStatus.ACTIVE
        assert session.current_node_key == "A"
        assert session.version_id == version_id
        assert fake_oracle.calls == [("initiate", "You greet visitors of Acme.")]
        assert _visits(db, version_id) == 1

    def test_empty_graph_fails_before_counting(self, db, fake_oracle):
        project = ProjectRepository(db).create_project("user-1", "Empty")
        version = WorkflowRepository(db).get_workflow(project.id).version
        token = PublicLinkRepository(db).get_or_create(version.id)

        with pytest.raises(ConfigurationError):
            PublicAccessGateway(db).start_session(token, fake_oracle)
        assert _visits(db, version.id) == 0

    def test_visit_counter_failure_is_not_fatal(self, db, shared, fake_oracle):
        _, token = shared
        with patch.object(
            PublicLinkRepository, "record_visit",
            side_effect=OperationalError("UPDATE", {}, Exception("locked")),
        ):
            session = PublicAccessGateway(db).start_session(token, fake_oracle)
        assert session.status is SessionStatus.ACTIVE
