from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy.orm import Session

from journeyflow.db.models import Project


class ProjectRepository:
    """Repository for project operations."""

    def __init__(self, db: Session):
        self.db = db

    def create_project(self, user_id: str, name: str, description: str = "") -> Project:
        project = Project(user_id=user_id, name=name, description=description)
        self.db.add(project)
        self.db.commit()
        self.db.refresh(project)
        return project

    def get_project(self, project_id: str) -> Project | None:
        """
        Get a live (not soft-deleted) project by ID.

        Args:
            project_id: Project ID

        Returns:
            Project if found, None otherwise
        """
        return (
            self.db.query(Project)
            .filter(Project.id == project_id, Project.deleted_at.is_(None))
            .first()
        )

    def list_projects(self, user_id: str) -> list[Project]:
        """
        Get a user's projects, most recently updated first.

        Args:
            user_id: Owner ID

        Returns:
            List of live projects
        """
        return (
            self.db.query(Project)
            .filter(Project.user_id == user_id, Project.deleted_at.is_(None))
            .order_by(Project.updated_at.desc())
            .all()
        )

    def touch(self, project: Project) -> None:
        project.updated_at = datetime.now(UTC)
        self.db.commit()

    def soft_delete(self, project_id: str) -> bool:
        """
        Mark a project as deleted.  Its graph and journeys are kept.

        Returns:
            True if the project was deleted, False if it did not exist
        """
        project = self.get_project(project_id)
        if not project:
            return False

        project.deleted_at = datetime.now(UTC)
        self.db.commit()
        return True
