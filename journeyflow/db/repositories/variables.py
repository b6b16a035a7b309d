from __future__ import annotations

from sqlalchemy.orm import Session

from journeyflow.db.models import ProjectVariable
from journeyflow.errors import ConflictError, NotFoundError
from journeyflow.validation import validate_variable_key


class VariableRepository:
    """Repository for author-defined ``@key`` variables of a project."""

    def __init__(self, db: Session):
        self.db = db

    def _get(self, project_id: str, key: str) -> ProjectVariable | None:
        return (
            self.db.query(ProjectVariable)
            .filter(ProjectVariable.project_id == project_id, ProjectVariable.key == key)
            .first()
        )

    def list_variables(self, project_id: str) -> list[ProjectVariable]:
        return (
            self.db.query(ProjectVariable)
            .filter(ProjectVariable.project_id == project_id)
            .order_by(ProjectVariable.key)
            .all()
        )

    def as_map(self, project_id: str) -> dict[str, str]:
        """The variables as a plain ``key -> value`` map for template resolution."""
        return {v.key: v.value for v in self.list_variables(project_id)}

    def upsert(self, project_id: str, key: str, value: str) -> ProjectVariable:
        key = validate_variable_key(key)
        variable = self._get(project_id, key)
        if variable is None:
            variable = ProjectVariable(project_id=project_id, key=key, value=value)
            self.db.add(variable)
        else:
            variable.value = value
        self.db.commit()
        self.db.refresh(variable)
        return variable

    def rename(self, project_id: str, old_key: str, new_key: str) -> ProjectVariable:
        new_key = validate_variable_key(new_key)
        variable = self._get(project_id, old_key)
        if variable is None:
            raise NotFoundError(f"Variable {old_key!r} not found")
        if new_key != old_key and self._get(project_id, new_key) is not None:
            raise ConflictError(f"Variable {new_key!r} already exists")
        variable.key = new_key
        self.db.commit()
        self.db.refresh(variable)
        return variable

    def delete(self, project_id: str, key: str) -> bool:
        variable = self._get(project_id, key)
        if variable is None:
            return False
        self.db.delete(variable)
        self.db.commit()
        return True
