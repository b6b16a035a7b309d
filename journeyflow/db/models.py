"""
Database models using SQLAlchemy.

These define the durable schema: projects and their variables, one graph per
project with numbered versions, the nodes and edges of each version, and the
journeys visitors leave behind.  They are NOT the runtime graph types (see
``journeyflow.workflow``); repositories convert between the two.

Uniqueness invariants enforced here:

* ``(project_id, key)`` for project variables
* ``(graph_id, version_number)`` for versions
* ``public_token`` across all versions
* ``(version_id, node_key)`` and ``(version_id, edge_key)``

"At most one published version per graph" cannot be a plain unique
constraint and is kept by ``WorkflowRepository.publish``.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

VERSION_DRAFT = "draft"
VERSION_PUBLISHED = "published"
VERSION_ARCHIVED = "archived"


def generate_uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Project(Base):
    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, default="")
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    variables = relationship("ProjectVariable", back_populates="project", cascade="all, delete-orphan")
    graph = relationship("Graph", back_populates="project", uselist=False, cascade="all, delete-orphan")


class ProjectVariable(Base):
    __tablename__ = "project_variables"
    __table_args__ = (UniqueConstraint("project_id", "key", name="uq_project_variable_key"),)

    id = Column(String, primary_key=True, default=generate_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    key = Column(String, nullable=False)
    value = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    project = relationship("Project", back_populates="variables")


class Graph(Base):
    __tablename__ = "graphs"

    id = Column(String, primary_key=True, default=generate_uuid)
    project_id = Column(
        String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, unique=True,
    )
    name = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    project = relationship("Project", back_populates="graph")
    versions = relationship("GraphVersion", back_populates="graph", cascade="all, delete-orphan")


class GraphVersion(Base):
    __tablename__ = "graph_versions"
    __table_args__ = (UniqueConstraint("graph_id", "version_number", name="uq_graph_version_number"),)

    id = Column(String, primary_key=True, default=generate_uuid)
    graph_id = Column(String, ForeignKey("graphs.id", ondelete="CASCADE"), nullable=False)
    version_number = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=VERSION_DRAFT)
    public_token = Column(String, nullable=True, unique=True)
    visit_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    published_at = Column(DateTime(timezone=True), nullable=True)

    graph = relationship("Graph", back_populates="versions")
    nodes = relationship("GraphNode", back_populates="version", cascade="all, delete-orphan")
    edges = relationship("GraphEdge", back_populates="version", cascade="all, delete-orphan")
    journeys = relationship("UserJourney", back_populates="version", cascade="all, delete-orphan")


class GraphNode(Base):
    __tablename__ = "graph_nodes"
    __table_args__ = (UniqueConstraint("version_id", "node_key", name="uq_version_node_key"),)

    id = Column(String, primary_key=True, default=generate_uuid)
    version_id = Column(String, ForeignKey("graph_versions.id", ondelete="CASCADE"), nullable=False)
    node_key = Column(String, nullable=False)
    ordinal = Column(Integer, nullable=False, default=0)
    title = Column(String, nullable=False, default="")
    # NULL on rows written before the category column existed
    category = Column(String, nullable=True)
    position = Column(JSON, default=dict)
    # Category payload in wire form: systemPromptTemplate / formConfig / reportConfig ...
    configs = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    version = relationship("GraphVersion", back_populates="nodes")


class GraphEdge(Base):
    __tablename__ = "graph_edges"
    __table_args__ = (UniqueConstraint("version_id", "edge_key", name="uq_version_edge_key"),)

    id = Column(String, primary_key=True, default=generate_uuid)
    version_id = Column(String, ForeignKey("graph_versions.id", ondelete="CASCADE"), nullable=False)
    edge_key = Column(String, nullable=False)
    ordinal = Column(Integer, nullable=False, default=0)
    from_node_key = Column(String, nullable=False)
    to_node_key = Column(String, nullable=False)
    llm_prompt_template = Column(Text, nullable=False, default="")
    priority = Column(Integer, nullable=False, default=0)
    fallback = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    version = relationship("GraphVersion", back_populates="edges")


class UserJourney(Base):
    __tablename__ = "user_journeys"

    id = Column(String, primary_key=True, default=generate_uuid)
    version_id = Column(String, ForeignKey("graph_versions.id", ondelete="CASCADE"), nullable=False, index=True)
    email = Column(String, nullable=False)
    # {"history": [...], "variables": {...}, "aiReport": "..."}
    summary = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)

    version = relationship("GraphVersion", back_populates="journeys")
