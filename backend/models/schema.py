"""
SQLAlchemy models for the takeoff import system.

This module defines the database schema using SQLAlchemy ORM,
matching the schema defined in Alembic migrations.
"""

from sqlalchemy import (
    JSON, Column, Integer, String, Text, TIMESTAMP, Boolean,
    ForeignKey, CheckConstraint, Index, UniqueConstraint, text
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite test databases)
JSONType = JSON().with_variant(JSONB(), 'postgresql')


class Project(Base):
    """Represents a project that owns drawings, metadata and components."""

    __tablename__ = 'projects'
    __table_args__ = (
        Index('idx_projects_created_at', 'created_at'),
        {'comment': 'Project owning imported takeoff data'}
    )

    id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        nullable=False
    )
    name = Column(
        String(255),
        nullable=False,
        comment='User-friendly project name'
    )
    description = Column(
        Text,
        nullable=True,
        comment='Optional project description'
    )
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False,
        comment='Project creation timestamp'
    )

    # Relationships
    drawings = relationship('Drawing', back_populates='project', cascade='all, delete-orphan')
    components = relationship('Component', back_populates='project', cascade='all, delete-orphan')
    import_batches = relationship('ImportBatch', back_populates='project', cascade='all, delete-orphan')
    jobs = relationship('JobRun', back_populates='project')

    def __repr__(self):
        return f"<Project(id={self.id}, name='{self.name}')>"


class Drawing(Base):
    """Represents a drawing, keyed by its normalized number within a project."""

    __tablename__ = 'drawings'
    __table_args__ = (
        UniqueConstraint('project_id', 'drawing_no_norm', name='uq_drawings_project_norm'),
        Index('idx_drawings_project', 'project_id'),
        {'comment': 'Drawings referenced by components'}
    )

    id = Column(Integer, primary_key=True, autoincrement=True, nullable=False)
    project_id = Column(
        Integer,
        ForeignKey('projects.id', ondelete='CASCADE'),
        nullable=False
    )
    drawing_no_raw = Column(
        String(255),
        nullable=False,
        comment='Drawing number as first seen in an import'
    )
    drawing_no_norm = Column(
        String(255),
        nullable=False,
        comment='Uppercased, whitespace-collapsed drawing number'
    )
    is_retired = Column(
        Boolean,
        server_default='false',
        default=False,
        nullable=False
    )
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )

    project = relationship('Project', back_populates='drawings')

    def __repr__(self):
        return f"<Drawing(id={self.id}, project_id={self.project_id}, norm='{self.drawing_no_norm}')>"


class _ReferenceMixin:
    """Columns shared by the area/system/test package reference tables."""

    id = Column(Integer, primary_key=True, autoincrement=True, nullable=False)
    name = Column(String(255), nullable=False, comment='Reference value as it appears in imports')
    description = Column(Text, nullable=True)
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )


class Area(_ReferenceMixin, Base):
    """Physical area of a project."""

    __tablename__ = 'areas'
    __table_args__ = (
        UniqueConstraint('project_id', 'name', name='uq_areas_project_name'),
        {'comment': 'Project areas'}
    )

    project_id = Column(Integer, ForeignKey('projects.id', ondelete='CASCADE'), nullable=False)

    def __repr__(self):
        return f"<Area(id={self.id}, name='{self.name}')>"


class System(_ReferenceMixin, Base):
    """Process system of a project."""

    __tablename__ = 'systems'
    __table_args__ = (
        UniqueConstraint('project_id', 'name', name='uq_systems_project_name'),
        {'comment': 'Project systems'}
    )

    project_id = Column(Integer, ForeignKey('projects.id', ondelete='CASCADE'), nullable=False)

    def __repr__(self):
        return f"<System(id={self.id}, name='{self.name}')>"


class TestPackage(_ReferenceMixin, Base):
    """Hydrotest package of a project."""

    __tablename__ = 'test_packages'
    __test__ = False  # not a pytest test class
    __table_args__ = (
        UniqueConstraint('project_id', 'name', name='uq_test_packages_project_name'),
        {'comment': 'Project test packages'}
    )

    project_id = Column(Integer, ForeignKey('projects.id', ondelete='CASCADE'), nullable=False)

    def __repr__(self):
        return f"<TestPackage(id={self.id}, name='{self.name}')>"


# Category type -> reference model
REFERENCE_MODELS = {
    'area': Area,
    'system': System,
    'test_package': TestPackage,
}


class ImportBatch(Base):
    """Audit record of one committed import."""

    __tablename__ = 'import_batches'
    __table_args__ = (
        Index('idx_import_batches_project', 'project_id'),
        {'comment': 'Audit trail of committed imports'}
    )

    id = Column(Integer, primary_key=True, autoincrement=True, nullable=False)
    project_id = Column(Integer, ForeignKey('projects.id', ondelete='CASCADE'), nullable=False)
    column_mappings = Column(
        JSONType,
        default=list,
        nullable=False,
        comment='Column mappings used for the import'
    )
    summary = Column(
        JSONType,
        default=dict,
        nullable=False,
        comment='Created counts and per-type counts'
    )
    row_count = Column(Integer, nullable=False, comment='Number of payload rows')
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )

    project = relationship('Project', back_populates='import_batches')
    components = relationship('Component', back_populates='import_batch')

    def __repr__(self):
        return f"<ImportBatch(id={self.id}, project_id={self.project_id}, rows={self.row_count})>"


class Component(Base):
    """Represents a single tracked component exploded from a takeoff row."""

    __tablename__ = 'components'
    __table_args__ = (
        UniqueConstraint('project_id', 'identity_key', name='uq_components_project_identity'),
        CheckConstraint(
            "component_type IN ('spool', 'field_weld', 'valve', 'instrument', 'support', "
            "'pipe', 'fitting', 'flange', 'tubing', 'hose', 'misc_component', 'threaded_pipe')",
            name='components_component_type_check'
        ),
        Index('idx_components_project_type', 'project_id', 'component_type'),
        Index('idx_components_drawing', 'drawing_id'),
        {'comment': 'Tracked components created by takeoff imports'}
    )

    id = Column(Integer, primary_key=True, autoincrement=True, nullable=False)
    project_id = Column(
        Integer,
        ForeignKey('projects.id', ondelete='CASCADE'),
        nullable=False
    )
    component_type = Column(
        String(50),
        nullable=False,
        comment='Lowercased component type'
    )
    identity_key = Column(
        String(512),
        nullable=False,
        comment='Natural key: type, drawing, size, commodity code and sequence'
    )
    drawing_id = Column(Integer, ForeignKey('drawings.id', ondelete='CASCADE'), nullable=False)
    area_id = Column(Integer, ForeignKey('areas.id', ondelete='SET NULL'), nullable=True)
    system_id = Column(Integer, ForeignKey('systems.id', ondelete='SET NULL'), nullable=True)
    test_package_id = Column(Integer, ForeignKey('test_packages.id', ondelete='SET NULL'), nullable=True)
    import_batch_id = Column(Integer, ForeignKey('import_batches.id', ondelete='SET NULL'), nullable=True)
    attributes = Column(
        JSONType,
        default=dict,
        nullable=False,
        comment='Spec, description, size, commodity code, comments and unmapped columns'
    )
    current_milestones = Column(
        JSONType,
        default=dict,
        nullable=False,
        comment='Milestone state, maintained by progress tracking'
    )
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False
    )

    project = relationship('Project', back_populates='components')
    drawing = relationship('Drawing')
    area = relationship('Area')
    system = relationship('System')
    test_package = relationship('TestPackage')
    import_batch = relationship('ImportBatch', back_populates='components')

    def __repr__(self):
        return f"<Component(id={self.id}, type='{self.component_type}', key='{self.identity_key}')>"
