"""
Job tracking models for background commit tasks.

This module defines SQLAlchemy models for tracking import commit jobs,
including their progress and results.
"""

from enum import Enum
from sqlalchemy import (
    Column, Integer, String, TIMESTAMP, ForeignKey, Numeric, Text,
    CheckConstraint, Index, text
)
from sqlalchemy.orm import relationship

from backend.models.schema import Base, JSONType


class JobStatus(str, Enum):
    """Job execution status."""
    PENDING = 'pending'
    PROCESSING = 'processing'
    SUCCESS = 'success'
    FAILED = 'failed'


class JobType(str, Enum):
    """Type of background job."""
    COMMIT = 'commit'


class JobRun(Base):
    """
    Represents a background commit job execution.

    Tracks the lifecycle of a job from creation through completion,
    storing parameters, results, and error information. A commit job is
    never cancelled mid-flight: it either commits or rolls back.
    """

    __tablename__ = 'job_runs'
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'success', 'failed')",
            name='job_runs_status_check'
        ),
        CheckConstraint(
            "job_type IN ('commit')",
            name='job_runs_job_type_check'
        ),
        Index('idx_job_runs_status', 'status'),
        Index('idx_job_runs_created_at', 'created_at'),
        Index('idx_job_runs_project_id', 'project_id'),
        Index('idx_job_runs_type_status', 'job_type', 'status'),
        {'comment': 'Tracks background job executions (import commits)'}
    )

    job_id = Column(
        String(255),
        primary_key=True,
        nullable=False,
        comment='Celery task UUID'
    )
    job_type = Column(
        String(50),
        nullable=False,
        comment='Type of job'
    )
    status = Column(
        String(20),
        nullable=False,
        server_default='pending',
        comment='Current job status'
    )
    created_at = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False,
        comment='Job creation timestamp'
    )
    started_at = Column(
        TIMESTAMP,
        nullable=True,
        comment='Job start timestamp'
    )
    completed_at = Column(
        TIMESTAMP,
        nullable=True,
        comment='Job completion timestamp'
    )

    # Job parameters and results
    params = Column(
        JSONType,
        default=dict,
        nullable=False,
        comment='Input parameters for the job (never the row payload itself)'
    )
    result = Column(
        JSONType,
        nullable=True,
        comment='Import result'
    )
    error = Column(
        JSONType,
        nullable=True,
        comment='Error details if job failed'
    )

    # Associated project
    project_id = Column(
        Integer,
        ForeignKey('projects.id', ondelete='SET NULL'),
        nullable=True,
        comment='Target project of the import'
    )

    # Metadata
    created_by = Column(
        String(255),
        nullable=True,
        comment='User or API key that created the job'
    )

    # Relationships
    project = relationship('Project', back_populates='jobs')
    progress = relationship(
        'JobProgress',
        back_populates='job',
        cascade='all, delete-orphan',
        order_by='JobProgress.timestamp'
    )

    def __repr__(self):
        return f"<JobRun(job_id='{self.job_id}', type='{self.job_type}', status='{self.status}')>"

    def duration_seconds(self) -> float:
        """Calculate job duration in seconds."""
        if self.started_at and self.completed_at:
            delta = self.completed_at - self.started_at
            return delta.total_seconds()
        return 0.0


class JobProgress(Base):
    """
    Represents a progress update for a job.

    Stores detailed progress information as the commit executes,
    including stage, percentage, and descriptive messages.
    """

    __tablename__ = 'job_progress'
    __table_args__ = (
        Index('idx_job_progress_job_id', 'job_id'),
        Index('idx_job_progress_timestamp', 'timestamp'),
        Index('idx_job_progress_job_stage', 'job_id', 'stage'),
        {'comment': 'Detailed progress tracking for jobs'}
    )

    id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        nullable=False
    )
    job_id = Column(
        String(255),
        ForeignKey('job_runs.job_id', ondelete='CASCADE'),
        nullable=False,
        comment='Associated job ID'
    )
    stage = Column(
        String(50),
        nullable=False,
        comment='Current stage (e.g., metadata, drawings, insertion)'
    )
    percent = Column(
        Numeric(5, 2),
        nullable=False,
        comment='Progress percentage (0.00 to 100.00)'
    )
    message = Column(
        Text,
        nullable=True,
        comment='Human-readable progress message'
    )
    timestamp = Column(
        TIMESTAMP,
        server_default=text('CURRENT_TIMESTAMP'),
        nullable=False,
        comment='Progress update timestamp'
    )

    # Relationship
    job = relationship('JobRun', back_populates='progress')

    def __repr__(self):
        return f"<JobProgress(job_id='{self.job_id}', stage='{self.stage}', percent={self.percent})>"
