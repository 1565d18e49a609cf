"""Models package for the takeoff import system."""
from backend.models.schema import (
    Base, Project, Drawing, Area, System, TestPackage, ImportBatch, Component,
    REFERENCE_MODELS
)
from backend.models.job import JobRun, JobProgress, JobStatus, JobType

__all__ = [
    'Base', 'Project', 'Drawing', 'Area', 'System', 'TestPackage',
    'ImportBatch', 'Component', 'REFERENCE_MODELS',
    'JobRun', 'JobProgress', 'JobStatus', 'JobType',
]
