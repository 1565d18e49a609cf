"""
Pydantic schemas for request/response validation.

This package contains all Pydantic models used for API request validation
and response serialization.
"""

from api.schemas.common import ErrorResponse, PaginatedResponse, HealthCheckResponse
from api.schemas.job_schema import (
    JobStatusEnum, JobTypeEnum, JobProgressResponse,
    JobStatusResponse, JobListItem, JobListResponse
)
from api.schemas.import_schema import AnalyzeResponse, CommitRequest, CommitResponse
from api.schemas.project_schema import (
    ProjectCreateRequest, ProjectListItem, ProjectDetail
)

__all__ = [
    # Common
    'ErrorResponse',
    'PaginatedResponse',
    'HealthCheckResponse',

    # Job
    'JobStatusEnum',
    'JobTypeEnum',
    'JobProgressResponse',
    'JobStatusResponse',
    'JobListItem',
    'JobListResponse',

    # Import
    'AnalyzeResponse',
    'CommitRequest',
    'CommitResponse',

    # Project
    'ProjectCreateRequest',
    'ProjectListItem',
    'ProjectDetail',
]
