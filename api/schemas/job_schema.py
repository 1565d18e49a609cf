"""
Job-related Pydantic schemas.

This module contains schemas for commit job status, progress, and history.
"""

from enum import Enum
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field
from datetime import datetime


class JobStatusEnum(str, Enum):
    """Job execution status."""
    PENDING = 'pending'
    PROCESSING = 'processing'
    SUCCESS = 'success'
    FAILED = 'failed'


class JobTypeEnum(str, Enum):
    """Type of background job."""
    COMMIT = 'commit'


class JobProgressResponse(BaseModel):
    """Latest progress update."""

    stage: str = Field(..., description="Current stage (e.g., 'metadata', 'insertion')")
    percent: float = Field(..., ge=0, le=100, description="Progress percentage")
    message: str = Field(..., description="Human-readable progress message")
    timestamp: datetime = Field(..., description="Progress update timestamp")

    class Config:
        json_schema_extra = {
            "example": {
                "stage": "insertion",
                "percent": 75.0,
                "message": "Inserting components 2000/4000",
                "timestamp": "2025-10-15T12:30:45Z"
            }
        }


class JobStatusResponse(BaseModel):
    """Comprehensive job status response."""

    job_id: str = Field(..., description="Unique job identifier (Celery task ID)")
    job_type: JobTypeEnum = Field(..., description="Type of job")
    status: JobStatusEnum = Field(..., description="Current job status")
    created_at: datetime = Field(..., description="Job creation timestamp")
    started_at: Optional[datetime] = Field(None, description="Job start timestamp")
    completed_at: Optional[datetime] = Field(None, description="Job completion timestamp")
    duration_seconds: float = Field(0.0, description="Seconds between start and completion")

    # Progress information
    progress: Optional[JobProgressResponse] = Field(None, description="Latest progress update")

    # Results
    result: Optional[Dict[str, Any]] = Field(None, description="Import result (if completed)")
    error: Optional[Dict[str, Any]] = Field(None, description="Error details (if failed)")

    # Target project
    project_id: Optional[int] = Field(None, description="Target project ID")

    # Metadata
    created_by: Optional[str] = Field(None, description="User who created the job")

    class Config:
        from_attributes = True
        json_schema_extra = {
            "example": {
                "job_id": "abc-123-def-456",
                "job_type": "commit",
                "status": "success",
                "created_at": "2025-10-15T12:00:00Z",
                "started_at": "2025-10-15T12:00:01Z",
                "completed_at": "2025-10-15T12:00:04Z",
                "progress": {
                    "stage": "complete",
                    "percent": 100.0,
                    "message": "Import complete",
                    "timestamp": "2025-10-15T12:00:04Z"
                },
                "result": {"success": True, "created_counts": {"components": 156}},
                "error": None,
                "project_id": 1,
                "created_by": "api_key_123"
            }
        }


class JobListItem(BaseModel):
    """Job list item for job history."""

    job_id: str
    job_type: JobTypeEnum
    status: JobStatusEnum
    created_at: datetime
    completed_at: Optional[datetime]
    project_id: Optional[int]

    class Config:
        from_attributes = True


class JobListResponse(BaseModel):
    """Paginated list of jobs."""

    total: int = Field(..., description="Total number of jobs")
    page: int = Field(..., description="Current page number")
    page_size: int = Field(..., description="Items per page")
    total_pages: int = Field(..., description="Total number of pages")
    items: list[JobListItem] = Field(..., description="Jobs in current page")
