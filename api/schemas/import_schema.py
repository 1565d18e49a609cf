"""
Import-related Pydantic schemas.

Request and response shapes of the analyze and commit endpoints. The
pipeline types themselves live in backend.models.import_types and are
re-exported here for the API layer.
"""

from typing import Optional
from pydantic import Field

from backend.models.import_types import (
    ColumnMapping, ErrorDetail, ImportPayload, ImportResult, PreviewState
)


class AnalyzeResponse(PreviewState):
    """Preview of an uploaded file. Nothing has been written."""

    class Config:
        json_schema_extra = {
            "example": {
                "file_name": "takeoff.csv",
                "file_size": 18432,
                "total_rows": 170,
                "valid_rows": 169,
                "skipped_rows": 1,
                "error_rows": 0,
                "column_mappings": [
                    {"source_header": "DRAWINGS", "canonical_field": "DRAWING",
                     "confidence": 85, "match_tier": "synonym"}
                ],
                "unmapped_columns": ["Line Number"],
                "can_commit": True
            }
        }


class CommitRequest(ImportPayload):
    """Valid rows, column mappings and metadata to create."""

    class Config:
        json_schema_extra = {
            "example": {
                "project_id": 1,
                "rows": [
                    {"drawing": "P-001", "type": "valve", "qty": 2, "cmdty_code": "VBALU-001",
                     "size": "2", "system": "HC-05", "row_number": 1}
                ],
                "column_mappings": [],
                "metadata_to_create": {"areas": [], "systems": ["HC-05"], "test_packages": []}
            }
        }


class CommitResponse(ImportResult):
    """Import result plus the job that produced it."""

    job_id: Optional[str] = Field(None, description="Commit job ID, for status lookups")

    class Config:
        json_schema_extra = {
            "example": {
                "success": False,
                "created_counts": {"components": 0, "drawings": 0, "drawings_reused": 0,
                                   "areas": 0, "systems": 0, "test_packages": 0},
                "per_type_counts": {},
                "duration_ms": 84,
                "error": "1 component(s) already exist in project 1; nothing was imported",
                "details": [{"row": 3, "issue": "Component already exists",
                             "context_key": "valve:P-001-2-VBALU-001-001"}],
                "job_id": "abc-123-def-456"
            }
        }


__all__ = [
    'AnalyzeResponse',
    'ColumnMapping',
    'CommitRequest',
    'CommitResponse',
    'ErrorDetail',
    'ImportPayload',
    'ImportResult',
    'PreviewState',
]
