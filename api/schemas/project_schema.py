"""
Project-related Pydantic schemas.
"""

from datetime import datetime
from typing import Dict, Optional
from pydantic import BaseModel, Field


class ProjectCreateRequest(BaseModel):
    """Request schema for creating a project."""

    name: str = Field(..., min_length=1, max_length=255, description="Project name")
    description: Optional[str] = Field(None, description="Optional description")

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Unit 12 Revamp",
                "description": "Piping takeoff for the unit 12 turnaround"
            }
        }


class ProjectListItem(BaseModel):
    """Project in list views."""

    id: int
    name: str
    description: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class ProjectDetail(ProjectListItem):
    """Project with counts of imported data."""

    component_count: int = 0
    drawing_count: int = 0
    area_count: int = 0
    system_count: int = 0
    test_package_count: int = 0
    import_count: int = 0
    components_by_type: Dict[str, int] = Field(default_factory=dict)


