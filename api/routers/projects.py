"""
Projects router - create and inspect import target projects.
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from sqlalchemy import func

from api.dependencies import get_db, get_current_user
from api.schemas.common import PaginatedResponse
from api.schemas.project_schema import ProjectCreateRequest, ProjectDetail, ProjectListItem
from backend.models.schema import Area, Component, Drawing, ImportBatch, Project, System, TestPackage

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix='/projects', tags=['projects'])


@router.post('', response_model=ProjectDetail, status_code=status.HTTP_201_CREATED)
async def create_project(
    request: ProjectCreateRequest,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user)
):
    """
    Create a project to import takeoff data into.

    **Example:**
    ```bash
    curl -X POST http://localhost:8000/api/projects \\
         -H "Content-Type: application/json" \\
         -d '{"name": "Unit 12 Revamp"}'
    ```
    """
    project = Project(name=request.name.strip(), description=request.description)
    db.add(project)
    db.commit()
    db.refresh(project)

    logger.info(f"Project {project.id} '{project.name}' created by {current_user}")

    return ProjectDetail.model_validate(project)


@router.get('', response_model=PaginatedResponse[ProjectListItem])
async def list_projects(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    search: Optional[str] = Query(None, description="Search by project name"),
    db: Session = Depends(get_db)
):
    """
    List projects with pagination, newest first.

    **Example:**
    ```bash
    curl "http://localhost:8000/api/projects?page=1&search=unit"
    ```
    """
    query = db.query(Project)

    if search:
        query = query.filter(Project.name.ilike(f"%{search}%"))

    total = query.count()

    projects = query.order_by(Project.created_at.desc(), Project.id.desc())\
        .offset((page - 1) * page_size)\
        .limit(page_size)\
        .all()

    return PaginatedResponse[ProjectListItem].create(
        items=[ProjectListItem.model_validate(p) for p in projects],
        total=total,
        page=page,
        page_size=page_size
    )


@router.get('/{project_id}', response_model=ProjectDetail)
async def get_project(
    project_id: int,
    db: Session = Depends(get_db)
):
    """
    Get a project with counts of its imported data.

    **Returns:**
    - Component, drawing, area, system and test package counts
    - Number of committed imports
    - Component count per type
    """
    project = db.get(Project, project_id)

    if not project:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Project {project_id} not found"
        )

    def count(model) -> int:
        return db.query(func.count(model.id)).filter(model.project_id == project_id).scalar() or 0

    by_type = db.query(Component.component_type, func.count(Component.id))\
        .filter(Component.project_id == project_id)\
        .group_by(Component.component_type)\
        .all()

    detail = ProjectDetail.model_validate(project)
    return detail.model_copy(update={
        'component_count': count(Component),
        'drawing_count': count(Drawing),
        'area_count': count(Area),
        'system_count': count(System),
        'test_package_count': count(TestPackage),
        'import_count': count(ImportBatch),
        'components_by_type': {component_type: n for component_type, n in by_type}
    })
