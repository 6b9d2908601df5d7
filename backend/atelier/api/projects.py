from __future__ import annotations
"""Project-wide batch endpoints — generate everything, bulk-approve."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from atelier.api.deps import get_selection
from atelier.database import get_db
from atelier.models.project import Project
from atelier.schemas.variant import ProjectGenerateRequest
from atelier.services.project_pipeline import bulk_approve
from atelier.services.selection import SelectionService

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/{project_id}/generate-all")
async def generate_all(
    project_id: str,
    req: ProjectGenerateRequest | None = None,
    db: AsyncSession = Depends(get_db),
):
    """Queue generation for every asset of a project stage (Celery)."""
    project = await db.get(Project, project_id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")

    req = req or ProjectGenerateRequest()
    from atelier.tasks.variant_tasks import generate_project_variants

    task = generate_project_variants.delay(project_id, req.stage, req.models, req.skip_approved)
    logger.info("Queued %s generation for project %s (task %s)", req.stage, project_id, task.id)
    return {"project_id": project_id, "stage": req.stage, "task_id": task.id, "status": "queued"}


@router.post("/{project_id}/bulk-approve")
async def bulk_approve_project(
    project_id: str,
    db: AsyncSession = Depends(get_db),
    selection: SelectionService = Depends(get_selection),
):
    """Select the first ready variant of every asset that has no selection yet."""
    project = await db.get(Project, project_id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")

    report = await bulk_approve(project_id, selection)
    return {"project_id": project_id, **report.to_dict()}
