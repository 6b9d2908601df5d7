from __future__ import annotations
"""Celery tasks for the variant pipeline.

- generate_project_variants: project-wide batch generation (long running)
- ingest_generation_result:  callback ingestion with slow persistence
- sweep_stuck_variants:      periodic stuck-job recovery (beat)
"""

import logging

from celery import shared_task

from atelier.tasks import run_async

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=1, default_retry_delay=60)
def generate_project_variants(
    self,
    project_id: str,
    stage: str = "bible",
    models: list[str] | None = None,
    skip_approved: bool = True,
):
    """Generate variants for every asset of a project stage."""
    from atelier.services.project_pipeline import generate_project

    try:
        report = run_async(generate_project(project_id, stage, models, skip_approved=skip_approved))
        return {"project_id": project_id, "stage": stage, **report.to_dict()}
    except Exception as exc:
        logger.error("Project generation failed for %s (%s): %s", project_id, stage, exc)
        if self.request.retries >= self.max_retries:
            return {"project_id": project_id, "stage": stage, "status": "error", "error": str(exc)[:500]}
        raise self.retry(exc=exc)


@shared_task(bind=True, max_retries=2, default_retry_delay=15)
def ingest_generation_result(self, variant_id: str, image_url: str | None, error: str | None = None):
    """Persist a callback's image (with backoff) and settle the variant."""
    from atelier.errors import VariantNotFound
    from atelier.services.orchestrator import VariantOrchestrator

    try:
        outcome = run_async(
            VariantOrchestrator().resolve_variant(variant_id, image_url=image_url, error=error, slow=True)
        )
        return {"variant_id": variant_id, "status": outcome.status, "changed": outcome.changed}
    except VariantNotFound:
        logger.info("Variant %s deleted before its result arrived", variant_id)
        return {"variant_id": variant_id, "status": "deleted", "changed": False}
    except Exception as exc:
        logger.error("Callback ingestion failed for variant %s: %s", variant_id, exc)
        if self.request.retries >= self.max_retries:
            return {"variant_id": variant_id, "status": "error", "error": str(exc)[:500]}
        raise self.retry(exc=exc)


@shared_task
def sweep_stuck_variants():
    """Fail every variant stuck in generating past its model's threshold."""
    from atelier.services.recovery import sweep_stuck

    reset = run_async(sweep_stuck())
    return {"reset": reset}
