"""Generation Client — the only code that talks to the external Generation Service.

A dispatch either comes back with the finished image URL (sync mode) or just
a job handle, in which case the image arrives later on the callback URL.
Nothing here raises: every failure is reported through ``DispatchResult.error``.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

import httpx

from atelier.config import get_settings
from atelier.services.model_registry import MODEL_REGISTRY, quality_for_model

logger = logging.getLogger(__name__)

_http_client: httpx.AsyncClient | None = None


def _get_http_client(timeout: float) -> httpx.AsyncClient:
    """Return a module-level httpx.AsyncClient, creating it on first use."""
    global _http_client
    if _http_client is None:
        _http_client = httpx.AsyncClient(timeout=timeout)
    return _http_client


@dataclass
class DispatchOptions:
    aspect_ratio: str = "1:1"
    source_image_url: str | None = None
    reference_images: list[str] | None = None
    variant_id: str | None = None
    callback_url: str | None = None


@dataclass
class DispatchResult:
    """Outcome of one dispatch; ``error`` set means a hard failure."""
    job_id: str | None = None
    image_url: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return not self.error


def build_payload(prompt: str, model: str, options: DispatchOptions) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "prompt": prompt,
        "model": MODEL_REGISTRY.service_name(model),
        "aspect_ratio": options.aspect_ratio,
        "quality": quality_for_model(model),
    }
    if options.source_image_url:
        payload["source_image_url"] = options.source_image_url
    if options.reference_images:
        payload["reference_images"] = list(options.reference_images)
    if options.variant_id:
        payload["variant_id"] = options.variant_id
    if options.callback_url:
        payload["callback_url"] = options.callback_url
    return payload


def parse_response(body: Any) -> DispatchResult:
    """Accept ``{...}`` or ``[{...}]`` with camelCase or snake_case keys."""
    if isinstance(body, list):
        body = body[0] if body else {}
    if not isinstance(body, dict):
        return DispatchResult(error=f"Unexpected response: {body!r}"[:500])
    if body.get("error"):
        return DispatchResult(
            job_id=body.get("taskId") or body.get("task_id"),
            error=str(body["error"])[:500],
        )
    job_id = body.get("taskId") or body.get("task_id") or body.get("job_id")
    image_url = body.get("imageUrl") or body.get("image_url")
    if not job_id and not image_url:
        return DispatchResult(error="Generation service returned neither job id nor image")
    return DispatchResult(job_id=job_id, image_url=image_url)


class GenerationClient:
    """Thin async client for the Generation Service."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        settings = get_settings()
        self.url = settings.GENERATION_SERVICE_URL
        self.api_key = settings.GENERATION_SERVICE_API_KEY
        self.timeout = float(settings.GENERATION_TIMEOUT)
        self.mock = settings.USE_MOCK_API
        self.client = client

    async def dispatch(self, prompt: str, model: str, options: DispatchOptions) -> DispatchResult:
        if self.mock:
            job_id = f"mock-{uuid.uuid4().hex[:12]}"
            logger.info("[MOCK] dispatch %s -> job %s", model, job_id)
            return DispatchResult(job_id=job_id)

        payload = build_payload(prompt, model, options)
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        client = self.client or _get_http_client(self.timeout)
        try:
            response = await client.post(self.url, json=payload, headers=headers, timeout=self.timeout)
        except httpx.TimeoutException:
            logger.error("Generation request timed out after %.0fs (model=%s)", self.timeout, model)
            return DispatchResult(error=f"Generation request timed out after {self.timeout:.0f}s")
        except httpx.HTTPError as exc:
            logger.error("Generation request failed (model=%s): %s", model, exc)
            return DispatchResult(error=f"Generation request failed: {exc}"[:500])

        if response.status_code >= 400:
            logger.error(
                "Generation service returned HTTP %d (model=%s): %s",
                response.status_code, model, response.text[:200],
            )
            return DispatchResult(error=f"Generation service error {response.status_code}: {response.text[:300]}")

        try:
            body = response.json()
        except ValueError:
            return DispatchResult(error="Generation service returned invalid JSON")

        result = parse_response(body)
        logger.info(
            "Dispatched %s (variant=%s): job=%s sync_image=%s error=%s",
            model, options.variant_id, result.job_id, bool(result.image_url), result.error,
        )
        return result
