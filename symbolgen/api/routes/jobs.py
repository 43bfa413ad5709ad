import logging
import re

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response, StreamingResponse

from symbolgen.api.deps import get_registry
from symbolgen.api.models import JobStatusResponse
from symbolgen.config import Settings, get_settings
from symbolgen.jobs.registry import JobRegistry
from symbolgen.jobs.stream import SSE_HEADERS, SSE_MEDIA_TYPE, stream_job_events
from symbolgen.services.jobs import job_status_payload

router = APIRouter()
logger = logging.getLogger("symbolgen.api.routes.jobs")


def _download_name(label: str, filename: str) -> str:
  stem = re.sub(r"[^A-Za-z0-9._-]+", "_", label.removesuffix(".dwg").removesuffix("_Symbol")).strip("_.")
  return f"{stem}_{filename}" if stem else filename


@router.get("/{job_id}", response_model=JobStatusResponse)
async def get_job_status(job_id: str, registry: JobRegistry = Depends(get_registry)) -> JobStatusResponse:  # noqa: B008
  """Fetch the status, progress log and result metadata of a job."""
  snapshot = registry.get(job_id)
  if snapshot is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
  return JobStatusResponse.model_validate(job_status_payload(snapshot))


@router.get("/{job_id}/stream")
async def stream_job(  # noqa: B008
  job_id: str,
  registry: JobRegistry = Depends(get_registry),  # noqa: B008
  settings: Settings = Depends(get_settings),  # noqa: B008
) -> StreamingResponse:
  """Stream progress events as server-sent events until the job finishes."""
  return StreamingResponse(stream_job_events(registry, job_id, keepalive_seconds=settings.stream_keepalive_seconds), media_type=SSE_MEDIA_TYPE, headers=SSE_HEADERS)


@router.get("/{job_id}/artifacts/{name}")
async def download_artifact(job_id: str, name: str, registry: JobRegistry = Depends(get_registry)) -> Response:  # noqa: B008
  """Download a generated file (``dwg`` or ``png``) of a succeeded job."""
  snapshot = registry.get(job_id)
  if snapshot is None or snapshot.result is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found or not completed")
  artifact = snapshot.result.artifacts.get(name.lower())
  if artifact is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Artifact '{name}' not available")
  filename = _download_name(snapshot.label, artifact.name)
  return Response(content=artifact.data, media_type=artifact.content_type, headers={"Content-Disposition": f'attachment; filename="{filename}"'})
