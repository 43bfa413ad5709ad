import logging

from fastapi import APIRouter, Depends, HTTPException, status

from symbolgen.api.deps import enforce_generate_rate_limit, get_launcher
from symbolgen.api.models import GenerateSymbolRequest, JobCreateResponse
from symbolgen.services.jobs import JobLauncher

router = APIRouter()
logger = logging.getLogger("symbolgen.api.routes.symbols")


@router.post("/generate", response_model=JobCreateResponse, status_code=status.HTTP_202_ACCEPTED, dependencies=[Depends(enforce_generate_rate_limit)])
async def generate_symbol(  # noqa: B008
  request: GenerateSymbolRequest,
  launcher: JobLauncher = Depends(get_launcher),  # noqa: B008
) -> JobCreateResponse:
  """Start a generation job and return its id without waiting for it."""
  if not request.spec.strip():
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Symbol specification is required.")
  if not request.product_id.strip():
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Product ID is required.")
  job_id = launcher.start(request.to_generation_request())
  return JobCreateResponse(job_id=job_id, status="pending")
