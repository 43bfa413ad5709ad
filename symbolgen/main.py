from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from symbolgen import __version__
from symbolgen.api.models import HealthResponse
from symbolgen.api.routes import jobs, symbols
from symbolgen.config import get_settings
from symbolgen.core.exceptions import global_exception_handler, http_exception_handler, request_validation_exception_handler
from symbolgen.core.lifespan import lifespan
from symbolgen.core.middleware import RequestLoggingMiddleware

settings = get_settings()

app = FastAPI(title="symbolgen", version=__version__, lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

app.add_middleware(CORSMiddleware, allow_origins=settings.allowed_origins, allow_credentials=True, allow_methods=["GET", "POST", "OPTIONS"], allow_headers=["content-type", "authorization"], expose_headers=["content-length", "content-disposition", "x-request-id"])

app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)

app.add_middleware(RequestLoggingMiddleware)


@app.get("/health", response_model=HealthResponse, include_in_schema=False)
async def health_check() -> HealthResponse:
  """Return a simple health status."""
  return HealthResponse(status="ok", version=__version__)


app.include_router(symbols.router, prefix="/v1/symbols", tags=["symbols"])
app.include_router(jobs.router, prefix="/v1/jobs", tags=["jobs"])
