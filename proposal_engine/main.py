from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from proposal_engine.ai.errors import GenerationError
from proposal_engine.api.routes import generation, jobs
from proposal_engine.config import get_settings
from proposal_engine.core.exceptions import generation_exception_handler, global_exception_handler, http_exception_handler, request_validation_exception_handler
from proposal_engine.core.json import MsgspecJSONResponse
from proposal_engine.core.lifespan import lifespan
from proposal_engine.core.middleware import RequestLoggingMiddleware

settings = get_settings()

app = FastAPI(default_response_class=MsgspecJSONResponse, lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

app.add_middleware(CORSMiddleware, allow_origins=list(settings.allowed_origins), allow_credentials=True, allow_methods=["GET", "POST", "OPTIONS"], allow_headers=["content-type", "authorization"], expose_headers=["content-length", "x-job-id"])


# Add exception handlers
app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(GenerationError, generation_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)

# Add middleware
app.add_middleware(RequestLoggingMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": "0.1.0"}


app.include_router(generation.router, prefix="/v1/proposals", tags=["proposals"])
app.include_router(jobs.router, prefix="/v1/jobs", tags=["jobs"])
