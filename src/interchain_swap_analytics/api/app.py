"""HTTP surface for the analysis query service.

Routes:
    POST /api/orders/analysis  average stage durations for a chain pair and window
    GET  /health               liveness plus pipeline state
"""

from __future__ import annotations

import logging
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator, model_validator

from interchain_swap_analytics import __version__
from interchain_swap_analytics.analysis.query import AnalysisQueryService, NoAnalysisData

if TYPE_CHECKING:
    from interchain_swap_analytics.pipeline import Pipeline

logger = logging.getLogger(__name__)

VALIDATION_ERROR = "All fields are required"
NOT_FOUND_ERROR = "No orders found for the given chain pair and time range"
INTERNAL_ERROR = "Internal server error"

# "2024-01-01 00:00:00+00": an hour-only UTC offset at the end of the string.
_HOUR_ONLY_OFFSET = re.compile(r"(\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?[+-]\d{2})$")


class AnalysisRequest(BaseModel):
    """Body of ``POST /api/orders/analysis``."""

    source_chain: str = Field(..., min_length=1, max_length=64)
    destination_chain: str = Field(..., min_length=1, max_length=64)
    start_time: datetime
    end_time: datetime

    @field_validator("source_chain", "destination_chain")
    @classmethod
    def _strip_chain(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("chain must not be blank")
        return v

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def _expand_hour_offset(cls, v: Any) -> Any:
        if isinstance(v, str):
            return _HOUR_ONLY_OFFSET.sub(r"\1:00", v.strip())
        return v

    @field_validator("start_time", "end_time")
    @classmethod
    def _assume_utc(cls, v: datetime) -> datetime:
        # Naive timestamps from the form are taken as UTC.
        return v.replace(tzinfo=UTC) if v.tzinfo is None else v

    @model_validator(mode="after")
    def _check_window(self) -> AnalysisRequest:
        if self.end_time < self.start_time:
            raise ValueError("end_time must not be before start_time")
        return self


def _validation_details(exc: RequestValidationError) -> list[dict[str, str]]:
    return [
        {
            "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
            "message": str(error.get("msg", "")),
        }
        for error in exc.errors()
    ]


def create_app(
    query_service: AnalysisQueryService | None = None,
    *,
    pipeline: Pipeline | None = None,
    manage_pipeline: bool = False,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        query_service: Service answering analysis requests. Defaults to the
            pipeline's query service.
        pipeline: Running pipeline, reported by ``/health``.
        manage_pipeline: Start and stop ``pipeline`` with the app lifespan.
    """
    if query_service is None and pipeline is None:
        raise ValueError("create_app needs a query_service or a pipeline")

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if manage_pipeline and pipeline is not None:
            await pipeline.start()
        try:
            yield
        finally:
            if manage_pipeline and pipeline is not None:
                await pipeline.stop()

    app = FastAPI(title="Interchain Swap Analytics API", version=__version__, lifespan=lifespan)
    app.state.query_service = query_service
    app.state.pipeline = pipeline

    def get_query_service(request: Request) -> AnalysisQueryService:
        service: AnalysisQueryService | None = request.app.state.query_service
        if service is not None:
            return service
        return request.app.state.pipeline.query_service

    @app.exception_handler(RequestValidationError)
    async def _on_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = _validation_details(exc)
        logger.info("Rejected %s %s: %s", request.method, request.url.path, details)
        return JSONResponse(status_code=400, content={"error": VALIDATION_ERROR, "details": details})

    @app.exception_handler(Exception)
    async def _on_unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": INTERNAL_ERROR})

    @app.get("/health")
    async def health() -> dict[str, Any]:
        payload: dict[str, Any] = {"ok": True, "version": __version__}
        if pipeline is not None:
            payload.update(pipeline.health())
        return payload

    @app.post("/api/orders/analysis")
    async def orders_analysis(
        body: AnalysisRequest,
        service: AnalysisQueryService = Depends(get_query_service),
    ) -> JSONResponse:
        try:
            outcome = await service.compute_averages(
                body.source_chain,
                body.destination_chain,
                body.start_time,
                body.end_time,
            )
        except ValueError as e:
            return JSONResponse(status_code=400, content={"error": VALIDATION_ERROR, "details": [str(e)]})
        except Exception:
            logger.exception(
                "Analysis failed for %s -> %s",
                body.source_chain,
                body.destination_chain,
            )
            return JSONResponse(status_code=500, content={"error": INTERNAL_ERROR})

        if isinstance(outcome, NoAnalysisData):
            return JSONResponse(
                status_code=404,
                content={
                    "error": NOT_FOUND_ERROR,
                    "reason": outcome.reason,
                    "total_orders": outcome.total_orders,
                },
            )
        return JSONResponse(status_code=200, content=outcome.to_dict())

    return app
