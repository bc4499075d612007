"""ASGI application for MealForge."""
# mypy: ignore-errors

from __future__ import annotations

import logging
from time import perf_counter
from typing import Any, Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, ConfigDict, Field

from mealforge import __version__, metrics
from mealforge.config import Settings, get_settings
from mealforge.errors import (
    Cancelled,
    InvalidConfiguration,
    InvalidTransition,
    PersistenceError,
    PipelineError,
    QuotaExceeded,
    StreamError,
)
from mealforge.logging_utils import configure_logging as configure_app_logging
from mealforge.models.run import GenerationConfig, PipelineStatus
from mealforge.server import deps

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES: dict[type, int] = {
    InvalidConfiguration: status.HTTP_400_BAD_REQUEST,
    QuotaExceeded: status.HTTP_402_PAYMENT_REQUIRED,
    InvalidTransition: status.HTTP_409_CONFLICT,
    Cancelled: status.HTTP_409_CONFLICT,
    StreamError: status.HTTP_502_BAD_GATEWAY,
    PersistenceError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


class GenerationRequest(BaseModel):
    """Body of a start request: the run configuration plus free-form preferences."""

    selected_inventory_id: Optional[str] = Field(default=None, alias="selectedInventoryId")
    week_count: int = Field(default=1, alias="weekCount")
    batch_cooking: bool = Field(default=False, alias="batchCooking")
    preferences: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True)

    def to_config(self) -> GenerationConfig:
        return GenerationConfig(
            selected_inventory_id=self.selected_inventory_id,
            week_count=self.week_count,
            batch_cooking=self.batch_cooking,
        )


class ResumeResponse(BaseModel):
    resumed: bool
    status: PipelineStatus


def _configure_logging(settings: Settings) -> None:
    secrets = [settings.api_token or "", settings.service_token or ""]
    configure_app_logging(settings.log_level, settings.log_format, secrets)


def _status_code_for(exc: PipelineError) -> int:
    for error_type, code in ERROR_STATUS_CODES.items():
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def create_app() -> FastAPI:
    """Create and configure a FastAPI application instance."""

    settings = get_settings()
    _configure_logging(settings)

    application = FastAPI(title="MealForge Plan Generation", version=__version__)
    logger.debug("Application created with log level %s", settings.log_level)

    if settings.log_requests:
        access_logger = logging.getLogger("mealforge.access")

        @application.middleware("http")
        async def log_request_response(request: Request, call_next):
            """Log request/response details without leaking sensitive data."""

            request_id = request.headers.get("X-Request-ID") or uuid4().hex
            request.state.request_id = request_id
            start = perf_counter()
            path = request.url.path
            method = request.method
            try:
                response: Response = await call_next(request)
            except Exception:
                duration_ms = (perf_counter() - start) * 1000
                access_logger.exception(
                    "HTTP %s %s status=500 duration_ms=%.2f",
                    method,
                    path,
                    duration_ms,
                    extra={"request_id": request_id},
                )
                metrics.REQUEST_COUNT.labels(method=method, path=path, status="500").inc()
                metrics.REQUEST_LATENCY.labels(method=method, path=path).observe(
                    duration_ms / 1000.0
                )
                raise

            duration_ms = (perf_counter() - start) * 1000
            response.headers.setdefault("X-Request-ID", request_id)
            access_logger.info(
                "HTTP %s %s status=%s duration_ms=%.2f",
                method,
                path,
                response.status_code,
                duration_ms,
                extra={"request_id": request_id},
            )
            metrics.REQUEST_COUNT.labels(
                method=method,
                path=path,
                status=str(response.status_code),
            ).inc()
            metrics.REQUEST_LATENCY.labels(method=method, path=path).observe(duration_ms / 1000.0)
            return response

    @application.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        log_kwargs: dict[str, Any] = {}
        request_id = getattr(request.state, "request_id", None)
        if request_id:
            log_kwargs["extra"] = {"request_id": request_id}
        logger.warning(
            "Validation error on %s %s: %s",
            request.method,
            request.url.path,
            exc.errors(),
            **log_kwargs,
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": jsonable_errors(exc.errors())},
        )

    @application.exception_handler(PipelineError)
    async def pipeline_exception_handler(request: Request, exc: PipelineError):
        code = _status_code_for(exc)
        logger.info(
            "Pipeline error on %s %s status=%s error=%s",
            request.method,
            request.url.path,
            code,
            exc,
        )
        return JSONResponse(
            status_code=code,
            content={"detail": str(exc), "error": type(exc).__name__},
        )

    @application.on_event("shutdown")
    async def close_machines() -> None:
        provider = application.dependency_overrides.get(deps.get_registry, deps.get_registry)
        await provider().aclose()

    @application.get("/healthz", include_in_schema=False)
    def healthcheck() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    @application.get("/metrics", include_in_schema=False)
    def metrics_endpoint() -> Response:
        payload = generate_latest()
        return Response(content=payload, media_type=CONTENT_TYPE_LATEST)

    @application.get(
        "/users/{user_id}/generation",
        response_model=PipelineStatus,
        summary="Current generation status",
    )
    async def generation_status(
        user_id: str,
        auth: None = Depends(deps.require_api_token),
        registry: deps.MachineRegistry = Depends(deps.get_registry),
    ) -> PipelineStatus:
        machine = registry.get(user_id)
        if machine is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"No generation session for user {user_id}",
            )
        return machine.status()

    @application.post(
        "/users/{user_id}/generation",
        response_model=PipelineStatus,
        status_code=status.HTTP_202_ACCEPTED,
        summary="Start generating a meal plan",
    )
    async def generation_start(
        user_id: str,
        payload: GenerationRequest,
        auth: None = Depends(deps.require_api_token),
        registry: deps.MachineRegistry = Depends(deps.get_registry),
    ) -> PipelineStatus:
        """Validate the configuration and run the pipeline in the background."""

        machine = registry.get_or_create(user_id)
        return machine.launch(payload.to_config(), preferences=payload.preferences)

    @application.post(
        "/users/{user_id}/generation/cancel",
        response_model=PipelineStatus,
        summary="Cancel the active generation",
    )
    async def generation_cancel(
        user_id: str,
        auth: None = Depends(deps.require_api_token),
        registry: deps.MachineRegistry = Depends(deps.get_registry),
    ) -> PipelineStatus:
        return await registry.get_or_create(user_id).cancel()

    @application.post(
        "/users/{user_id}/generation/save",
        response_model=PipelineStatus,
        summary="Save the generated weeks",
    )
    async def generation_save(
        user_id: str,
        with_details: bool = Query(default=True),
        auth: None = Depends(deps.require_api_token),
        registry: deps.MachineRegistry = Depends(deps.get_registry),
    ) -> PipelineStatus:
        machine = registry.get_or_create(user_id)
        machine.save(with_details=with_details)
        return machine.status()

    @application.post(
        "/users/{user_id}/generation/discard",
        response_model=PipelineStatus,
        summary="Discard the current plan",
    )
    async def generation_discard(
        user_id: str,
        auth: None = Depends(deps.require_api_token),
        registry: deps.MachineRegistry = Depends(deps.get_registry),
    ) -> PipelineStatus:
        return await registry.get_or_create(user_id).discard()

    @application.post(
        "/users/{user_id}/generation/resume",
        response_model=ResumeResponse,
        summary="Resume from the latest checkpoint",
    )
    async def generation_resume(
        user_id: str,
        auth: None = Depends(deps.require_api_token),
        registry: deps.MachineRegistry = Depends(deps.get_registry),
    ) -> ResumeResponse:
        machine = registry.get_or_create(user_id)
        resumed = machine.resume()
        return ResumeResponse(resumed=resumed, status=machine.status())

    @application.get(
        "/users/{user_id}/generation/checkpoints",
        summary="List stored checkpoints",
    )
    def generation_checkpoints(
        user_id: str,
        auth: None = Depends(deps.require_api_token),
        store=Depends(deps.get_checkpoint_store),
    ) -> list[dict[str, Any]]:
        return [
            {**checkpoint.model_dump(mode="json", exclude={"weeks"}), "week_count": len(checkpoint.weeks)}
            for checkpoint in store.list_for_user(user_id)
        ]

    @application.get("/users/{user_id}/plans", summary="List saved meal plans")
    def saved_plans(
        user_id: str,
        auth: None = Depends(deps.require_api_token),
        lister: deps.PlanLister = Depends(deps.get_plan_lister),
    ) -> list[dict[str, Any]]:
        return [
            {
                **{key: value for key, value in row.items() if key != "plan"},
                "days": len(row["plan"].days),
            }
            for row in lister(user_id)
        ]

    return application


def jsonable_errors(errors: Any) -> list[dict[str, Any]]:
    """Ensure validation error payloads can be serialized to JSON."""

    normalized: list[dict[str, Any]] = []
    for error in errors:
        normalized.append(
            {
                key: value if isinstance(value, (str, int, float, bool, list)) or value is None else repr(value)
                for key, value in error.items()
            }
        )
    return normalized


app = create_app()

__all__ = ["app", "create_app"]
