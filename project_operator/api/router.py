import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from project_operator.core.state import OperatorState

logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    status: str


class DiagnosticsResponse(BaseModel):
    last_event: str
    reporter: str


api_router: APIRouter = APIRouter(
    tags=["operator"],
    responses={404: {"description": "Not found"}},
)


def _get_state(request: Request) -> OperatorState:
    return request.app.state.operator_state


@api_router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="ok")


@api_router.get("/metrics")
async def metrics(request: Request) -> Response:
    """Prometheus text exposition of the operator's metrics."""
    content, content_type = _get_state(request).render_metrics()
    return Response(content=content, media_type=content_type)


@api_router.get("/", response_model=DiagnosticsResponse)
async def diagnostics(request: Request) -> JSONResponse:
    """Last reconciliation timestamp and reporter identity."""
    return JSONResponse(content=_get_state(request).diagnostics.to_dict())
