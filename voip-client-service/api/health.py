"""
Health API - Diagnóstico do cliente VoIP.

Endpoints:
- GET /health - Estado atual da FSM e do registro SIP
- GET /metrics - Métricas Prometheus
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST
from pydantic import BaseModel

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str = "healthy"
    fsm_state: str
    registered: bool
    history: Optional[List[Dict[str, Any]]] = None


@router.get("/health", response_model=HealthResponse, response_model_exclude_none=True)
async def health(
    request: Request,
    history: int = Query(default=0, ge=0, le=50, description="Últimas N transições"),
) -> HealthResponse:
    orchestrator = request.app.state.orchestrator
    fsm = orchestrator.fsm

    return HealthResponse(
        fsm_state=orchestrator.current_state.value,
        registered=fsm.registered,
        history=fsm.get_history(history) if history else None,
    )


@router.get("/metrics")
async def metrics(request: Request) -> Response:
    voip_metrics = request.app.state.metrics
    body = voip_metrics.render() if voip_metrics is not None else b""
    return Response(content=body, media_type=CONTENT_TYPE_LATEST)
