"""
Gateway HTTP do cliente VoIP.

create_app() monta a aplicação FastAPI ligada a um CallOrchestrator.
O bootstrap (voip.__main__) passa um lifespan que sobe o worker e a
conexão com o baresip; os testes usam a aplicação sem lifespan.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from . import dial, health
from .sync_wait import SyncWaitCoordinator

logger = logging.getLogger(__name__)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # corpo que não é JSON (ou não é objeto) é erro do cliente: 400
    logger.warning(f"Invalid request body on {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Invalid JSON payload"},
    )


def create_app(
    orchestrator,
    options,
    metrics: Any = None,
    keepalive_interval: float = 5.0,
    lifespan: Optional[Any] = None,
) -> FastAPI:
    """
    Args:
        orchestrator: CallOrchestrator (submit, current_state, fsm)
        options: AddonOptions (contatos, modo síncrono)
        metrics: VoipMetrics exposto em /metrics
        keepalive_interval: Intervalo dos keep-alives no modo síncrono
        lifespan: Context manager de ciclo de vida do FastAPI
    """
    app = FastAPI(
        title="VoIP Client",
        description="Outgoing voice calls with a spoken message through baresip",
        version="0.4.1",
        lifespan=lifespan,
    )

    app.state.orchestrator = orchestrator
    app.state.options = options
    app.state.metrics = metrics
    app.state.synchronous = options.http_rest_server.synchronous
    app.state.sync_wait = SyncWaitCoordinator(
        orchestrator.fsm.notifier,
        keepalive_interval=keepalive_interval,
    )

    app.add_exception_handler(RequestValidationError, _validation_error_handler)

    app.include_router(dial.router)
    app.include_router(health.router)

    return app
