"""
VoipClientServer - Monta e executa o serviço completo.

Componentes:
- BaresipClient: conexão ctrl_tcp com o processo baresip
- TTSService: Home Assistant TTS com cache em disco
- CallStateMachine + CallOrchestrator: worker único da FSM
- FastAPI (uvicorn): gateway HTTP /dial, /health, /metrics

O uvicorn trata SIGINT/SIGTERM. A perda da conexão com o baresip e o registro
esgotado são fatais: o servidor HTTP é encerrado e o processo sai com código != 0 para o
supervisor reiniciar o container.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import FastAPI

from api.app import create_app
from services.tts_service import TTSService

from .baresip.client import BaresipClient, DEFAULT_CTRL_PORT
from .config_loader import AddonOptions
from .core.errors import BaresipConnectionError
from .core.orchestrator import CallOrchestrator
from .core.state_machine import CallStateMachine
from .core.state_notifier import StateNotifier
from .core.timeout_manager import TimeoutConfig
from .utils.metrics import VoipMetrics

logger = logging.getLogger(__name__)


class VoipClientServer:
    """
    Serviço VoIP: baresip + FSM + gateway HTTP.

    Uso:
        server = VoipClientServer(options)
        await server.serve_forever()
    """

    def __init__(
        self,
        options: AddonOptions,
        baresip_host: str = "127.0.0.1",
        baresip_port: int = DEFAULT_CTRL_PORT,
        http_host: str = "0.0.0.0",
        http_port: int = 80,
        timeouts: Optional[TimeoutConfig] = None,
    ):
        self.options = options
        self.http_host = http_host
        self.http_port = http_port
        self.timeouts = timeouts or TimeoutConfig.from_options(options)

        self.metrics = VoipMetrics()
        self.notifier = StateNotifier()
        self.client = BaresipClient(
            baresip_host,
            baresip_port,
            command_timeout=self.timeouts.command_timeout,
            connect_retries=self.timeouts.connect_retries,
            connect_retry_interval=self.timeouts.connect_retry_interval,
        )
        self.tts = TTSService(
            platform=options.tts_engine.platform,
            timeout=self.timeouts.tts_http_timeout,
        )
        self.fsm = CallStateMachine(
            self.client,
            self.tts,
            self.notifier,
            max_call_duration=self.timeouts.call_max_duration,
            metrics=self.metrics,
        )
        self.orchestrator = CallOrchestrator(
            self.fsm,
            account=options.voip_provider.account,
            password=options.voip_provider.password,
            timeouts=self.timeouts,
            metrics=self.metrics,
        )
        self.client.set_connected_handler(self.orchestrator.adapter_connected)
        self.client.set_event_handler(self.orchestrator.post)
        self.orchestrator.set_fatal_handler(self.shutdown_on_error)

        self.app = create_app(
            self.orchestrator,
            options,
            metrics=self.metrics,
            keepalive_interval=self.timeouts.keepalive_interval,
            lifespan=self.lifespan,
        )

        self.fatal_error: Optional[BaseException] = None
        self._server: Optional[uvicorn.Server] = None
        self._tasks: List[asyncio.Task] = []

    @asynccontextmanager
    async def lifespan(self, app: FastAPI):
        """Sobe worker e adaptador junto com o servidor HTTP."""
        self._tasks = [
            asyncio.create_task(self.orchestrator.run(), name="fsm-worker"),
            asyncio.create_task(self._run_adapter(), name="baresip-adapter"),
        ]
        logger.info(
            "VoIP client started",
            extra={
                "http_port": self.http_port,
                "synchronous": self.options.http_rest_server.synchronous,
                "max_call_duration": self.timeouts.call_max_duration,
            }
        )

        yield

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        await self.client.close()
        await self.tts.close()
        logger.info("VoIP client stopped")

    async def _run_adapter(self) -> None:
        try:
            await self.client.serve()
        except BaresipConnectionError as e:
            logger.critical(f"Lost the baresip control connection, shutting down: {e}")
            self.shutdown_on_error(e)

    def shutdown_on_error(self, error: BaseException) -> None:
        """Encerra o servidor HTTP; serve_forever() relança o erro."""
        if self.fatal_error is None:
            self.fatal_error = error
        if self._server is not None:
            self._server.should_exit = True

    async def serve_forever(self) -> None:
        """
        Executa até SIGINT/SIGTERM ou erro fatal do baresip.

        Raises:
            BaresipConnectionError: se a conexão com o baresip caiu
            RegistrationError: se o registro do User Agent esgotou as tentativas
        """
        config = uvicorn.Config(
            self.app,
            host=self.http_host,
            port=self.http_port,
            log_config=None,
        )
        self._server = uvicorn.Server(config)
        await self._server.serve()

        if self.fatal_error is not None:
            raise self.fatal_error


async def run_server(
    options: AddonOptions,
    baresip_host: str = "127.0.0.1",
    baresip_port: int = DEFAULT_CTRL_PORT,
    http_host: str = "0.0.0.0",
    http_port: int = 80,
) -> None:
    """Função helper para rodar o servidor."""
    server = VoipClientServer(
        options,
        baresip_host=baresip_host,
        baresip_port=baresip_port,
        http_host=http_host,
        http_port=http_port,
    )
    await server.serve_forever()
