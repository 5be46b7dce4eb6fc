"""
BaresipClient - Cliente asyncio da conexão de controle (ctrl_tcp) do baresip.

O processo baresip roda fora deste serviço (serviço s6 separado); aqui só
conectamos no socket de controle para:
1. Enviar comandos (uanew, dial, ausrc, hangup) e aguardar a resposta pelo token
2. Receber eventos não solicitados (REGISTER_*, CALL_*, END_OF_FILE)

Uma task de leitura roteia respostas para quem aguarda o comando e
entrega eventos ao handler registrado (a fila do CallOrchestrator).
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional

from ..core.errors import BaresipCommandError, BaresipConnectionError, BaresipProtocolError
from ..core.events import BaresipEvent, BaresipResponse
from .protocol import build_command, parse_message, read_netstring

logger = logging.getLogger(__name__)

DEFAULT_CTRL_PORT = 4444


class BaresipClient:
    """
    Cliente da conexão de controle do baresip.

    Uso:
        client = BaresipClient("127.0.0.1", 4444)
        client.set_event_handler(orchestrator.post)
        client.set_connected_handler(orchestrator.adapter_connected)
        await client.serve()  # retorna apenas com erro de conexão
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = DEFAULT_CTRL_PORT,
        command_timeout: float = 5.0,
        connect_retries: int = 10,
        connect_retry_interval: float = 2.0,
    ):
        self.host = host
        self.port = port
        self.command_timeout = command_timeout
        self.connect_retries = connect_retries
        self.connect_retry_interval = connect_retry_interval

        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._connected = False
        self._command_lock = asyncio.Lock()
        self._pending: Dict[str, "asyncio.Future[BaresipResponse]"] = {}

        self._event_handler: Optional[Callable[[BaresipEvent], Awaitable[None]]] = None
        self._connected_handler: Optional[Callable[[], Awaitable[None]]] = None

    def set_event_handler(self, handler: Callable[[BaresipEvent], Awaitable[None]]) -> None:
        self._event_handler = handler

    def set_connected_handler(self, handler: Callable[[], Awaitable[None]]) -> None:
        self._connected_handler = handler

    @property
    def is_connected(self) -> bool:
        return self._connected

    # ========================================
    # CONEXÃO
    # ========================================

    async def connect(self) -> None:
        """
        Conecta no ctrl_tcp com retry (o baresip pode subir depois de nós).

        Raises:
            BaresipConnectionError: após esgotar as tentativas
        """
        last_error: Optional[Exception] = None
        for attempt in range(1, self.connect_retries + 1):
            try:
                self._reader, self._writer = await asyncio.open_connection(self.host, self.port)
                self._connected = True
                logger.info(f"Connected to baresip control socket at {self.host}:{self.port}")
                return
            except OSError as e:
                last_error = e
                logger.warning(
                    f"Cannot connect to baresip control socket {self.host}:{self.port} "
                    f"(attempt {attempt}/{self.connect_retries}): {e}"
                )
                if attempt < self.connect_retries:
                    await asyncio.sleep(self.connect_retry_interval)

        raise BaresipConnectionError(
            f"cannot find the baresip control socket at {self.host}:{self.port}: {last_error}"
        )

    async def serve(self) -> None:
        """
        Conecta, sinaliza a conexão e processa mensagens até a conexão cair.

        Raises:
            BaresipConnectionError: sempre que a conexão não puder ser mantida
        """
        await self.connect()
        try:
            if self._connected_handler:
                await self._connected_handler()
            await self._read_loop()
        finally:
            await self.close()

    async def _read_loop(self) -> None:
        assert self._reader is not None
        while True:
            try:
                payload = await read_netstring(self._reader)
            except asyncio.IncompleteReadError as e:
                raise BaresipConnectionError("baresip closed the control connection") from e
            except ConnectionError as e:
                raise BaresipConnectionError(f"baresip control connection lost: {e}") from e

            try:
                message = parse_message(payload)
            except BaresipProtocolError as e:
                logger.warning(f"Discarding malformed message from baresip: {e}")
                continue

            if isinstance(message, BaresipResponse):
                self._on_response(message)
            else:
                await self._on_event(message)

    def _on_response(self, response: BaresipResponse) -> None:
        future = self._pending.pop(response.token, None)
        if future is None:
            logger.warning(f"Unexpected response token {response.token!r} from baresip, dropping it")
            return
        if not future.done():
            future.set_result(response)

    async def _on_event(self, event: BaresipEvent) -> None:
        logger.debug(f"baresip event: {event.raw}")
        if self._event_handler is None:
            return
        await self._event_handler(event)

    async def close(self) -> None:
        self._connected = False

        for token, future in self._pending.items():
            if not future.done():
                future.set_exception(
                    BaresipCommandError("?", token, "control connection closed")
                )
        self._pending.clear()

        if self._writer:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except (ConnectionError, OSError):
                pass  # já fechado pelo outro lado
            self._writer = None
        self._reader = None

    # ========================================
    # COMANDOS
    # ========================================

    async def command(self, name: str, params: str, token: str) -> BaresipResponse:
        """
        Envia comando e aguarda a resposta com o mesmo token.

        Raises:
            BaresipCommandError: sem conexão, falha de escrita, timeout ou ok=false
        """
        if not self._connected or self._writer is None:
            raise BaresipCommandError(name, token, "not connected to baresip")
        if token in self._pending:
            raise BaresipCommandError(name, token, "a command with the same token is pending")

        future: "asyncio.Future[BaresipResponse]" = asyncio.get_running_loop().create_future()
        self._pending[token] = future

        logger.info(f"Sending baresip command {name} [{params}] token={token}")
        try:
            async with self._command_lock:
                self._writer.write(build_command(name, params, token))
                await self._writer.drain()
        except (ConnectionError, OSError) as e:
            self._pending.pop(token, None)
            raise BaresipCommandError(name, token, f"write failed: {e}") from e

        try:
            async with asyncio.timeout(self.command_timeout):
                response = await future
        except TimeoutError as e:
            self._pending.pop(token, None)
            raise BaresipCommandError(
                name, token, f"no response within {self.command_timeout}s"
            ) from e
        except BaresipCommandError as e:
            raise BaresipCommandError(name, token, e.reason) from e

        if not response.ok:
            raise BaresipCommandError(name, token, response.data or "baresip returned ok=false")

        return response
