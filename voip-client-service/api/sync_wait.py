"""
Espera síncrona do POST /dial.

Com http_rest_server.synchronous ligado, a resposta HTTP fica aberta até a
FSM voltar para IDLE. Enquanto isso um chunk de keep-alive é enviado
periodicamente para o cliente (Home Assistant) ou proxy não encerrar a
conexão por inatividade.

A espera só bloqueia a task da requisição, nunca o worker da FSM.
"""

import asyncio
import logging
from contextlib import aclosing
from typing import AsyncIterator, Optional, Tuple

from voip.core.events import CallRequest, CallState, SubmitResult
from voip.core.state_notifier import StateNotifier, StateSubscription

logger = logging.getLogger(__name__)

KEEPALIVE_CHUNK = "...call ongoing...\n"
COMPLETED_MESSAGE = (
    "Payload was valid and the request has been handled synchronously.\n"
    "TTS and call have been attempted. Check addon logs to understand if the TTS/call were successful or not.\n"
    "Processing has been completed and the addon is ready to accept new requests."
)


class SyncWaitCoordinator:
    """
    Bloqueia uma resposta HTTP até a FSM atingir o estado desejado.

    Uso:
        result, subscription = await coordinator.submit(orchestrator, request)
        if result.accepted:
            return StreamingResponse(coordinator.stream(subscription))
    """

    def __init__(
        self,
        notifier: StateNotifier,
        keepalive_interval: float = 5.0,
        desired_state: CallState = CallState.IDLE,
    ):
        if keepalive_interval <= 0:
            raise ValueError(f"keepalive_interval must be positive, got {keepalive_interval}")
        self.notifier = notifier
        self.keepalive_interval = keepalive_interval
        self.desired_state = desired_state

    async def submit(
        self,
        orchestrator,
        request: CallRequest,
    ) -> Tuple[SubmitResult, Optional[StateSubscription]]:
        """
        Inscreve no notifier e só então entrega o pedido à FSM.

        A inscrição vem antes do envio para nenhuma transição escapar.
        Em caso de rejeição (ou erro) a inscrição já é removida aqui e
        o segundo elemento é None.
        """
        subscription = self.notifier.subscribe()
        try:
            result = await orchestrator.submit(request, subscription=subscription)
        except BaseException:
            self.notifier.unsubscribe(subscription)
            raise

        if not result.accepted:
            self.notifier.unsubscribe(subscription)
            return result, None
        return result, subscription

    async def wait(self, subscription: StateSubscription) -> AsyncIterator[str]:
        """
        Produz keep-alives até o estado desejado ser publicado.

        Termina sem mensagem final; use stream() para a resposta HTTP.
        """
        loop = asyncio.get_running_loop()
        next_keepalive = loop.time() + self.keepalive_interval

        logger.info(f"Now waiting for the state machine to reach {self.desired_state.value}")
        while True:
            remaining = next_keepalive - loop.time()
            if remaining > 0:
                state = await subscription.get(timeout=remaining)
                if state is None:
                    continue
                if state == self.desired_state:
                    logger.info(f"State machine reached {self.desired_state.value}, releasing HTTP response")
                    return
                # estados intermediários são ignorados
                continue

            next_keepalive = loop.time() + self.keepalive_interval
            yield KEEPALIVE_CHUNK

    async def stream(self, subscription: StateSubscription) -> AsyncIterator[str]:
        """
        Corpo da resposta síncrona: keep-alives e a mensagem final.

        A inscrição é sempre removida, inclusive quando o cliente desconecta
        (o servidor cancela ou fecha o gerador).
        """
        try:
            async with aclosing(self.wait(subscription)) as keepalives:
                async for chunk in keepalives:
                    yield chunk
            yield COMPLETED_MESSAGE
        except (asyncio.CancelledError, GeneratorExit):
            logger.warning("HTTP client went away before the call completed, abandoning the wait")
            raise
        finally:
            self.notifier.unsubscribe(subscription)
