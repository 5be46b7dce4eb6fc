"""
StateNotifier - Publicação do estado da FSM para assinantes temporários.

Cada assinante recebe uma fila própria e limitada. A publicação nunca
bloqueia: se a fila de um assinante estiver cheia, o estado mais antigo
é descartado para dar lugar ao mais recente.

O publicador é o worker da FSM, que também atende baresip e timers,
por isso um assinante lento nunca pode segurá-lo.
"""

import asyncio
import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

from .events import CallState

logger = logging.getLogger(__name__)

DEFAULT_SUBSCRIPTION_SIZE = 16


class StateSubscription:
    """
    Inscrição efêmera no StateNotifier.

    Normalmente dura o tempo de uma requisição HTTP.
    """

    def __init__(self, maxsize: int = DEFAULT_SUBSCRIPTION_SIZE):
        self._queue: "asyncio.Queue[CallState]" = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False

    def offer(self, state: CallState) -> None:
        """Entrega sem bloquear. Descarta o estado mais antigo se cheio."""
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(state)

    async def get(self, timeout: Optional[float] = None) -> Optional[CallState]:
        """
        Aguarda o próximo estado publicado.

        Returns:
            CallState, ou None se o timeout expirar
        """
        if timeout is None:
            return await self._queue.get()
        try:
            async with asyncio.timeout(timeout):
                return await self._queue.get()
        except TimeoutError:
            return None

    def get_nowait(self) -> Optional[CallState]:
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def clear(self) -> int:
        """Descarta estados pendentes. Retorna quantos foram descartados."""
        cleared = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            cleared += 1
        return cleared

    @property
    def pending(self) -> int:
        return self._queue.qsize()


class StateNotifier:
    """
    Broadcast do estado atual da FSM.

    - subscribe(): cria inscrição
    - unsubscribe(sub): remove (idempotente)
    - publish(state): entrega para todos sem bloquear
    """

    def __init__(self, subscription_size: int = DEFAULT_SUBSCRIPTION_SIZE):
        self.subscription_size = subscription_size
        self._subscriptions: List[StateSubscription] = []
        self._published = 0

    def subscribe(self) -> StateSubscription:
        subscription = StateSubscription(maxsize=self.subscription_size)
        self._subscriptions.append(subscription)
        logger.debug(
            "State subscription added",
            extra={"subscribers": len(self._subscriptions)}
        )
        return subscription

    def unsubscribe(self, subscription: StateSubscription) -> None:
        subscription.closed = True
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            return  # já removida

        logger.debug(
            "State subscription removed",
            extra={"subscribers": len(self._subscriptions)}
        )

    def publish(self, state: CallState) -> None:
        self._published += 1
        for subscription in list(self._subscriptions):
            before = subscription.dropped
            subscription.offer(state)
            if subscription.dropped != before:
                logger.debug(
                    f"Slow state subscriber, dropped oldest state to publish {state.value}"
                )

    @contextmanager
    def subscribed(self) -> Iterator[StateSubscription]:
        """Inscrição com remoção garantida na saída do bloco."""
        subscription = self.subscribe()
        try:
            yield subscription
        finally:
            self.unsubscribe(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    @property
    def published_count(self) -> int:
        return self._published
