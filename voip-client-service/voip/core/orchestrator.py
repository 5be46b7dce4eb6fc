"""
CallOrchestrator - Worker único que alimenta a máquina de estados.

Todas as fontes (conexão baresip, eventos baresip, pedidos HTTP, ticks de
timeout e de estatísticas) colocam entradas tipadas em uma única fila.
O worker consome uma entrada por vez, em ordem de chegada, e é o único
que chama métodos da CallStateMachine.

A fila não tem limite: o leitor do baresip nunca pode ficar bloqueado,
senão o worker não recebe a resposta do comando que está aguardando.
O backpressure fica na fronteira HTTP (request_slots) e os ticks de um
mesmo tipo são agrupados enquanto houver um pendente.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from .errors import BaresipError, CallCorrelationError, FSMError, InvalidStateError, RegistrationError
from .events import (
    AdapterConnected,
    BaresipEvent,
    BaresipEventType,
    CallRequest,
    CallState,
    DialSubmission,
    StatsTick,
    SubmitResult,
    TimeoutTick,
)
from .state_machine import CallStateMachine
from .state_notifier import StateSubscription
from .timeout_manager import TimeoutConfig, TimeoutManager

logger = logging.getLogger(__name__)

DEFAULT_MAX_PENDING_REQUESTS = 4


def _resolve(future: "asyncio.Future[SubmitResult]", result: SubmitResult) -> None:
    # o lado HTTP pode ter desistido (future cancelado)
    if not future.done():
        future.set_result(result)


class CallOrchestrator:
    """
    Liga adaptador baresip, gateway HTTP e timers à CallStateMachine.

    Uso:
        orchestrator = CallOrchestrator(fsm, account="sip:user@host", password="pw")
        client.set_connected_handler(orchestrator.adapter_connected)
        client.set_event_handler(orchestrator.post)
        await orchestrator.run()
    """

    def __init__(
        self,
        fsm: CallStateMachine,
        account: str,
        password: str,
        timeouts: Optional[TimeoutConfig] = None,
        metrics: Any = None,
        max_pending_requests: int = DEFAULT_MAX_PENDING_REQUESTS,
    ):
        self.fsm = fsm
        self.account = account
        self._password = password
        self.timeouts = timeouts or TimeoutConfig(call_max_duration=fsm.max_call_duration)
        self.metrics = metrics

        self.inbox: "asyncio.Queue[Any]" = asyncio.Queue()
        self.request_slots = asyncio.Semaphore(max_pending_requests)
        self._pending_ticks: Set[type] = set()
        self._tickers = TimeoutManager(self.timeouts, self.offer)
        self._processed = 0

        self._registration_attempts = 0
        self._registration_retry: Optional[asyncio.TimerHandle] = None
        self._fatal_handler: Optional[Callable[[BaseException], None]] = None

        self._event_handlers: Dict[BaresipEventType, Callable[[BaresipEvent], Awaitable[None]]] = {
            BaresipEventType.REGISTER_OK: fsm.on_register_ok,
            BaresipEventType.REGISTER_FAIL: fsm.on_register_fail,
            BaresipEventType.CALL_OUTGOING: fsm.on_call_outgoing,
            BaresipEventType.CALL_ESTABLISHED: fsm.on_call_established,
            BaresipEventType.CALL_CLOSED: fsm.on_call_closed,
            BaresipEventType.END_OF_FILE: fsm.on_end_of_file,
        }

    # ========================================
    # FONTES
    # ========================================

    async def post(self, item: Any) -> None:
        """Enfileira uma entrada do adaptador (nunca bloqueia)."""
        self.inbox.put_nowait(item)

    def offer(self, item: Any) -> bool:
        """
        Enfileira um tick. Retorna False se já existe um tick do mesmo tipo
        aguardando o worker.
        """
        tick_type = type(item)
        if tick_type in self._pending_ticks:
            return False
        self._pending_ticks.add(tick_type)
        self.inbox.put_nowait(item)
        return True

    async def adapter_connected(self) -> None:
        await self.post(AdapterConnected())

    def set_fatal_handler(self, handler: Callable[[BaseException], None]) -> None:
        """Chamado quando o serviço não tem como se recuperar (registro esgotado)."""
        self._fatal_handler = handler

    async def submit(
        self,
        request: CallRequest,
        subscription: Optional[StateSubscription] = None,
    ) -> SubmitResult:
        """
        Entrega um pedido de chamada à FSM.

        Retorna assim que a FSM aceita ou rejeita; a chamada em si continua
        no worker. Se subscription for informada, estados publicados antes
        do aceite são descartados dela.
        """
        verdict: "asyncio.Future[SubmitResult]" = asyncio.get_running_loop().create_future()

        # aguarda vaga se o worker já tem pedidos suficientes na fila
        await self.request_slots.acquire()
        self.inbox.put_nowait(DialSubmission(request=request, verdict=verdict, subscription=subscription))
        return await verdict

    def subscribe_to_state_changes(self) -> StateSubscription:
        return self.fsm.notifier.subscribe()

    def unsubscribe_from_state_changes(self, subscription: StateSubscription) -> None:
        self.fsm.notifier.unsubscribe(subscription)

    @property
    def current_state(self) -> CallState:
        return self.fsm.state

    # ========================================
    # WORKER
    # ========================================

    async def run(self) -> None:
        """Loop do worker. Termina apenas por cancelamento."""
        logger.info("Call orchestrator worker started")
        self._tickers.start()
        try:
            while True:
                item = await self.inbox.get()
                if isinstance(item, DialSubmission):
                    self.request_slots.release()
                elif isinstance(item, (TimeoutTick, StatsTick)):
                    self._pending_ticks.discard(type(item))
                try:
                    await self.dispatch(item)
                finally:
                    self._processed += 1
                    self.inbox.task_done()
        finally:
            if self._registration_retry is not None:
                self._registration_retry.cancel()
                self._registration_retry = None
            await self._tickers.stop()
            logger.info(
                "Call orchestrator worker stopped",
                extra={"inputs_processed": self._processed}
            )

    async def dispatch(self, item: Any) -> None:
        """Processa uma entrada. Nenhum erro da FSM interrompe o worker."""
        try:
            if isinstance(item, BaresipEvent):
                await self._on_baresip_event(item)
            elif isinstance(item, DialSubmission):
                await self._on_dial_submission(item)
            elif isinstance(item, TimeoutTick):
                await self.fsm.on_timeout_ticker()
            elif isinstance(item, StatsTick):
                self._log_stats()
            elif isinstance(item, AdapterConnected):
                await self._on_adapter_connected()
            else:
                logger.warning(f"Ignoring unknown orchestrator input: {item!r}")

        except InvalidStateError as e:
            self._count_error("invalid_state")
            logger.warning(f"Input rejected by the state machine: {e}")
        except CallCorrelationError as e:
            self._count_error("correlation")
            logger.error(f"Call correlation mismatch, event ignored. This is a bug: {e}")
        except FSMError as e:
            self._count_error("fsm")
            logger.error(f"State machine error: {e}")
        except BaresipError as e:
            self._count_error("baresip")
            logger.warning(f"baresip error while processing {item!r}: {e}")
        except Exception as e:
            self._count_error("unexpected")
            logger.error(f"Unexpected error processing {item!r}: {e}", exc_info=True)

    async def _on_adapter_connected(self) -> None:
        self._registration_retry = None
        if self._registration_attempts and self.fsm.state != CallState.UNINITIALIZED:
            # um registro anterior já avançou a FSM
            return

        self._registration_attempts += 1
        logger.info(
            "baresip control connection is up, registering the User Agent",
            extra={"attempt": self._registration_attempts}
        )
        try:
            await self.fsm.initialize_user_agent(self.account, self._password)
        except BaresipError as e:
            self._registration_failed(e)
            raise
        self._registration_attempts = 0

    def _registration_failed(self, error: BaresipError) -> None:
        """
        Agenda nova tentativa de registro ou declara erro fatal.

        Sem registro a FSM fica presa em UNINITIALIZED e recusa todo pedido,
        então esgotadas as tentativas o processo precisa sair.
        """
        max_attempts = max(1, self.timeouts.connect_retries)
        if self._registration_attempts >= max_attempts:
            fatal = RegistrationError(self._registration_attempts, error)
            logger.critical(f"Giving up on the User Agent registration: {fatal}")
            if self._fatal_handler:
                self._fatal_handler(fatal)
            return

        delay = self.timeouts.connect_retry_interval
        logger.warning(
            f"User Agent registration failed, retrying in {delay}s",
            extra={"attempt": self._registration_attempts, "max_attempts": max_attempts}
        )
        self._registration_retry = asyncio.get_running_loop().call_later(
            delay, self.inbox.put_nowait, AdapterConnected()
        )

    async def _on_baresip_event(self, event: BaresipEvent) -> None:
        handler = self._event_handlers.get(event.type)
        if handler is None:
            logger.debug(f"Ignoring baresip event {event!r}")
            return
        await handler(event)

    async def _on_dial_submission(self, submission: DialSubmission) -> None:
        def accept() -> None:
            if submission.subscription is not None:
                submission.subscription.clear()
            _resolve(submission.verdict, SubmitResult(accepted=True))

        try:
            await self.fsm.on_new_outgoing_call_request(submission.request, on_accepted=accept)
        except InvalidStateError as e:
            _resolve(submission.verdict, SubmitResult(accepted=False, reason=str(e)))
            if self.metrics:
                self.metrics.call_finished("rejected")
            raise
        finally:
            _resolve(
                submission.verdict,
                SubmitResult(accepted=False, reason="call request could not be processed"),
            )

    def _log_stats(self) -> None:
        if self.metrics:
            self.metrics.log_snapshot(self.fsm.state.value)
        else:
            logger.info(f"Stats: state={self.fsm.state.value} registered={self.fsm.registered}")

    def _count_error(self, kind: str) -> None:
        if self.metrics:
            self.metrics.fsm_error(kind)

    @property
    def tickers(self) -> TimeoutManager:
        return self._tickers
