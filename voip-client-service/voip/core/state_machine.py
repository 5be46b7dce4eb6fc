"""
CallStateMachine - Máquina de estados do ciclo de vida da chamada.

Recebe entradas tipadas das três fontes (baresip, gateway HTTP, timers),
executa a lógica de transição e emite comandos para o baresip e para o TTS.

Só o worker do CallOrchestrator chama os métodos desta classe, por isso
não há lock: os campos são mutados por um único consumidor.

    UNINITIALIZED --connected--> WAITING_REGISTRATION
    WAITING_REGISTRATION --REGISTER_OK--> IDLE
    IDLE --dial request--> WAIT_ESTABLISHMENT
    WAIT_ESTABLISHMENT --CALL_ESTABLISHED--> WAIT_COMPLETION
    WAIT_COMPLETION --CALL_CLOSED--> IDLE
    WAIT_* --timeout--> IDLE
    * --REGISTER_FAIL--> WAITING_REGISTRATION
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional

from .errors import BaresipCommandError, CallCorrelationError, InvalidStateError, SynthesisError
from .events import BaresipEvent, CallRequest, CallState
from .state_notifier import StateNotifier

logger = logging.getLogger(__name__)

UA_REGISTRATION_TOKEN = "uaregistration_token"

# Estados em que existe uma chamada em andamento
CALL_STATES = (CallState.WAIT_ESTABLISHMENT, CallState.WAIT_COMPLETION)


@dataclass
class StateTransition:
    """Registro de uma transição de estado"""
    from_state: str
    to_state: str
    trigger: str
    timestamp: float = field(default_factory=time.time)


class CallStateMachine:
    """
    Máquina de estados de linha única: no máximo uma chamada por vez.

    Pedidos fora de IDLE são rejeitados (não enfileirados).

    Uso:
        fsm = CallStateMachine(baresip, tts, notifier, max_call_duration=300)
        await fsm.initialize_user_agent("sip:user@host", "secret")
        await fsm.on_register_ok(event)
        await fsm.on_new_outgoing_call_request(CallRequest("sip:bob@host", "hello"))
    """

    def __init__(
        self,
        baresip: Any,
        tts: Any,
        notifier: StateNotifier,
        max_call_duration: float = 300.0,
        metrics: Any = None,
        clock: Callable[[], float] = time.monotonic,
        history_size: int = 50,
    ):
        """
        Args:
            baresip: Adaptador com `await command(name, params, token)`
            tts: Cliente com `await get_audio_file(text) -> path`
            notifier: StateNotifier que recebe cada novo estado
            max_call_duration: Duração máxima de uma chamada (segundos)
            metrics: VoipMetrics opcional
            clock: Relógio monotônico (injetável para testes)
        """
        self.baresip = baresip
        self.tts = tts
        self.notifier = notifier
        self.max_call_duration = max_call_duration
        self.metrics = metrics
        self._clock = clock

        self._state = CallState.UNINITIALIZED
        self._history: Deque[StateTransition] = deque(maxlen=history_size)

        # variáveis secundárias de estado
        self.registered = False
        self.dial_sequence_number = 0
        self.pending_audio_file_to_play = ""
        self.current_call_id = ""
        self.current_call_start_time: Optional[float] = None

    @property
    def state(self) -> CallState:
        """Estado atual"""
        return self._state

    @property
    def in_call(self) -> bool:
        return self._state in CALL_STATES

    # ========================================
    # TRANSIÇÃO
    # ========================================

    def _transition_to(self, state: CallState, trigger: str) -> None:
        old_state = self._state
        self._state = state

        # invariantes de cada estado aplicadas antes de notificar
        if state in (CallState.IDLE, CallState.WAITING_REGISTRATION, CallState.UNINITIALIZED):
            self.pending_audio_file_to_play = ""
            self.current_call_id = ""
            self.current_call_start_time = None

        self._history.append(StateTransition(
            from_state=old_state.value,
            to_state=state.value,
            trigger=trigger,
        ))

        logger.info(f"State: {old_state.value} --[{trigger}]--> {state.value}")

        self.notifier.publish(state)

    def _call_finished(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.call_finished(outcome)

    def _check_call_id(self, operation: str, event: BaresipEvent) -> None:
        if self.current_call_id and event.call_id != self.current_call_id:
            logger.error(
                f"{operation}: received event for call ID {event.call_id!r}, "
                f"expected {self.current_call_id!r}. This is a bug."
            )
            raise CallCorrelationError(operation, self.current_call_id, event.call_id)

    def _reject(self, operation: str, detail: str = "") -> InvalidStateError:
        message = f"{operation} is not valid in state {self._state.value}"
        if detail:
            message = f"{message}: {detail}"
        logger.warning(message)
        return InvalidStateError(operation, self._state, message)

    async def _hangup(self, reason: str) -> None:
        token = f"hangup_cmd_{self.dial_sequence_number}"
        try:
            await self.baresip.command("hangup", self.current_call_id, token)
        except BaresipCommandError as e:
            logger.warning(f"Hangup ({reason}) of call {self.current_call_id!r} failed: {e}")

    # ========================================
    # REGISTRO
    # ========================================

    async def initialize_user_agent(self, address: str, credential: str) -> None:
        """
        Cria o User Agent no baresip e aguarda o resultado do REGISTER.

        Raises:
            InvalidStateError: fora de UNINITIALIZED
            BaresipCommandError: comando não enviado (sem transição)
        """
        logger.info(f"Initializing User Agent [{address}]")

        if self._state != CallState.UNINITIALIZED:
            raise self._reject("initialize_user_agent", "ignoring initialization request")

        try:
            await self.baresip.command(
                "uanew", f"{address};auth_pass={credential}", UA_REGISTRATION_TOKEN
            )
        except BaresipCommandError as e:
            logger.warning(f"Failed to create new SIP User Agent: {e}")
            raise

        self._transition_to(CallState.WAITING_REGISTRATION, "uanew")

    async def on_register_ok(self, event: BaresipEvent) -> None:
        logger.info(
            f"Successful SIP REGISTER for {event.account_aor}. "
            "Calls can now be made."
        )
        self.registered = True
        if self.metrics:
            self.metrics.set_registered(True)

        # re-registro periódico no meio de uma chamada não mexe no estado
        if self._state == CallState.WAITING_REGISTRATION:
            self._transition_to(CallState.IDLE, "register_ok")

    async def on_register_fail(self, event: BaresipEvent) -> None:
        logger.warning(
            f"Failed SIP REGISTER for {event.account_aor}. Check the 'voip_provider' "
            "account and password; no call will work until this is fixed."
        )
        self.registered = False
        if self.metrics:
            self.metrics.set_registered(False)

        if self.in_call:
            self._call_finished("aborted")

        # sem registro nenhum comando vai funcionar
        self._transition_to(CallState.WAITING_REGISTRATION, "register_fail")

    # ========================================
    # CHAMADA
    # ========================================

    async def on_new_outgoing_call_request(
        self,
        request: CallRequest,
        on_accepted: Optional[Callable[[], None]] = None,
    ) -> None:
        """
        IDLE -> WAIT_ESTABLISHMENT

        Falhas de TTS e do dial levam de volta a IDLE sem exceção.

        Args:
            request: Pedido validado
            on_accepted: Chamado assim que o pedido é aceito (antes do TTS)

        Raises:
            InvalidStateError: fora de IDLE (pedido descartado)
        """
        logger.info(f"Received new outgoing call request to {request.address}")

        if self._state != CallState.IDLE:
            raise self._reject(
                "on_new_outgoing_call_request",
                "dropping the new call request, wait for the previous call to end",
            )

        if on_accepted:
            on_accepted()

        try:
            audio_file = await self.tts.get_audio_file(request.message)
        except SynthesisError as e:
            logger.warning(f"Error doing the Text-to-Speech: {e}")
            self._call_finished("tts_failed")
            self._transition_to(CallState.IDLE, "tts_failed")
            return

        self.pending_audio_file_to_play = audio_file
        self.dial_sequence_number += 1
        self.current_call_start_time = self._clock()
        if self.metrics:
            self.metrics.dial_attempted()

        token = f"dial_cmd_{self.dial_sequence_number}"
        try:
            await self.baresip.command("dial", request.address, token)
        except BaresipCommandError as e:
            logger.warning(f"Error dialing {request.address}: {e}")
            self._call_finished("dial_failed")
            self._transition_to(CallState.IDLE, "dial_failed")
            return

        self._transition_to(CallState.WAIT_ESTABLISHMENT, "dial")

    async def on_call_outgoing(self, event: BaresipEvent) -> None:
        """Registra o call ID para correlação. Não transiciona."""
        if not self.in_call:
            raise self._reject("on_call_outgoing", f"no call in progress for {event.call_id!r}")

        self._check_call_id("on_call_outgoing", event)
        self.current_call_id = event.call_id
        logger.info(f"Outgoing call {event.call_id} to {event.peer_uri}")

    async def on_call_established(self, event: BaresipEvent) -> None:
        """WAIT_ESTABLISHMENT -> WAIT_COMPLETION, iniciando o áudio."""
        logger.info(f"Received call established event for Peer URI: {event.peer_uri}")

        if self._state != CallState.WAIT_ESTABLISHMENT:
            raise self._reject("on_call_established")

        self._check_call_id("on_call_established", event)
        if not self.current_call_id:
            self.current_call_id = event.call_id

        token = f"ausrc_cmd_{self.dial_sequence_number}"
        try:
            await self.baresip.command("ausrc", f"aufile,{self.pending_audio_file_to_play}", token)
        except BaresipCommandError as e:
            # chamada segue sem o áudio, o timeout encerra
            logger.warning(f"Error setting audio source to the TTS file: {e}")

        self.current_call_start_time = self._clock()
        self._transition_to(CallState.WAIT_COMPLETION, "call_established")

    async def on_end_of_file(self, event: BaresipEvent) -> None:
        """
        Áudio terminou: pede o hangup.

        A transição acontece apenas com o CALL_CLOSED resultante.
        """
        if self._state != CallState.WAIT_COMPLETION:
            raise self._reject("on_end_of_file")

        if event.call_id:
            self._check_call_id("on_end_of_file", event)

        logger.info(f"Audio playback finished, hanging up call {self.current_call_id}")
        await self._hangup("end of file")

    async def on_call_closed(self, event: BaresipEvent) -> None:
        """WAIT_* -> IDLE"""
        logger.info(f"Received call closed event for Peer URI: {event.peer_uri} ({event.param})")

        if not self.in_call:
            logger.warning("A call closed event arrived but no call is active. This is a bug.")
            raise InvalidStateError(
                "on_call_closed",
                self._state,
                f"on_call_closed is not valid in state {self._state.value}",
            )

        self._check_call_id("on_call_closed", event)

        was_established = self._state == CallState.WAIT_COMPLETION
        self._call_finished("completed" if was_established else "not_established")
        self._transition_to(CallState.IDLE, "call_closed")

    async def on_timeout_ticker(self) -> None:
        """Força hangup + IDLE quando a duração máxima é excedida."""
        if not self.in_call or self.current_call_start_time is None:
            return

        elapsed = self._clock() - self.current_call_start_time
        if elapsed <= self.max_call_duration:
            return

        logger.warning(
            f"Call exceeded max duration ({elapsed:.1f}s > {self.max_call_duration}s) "
            f"in state {self._state.value}, hanging up"
        )
        await self._hangup("timeout")
        self._call_finished("timeout")
        self._transition_to(CallState.IDLE, "timeout")

    # ========================================
    # DEBUG
    # ========================================

    def get_history(self, limit: int = 20) -> List[Dict]:
        """Retorna histórico de transições para debug"""
        return [
            {
                "from": t.from_state,
                "to": t.to_state,
                "trigger": t.trigger,
                "timestamp": t.timestamp,
            }
            for t in list(self._history)[-limit:]
        ]
