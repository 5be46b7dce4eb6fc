"""
Eventos e entradas tipadas do orquestrador de chamadas.

Este módulo define tudo o que pode chegar ao worker único que executa a
máquina de estados: eventos não solicitados do baresip, pedidos de discagem
vindos do gateway HTTP e ticks periódicos (timeout e estatísticas).

Vantagem: a lógica da FSM reage a tipos internos, não ao JSON cru do
baresip nem ao payload HTTP.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class CallState(Enum):
    """
    Estados da máquina de estados de chamada.

    O ciclo é:
    UNINITIALIZED -> WAITING_REGISTRATION -> IDLE <-> WAIT_ESTABLISHMENT <-> WAIT_COMPLETION -> IDLE
    """

    UNINITIALIZED = "uninitialized"
    WAITING_REGISTRATION = "waiting_registration"
    IDLE = "idle"
    WAIT_ESTABLISHMENT = "wait_establishment"
    WAIT_COMPLETION = "wait_completion"

    def __str__(self) -> str:
        return self.value


class BaresipEventType(Enum):
    """
    Tipos de eventos não solicitados do baresip (campo "type" do JSON).

    Apenas os tipos usados pela FSM são mapeados, o resto vira OTHER.
    """

    REGISTER_OK = "REGISTER_OK"
    REGISTER_FAIL = "REGISTER_FAIL"
    CALL_OUTGOING = "CALL_OUTGOING"
    CALL_ESTABLISHED = "CALL_ESTABLISHED"
    CALL_CLOSED = "CALL_CLOSED"
    END_OF_FILE = "END_OF_FILE"
    OTHER = "OTHER"

    @classmethod
    def from_wire(cls, value: Optional[str]) -> "BaresipEventType":
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


@dataclass
class BaresipEvent:
    """
    Evento não solicitado do baresip.

    Attributes:
        type: Tipo do evento
        call_id: ID da chamada (correlação), vazio em eventos de registro
        account_aor: Conta SIP (AOR) que originou o evento
        peer_uri: URI do outro lado da chamada
        direction: "outgoing" ou "incoming"
        param: Parâmetro livre (ex: motivo do CALL_CLOSED)
        event_class: Classe do evento ("register", "call", ...)
        raw: JSON original, para debug
    """

    type: BaresipEventType
    call_id: str = ""
    account_aor: str = ""
    peer_uri: str = ""
    direction: str = ""
    param: str = ""
    event_class: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def __repr__(self) -> str:
        call_short = self.call_id[:8] if self.call_id else "none"
        return f"BaresipEvent({self.type.value}, call={call_short}, peer={self.peer_uri or '-'})"


@dataclass
class BaresipResponse:
    """Resposta a um comando enviado ao baresip."""

    ok: bool
    data: str = ""
    token: str = ""


@dataclass(frozen=True)
class CallRequest:
    """Pedido de chamada já validado: endereço SIP de destino e texto a falar."""

    address: str
    message: str


@dataclass
class SubmitResult:
    """Veredito da FSM para um pedido de chamada."""

    accepted: bool
    reason: Optional[str] = None


@dataclass
class DialSubmission:
    """
    Envelope de um CallRequest na fila do worker.

    verdict é resolvido pelo worker assim que a FSM aceita ou rejeita.
    subscription (opcional) é a inscrição do chamador no StateNotifier,
    limpa pelo worker no momento do aceite.
    """

    request: CallRequest
    verdict: "asyncio.Future[SubmitResult]"
    subscription: Any = None


@dataclass
class AdapterConnected:
    """Sinal de que a conexão de controle com o baresip foi estabelecida."""

    timestamp: float = field(default_factory=time.time)


@dataclass
class TimeoutTick:
    """Tick periódico para verificação de duração máxima da chamada."""

    timestamp: float = field(default_factory=time.time)


@dataclass
class StatsTick:
    """Tick periódico para log de estatísticas."""

    timestamp: float = field(default_factory=time.time)
