"""
Métricas Prometheus do cliente VoIP.

Contadores por resultado de chamada, erros da FSM e estado de registro.
Cada instância usa um CollectorRegistry próprio (testes criam várias).
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest

logger = logging.getLogger(__name__)

# Resultados possíveis de um pedido de chamada
CALL_OUTCOMES = (
    "completed",        # CALL_CLOSED depois de estabelecida
    "not_established",  # CALL_CLOSED antes de estabelecer (ocupado, recusada...)
    "timeout",          # duração máxima atingida
    "dial_failed",      # comando dial falhou
    "tts_failed",       # TTS falhou
    "rejected",         # FSM ocupada / não registrada
    "aborted",          # registro perdido no meio da chamada
)


@dataclass
class StatsSnapshot:
    """Resumo logado a cada tick de estatísticas."""
    started_at: float = field(default_factory=time.time)
    dial_attempts: int = 0
    outcomes: Dict[str, int] = field(default_factory=lambda: {o: 0 for o in CALL_OUTCOMES})
    fsm_errors: Dict[str, int] = field(default_factory=dict)
    registered: bool = False

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self.started_at


class VoipMetrics:
    """Gerenciador de métricas (Prometheus + snapshot em memória)."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        self.snapshot = StatsSnapshot()

        self.calls_total = Counter(
            'voip_client_calls_total',
            'Call requests by outcome',
            ['outcome'],
            registry=self.registry,
        )
        self.dial_attempts_total = Counter(
            'voip_client_dial_attempts_total',
            'Dial commands issued',
            registry=self.registry,
        )
        self.fsm_errors_total = Counter(
            'voip_client_fsm_errors_total',
            'Inputs rejected by the state machine',
            ['kind'],
            registry=self.registry,
        )
        self.registered = Gauge(
            'voip_client_registered',
            'Last known SIP registration outcome (1 = registered)',
            registry=self.registry,
        )

    def dial_attempted(self) -> None:
        self.snapshot.dial_attempts += 1
        self.dial_attempts_total.inc()

    def call_finished(self, outcome: str) -> None:
        if outcome not in CALL_OUTCOMES:
            raise ValueError(f"Unknown call outcome: {outcome}")
        self.snapshot.outcomes[outcome] += 1
        self.calls_total.labels(outcome=outcome).inc()

    def fsm_error(self, kind: str) -> None:
        self.snapshot.fsm_errors[kind] = self.snapshot.fsm_errors.get(kind, 0) + 1
        self.fsm_errors_total.labels(kind=kind).inc()

    def set_registered(self, registered: bool) -> None:
        self.snapshot.registered = registered
        self.registered.set(1 if registered else 0)

    def log_snapshot(self, state: str) -> None:
        snap = self.snapshot
        logger.info(
            f"Stats: state={state} registered={snap.registered} "
            f"dial_attempts={snap.dial_attempts} outcomes={snap.outcomes}",
            extra={
                "fsm_state": state,
                "uptime_seconds": round(snap.uptime_seconds),
                "fsm_errors": snap.fsm_errors,
            }
        )

    def render(self) -> bytes:
        """Exposição no formato texto do Prometheus."""
        return generate_latest(self.registry)
