"""
TimeoutManager - Timers periódicos que alimentam o worker da FSM.

Dois tickers:
- timeout: a cada max_call_duration / 10, verifica a duração da chamada
- stats: a cada stats_interval, loga estatísticas

Os ticks entram na mesma fila que eventos do baresip e pedidos HTTP,
então são processados em ordem de chegada pelo único worker.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .events import StatsTick, TimeoutTick

logger = logging.getLogger(__name__)


@dataclass
class TimeoutConfig:
    """
    Configuração de timeouts.

    Todos os valores em segundos.
    """

    # Chamada
    call_max_duration: float = 300.0            # 5 minutos máximo
    timeout_tick_divisor: int = 10              # tick = max_duration / divisor

    # Estatísticas
    stats_interval: float = 3600.0

    # baresip
    command_timeout: float = 5.0                # Resposta a um comando ctrl_tcp
    connect_retries: int = 10
    connect_retry_interval: float = 2.0

    # HTTP
    tts_http_timeout: float = 10.0
    keepalive_interval: float = 5.0             # Chunk para o cliente no modo síncrono

    @property
    def timeout_tick_interval(self) -> float:
        return self.call_max_duration / max(1, self.timeout_tick_divisor)

    @classmethod
    def from_options(cls, options: Any, **overrides) -> "TimeoutConfig":
        """Cria a partir das opções do add-on (AddonOptions)."""
        return cls(
            call_max_duration=options.get_voice_call_max_duration(),
            stats_interval=options.get_stats_interval(),
            **overrides,
        )


@dataclass
class ActiveTicker:
    """Representa um ticker ativo"""
    name: str
    interval: float
    started_at: float
    ticks: int = 0


class TimeoutManager:
    """
    Gerenciador dos tickers periódicos.

    sink recebe cada tick e retorna False se não pôde enfileirar
    (já existe um tick do mesmo tipo pendente). Ticks descartados não são
    reenviados: o próximo cobre.
    """

    def __init__(
        self,
        config: TimeoutConfig,
        sink: Callable[[Any], bool],
    ):
        self.config = config
        self._sink = sink
        self._tasks: List[asyncio.Task] = []
        self._active: Dict[str, ActiveTicker] = {}

    def start(self) -> None:
        if self._tasks:
            return

        self._tasks = [
            asyncio.create_task(
                self._run("timeout", self.config.timeout_tick_interval, TimeoutTick),
                name="timeout-ticker",
            ),
            asyncio.create_task(
                self._run("stats", self.config.stats_interval, StatsTick),
                name="stats-ticker",
            ),
        ]

        logger.info(
            "⏱️ [TIMEOUT_MGR] Tickers started",
            extra={
                "timeout_tick_interval": self.config.timeout_tick_interval,
                "stats_interval": self.config.stats_interval,
            }
        )

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self._active.clear()

    async def _run(self, name: str, interval: float, make_tick: Callable[[], Any]) -> None:
        ticker = ActiveTicker(name=name, interval=interval, started_at=time.time())
        self._active[name] = ticker
        try:
            while True:
                await asyncio.sleep(interval)
                ticker.ticks += 1
                if not self._sink(make_tick()):
                    logger.debug(f"⏱️ [TIMEOUT_MGR] {name} tick skipped, previous one still queued")
        finally:
            self._active.pop(name, None)

    def get_active_tickers(self) -> Dict[str, Dict[str, Any]]:
        """Retorna tickers ativos para debug"""
        return {
            name: {"interval": t.interval, "ticks": t.ticks, "running_for": time.time() - t.started_at}
            for name, t in self._active.items()
        }

    @property
    def running(self) -> bool:
        return bool(self._tasks) and not all(t.done() for t in self._tasks)
