"""
Health Check para o container voip-client.

Consulta GET /health do gateway. O container é saudável quando o gateway
responde e o worker da FSM está vivo; a linha impressa traz o estado da FSM
e o registro do User Agent para aparecer no `docker inspect`.

Uso:
    python -m voip.health_check

Exit codes:
    0 - Healthy
    1 - Unhealthy
"""

import asyncio
import os
import sys
from dataclasses import dataclass
from typing import Optional

import aiohttp


def default_health_url() -> str:
    return f"http://localhost:{os.getenv('HTTP_PORT', '80')}/health"


@dataclass
class HealthReport:
    healthy: bool
    fsm_state: Optional[str] = None
    registered: Optional[bool] = None
    error: Optional[str] = None

    def summary(self) -> str:
        if self.error:
            return f"UNHEALTHY: {self.error}"
        status = "OK" if self.healthy else "UNHEALTHY"
        return f"{status} fsm_state={self.fsm_state} registered={self.registered}"


async def check_health(url: Optional[str] = None, timeout: float = 5.0) -> HealthReport:
    """Consulta GET /health e monta o relatório."""
    url = url or default_health_url()
    try:
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
            async with session.get(url) as response:
                if response.status != 200:
                    return HealthReport(healthy=False, error=f"HTTP {response.status}")
                data = await response.json()
    except (aiohttp.ClientError, TimeoutError, ValueError) as e:
        return HealthReport(healthy=False, error=str(e) or type(e).__name__)

    return HealthReport(
        healthy=data.get("status") == "healthy",
        fsm_state=data.get("fsm_state"),
        registered=data.get("registered"),
    )


def main():
    """Entry point para o healthcheck do container."""
    report = asyncio.run(check_health())

    print(report.summary(), file=sys.stdout if report.healthy else sys.stderr)
    sys.exit(0 if report.healthy else 1)


if __name__ == "__main__":
    main()
