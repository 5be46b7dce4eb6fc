"""
Testes do SyncWaitCoordinator (espera síncrona do POST /dial).
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from api.sync_wait import COMPLETED_MESSAGE, KEEPALIVE_CHUNK, SyncWaitCoordinator
from voip.core.events import CallRequest, CallState, SubmitResult
from voip.core.state_notifier import StateNotifier


REQUEST = CallRequest(address="sip:bob@host.com", message="hello")


@pytest.fixture
def notifier():
    return StateNotifier()


@pytest.fixture
def coordinator(notifier):
    return SyncWaitCoordinator(notifier, keepalive_interval=0.05)


async def collect(stream):
    return [chunk async for chunk in stream]


class TestSubmit:
    """Inscrição antes do envio e limpeza na rejeição."""

    @pytest.mark.asyncio
    async def test_subscribes_before_submitting(self, coordinator, notifier):
        orchestrator = MagicMock()
        seen = []

        async def submit(request, subscription=None):
            seen.append(notifier.subscriber_count)
            return SubmitResult(accepted=True)

        orchestrator.submit = AsyncMock(side_effect=submit)

        result, subscription = await coordinator.submit(orchestrator, REQUEST)

        assert result.accepted is True
        assert seen == [1]
        assert subscription is not None

    @pytest.mark.asyncio
    async def test_rejection_unsubscribes(self, coordinator, notifier):
        orchestrator = MagicMock()
        orchestrator.submit = AsyncMock(return_value=SubmitResult(accepted=False, reason="busy"))

        result, subscription = await coordinator.submit(orchestrator, REQUEST)

        assert result.accepted is False
        assert subscription is None
        assert notifier.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_error_unsubscribes(self, coordinator, notifier):
        orchestrator = MagicMock()
        orchestrator.submit = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(RuntimeError):
            await coordinator.submit(orchestrator, REQUEST)

        assert notifier.subscriber_count == 0


class TestStream:
    """Keep-alives e mensagem final."""

    @pytest.mark.asyncio
    async def test_completes_on_idle(self, coordinator, notifier):
        subscription = notifier.subscribe()
        notifier.publish(CallState.WAIT_ESTABLISHMENT)
        notifier.publish(CallState.WAIT_COMPLETION)
        notifier.publish(CallState.IDLE)

        chunks = await collect(coordinator.stream(subscription))

        assert chunks == [COMPLETED_MESSAGE]
        assert notifier.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_keepalives_while_waiting(self, coordinator, notifier):
        subscription = notifier.subscribe()
        asyncio.get_running_loop().call_later(0.18, notifier.publish, CallState.IDLE)

        chunks = await collect(coordinator.stream(subscription))

        assert chunks[-1] == COMPLETED_MESSAGE
        keepalives = chunks[:-1]
        assert 2 <= len(keepalives) <= 4
        assert set(keepalives) == {KEEPALIVE_CHUNK}

    @pytest.mark.asyncio
    async def test_keepalive_not_delayed_by_intermediate_states(self, coordinator, notifier):
        """Estados intermediários frequentes não atrasam o keep-alive."""
        subscription = notifier.subscribe()
        loop = asyncio.get_running_loop()
        for i in range(1, 10):
            loop.call_later(0.02 * i, notifier.publish, CallState.WAIT_COMPLETION)
        loop.call_later(0.21, notifier.publish, CallState.IDLE)

        chunks = await collect(coordinator.stream(subscription))

        assert chunks.count(KEEPALIVE_CHUNK) >= 2

    @pytest.mark.asyncio
    async def test_client_disconnect_unsubscribes(self, coordinator, notifier):
        """Gerador fechado no meio (cliente saiu): inscrição removida, FSM intocada."""
        subscription = notifier.subscribe()
        stream = coordinator.stream(subscription)

        assert await stream.__anext__() == KEEPALIVE_CHUNK
        await stream.aclose()

        assert notifier.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_cancelled_wait_unsubscribes(self, coordinator, notifier):
        subscription = notifier.subscribe()
        task = asyncio.create_task(collect(coordinator.stream(subscription)))
        await asyncio.sleep(0.02)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert notifier.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_custom_desired_state(self, notifier):
        coordinator = SyncWaitCoordinator(notifier, keepalive_interval=1, desired_state=CallState.WAIT_COMPLETION)
        subscription = notifier.subscribe()
        notifier.publish(CallState.WAIT_COMPLETION)

        chunks = await collect(coordinator.stream(subscription))

        assert chunks == [COMPLETED_MESSAGE]


class TestConfiguration:
    """Parâmetros do coordenador."""

    @pytest.mark.parametrize("interval", [0, -1.0])
    def test_non_positive_keepalive_interval_rejected(self, notifier, interval):
        with pytest.raises(ValueError, match="keepalive_interval"):
            SyncWaitCoordinator(notifier, keepalive_interval=interval)
