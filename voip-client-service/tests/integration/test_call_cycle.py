"""
Testes de Integração - Ciclo completo de chamada

baresip simulado (ctrl_tcp local) + BaresipClient + CallOrchestrator +
CallStateMachine + gateway HTTP (httpx ASGITransport).

Cenários testados:
1. Conexão -> uanew -> REGISTER_OK -> IDLE
2. POST /dial assíncrono -> dial -> estabelecida -> áudio -> END_OF_FILE -> hangup -> IDLE
3. POST /dial síncrono: resposta só termina com a FSM em IDLE
4. Segundo pedido durante a chamada -> 409
5. Chamada que nunca estabelece -> timeout -> hangup -> IDLE
"""

import asyncio
import json
from typing import List

import httpx
import pytest
import pytest_asyncio
from unittest.mock import AsyncMock

from api.app import create_app
from api.sync_wait import COMPLETED_MESSAGE
from voip.baresip.client import BaresipClient
from voip.baresip.protocol import encode_netstring, read_netstring
from voip.config_loader import AddonOptions
from voip.core.events import CallState
from voip.core.orchestrator import CallOrchestrator
from voip.core.state_machine import CallStateMachine
from voip.core.state_notifier import StateNotifier
from voip.core.timeout_manager import TimeoutConfig
from voip.utils.metrics import VoipMetrics


def frame(message: dict) -> bytes:
    return encode_netstring(json.dumps(message).encode())


class SimulatedBaresip:
    """
    Simula o baresip com ctrl_tcp.

    uanew  -> REGISTER_OK
    dial   -> CALL_OUTGOING + CALL_ESTABLISHED (se answer=True)
    ausrc  -> END_OF_FILE
    hangup -> CALL_CLOSED
    """

    def __init__(self, answer: bool = True):
        self.answer = answer
        self.commands: List[dict] = []
        self.server = None
        self._writer = None
        self._call_seq = 0
        self._call_id = ""

    async def start(self) -> int:
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        return self.server.sockets[0].getsockname()[1]

    async def stop(self):
        if self._writer:
            self._writer.close()
        self.server.close()
        await self.server.wait_closed()

    def names(self) -> List[str]:
        return [c["command"] for c in self.commands]

    async def _send(self, message: dict):
        self._writer.write(frame(message))
        await self._writer.drain()

    async def _event(self, event_type: str, **fields):
        await self._send({"event": True, "type": event_type, "accountaor": "sip:user@host.com", **fields})

    async def _handle(self, reader, writer):
        self._writer = writer
        try:
            while True:
                command = json.loads(await read_netstring(reader))
                self.commands.append(command)
                await self._send({"response": True, "ok": True, "data": "", "token": command["token"]})
                await self._react(command)
        except (asyncio.IncompleteReadError, ConnectionError):
            pass

    async def _react(self, command: dict):
        name = command["command"]
        if name == "uanew":
            await self._event("REGISTER_OK", **{"class": "register"})
        elif name == "dial":
            self._call_seq += 1
            self._call_id = f"call-{self._call_seq}"
            await self._event("CALL_OUTGOING", id=self._call_id, peeruri=command["params"], **{"class": "call"})
            if self.answer:
                await self._event("CALL_ESTABLISHED", id=self._call_id, peeruri=command["params"], **{"class": "call"})
        elif name == "ausrc":
            await asyncio.sleep(0.05)
            await self._event("END_OF_FILE", id=self._call_id, **{"class": "call"})
        elif name == "hangup":
            await self._event("CALL_CLOSED", id=self._call_id, param="Connection reset by user", **{"class": "call"})


class Stack:
    """Serviço montado como no bootstrap, sem uvicorn."""

    def __init__(self, port: int, synchronous: bool, max_duration: float = 60.0):
        self.options = AddonOptions.model_validate({
            "voip_provider": {"account": "sip:user@host.com", "password": "pw"},
            "contacts": [{"name": "Bob", "uri": "sip:bob@host.com"}],
            "http_rest_server": {"synchronous": synchronous},
        })
        timeouts = TimeoutConfig(call_max_duration=max_duration, command_timeout=1.0, connect_retries=1)
        self.metrics = VoipMetrics()
        self.notifier = StateNotifier()
        self.client = BaresipClient("127.0.0.1", port, command_timeout=1.0, connect_retries=1)
        self.tts = AsyncMock()
        self.tts.get_audio_file = AsyncMock(return_value="/share/voip-client/tts_abc.wav")
        self.fsm = CallStateMachine(
            self.client, self.tts, self.notifier, max_call_duration=max_duration, metrics=self.metrics
        )
        self.orchestrator = CallOrchestrator(
            self.fsm, "sip:user@host.com", "pw", timeouts=timeouts, metrics=self.metrics
        )
        self.client.set_connected_handler(self.orchestrator.adapter_connected)
        self.client.set_event_handler(self.orchestrator.post)
        self.app = create_app(self.orchestrator, self.options, metrics=self.metrics, keepalive_interval=0.05)
        self.tasks: List[asyncio.Task] = []

    async def start(self):
        self.tasks = [
            asyncio.create_task(self.orchestrator.run()),
            asyncio.create_task(self.client.serve()),
        ]
        await self.wait_for_state(CallState.IDLE)

    async def stop(self):
        for task in self.tasks:
            task.cancel()
        await asyncio.gather(*self.tasks, return_exceptions=True)

    async def wait_for_state(self, state: CallState, timeout: float = 3.0):
        async def poll():
            while self.fsm.state != state:
                await asyncio.sleep(0.01)
        await asyncio.wait_for(poll(), timeout)

    async def collect_until(self, subscription, state: CallState, timeout: float = 3.0) -> List[CallState]:
        published = []
        while True:
            received = await subscription.get(timeout=timeout)
            assert received is not None, f"no state change, published so far: {published}"
            published.append(received)
            if received == state:
                return published

    def http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.ASGITransport(app=self.app), base_url="http://voip-client")


@pytest_asyncio.fixture
async def baresip():
    server = SimulatedBaresip()
    await server.start()
    yield server
    await server.stop()


class TestCallCycleIntegration:
    """Fluxo completo com o baresip simulado."""

    @pytest.mark.asyncio
    async def test_registration_on_connect(self, baresip):
        stack = Stack(baresip.server.sockets[0].getsockname()[1], synchronous=False)
        await stack.start()

        assert baresip.commands[0] == {
            "command": "uanew",
            "params": "sip:user@host.com;auth_pass=pw",
            "token": "uaregistration_token",
        }
        assert stack.fsm.registered is True
        await stack.stop()

    @pytest.mark.asyncio
    async def test_async_dial_full_cycle(self, baresip):
        stack = Stack(baresip.server.sockets[0].getsockname()[1], synchronous=False)
        await stack.start()
        subscription = stack.orchestrator.subscribe_to_state_changes()

        async with stack.http() as http:
            response = await http.post("/dial", json={"called_contact": "Bob", "message_tts": "hello"})

        assert response.status_code == 200
        published = await stack.collect_until(subscription, CallState.IDLE)

        assert baresip.names() == ["uanew", "dial", "ausrc", "hangup"]
        assert baresip.commands[1]["params"] == "sip:bob@host.com"
        assert baresip.commands[2]["params"] == "aufile,/share/voip-client/tts_abc.wav"
        assert baresip.commands[3] == {"command": "hangup", "params": "call-1", "token": "hangup_cmd_1"}

        assert published == [CallState.WAIT_ESTABLISHMENT, CallState.WAIT_COMPLETION, CallState.IDLE]
        assert stack.fsm.current_call_id == ""
        assert stack.metrics.snapshot.outcomes["completed"] == 1

        stack.orchestrator.unsubscribe_from_state_changes(subscription)
        await stack.stop()

    @pytest.mark.asyncio
    async def test_sync_dial_returns_after_call(self, baresip):
        stack = Stack(baresip.server.sockets[0].getsockname()[1], synchronous=True)
        await stack.start()

        async with stack.http() as http:
            response = await http.post("/dial", json={"called_number": "sip:bob@host.com", "message_tts": "hello"})

        assert response.status_code == 200
        assert response.text.endswith(COMPLETED_MESSAGE)
        assert stack.fsm.state == CallState.IDLE
        assert "hangup" in baresip.names()
        assert stack.notifier.subscriber_count == 0
        await stack.stop()

    @pytest.mark.asyncio
    async def test_second_request_during_call_is_rejected(self):
        baresip = SimulatedBaresip(answer=False)
        port = await baresip.start()
        stack = Stack(port, synchronous=False)
        await stack.start()

        async with stack.http() as http:
            first = await http.post("/dial", json={"called_number": "sip:bob@host.com", "message_tts": "one"})
            await stack.wait_for_state(CallState.WAIT_ESTABLISHMENT)
            second = await http.post("/dial", json={"called_number": "sip:bob@host.com", "message_tts": "two"})

        assert first.status_code == 200
        assert second.status_code == 409
        assert baresip.names().count("dial") == 1
        await stack.stop()
        await baresip.stop()

    @pytest.mark.asyncio
    async def test_unanswered_call_times_out(self):
        baresip = SimulatedBaresip(answer=False)
        port = await baresip.start()
        stack = Stack(port, synchronous=False, max_duration=0.2)
        await stack.start()
        subscription = stack.orchestrator.subscribe_to_state_changes()

        async with stack.http() as http:
            response = await http.post("/dial", json={"called_number": "sip:bob@host.com", "message_tts": "hi"})
        assert response.status_code == 200

        published = await stack.collect_until(subscription, CallState.IDLE)

        assert published == [CallState.WAIT_ESTABLISHMENT, CallState.IDLE]

        assert "hangup" in baresip.names()
        assert stack.metrics.snapshot.outcomes["timeout"] == 1
        await stack.stop()
        await baresip.stop()
