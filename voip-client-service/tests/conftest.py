"""
Fixtures compartilhadas dos testes do cliente VoIP.
"""

import os
import sys
from unittest.mock import AsyncMock

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from voip.core.events import BaresipEvent, BaresipEventType, BaresipResponse  # noqa: E402


class FakeClock:
    """Relógio monotônico controlado pelo teste."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_event(event_type: BaresipEventType, call_id: str = "", **kwargs) -> BaresipEvent:
    return BaresipEvent(type=event_type, call_id=call_id, **kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mock_baresip():
    """Adaptador baresip que responde ok=true a todo comando."""
    baresip = AsyncMock()
    baresip.command = AsyncMock(
        side_effect=lambda name, params, token: BaresipResponse(ok=True, token=token)
    )
    return baresip


@pytest.fixture
def mock_tts():
    tts = AsyncMock()
    tts.get_audio_file = AsyncMock(return_value="/cache/a.wav")
    return tts
