"""Clientes de serviços externos do cliente VoIP."""

from .tts_service import TTSService

__all__ = ["TTSService"]
