"""Utilitários do cliente VoIP."""

from .metrics import CALL_OUTCOMES, StatsSnapshot, VoipMetrics

__all__ = ["CALL_OUTCOMES", "StatsSnapshot", "VoipMetrics"]
