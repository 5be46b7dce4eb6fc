"""
Configuration Loader - Opções do add-on (/data/options.json).

O supervisor do Home Assistant grava as opções do usuário em JSON antes de
iniciar o container. Aqui elas viram modelos pydantic; chaves desconhecidas
são ignoradas para não quebrar com versões novas do add-on.

Durações usam a sintaxe curta do add-on ("300ms", "10s", "1m30s", "1h").
Valor vazio ou inválido cai no default.
"""

import json
import logging
import os
import re
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_OPTIONS_FILE = "/data/options.json"

DEFAULT_STATS_INTERVAL = 3600.0         # 1 hora
DEFAULT_VOICE_CALL_MAX_DURATION = 300.0  # 5 minutos

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


class ConfigError(Exception):
    """Arquivo de opções ausente, ilegível ou inválido."""


def parse_duration(value: str) -> float:
    """
    Converte uma duração ("1h", "1m30s", "250ms") em segundos.

    Raises:
        ValueError: string vazia ou fora da sintaxe
    """
    text = value.strip()
    if not text:
        raise ValueError("empty duration")

    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    if text == "0":
        return 0.0

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        number, unit = match.groups()
        total += float(number) * _DURATION_UNITS[unit]
        pos = match.end()

    if pos == 0 or pos != len(text):
        raise ValueError(f"invalid duration {value!r}")

    return sign * total


def _duration_or_default(value: str, default: float, option: str) -> float:
    if not value:
        return default
    try:
        seconds = parse_duration(value)
    except ValueError:
        logger.warning(f"Invalid duration {value!r} for {option}, using default {default}s")
        return default
    if seconds <= 0:
        logger.warning(f"Non-positive duration {value!r} for {option}, using default {default}s")
        return default
    return seconds


class VoipProviderOptions(BaseModel):
    """Conta SIP usada para as chamadas."""

    name: str = ""
    account: str = ""
    password: str = ""

    model_config = {"extra": "ignore"}


class TTSEngineOptions(BaseModel):
    platform: str = ""

    model_config = {"extra": "ignore"}


class AddonContact(BaseModel):
    """Contato nomeado (called_contact) e sua URI SIP."""

    name: str
    uri: str

    model_config = {"extra": "ignore"}


class StatsOptions(BaseModel):
    interval: str = ""

    model_config = {"extra": "ignore"}


class HttpRestServerOptions(BaseModel):
    # True: a resposta do POST /dial só termina quando a chamada acabar
    synchronous: bool = False

    model_config = {"extra": "ignore"}


class VoiceCallsOptions(BaseModel):
    max_duration: str = ""

    model_config = {"extra": "ignore"}


class AddonOptions(BaseModel):
    """Opções do add-on como configuradas pelo usuário."""

    voip_provider: VoipProviderOptions = Field(default_factory=VoipProviderOptions)
    tts_engine: TTSEngineOptions = Field(default_factory=TTSEngineOptions)
    contacts: List[AddonContact] = Field(default_factory=list)
    stats: StatsOptions = Field(default_factory=StatsOptions)
    http_rest_server: HttpRestServerOptions = Field(default_factory=HttpRestServerOptions)
    voice_calls: VoiceCallsOptions = Field(default_factory=VoiceCallsOptions)

    model_config = {"extra": "ignore"}

    def get_stats_interval(self) -> float:
        return _duration_or_default(
            self.stats.interval, DEFAULT_STATS_INTERVAL, "stats.interval"
        )

    def get_voice_call_max_duration(self) -> float:
        return _duration_or_default(
            self.voice_calls.max_duration,
            DEFAULT_VOICE_CALL_MAX_DURATION,
            "voice_calls.max_duration",
        )

    def contact_lookup(self, name: str) -> Optional[str]:
        """Retorna a URI do contato com esse nome (exato), ou None."""
        for contact in self.contacts:
            if contact.name == name:
                return contact.uri
        return None


def read_addon_options(path: Optional[str] = None) -> AddonOptions:
    """
    Lê o arquivo de opções do add-on.

    Args:
        path: Caminho do JSON (default: $VOIP_CLIENT_OPTIONS ou /data/options.json)

    Raises:
        ConfigError: arquivo ausente, JSON inválido ou tipos errados
    """
    path = path or os.getenv("VOIP_CLIENT_OPTIONS", DEFAULT_OPTIONS_FILE)

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigError(f"cannot read add-on options from {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid JSON in {path}: {e}") from e

    try:
        options = AddonOptions.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid add-on options in {path}: {e}") from e

    logger.info(
        f"Add-on options loaded from {path}",
        extra={
            "voip_provider": options.voip_provider.name,
            "contacts": len(options.contacts),
            "synchronous": options.http_rest_server.synchronous,
        }
    )
    return options
