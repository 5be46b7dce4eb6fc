"""
Testes do carregamento das opções do add-on.
"""

import json

import pytest

from voip.config_loader import (
    DEFAULT_STATS_INTERVAL,
    DEFAULT_VOICE_CALL_MAX_DURATION,
    AddonOptions,
    ConfigError,
    parse_duration,
    read_addon_options,
)
from voip.core.timeout_manager import TimeoutConfig


SAMPLE_OPTIONS = {
    "voip_provider": {
        "name": "sipgate",
        "account": "<sip:user@example.com;transport=tcp>",
        "password": "your-password",
    },
    "tts_engine": {"platform": "google_translate"},
    "contacts": [
        {"name": "John Doe", "uri": "<sip:johndoe@example.com>"},
    ],
    "stats": {"interval": "10m"},
    "http_rest_server": {"synchronous": True},
    "voice_calls": {"max_duration": "2m"},
    "future_option": {"whatever": 1},
}


class TestParseDuration:
    """Sintaxe curta de durações."""

    @pytest.mark.parametrize("text,expected", [
        ("10s", 10.0),
        ("1m", 60.0),
        ("1h", 3600.0),
        ("1m30s", 90.0),
        ("1h2m3s", 3723.0),
        ("250ms", 0.25),
        ("1.5s", 1.5),
        ("0", 0.0),
        ("-5s", -5.0),
    ])
    def test_valid(self, text, expected):
        assert parse_duration(text) == pytest.approx(expected)

    @pytest.mark.parametrize("text", ["", "10", "s", "10x", "1m 30s", "abc", "1h-2m"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            parse_duration(text)


class TestAddonOptions:
    """Modelos pydantic e defaults."""

    def test_parse_sample(self):
        options = AddonOptions.model_validate(SAMPLE_OPTIONS)

        assert options.voip_provider.account == "<sip:user@example.com;transport=tcp>"
        assert options.tts_engine.platform == "google_translate"
        assert options.http_rest_server.synchronous is True
        assert options.get_stats_interval() == 600.0
        assert options.get_voice_call_max_duration() == 120.0

    def test_defaults_when_missing(self):
        options = AddonOptions.model_validate({})

        assert options.get_stats_interval() == DEFAULT_STATS_INTERVAL
        assert options.get_voice_call_max_duration() == DEFAULT_VOICE_CALL_MAX_DURATION
        assert options.http_rest_server.synchronous is False
        assert options.contacts == []

    @pytest.mark.parametrize("value", ["garbage", "0", "-1m"])
    def test_invalid_durations_fall_back(self, value):
        options = AddonOptions.model_validate({
            "stats": {"interval": value},
            "voice_calls": {"max_duration": value},
        })

        assert options.get_stats_interval() == DEFAULT_STATS_INTERVAL
        assert options.get_voice_call_max_duration() == DEFAULT_VOICE_CALL_MAX_DURATION

    def test_contact_lookup(self):
        options = AddonOptions.model_validate(SAMPLE_OPTIONS)

        assert options.contact_lookup("John Doe") == "<sip:johndoe@example.com>"
        assert options.contact_lookup("john doe") is None
        assert options.contact_lookup("Nobody") is None

    def test_timeout_config_from_options(self):
        options = AddonOptions.model_validate(SAMPLE_OPTIONS)

        config = TimeoutConfig.from_options(options, command_timeout=2.0)

        assert config.call_max_duration == 120.0
        assert config.timeout_tick_interval == 12.0
        assert config.stats_interval == 600.0
        assert config.command_timeout == 2.0


class TestReadAddonOptions:
    """Leitura do arquivo de opções."""

    def test_read_from_path(self, tmp_path):
        path = tmp_path / "options.json"
        path.write_text(json.dumps(SAMPLE_OPTIONS))

        options = read_addon_options(str(path))

        assert options.voip_provider.name == "sipgate"

    def test_read_from_env(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.json"
        path.write_text(json.dumps(SAMPLE_OPTIONS))
        monkeypatch.setenv("VOIP_CLIENT_OPTIONS", str(path))

        options = read_addon_options()

        assert len(options.contacts) == 1

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            read_addon_options(str(tmp_path / "missing.json"))

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "options.json"
        path.write_text("{not json")

        with pytest.raises(ConfigError):
            read_addon_options(str(path))

    def test_wrong_types(self, tmp_path):
        path = tmp_path / "options.json"
        path.write_text(json.dumps({"contacts": [{"name": "John"}]}))

        with pytest.raises(ConfigError):
            read_addon_options(str(path))
