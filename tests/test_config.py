"""Tests for configuration loading and validation."""

from dataclasses import replace

import pytest

from sales_agent.config import (
    AppConfig,
    ModelConfig,
    OrchestratorConfig,
    StoreConfig,
    _safe_bool,
    _safe_int,
    _validate_config,
)


def _with_model(**overrides) -> AppConfig:
    return replace(AppConfig(), model=replace(ModelConfig(), **overrides))


def _with_orchestrator(**overrides) -> AppConfig:
    return replace(AppConfig(), orchestrator=replace(OrchestratorConfig(), **overrides))


class TestConfigValidation:
    def test_default_config_passes_validation(self):
        _validate_config(AppConfig())  # should not raise

    def test_invalid_temperature_too_high(self):
        with pytest.raises(ValueError, match="LLM_TEMPERATURE"):
            _validate_config(_with_model(llm_temperature=3.0))

    def test_invalid_curator_temperature_negative(self):
        with pytest.raises(ValueError, match="CURATOR_TEMPERATURE"):
            _validate_config(_with_model(curator_temperature=-0.1))

    def test_invalid_timeout(self):
        with pytest.raises(ValueError, match="LLM_REQUEST_TIMEOUT"):
            _validate_config(_with_model(request_timeout_sec=0))

    def test_zero_iterations_rejected(self):
        with pytest.raises(ValueError, match="MAX_TOOL_ITERATIONS"):
            _validate_config(_with_orchestrator(max_tool_iterations=0))

    def test_zero_history_window_rejected(self):
        with pytest.raises(ValueError, match="HISTORY_USER_MESSAGES"):
            _validate_config(_with_orchestrator(history_user_messages=0))

    def test_tiny_reply_limit_rejected(self):
        with pytest.raises(ValueError, match="MAX_REPLY_CHARS"):
            _validate_config(_with_orchestrator(max_reply_chars=50))

    def test_curator_needs_more_than_two_candidates(self):
        with pytest.raises(ValueError, match="CURATOR_MIN_CANDIDATES"):
            _validate_config(_with_orchestrator(curator_min_candidates=2))

    def test_empty_delivery_cities_rejected(self):
        config = replace(AppConfig(), store=replace(StoreConfig(), delivery_cities=()))
        with pytest.raises(ValueError, match="DELIVERY_CITIES"):
            _validate_config(config)


class TestDefaults:
    def test_iteration_cap_is_ten(self):
        assert OrchestratorConfig().max_tool_iterations == 10

    def test_store_timezone(self):
        assert StoreConfig().timezone == "America/Fortaleza"

    def test_cart_event_handoff_on_by_default(self):
        assert OrchestratorConfig().cart_event_handoff is True


class TestEnvParsing:
    def test_safe_int_reads_env(self, monkeypatch):
        monkeypatch.setenv("TEST_LIMIT", "7")
        assert _safe_int("TEST_LIMIT", "1") == 7

    def test_safe_int_rejects_garbage(self, monkeypatch):
        monkeypatch.setenv("TEST_LIMIT", "seven")
        with pytest.raises(ValueError, match="Invalid integer for TEST_LIMIT"):
            _safe_int("TEST_LIMIT", "1")

    @pytest.mark.parametrize("raw,expected", [("1", True), ("yes", True), ("off", False), ("False", False)])
    def test_safe_bool(self, monkeypatch, raw, expected):
        monkeypatch.setenv("TEST_FLAG", raw)
        assert _safe_bool("TEST_FLAG", "true") is expected

    def test_safe_bool_rejects_garbage(self, monkeypatch):
        monkeypatch.setenv("TEST_FLAG", "maybe")
        with pytest.raises(ValueError, match="Invalid boolean"):
            _safe_bool("TEST_FLAG", "true")
