from pathlib import Path

from quarry_core.config import RuntimeConfig


def test_from_env_reads_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("QUARRY_SCRIPT_TIMEOUT_MS", "40")
    monkeypatch.setenv("QUARRY_MAX_ACTIONS_PER_TURN", "2")
    monkeypatch.setenv("QUARRY_AUDIT_ENABLED", "no")
    monkeypatch.setenv("QUARRY_AUDIT_LOG_PATH", str(tmp_path / "audit.log"))
    monkeypatch.setenv("QUARRY_LLM_MODEL", "test-model")

    config = RuntimeConfig.from_env()

    assert config.script_timeout_ms == 40.0
    assert config.max_actions_per_turn == 2
    assert config.audit_enabled is False
    assert config.audit_log_path == Path(tmp_path / "audit.log")
    assert config.llm_model == "test-model"


def test_from_env_falls_back_on_garbage(monkeypatch):
    monkeypatch.setenv("QUARRY_TICK_INTERVAL", "soon")
    monkeypatch.setenv("QUARRY_MAX_SIGNALS_PER_TURN", "many")

    config = RuntimeConfig.from_env()

    assert config.tick_interval_seconds == RuntimeConfig().tick_interval_seconds
    assert config.max_signals_per_turn == RuntimeConfig().max_signals_per_turn


def test_api_key_falls_back_to_openai_variable(monkeypatch):
    monkeypatch.delenv("QUARRY_LLM_API_KEY", raising=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    assert RuntimeConfig.from_env().llm_api_key == "sk-test"
