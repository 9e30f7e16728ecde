import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, TypeVar

from dotenv import load_dotenv

T = TypeVar("T")


def _parse_bool(val: str | None, default: bool) -> bool:
    if val is None:
        return default
    try:
        normalized = val.strip().lower()
        if not normalized:
            return default
        return normalized in {"1", "true", "yes", "on"}
    except Exception:
        return default


def _parse(val: str | None, caster: Callable[[str], T], default: T) -> T:
    if val is None:
        return default
    try:
        return caster(val)
    except Exception:
        return default


@dataclass(frozen=True)
class RuntimeConfig:
    tick_interval_seconds: float = 0.5
    max_signals_per_turn: int = 8
    signal_inbox_limit: int = 200
    feedback_limit: int = 20
    max_perception_distance: float = 32.0
    script_timeout_ms: float = 250.0
    script_interrupt_grace_ms: float = 1000.0
    max_actions_per_turn: int = 5
    render_max_depth: int = 2
    render_max_length: int = 2000
    llm_base_url: str = "https://api.openai.com/v1"
    llm_api_key: str = ""
    llm_model: str = "gpt-4o-mini"
    llm_http_timeout_s: float = 20.0
    llm_max_retries: int = 2
    llm_max_attempts: int = 3
    llm_breaker_threshold: int = 3
    llm_breaker_window_seconds: float = 90.0
    llm_breaker_cooldown_seconds: float = 300.0
    audit_enabled: bool = True
    audit_log_path: Path = Path("quarry_core/data/audit.log")

    @classmethod
    def from_env(cls) -> "RuntimeConfig":
        """
        Build a config instance with optional environment overrides. Values that
        fail to parse fall back to the defaults instead of raising.
        """
        load_dotenv()
        default = cls()
        return cls(
            tick_interval_seconds=_parse(os.getenv("QUARRY_TICK_INTERVAL"), float, default.tick_interval_seconds),
            max_signals_per_turn=_parse(os.getenv("QUARRY_MAX_SIGNALS_PER_TURN"), int, default.max_signals_per_turn),
            signal_inbox_limit=_parse(os.getenv("QUARRY_SIGNAL_INBOX_LIMIT"), int, default.signal_inbox_limit),
            feedback_limit=_parse(os.getenv("QUARRY_FEEDBACK_LIMIT"), int, default.feedback_limit),
            max_perception_distance=_parse(
                os.getenv("QUARRY_MAX_PERCEPTION_DISTANCE"), float, default.max_perception_distance
            ),
            script_timeout_ms=_parse(os.getenv("QUARRY_SCRIPT_TIMEOUT_MS"), float, default.script_timeout_ms),
            script_interrupt_grace_ms=_parse(
                os.getenv("QUARRY_SCRIPT_INTERRUPT_GRACE_MS"), float, default.script_interrupt_grace_ms
            ),
            max_actions_per_turn=_parse(os.getenv("QUARRY_MAX_ACTIONS_PER_TURN"), int, default.max_actions_per_turn),
            render_max_depth=_parse(os.getenv("QUARRY_RENDER_MAX_DEPTH"), int, default.render_max_depth),
            render_max_length=_parse(os.getenv("QUARRY_RENDER_MAX_LENGTH"), int, default.render_max_length),
            llm_base_url=os.getenv("QUARRY_LLM_BASE_URL", default.llm_base_url),
            llm_api_key=os.getenv("QUARRY_LLM_API_KEY") or os.getenv("OPENAI_API_KEY") or default.llm_api_key,
            llm_model=os.getenv("QUARRY_LLM_MODEL", default.llm_model),
            llm_http_timeout_s=_parse(os.getenv("QUARRY_LLM_HTTP_TIMEOUT_S"), float, default.llm_http_timeout_s),
            llm_max_retries=_parse(os.getenv("QUARRY_LLM_MAX_RETRIES"), int, default.llm_max_retries),
            llm_max_attempts=_parse(os.getenv("QUARRY_LLM_MAX_ATTEMPTS"), int, default.llm_max_attempts),
            llm_breaker_threshold=_parse(
                os.getenv("QUARRY_LLM_BREAKER_THRESHOLD"), int, default.llm_breaker_threshold
            ),
            llm_breaker_window_seconds=_parse(
                os.getenv("QUARRY_LLM_BREAKER_WINDOW_SECONDS"), float, default.llm_breaker_window_seconds
            ),
            llm_breaker_cooldown_seconds=_parse(
                os.getenv("QUARRY_LLM_BREAKER_COOLDOWN_SECONDS"), float, default.llm_breaker_cooldown_seconds
            ),
            audit_enabled=_parse_bool(os.getenv("QUARRY_AUDIT_ENABLED", ""), default.audit_enabled),
            audit_log_path=Path(os.getenv("QUARRY_AUDIT_LOG_PATH", default.audit_log_path)),
        )

    def ensure_paths(self) -> None:
        self.audit_log_path.parent.mkdir(parents=True, exist_ok=True)
