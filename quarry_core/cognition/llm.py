import json
import logging
import re
from typing import Any, Optional, Tuple

from openai import AsyncOpenAI

from ..config import RuntimeConfig

_logger = logging.getLogger("quarry.llm")

_TRANSIENT_CODES = ("ETIMEDOUT", "ECONNRESET", "ENOTFOUND", "EAI_AGAIN", "ECONNREFUSED")
_FENCED_JSON = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.IGNORECASE | re.DOTALL)


def build_client(config: RuntimeConfig) -> AsyncOpenAI:
    if not config.llm_api_key:
        raise RuntimeError("QUARRY_LLM_API_KEY (or OPENAI_API_KEY) is required for model access.")
    # Keep network timeouts bounded so a stalled stream cannot hang a turn.
    return AsyncOpenAI(
        api_key=config.llm_api_key,
        base_url=config.llm_base_url,
        timeout=config.llm_http_timeout_s,
        max_retries=config.llm_max_retries,
    )


def to_error_message(err: Any) -> str:
    if isinstance(err, BaseException):
        return str(err) or type(err).__name__
    if isinstance(err, str):
        return err
    try:
        return json.dumps(err)
    except (TypeError, ValueError):
        return str(err)


def error_status(err: Any) -> Optional[int]:
    for candidate in (err, getattr(err, "response", None), getattr(err, "__cause__", None)):
        if candidate is None:
            continue
        for attr in ("status_code", "status"):
            status = getattr(candidate, attr, None)
            if isinstance(status, int) and not isinstance(status, bool):
                return status
    return None


def error_code(err: Any) -> Optional[str]:
    for candidate in (err, getattr(err, "__cause__", None)):
        code = getattr(candidate, "code", None) if candidate is not None else None
        if isinstance(code, str):
            return code
    return None


def is_likely_auth_or_bad_arg_error(err: Any) -> bool:
    if error_status(err) in (401, 403):
        return True
    msg = to_error_message(err).lower()
    return any(
        needle in msg
        for needle in (
            "unauthorized",
            "invalid api key",
            "authentication",
            "forbidden",
            "badarg",
            "bad arg",
            "invalid argument",
            "invalid_request_error",
        )
    )


def is_rate_limit_error(err: Any) -> bool:
    if error_status(err) == 429:
        return True
    msg = to_error_message(err).lower()
    return "rate limit" in msg or "too many requests" in msg


def is_likely_recoverable_error(err: Any) -> bool:
    if isinstance(err, json.JSONDecodeError) or isinstance(getattr(err, "__cause__", None), json.JSONDecodeError):
        return True
    status = error_status(err)
    if status == 429 or (status is not None and status >= 500):
        return True
    if error_code(err) in _TRANSIENT_CODES:
        return True
    msg = to_error_message(err).lower()
    return any(
        needle in msg
        for needle in ("timeout", "timed out", "rate limit", "overloaded", "temporarily", "try again")
    )


def should_retry_error(err: Any, remaining_attempts: int) -> Tuple[bool, int]:
    should_retry = (
        remaining_attempts > 0
        and not is_likely_auth_or_bad_arg_error(err)
        and is_likely_recoverable_error(err)
    )
    return should_retry, remaining_attempts


def extract_json_candidate(text: str) -> str:
    trimmed = text.strip()
    fenced = _FENCED_JSON.match(trimmed)
    if fenced and fenced.group(1):
        return fenced.group(1).strip()
    start = trimmed.find("{")
    end = trimmed.rfind("}")
    if start >= 0 and end > start:
        return trimmed[start : end + 1]
    return trimmed


def parse_response_json(text: str) -> Any:
    """Parse a model reply as JSON, tolerating code fences and surrounding prose."""
    candidate = extract_json_candidate(text)
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as exc:
        window = 120
        snippet = candidate[max(0, exc.pos - window) : exc.pos + window]
        _logger.debug("Unparseable model JSON near position %d", exc.pos)
        raise ValueError(f"Failed to parse model JSON response: {exc.msg}; snippet={snippet!r}") from exc
