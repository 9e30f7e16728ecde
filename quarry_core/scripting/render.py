import reprlib
from typing import Any

NO_VALUE = "None"
ELLIPSIS = "…"


def _build_repr(max_depth: int) -> reprlib.Repr:
    r = reprlib.Repr()
    r.maxlevel = max(1, max_depth + 1)
    r.maxtuple = 12
    r.maxlist = 12
    r.maxarray = 12
    r.maxdict = 12
    r.maxset = 12
    r.maxfrozenset = 12
    r.maxdeque = 12
    r.maxstring = 200
    r.maxlong = 100
    r.maxother = 200
    return r


def render_value(value: Any, max_depth: int = 2, max_length: int = 2000) -> str:
    """
    Render a script result for a chat transcript.

    Strings pass through untouched and ``None`` becomes the fixed ``"None"``
    marker. Everything else is shown depth- and size-limited, then capped at
    ``max_length`` characters.
    """
    if value is None:
        return NO_VALUE
    if isinstance(value, str):
        return value
    try:
        text = _build_repr(max_depth).repr(value)
    except Exception as exc:
        text = f"<unrenderable {type(value).__name__}: {exc}>"
    if max_length > 0 and len(text) > max_length:
        text = text[: max(0, max_length - len(ELLIPSIS))] + ELLIPSIS
    return text
