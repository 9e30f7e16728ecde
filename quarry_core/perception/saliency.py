"""
Saliency bookkeeping for the perception pipeline.

Each dedup key keeps the salience recorded at its last escalation. A new
occurrence escalates only when its salience exceeds that recorded value by at
least the definition's threshold. Keys live as long as the owning store;
nothing is evicted unless ``reset`` is called.
"""

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional


@dataclass
class KeyState:
    occurrences: int = 0
    recorded: float = 0.0
    fired: int = 0
    suppressed: int = 0
    last_seen: float = 0.0
    last_fired: Optional[float] = None
    window: Deque[float] = field(default_factory=deque)


def constant(payload: Any, state: KeyState) -> float:
    """Every occurrence weighs the same, so a key escalates at most once."""
    return 1.0


def occurrence_count(payload: Any, state: KeyState) -> float:
    """Salience grows with each occurrence; threshold N fires every N-th one."""
    return float(state.occurrences)


def windowed_count(window_ms: float = 2000.0) -> Callable[[Any, KeyState], float]:
    """
    Salience grows by one for each occurrence inside the trailing ``window_ms``.

    Occurrences older than the window stop counting, and the count starts over
    after every escalation, so threshold N fires on N occurrences close together.
    """
    span = window_ms / 1000.0

    def measure(payload: Any, state: KeyState) -> float:
        state.window.append(state.last_seen)
        while state.window and state.last_seen - state.window[0] > span:
            state.window.popleft()
        return state.recorded + len(state.window)

    return measure


class SaliencyStore:
    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._keys: Dict[str, KeyState] = {}

    def state(self, key: str) -> KeyState:
        return self._keys.setdefault(key, KeyState())

    def observe(
        self,
        key: str,
        payload: Any,
        threshold: float,
        measure: Callable[[Any, KeyState], float] = constant,
    ) -> bool:
        """Count the occurrence and return True when it should not be suppressed."""
        state = self.state(key)
        now = self._clock()
        state.occurrences += 1
        state.last_seen = now
        salience = float(measure(payload, state))
        if salience - state.recorded >= threshold:
            state.recorded = salience
            state.fired += 1
            state.last_fired = now
            state.window.clear()
            return True
        state.suppressed += 1
        return False

    def keys(self) -> List[str]:
        return list(self._keys)

    def reset(self, key: Optional[str] = None) -> None:
        if key is None:
            self._keys.clear()
        else:
            self._keys.pop(key, None)

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {
            key: {
                "occurrences": state.occurrences,
                "recorded": state.recorded,
                "fired": state.fired,
                "suppressed": state.suppressed,
                "last_seen": state.last_seen,
                "last_fired": state.last_fired,
                "window": len(state.window),
            }
            for key, state in self._keys.items()
        }

    def __len__(self) -> int:
        return len(self._keys)
