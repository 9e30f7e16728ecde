import math
from dataclasses import dataclass
from typing import Any, Callable, Optional


def read_field(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _coords(pos: Any) -> Optional[tuple[float, float, float]]:
    if pos is None:
        return None
    if isinstance(pos, (tuple, list)) and len(pos) == 3:
        return float(pos[0]), float(pos[1]), float(pos[2])
    x, y, z = read_field(pos, "x"), read_field(pos, "y"), read_field(pos, "z")
    if x is None or y is None or z is None:
        return None
    return float(x), float(y), float(z)


def euclidean(a: Any, b: Any) -> Optional[float]:
    pa, pb = _coords(a), _coords(b)
    if pa is None or pb is None:
        return None
    return math.dist(pa, pb)


@dataclass
class PerceptionContext:
    """
    What a definition's filter and extractor may ask about the world.

    Supplied by the world adapter; the pipeline only passes it through.
    """

    self_id: str
    is_self: Callable[[Any], bool]
    distance_to_pos: Callable[[Any], Optional[float]]
    max_distance: float = 32.0
    world: Any = None

    def distance_to(self, entity: Any) -> Optional[float]:
        pos = read_field(entity, "position")
        if pos is None:
            return None
        try:
            return self.distance_to_pos(pos)
        except Exception:
            return None

    def entity_id(self, entity: Any) -> str:
        for name in ("id", "uuid", "username"):
            value = read_field(entity, name)
            if value is not None:
                return str(value)
        return "unknown"

    def in_range(self, entity: Any) -> bool:
        distance = self.distance_to(entity)
        return distance is not None and distance <= self.max_distance

    @classmethod
    def for_world(cls, world: Any, max_distance: float = 32.0) -> "PerceptionContext":
        """
        Build a context from an adapter exposing ``username`` and ``entity.position``.
        """
        username = str(read_field(world, "username") or "")

        def distance_to_pos(pos: Any) -> Optional[float]:
            return euclidean(read_field(read_field(world, "entity"), "position"), pos)

        return cls(
            self_id=username,
            is_self=lambda entity: read_field(entity, "username") == username,
            distance_to_pos=distance_to_pos,
            max_distance=max_distance,
            world=world,
        )
