from typing import Any, Dict, Optional

from ...signals import CONSCIOUS, REFLEX
from ..context import PerceptionContext, read_field
from ..definitions import PerceptionEventDefinition, SignalSpec, SourceBinding, define_perception_event


def _cause_from_name(name: str) -> str:
    if not name:
        return "unknown"
    if "anvil" in name:
        return "anvil"
    if "tnt" in name or "creeper" in name or "explosion" in name:
        return "explosion"
    if "arrow" in name or "trident" in name or "snowball" in name:
        return "projectile"
    return "unknown"


def infer_damage_source(ctx: PerceptionContext) -> Dict[str, Any]:
    world = ctx.world
    entity = read_field(world, "entity")
    if read_field(entity, "is_in_lava"):
        return {"cause": "lava"}
    if read_field(entity, "is_in_water"):
        return {"cause": "drown"}
    if read_field(entity, "is_on_fire"):
        return {"cause": "fire"}

    velocity_y = read_field(read_field(entity, "velocity"), "y")
    on_ground = read_field(entity, "on_ground")
    if isinstance(velocity_y, (int, float)) and velocity_y < -0.2 and on_ground is False:
        return {"cause": "gravity"}

    entities = read_field(world, "entities") or {}
    candidates = entities.values() if isinstance(entities, dict) else entities
    nearest = None
    nearest_distance: Optional[float] = None
    for candidate in candidates:
        if not candidate or ctx.is_self(candidate):
            continue
        distance = ctx.distance_to(candidate)
        if distance is None or distance > ctx.max_distance:
            continue
        if nearest_distance is None or distance < nearest_distance:
            nearest, nearest_distance = candidate, distance

    if nearest is None:
        return {"cause": "unknown"}

    entity_type = read_field(nearest, "type")
    if entity_type in ("player", "mob"):
        return {
            "cause": entity_type,
            "name": read_field(nearest, "username") or read_field(nearest, "display_name") or read_field(nearest, "name"),
            "entity_id": ctx.entity_id(nearest),
            "distance": nearest_distance,
        }
    name = str(read_field(nearest, "name") or "").lower()
    cause = _cause_from_name(name)
    if cause == "unknown":
        return {"cause": "unknown"}
    return {
        "cause": cause,
        "name": read_field(nearest, "name"),
        "entity_id": ctx.entity_id(nearest),
        "distance": nearest_distance,
    }


def _describe(payload: Dict[str, Any]) -> str:
    source = payload["damage_source"]
    culprit = f" from {source['name']}" if source.get("name") else ""
    return f"Took {payload['amount']:g} damage ({source['cause']}){culprit}"


def damage_taken_event() -> PerceptionEventDefinition:
    state: Dict[str, Optional[float]] = {"last_health": None, "pending": None}

    def _filter(ctx: PerceptionContext, *_: Any) -> bool:
        current = read_field(ctx.world, "health")
        previous = state["last_health"]
        state["last_health"] = current
        if not isinstance(previous, (int, float)) or not isinstance(current, (int, float)):
            state["pending"] = None
            return False
        amount = previous - current
        if amount <= 0:
            state["pending"] = None
            return False
        state["pending"] = amount
        return True

    def _extract(ctx: PerceptionContext, *_: Any) -> Dict[str, Any]:
        return {
            "amount": state["pending"] or 0.0,
            "health": read_field(ctx.world, "health"),
            "damage_source": infer_damage_source(ctx),
        }

    return define_perception_event(
        id="damage_taken",
        modality="felt",
        kind="damage_taken",
        source=SourceBinding(event="health", filter=_filter, extract=_extract),
        signal=SignalSpec(
            type="damage_taken",
            description=_describe,
            metadata=lambda payload: {
                "kind": "felt",
                "action": "damage",
                "amount": payload["amount"],
                "health": payload["health"],
                "cause": payload["damage_source"]["cause"],
            },
        ),
        routes=(CONSCIOUS, REFLEX),
    )
