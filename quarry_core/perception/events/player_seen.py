from typing import Any, Dict

from ...signals import CONSCIOUS, SYSTEM
from ..context import PerceptionContext, read_field
from ..definitions import (
    PerceptionEventDefinition,
    SaliencySpec,
    SignalSpec,
    SourceBinding,
    define_perception_event,
)


def _filter(ctx: PerceptionContext, entity: Any) -> bool:
    if not entity or read_field(entity, "type") != "player":
        return False
    return not ctx.is_self(entity) and ctx.in_range(entity)


def _extract(ctx: PerceptionContext, entity: Any) -> Dict[str, Any]:
    return {
        "entity_id": ctx.entity_id(entity),
        "display_name": read_field(entity, "username") or ctx.entity_id(entity),
        "distance": ctx.distance_to(entity),
    }


def player_seen_event() -> PerceptionEventDefinition:
    # Once per player identity for the lifetime of the pipeline's saliency store.
    return define_perception_event(
        id="player_seen",
        modality="sighted",
        kind="player_seen",
        source=SourceBinding(event="entitySpawn", filter=_filter, extract=_extract),
        saliency=SaliencySpec(threshold=1, key=lambda payload: f"seen:{payload['entity_id']}"),
        signal=SignalSpec(
            type="player_seen",
            description=lambda payload: f"Noticed player {payload['display_name']} nearby",
            metadata=lambda payload: {
                "kind": "player",
                "action": "seen",
                "entity_id": payload["entity_id"],
                "distance": payload["distance"],
            },
        ),
        routes=(CONSCIOUS, SYSTEM),
    )
