from typing import Any, Dict

from ...signals import CONSCIOUS, REFLEX
from ..context import PerceptionContext, read_field
from ..definitions import (
    PerceptionEventDefinition,
    SaliencySpec,
    SignalSpec,
    SourceBinding,
    define_perception_event,
)
from ..saliency import windowed_count

SNEAK_FLAG = 0x02


def is_sneaking(entity: Any) -> bool:
    metadata = read_field(entity, "metadata")
    flags = metadata[0] if isinstance(metadata, (list, tuple)) and metadata else None
    return isinstance(flags, int) and bool(flags & SNEAK_FLAG)


def sneak_toggle_event(window_ms: float = 2000.0) -> PerceptionEventDefinition:
    sneaking: Dict[str, bool] = {}

    def _filter(ctx: PerceptionContext, entity: Any) -> bool:
        if not entity or read_field(entity, "type") != "player":
            return False
        if ctx.is_self(entity):
            return False
        entity_id = ctx.entity_id(entity)
        current = is_sneaking(entity)
        if sneaking.get(entity_id) == current:
            return False
        sneaking[entity_id] = current
        return ctx.in_range(entity)

    def _extract(ctx: PerceptionContext, entity: Any) -> Dict[str, Any]:
        return {
            "entity_type": "player",
            "entity_id": ctx.entity_id(entity),
            "display_name": read_field(entity, "username"),
            "distance": ctx.distance_to(entity),
            "sneaking": is_sneaking(entity),
            "pos": read_field(entity, "position"),
        }

    return define_perception_event(
        id="sneak_toggle",
        modality="sighted",
        kind="sneak_toggle",
        source=SourceBinding(event="entityUpdate", filter=_filter, extract=_extract),
        saliency=SaliencySpec(threshold=5, key="teabag:player", measure=windowed_count(window_ms)),
        signal=SignalSpec(
            type="entity_attention",
            description=lambda payload: (
                f"Player {payload['display_name'] or 'unknown'} is teabagging (rapid sneaking)"
            ),
            metadata=lambda payload: {
                "kind": "player",
                "action": "teabag",
                "distance": payload["distance"],
                "display_name": payload["display_name"],
            },
        ),
        routes=(CONSCIOUS, REFLEX),
    )
