from typing import Any, Dict

from ...signals import CONSCIOUS
from ..context import PerceptionContext, read_field
from ..definitions import (
    PerceptionEventDefinition,
    SaliencySpec,
    SignalSpec,
    SourceBinding,
    define_perception_event,
)
from ..saliency import windowed_count


def _is_own_pickup(ctx: PerceptionContext, collector: Any, collected: Any = None) -> bool:
    if not collector:
        return False
    return read_field(collector, "username") == ctx.self_id


def _extract(ctx: PerceptionContext, collector: Any, collected: Any = None) -> Dict[str, Any]:
    name = read_field(collected, "name") or read_field(collected, "display_name") or read_field(collected, "type")
    return {"item_name": str(name or "unknown")}


def item_collected_event(window_ms: float = 2000.0) -> PerceptionEventDefinition:
    # Pickups come in bursts; escalate on three within the window.
    return define_perception_event(
        id="item_collected",
        modality="felt",
        kind="item_collected",
        source=SourceBinding(event="playerCollect", filter=_is_own_pickup, extract=_extract),
        saliency=SaliencySpec(threshold=3, key="felt:pickup", measure=windowed_count(window_ms)),
        signal=SignalSpec(
            type="entity_attention",
            description=lambda payload: "Picked up an item",
            metadata=lambda payload: {"kind": "felt", "action": "pickup", "item_name": payload["item_name"]},
        ),
        routes=(CONSCIOUS,),
    )
