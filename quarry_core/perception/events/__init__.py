from typing import List

from ..definitions import PerceptionEventDefinition
from .damage_taken import damage_taken_event
from .item_collected import item_collected_event
from .player_seen import player_seen_event
from .sneak_toggle import sneak_toggle_event


def default_events() -> List[PerceptionEventDefinition]:
    return [
        damage_taken_event(),
        item_collected_event(),
        sneak_toggle_event(),
        player_seen_event(),
    ]


__all__ = [
    "damage_taken_event",
    "item_collected_event",
    "player_seen_event",
    "sneak_toggle_event",
    "default_events",
]
