"""Trip modification rules (detours, skips, delays)."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Union

from .models import TripModification

logger = logging.getLogger(__name__)


class TripStatus(str, Enum):
    NORMAL = "normal"
    MODIFIED = "modified"
    DELAYED = "delayed"


@dataclass
class TripModRule:
    """Switch to ``shape`` when the trigger matches."""
    trigger_type: str  # "station" or "segment"
    value: Union[str, int]
    shape: str
    direction: str = "both"

    def applies(self, current_station: Optional[str], last_segment: int, is_returning: bool) -> bool:
        direction_ok = (
            self.direction == "both"
            or (self.direction == "forward" and not is_returning)
            or (self.direction == "backward" and is_returning)
        )
        if not direction_ok:
            return False
        if self.trigger_type == "station":
            return self.value == current_station
        if self.trigger_type == "segment":
            return last_segment >= int(self.value)
        return False


class TripModificationManager:
    """Registry of active trip modifications, keyed by train."""

    def __init__(self):
        self._modifications: Dict[str, List[TripModification]] = {}
        self._rules: Dict[str, List[TripModRule]] = {}

    def add_modification(self, modification: TripModification) -> None:
        self._modifications.setdefault(modification.train_id, []).append(modification)
        self._rules.setdefault(modification.train_id, []).append(self._rule_for(modification))
        logger.info(
            f"Trip {modification.trip_id}: {modification.modification_type} for "
            f"train {modification.train_id} via {modification.shape_key}"
        )

    def active_modifications(self, train_id: str) -> List[TripModification]:
        return list(self._modifications.get(train_id, []))

    def trip_status(self, train_id: str) -> TripStatus:
        """Status from the most recent active modification, NORMAL if there is none."""
        mods = self._modifications.get(train_id)
        if not mods:
            return TripStatus.NORMAL
        if mods[-1].modification_type == "delay":
            return TripStatus.DELAYED
        return TripStatus.MODIFIED

    def cleanup_expired(self, now: float) -> int:
        """
        Drop modifications whose expiry time has passed.

        Returns:
            Number of modifications removed.
        """
        removed = 0
        for train_id, mods in list(self._modifications.items()):
            valid = [m for m in mods if m.expiry_time is None or m.expiry_time > now]
            if len(valid) == len(mods):
                continue
            removed += len(mods) - len(valid)
            if valid:
                self._modifications[train_id] = valid
                self._rules[train_id] = [self._rule_for(m) for m in valid]
            else:
                del self._modifications[train_id]
                self._rules.pop(train_id, None)
        if removed:
            logger.debug(f"Removed {removed} expired trip modifications")
        return removed

    def shape_for(self, train_id: str, current_station: Optional[str], last_segment: int,
                  is_returning: bool, default: str) -> str:
        """Route shape the train should follow; the last matching rule wins."""
        active = default
        for rule in self._rules.get(train_id, []):
            if rule.applies(current_station, last_segment, is_returning):
                active = rule.shape
        return active

    def clear(self, train_id: str) -> None:
        self._modifications.pop(train_id, None)
        self._rules.pop(train_id, None)

    @staticmethod
    def _rule_for(modification: TripModification) -> TripModRule:
        return TripModRule(
            trigger_type=modification.trigger_type,
            value=modification.trigger_value,
            shape=modification.shape_key,
            direction=modification.direction,
        )
