"""Bounded dedup cache for competition run ids"""
import logging
from collections import OrderedDict
from typing import Hashable

logger = logging.getLogger(__name__)


class RunIdCache:
    """
    Remembers recently accepted (competitionId, runId) keys.

    Approximates a time-windowed dedup set: once the number of keys exceeds
    ``high_water``, the oldest keys are dropped until ``retain`` remain.
    Re-adding a key does not refresh its position. Process-local only; a
    restart forgets everything.
    """

    def __init__(self, high_water: int = 10000, retain: int = 5000):
        if retain <= 0 or high_water <= 0:
            raise ValueError("high_water and retain must be positive")
        if retain > high_water:
            raise ValueError("retain cannot exceed high_water")
        self.high_water = high_water
        self.retain = retain
        self._keys: "OrderedDict[Hashable, None]" = OrderedDict()

    @staticmethod
    def make_key(competition_id: str, run_id: str) -> str:
        return f"{competition_id}:{run_id}"

    def __contains__(self, key: Hashable) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def add(self, key: Hashable) -> None:
        if key in self._keys:
            return
        self._keys[key] = None
        if len(self._keys) > self.high_water:
            self._evict()

    def _evict(self) -> None:
        evicted = 0
        while len(self._keys) > self.retain:
            self._keys.popitem(last=False)
            evicted += 1
        logger.info(f"Run-id cache evicted {evicted} oldest entries (retained {len(self._keys)})")

    def clear(self) -> None:
        self._keys.clear()
