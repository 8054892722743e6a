"""
Scan & Debounce Tracker
=======================

Keeps per-path state across scan cycles and decides when a path has
settled long enough to be handed to the rule engine.

A path is eligible once its (size, mtime) signature has been observed
unchanged on ``stability_threshold`` consecutive scans. It is then handed
out exactly once; it becomes eligible again only after its signature
changes and settles anew. Paths missing from one scan are kept (listing
races); paths missing from two consecutive scans are evicted.
"""

import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from tidyd.utils.logging_config import get_logger

logger = get_logger(__name__)

Signature = Tuple[int, int]

DEFAULT_STABILITY_THRESHOLD = 2
EVICT_AFTER_MISSED_SCANS = 2


@dataclass
class PathState:
    """Tracked state of one absolute path.

    Attributes:
        signature: Last observed (size, mtime_ns).
        stable_scans: Consecutive scans that observed ``signature``.
        evaluated: Handed to the rule engine since the signature last changed.
        last_action_timestamp: When an action last ran against the path.
        missed_scans: Consecutive scans the path was absent from.
    """
    signature: Signature
    stable_scans: int = 1
    evaluated: bool = False
    last_action_timestamp: Optional[float] = None
    missed_scans: int = 0
    seen: bool = True


class ScanTracker:
    """Debounce and feedback-loop guard for the scan loop.

    Not thread-safe; owned by the scheduling loop.
    """

    def __init__(
        self,
        stability_threshold: int = DEFAULT_STABILITY_THRESHOLD,
        cooldown_secs: float = 0.0,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the tracker.

        Args:
            stability_threshold: Identical consecutive scans required.
            cooldown_secs: Minimum time after an action before the same path
                may be evaluated again.
            clock: Time source for cooldown bookkeeping.
        """
        self.clock = clock
        self._states: Dict[str, PathState] = {}
        self.configure(stability_threshold, cooldown_secs)

    def configure(self, stability_threshold: int, cooldown_secs: float = 0.0) -> None:
        """Change the debounce settings without touching tracked paths.

        Paths already handed out stay evaluated until their signature
        changes, so a configuration reload does not reprocess them.
        """
        if stability_threshold < 1:
            raise ValueError("stability_threshold must be at least 1")
        self.stability_threshold = stability_threshold
        self.cooldown_secs = cooldown_secs

    def __len__(self) -> int:
        return len(self._states)

    def __contains__(self, path: str) -> bool:
        return str(path) in self._states

    def state(self, path: str) -> Optional[PathState]:
        return self._states.get(str(path))

    def begin_cycle(self) -> None:
        """Start a scan cycle; every path starts out unseen."""
        for state in self._states.values():
            state.seen = False

    def observe(self, path: str, signature: Signature) -> bool:
        """Record one sighting of a path.

        Args:
            path: Absolute path.
            signature: (size, mtime_ns) observed this scan.

        Returns:
            True exactly when the path has just become eligible for
            rule evaluation.
        """
        key = str(path)
        state = self._states.get(key)

        if state is None:
            state = PathState(signature=signature)
            self._states[key] = state
        elif state.seen:
            # Listed twice in one cycle (overlapping watches)
            return False
        else:
            state.seen = True
            state.missed_scans = 0
            if state.signature != signature:
                state.signature = signature
                state.stable_scans = 1
                state.evaluated = False
            else:
                state.stable_scans += 1

        if state.evaluated or state.stable_scans < self.stability_threshold:
            return False

        if self._cooling_down(state):
            return False

        state.evaluated = True
        return True

    def _cooling_down(self, state: PathState) -> bool:
        if not self.cooldown_secs or state.last_action_timestamp is None:
            return False
        return self.clock() - state.last_action_timestamp < self.cooldown_secs

    def record_action(self, path: str) -> None:
        """Note that an action ran against ``path``."""
        state = self._states.get(str(path))
        if state is not None:
            state.last_action_timestamp = self.clock()

    def adopt(self, path: str, signature: Signature) -> None:
        """Track a path produced by our own action as already evaluated.

        Keeps a renamed or copied file inside a watched tree from being
        processed again on the next scans.
        """
        self._states[str(path)] = PathState(
            signature=signature,
            stable_scans=self.stability_threshold,
            evaluated=True,
            last_action_timestamp=self.clock(),
        )

    def forget(self, path: str) -> None:
        self._states.pop(str(path), None)

    def end_cycle(self) -> List[str]:
        """Finish a scan cycle and evict paths gone for too long.

        Returns:
            Paths evicted by this cycle.
        """
        evicted = []
        for key, state in self._states.items():
            if state.seen:
                continue
            state.missed_scans += 1
            if state.missed_scans >= EVICT_AFTER_MISSED_SCANS:
                evicted.append(key)

        for key in evicted:
            del self._states[key]

        if evicted:
            logger.debug(f"Evicted {len(evicted)} vanished path(s) from tracking")
        return evicted
