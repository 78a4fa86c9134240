"""Turn raw change signals into refresh decisions."""

from __future__ import annotations

import logging
from enum import Enum

from ..config import CooldownKind, CooldownPolicy

logger = logging.getLogger(__name__)


class RefreshState(str, Enum):
    IDLE = "idle"
    CHANGE_OBSERVED = "change_observed"
    COUNTING_DOWN = "counting_down"
    READY = "ready"
    REFRESHING = "refreshing"
    SUPPRESSED = "suppressed"


class RefreshCooldownCoordinator:
    """Debounce state machine between the change detector and the builder.

    Time never comes from a clock here: every transition that depends on it
    takes ``now`` (seconds, any monotonic origin) from the caller.
    """

    def __init__(self, policy: CooldownPolicy | None = None) -> None:
        self.policy = policy or CooldownPolicy()
        self.state = RefreshState.IDLE
        self.last_change: float | None = None
        self._change_during_refresh = False

    @property
    def pending(self) -> bool:
        return self.state not in (RefreshState.IDLE, RefreshState.REFRESHING)

    def observe_change(self, now: float) -> None:
        """Record a change; any change restarts the quiet period."""

        self.last_change = now
        if self.state is RefreshState.REFRESHING:
            self._change_during_refresh = True
            return
        if self.state is RefreshState.SUPPRESSED and self.policy.kind is CooldownKind.MANUAL:
            return
        self._set_state(RefreshState.CHANGE_OBSERVED)

    def tick(self, now: float) -> RefreshState:
        if self.state is RefreshState.CHANGE_OBSERVED:
            if self.policy.kind is CooldownKind.MANUAL:
                self._set_state(RefreshState.SUPPRESSED)
            elif self.policy.kind is CooldownKind.SECONDS:
                self._set_state(RefreshState.COUNTING_DOWN)
        if self.state is RefreshState.COUNTING_DOWN:
            if self._elapsed(now) >= self.policy.seconds:
                self._set_state(RefreshState.READY)
        return self.state

    def time_remaining(self, now: float) -> float | None:
        """Seconds until the countdown completes, or None when not counting down."""

        if self.state is not RefreshState.COUNTING_DOWN:
            return None
        return max(0.0, self.policy.seconds - self._elapsed(now))

    def time_since_change(self, now: float) -> float | None:
        if self.last_change is None or not self.pending:
            return None
        return max(0.0, now - self.last_change)

    def confirm(self) -> bool:
        """Authorize a pending change immediately (the Prompt confirmation)."""

        if not self.pending:
            return False
        self._set_state(RefreshState.READY)
        return True

    def suppress(self) -> None:
        if self.pending:
            self._set_state(RefreshState.SUPPRESSED)

    def cancel(self) -> None:
        if self.state is RefreshState.REFRESHING:
            return
        self.last_change = None
        self._set_state(RefreshState.IDLE)

    def set_policy(self, policy: CooldownPolicy) -> None:
        self.policy = policy
        if policy.kind is CooldownKind.MANUAL and self.state in (
            RefreshState.CHANGE_OBSERVED,
            RefreshState.COUNTING_DOWN,
            RefreshState.READY,
        ):
            self._set_state(RefreshState.SUPPRESSED)
        elif policy.kind is CooldownKind.PROMPT and self.state is RefreshState.COUNTING_DOWN:
            self._set_state(RefreshState.CHANGE_OBSERVED)

    def begin_refresh(self) -> None:
        self._change_during_refresh = False
        self._set_state(RefreshState.REFRESHING)

    def complete_refresh(self, success: bool) -> None:
        if success and self._change_during_refresh:
            self._set_state(RefreshState.CHANGE_OBSERVED)
        else:
            if not success:
                self.last_change = None
            self._set_state(RefreshState.IDLE)
        self._change_during_refresh = False

    def retry_later(self) -> None:
        """Leave the refresh authorized so the next attempt needs no new change."""

        self._change_during_refresh = False
        self._set_state(RefreshState.READY)

    def _elapsed(self, now: float) -> float:
        if self.last_change is None:
            return 0.0
        return now - self.last_change

    def _set_state(self, state: RefreshState) -> None:
        if state is not self.state:
            logger.debug("Refresh state %s -> %s", self.state.value, state.value)
            self.state = state
