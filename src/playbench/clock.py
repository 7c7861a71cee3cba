"""
Virtual clock controlling the page's notion of current time.

The clock is pinned with freeze(), moved only by advance(), and released by
unfreeze(). The page observes it through an init script that replaces Date
with a pinned source; later changes are pushed into a live page with the sync
script.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import structlog

from playbench.errors import ClockError

logger = structlog.get_logger(__name__)

# Installed before any page script runs. Reads window.__playbenchClock so the
# harness can re-pin a live page without reloading it. Registering it again
# only updates the state, so the latest registration wins.
_INIT_SCRIPT = """
(() => {
  const state = %(state)s;
  if (window.__playbenchClock) {
    window.__playbenchClock.frozen = state.frozen;
    window.__playbenchClock.now = state.now;
    return;
  }
  const NativeDate = Date;
  const current = () => (state.frozen ? state.now : NativeDate.now());
  function PinnedDate(...args) {
    if (!new.target) {
      return new NativeDate(current()).toString();
    }
    if (args.length === 0) {
      return new NativeDate(current());
    }
    return new NativeDate(...args);
  }
  PinnedDate.now = current;
  PinnedDate.UTC = NativeDate.UTC;
  PinnedDate.parse = NativeDate.parse;
  PinnedDate.prototype = NativeDate.prototype;
  Object.defineProperty(window, "__playbenchClock", { value: state, configurable: false });
  window.Date = PinnedDate;
})();
"""

_SYNC_SCRIPT = """
(state) => {
  if (window.__playbenchClock) {
    window.__playbenchClock.frozen = state.frozen;
    window.__playbenchClock.now = state.now;
  }
}
"""


def to_datetime(value: datetime | str | int | float) -> datetime:
    """Normalise an instant to an aware UTC datetime."""
    if isinstance(value, datetime):
        return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)
    if isinstance(value, int | float):
        return datetime.fromtimestamp(value / 1000, tz=UTC)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise ClockError(f"Invalid clock instant: {value!r}") from e
    return parsed.replace(tzinfo=UTC) if parsed.tzinfo is None else parsed.astimezone(UTC)


class VirtualClock:
    """Scenario-scoped controllable time source."""

    def __init__(self) -> None:
        self._frozen_at: datetime | None = None
        self._log = logger.bind(component="virtual_clock")

    @property
    def is_frozen(self) -> bool:
        return self._frozen_at is not None

    def freeze(self, at: datetime | str | int | float) -> datetime:
        """Pin the current time at the given instant."""
        self._frozen_at = to_datetime(at)
        self._log.debug("Clock frozen", at=self._frozen_at.isoformat())
        return self._frozen_at

    def advance(self, duration: timedelta | int | float) -> datetime:
        """Move the pinned instant forward; duration numbers are milliseconds."""
        if self._frozen_at is None:
            raise ClockError("Cannot advance a clock that is not frozen")
        delta = duration if isinstance(duration, timedelta) else timedelta(milliseconds=duration)
        if delta < timedelta(0):
            raise ClockError("Clock can only move forward", observed=str(delta))
        self._frozen_at += delta
        self._log.debug("Clock advanced", by_ms=delta / timedelta(milliseconds=1), at=self._frozen_at.isoformat())
        return self._frozen_at

    def unfreeze(self) -> None:
        self._frozen_at = None

    def reset(self) -> None:
        """Return to the initial, unfrozen state."""
        self._frozen_at = None

    def now(self) -> datetime:
        """Current instant as the page sees it."""
        return self._frozen_at if self._frozen_at is not None else datetime.now(UTC)

    def epoch_ms(self) -> int:
        return int(self.now().timestamp() * 1000)

    def state(self) -> dict[str, int | bool]:
        """Serializable state consumed by the page scripts."""
        return {"frozen": self.is_frozen, "now": self.epoch_ms() if self.is_frozen else 0}

    def init_script(self) -> str:
        """Script that installs the pinned Date before page scripts run."""
        return _INIT_SCRIPT % {"state": json.dumps(self.state())}

    @staticmethod
    def sync_script() -> str:
        """Function source that re-pins an already loaded page; takes state()."""
        return _SYNC_SCRIPT
