"""
Browser driver protocols.

The harness talks to a browser only through these two protocols. Elements are
addressed by (selector, index), the index being the element's position among
all matches of the selector at the time of the call.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from playbench.clock import VirtualClock
    from playbench.dom import ElementState
    from playbench.network import NetworkInterceptor


class PageDriver(Protocol):
    """One isolated page (its own cookies, storage and routes)."""

    @property
    def url(self) -> str: ...

    async def goto(self, url: str, timeout_ms: int) -> None: ...

    async def reload(self, timeout_ms: int) -> None: ...

    async def query(self, selector: str) -> list[ElementState]: ...

    async def click(self, selector: str, index: int) -> None: ...

    async def type_text(self, selector: str, index: int, text: str) -> None: ...

    async def set_checked(self, selector: str, index: int, checked: bool) -> None: ...

    async def select_options(self, selector: str, index: int, values: list[str]) -> list[str]:
        """Select options by value; returns the values now selected."""
        ...

    async def set_files(
        self, selector: str, index: int, paths: list[Path], drag_drop: bool
    ) -> None: ...

    async def set_value(
        self, selector: str, index: int, value: str, trigger: str | None
    ) -> None:
        """Assign the value property directly, then dispatch trigger if given."""
        ...

    async def blur(self, selector: str, index: int) -> None: ...

    async def sync_clock(self, state: dict[str, int | bool]) -> None:
        """Push the virtual clock state into the loaded document."""
        ...

    async def close(self) -> None: ...


class BrowserSession(Protocol):
    """A launched browser able to open isolated pages."""

    async def start(self) -> None: ...

    async def new_page(
        self,
        clock: VirtualClock,
        interceptor: NetworkInterceptor,
        downloads_dir: Path,
    ) -> PageDriver: ...

    async def close(self) -> None: ...
