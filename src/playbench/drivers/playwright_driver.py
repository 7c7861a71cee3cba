"""
Playwright implementation of the driver protocols.

Each page gets its own browser context so cookies, storage, routes and init
scripts never leak between scenarios. Every request of the context is routed
through the scenario's NetworkInterceptor; the virtual clock is installed as
an init script before each navigation.
"""

from __future__ import annotations

import asyncio
import base64
import contextlib
import mimetypes
from pathlib import Path
from typing import TYPE_CHECKING, Iterator, Self

import structlog
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from playbench.clock import VirtualClock
from playbench.config import HarnessConfig
from playbench.dom import ElementState
from playbench.errors import ElementNotFound, HarnessError, NavigationFailure
from playbench.network import InterceptedRequest

if TYPE_CHECKING:
    from playwright.async_api import (
        Browser,
        BrowserContext,
        Download,
        Locator,
        Page,
        Playwright,
        Request,
        Route,
    )

    from playbench.network import NetworkInterceptor

logger = structlog.get_logger(__name__)

# Input types whose value cannot be typed key by key.
_FILL_INPUT_TYPES = frozenset({"date", "datetime-local", "month", "time", "week", "range", "color"})

_QUERY_SCRIPT = """
(elements) => elements.map((el, index) => {
  let depth = 0;
  for (let node = el.parentElement; node; node = node.parentElement) depth++;
  const style = window.getComputedStyle(el);
  const boxed = !!(el.offsetWidth || el.offsetHeight || el.getClientRects().length);
  const hasValue = ["INPUT", "TEXTAREA", "SELECT"].includes(el.tagName);
  const toggles = el.tagName === "INPUT" && ["checkbox", "radio"].includes(el.type);
  const attributes = {};
  for (const attr of el.attributes) attributes[attr.name] = attr.value;
  return {
    tag: el.tagName.toLowerCase(),
    text: (el.textContent || "").replace(/\\s+/g, " ").trim(),
    index,
    depth,
    value: hasValue ? String(el.value) : null,
    visible: boxed && style.visibility !== "hidden",
    checked: toggles ? el.checked : null,
    attributes,
    options: el.tagName === "SELECT"
      ? Array.from(el.options).map((o) => [o.value, o.label || o.text])
      : [],
  };
})
"""

_SET_VALUE_SCRIPT = """
(el, [value, trigger]) => {
  const descriptor = Object.getOwnPropertyDescriptor(Object.getPrototypeOf(el), "value");
  if (descriptor && descriptor.set) {
    descriptor.set.call(el, value);
  } else {
    el.value = value;
  }
  if (trigger) el.dispatchEvent(new Event(trigger, { bubbles: true }));
}
"""

_DROP_FILES_SCRIPT = """
(el, files) => {
  const transfer = new DataTransfer();
  for (const f of files) {
    const bytes = Uint8Array.from(atob(f.data), (c) => c.charCodeAt(0));
    transfer.items.add(new File([bytes], f.name, { type: f.mime }));
  }
  for (const type of ["dragenter", "dragover", "drop"]) {
    el.dispatchEvent(new DragEvent(type, { bubbles: true, cancelable: true, dataTransfer: transfer }));
  }
  if (el.tagName === "INPUT" && el.type === "file") {
    el.files = transfer.files;
    el.dispatchEvent(new Event("input", { bubbles: true }));
    el.dispatchEvent(new Event("change", { bubbles: true }));
  }
}
"""


class _RouteTransport:
    """Adapts a Playwright Route to the interceptor's Transport protocol."""

    def __init__(self, route: Route) -> None:
        self._route = route

    async def fulfill(self, status: int, headers: dict[str, str], body: bytes) -> None:
        await self._route.fulfill(status=status, headers=headers, body=body)

    async def abort(self) -> None:
        await self._route.abort("failed")

    async def forward(self) -> int:
        response = await self._route.fetch()
        await self._route.fulfill(response=response)
        return response.status

    async def continue_(self) -> None:
        await self._route.continue_()


@contextlib.contextmanager
def _translate_errors(action: str, selector: str) -> Iterator[None]:
    try:
        yield
    except PlaywrightTimeoutError as e:
        raise ElementNotFound(
            f"{action} timed out on {selector}",
            expected=f"actionable {selector}",
            observed=str(e).splitlines()[0],
        ) from e
    except PlaywrightError as e:
        raise HarnessError(f"{action} failed on {selector}: {e.message}") from e


class PlaywrightPage:
    """PageDriver over one Playwright page in its own context."""

    def __init__(
        self,
        context: BrowserContext,
        page: Page,
        clock: VirtualClock,
        config: HarnessConfig,
        downloads_dir: Path,
    ) -> None:
        self._context = context
        self._page = page
        self._clock = clock
        self._config = config
        self._downloads_dir = downloads_dir
        self._installed_clock: dict[str, int | bool] | None = None
        self._downloads: set[asyncio.Task[None]] = set()
        self._log = logger.bind(component="playwright_page")
        page.on("download", self._on_download)

    @property
    def url(self) -> str:
        return self._page.url

    def _locator(self, selector: str, index: int) -> Locator:
        return self._page.locator(selector).nth(index)

    @property
    def _action_timeout(self) -> int:
        return self._config.default_timeout_ms

    async def _install_clock(self) -> None:
        state = self._clock.state()
        if state == self._installed_clock or (not state["frozen"] and self._installed_clock is None):
            return
        await self._context.add_init_script(script=self._clock.init_script())
        self._installed_clock = state

    async def goto(self, url: str, timeout_ms: int) -> None:
        await self._install_clock()
        try:
            response = await self._page.goto(url, timeout=timeout_ms)
        except PlaywrightError as e:
            raise NavigationFailure(f"Failed to load {url}: {e.message}", expected=url) from e
        if response is not None and response.status >= 400:
            raise NavigationFailure(
                f"Failed to load {url}: HTTP {response.status}",
                expected="status < 400",
                observed=response.status,
            )

    async def reload(self, timeout_ms: int) -> None:
        await self._install_clock()
        try:
            await self._page.reload(timeout=timeout_ms)
        except PlaywrightError as e:
            raise NavigationFailure(f"Failed to reload {self.url}: {e.message}") from e

    async def query(self, selector: str) -> list[ElementState]:
        try:
            raw = await self._page.eval_on_selector_all(selector, _QUERY_SCRIPT)
        except PlaywrightError as e:
            # Queries race navigations; an empty result is retried by the caller.
            self._log.debug("Query failed", selector=selector, error=e.message)
            return []
        return [
            ElementState(
                tag=item["tag"],
                text=item["text"],
                index=item["index"],
                depth=item["depth"],
                value=item["value"],
                visible=item["visible"],
                checked=item["checked"],
                attributes=item["attributes"],
                options=tuple((value, label) for value, label in item["options"]),
            )
            for item in raw
        ]

    async def click(self, selector: str, index: int) -> None:
        with _translate_errors("click", selector):
            await self._locator(selector, index).click(timeout=self._action_timeout)

    async def type_text(self, selector: str, index: int, text: str) -> None:
        locator = self._locator(selector, index)
        with _translate_errors("type", selector):
            input_type = (await locator.get_attribute("type", timeout=self._action_timeout) or "").lower()
            if input_type in _FILL_INPUT_TYPES:
                await locator.fill(text, timeout=self._action_timeout)
            else:
                await locator.press_sequentially(text, timeout=self._action_timeout)

    async def set_checked(self, selector: str, index: int, checked: bool) -> None:
        with _translate_errors("check" if checked else "uncheck", selector):
            await self._locator(selector, index).set_checked(checked, timeout=self._action_timeout)

    async def select_options(self, selector: str, index: int, values: list[str]) -> list[str]:
        with _translate_errors("select", selector):
            return await self._locator(selector, index).select_option(
                value=values, timeout=self._action_timeout
            )

    async def set_files(self, selector: str, index: int, paths: list[Path], drag_drop: bool) -> None:
        locator = self._locator(selector, index)
        with _translate_errors("upload", selector):
            if not drag_drop:
                await locator.set_input_files(paths, timeout=self._action_timeout)
                return
            files = [
                {
                    "name": path.name,
                    "mime": mimetypes.guess_type(path.name)[0] or "application/octet-stream",
                    "data": base64.b64encode(path.read_bytes()).decode("ascii"),
                }
                for path in paths
            ]
            await locator.evaluate(_DROP_FILES_SCRIPT, files)

    async def set_value(self, selector: str, index: int, value: str, trigger: str | None) -> None:
        with _translate_errors("invoke", selector):
            await self._locator(selector, index).evaluate(_SET_VALUE_SCRIPT, [value, trigger])

    async def blur(self, selector: str, index: int) -> None:
        with _translate_errors("blur", selector):
            await self._locator(selector, index).blur(timeout=self._action_timeout)

    async def sync_clock(self, state: dict[str, int | bool]) -> None:
        if self._installed_clock is None:
            if not state["frozen"]:
                return
            # The page loaded with the native Date, so pin it now and on later navigations.
            await self._install_clock()
            await self._page.evaluate(self._clock.init_script())
            return
        await self._page.evaluate(VirtualClock.sync_script(), state)

    def _on_download(self, download: Download) -> None:
        task = asyncio.create_task(self._save_download(download))
        self._downloads.add(task)
        task.add_done_callback(self._downloads.discard)

    async def _save_download(self, download: Download) -> None:
        target = self._downloads_dir / download.suggested_filename
        try:
            await download.save_as(target)
        except PlaywrightError as e:
            self._log.error("Failed to save download", file=str(target), error=e.message)
            return
        self._log.info("Saved download", file=str(target))

    async def close(self) -> None:
        if self._downloads:
            await asyncio.gather(*self._downloads)
        await self._context.close()


class PlaywrightSession:
    """
    Launched browser handing out isolated pages.

    Usage:
        async with PlaywrightSession(config) as session:
            page = await session.new_page(clock, interceptor, downloads_dir)
    """

    def __init__(self, config: HarnessConfig) -> None:
        self._config = config
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._log = logger.bind(component="playwright_session")

    async def start(self) -> None:
        if self._browser is not None:
            return
        self._playwright = await async_playwright().start()
        browser_type = getattr(self._playwright, str(self._config.browser))
        self._browser = await browser_type.launch(headless=self._config.headless)
        self._log.info(
            "Browser launched",
            browser=str(self._config.browser),
            headless=self._config.headless,
        )

    async def new_page(
        self,
        clock: VirtualClock,
        interceptor: NetworkInterceptor,
        downloads_dir: Path,
    ) -> PlaywrightPage:
        if self._browser is None:
            raise RuntimeError("Session not started")

        context = await self._browser.new_context(accept_downloads=True)

        async def on_route(route: Route, request: Request) -> None:
            intercepted = InterceptedRequest(
                method=request.method,
                url=request.url,
                headers=request.headers,
                body=request.post_data_buffer,
            )
            await interceptor.handle(intercepted, _RouteTransport(route))

        await context.route("**/*", on_route)
        page = await context.new_page()
        page.set_default_navigation_timeout(self._config.page_load_timeout_ms)
        return PlaywrightPage(context, page, clock, self._config, downloads_dir)

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        self._log.info("Browser closed")

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
