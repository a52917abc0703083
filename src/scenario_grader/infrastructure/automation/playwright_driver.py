"""
Playwright automation driver for VS Code.

Attaches to a running editor through its DevTools endpoint
(``connect_over_cdp``). Playwright's sync API is bound to the thread that
started it, so every call is marshalled onto one dedicated worker thread;
the orchestrator and the capture worker can then share a driver safely.
"""

import base64
import logging
import re
import sys
import time
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Locator, Page, sync_playwright
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from scenario_grader.domain.exceptions import (
    ProvisionError,
    StepExecutionError,
    StepTimeoutError,
)
from scenario_grader.domain.interfaces import AutomationDriverInterface
from scenario_grader.domain.models import Observation

logger = logging.getLogger(__name__)

MOD = "Meta" if sys.platform == "darwin" else "Control"
TYPE_DELAY_MS = 30
LOCATE_WINDOW = 5.0  # Seconds spent polling for a target before a transient failure
CALL_GRACE = 2.0  # Seconds past a step timeout before an unanswered call is abandoned

TRANSIENT_PATTERNS = re.compile(
    r"element is not (attached|visible|enabled|stable)"
    r"|waiting for selector"
    r"|target closed"
    r"|execution context was destroyed"
    r"|frame was detached"
    r"|element not found",
    re.IGNORECASE,
)

WORKBENCH_SELECTOR = ".monaco-workbench"
QUICK_INPUT_SELECTOR = ".quick-input-widget"


def _selector_strategies(target: str) -> list[str]:
    """Selector first, then text / aria-label / title / role variants."""
    quoted = target.replace('"', '\\"')
    return [
        target,
        f'text="{quoted}"',
        f'[aria-label="{quoted}"]',
        f'[aria-label*="{quoted}"]',
        f'[title="{quoted}"]',
        f'[title*="{quoted}"]',
        f'role=button[name="{quoted}"]',
        f'role=tab[name="{quoted}"]',
        f'[data-testid="{quoted}"]',
    ]


def is_transient(error: Exception) -> bool:
    return bool(TRANSIENT_PATTERNS.search(str(error)))


class PlaywrightDriver(AutomationDriverInterface):
    """Drives one VS Code window over the Chrome DevTools Protocol."""

    def __init__(self, cdp_url: str, connect_timeout: float = 30.0):
        """
        Args:
            cdp_url: DevTools endpoint, e.g. http://127.0.0.1:9222

        Raises:
            ProvisionError: If the editor window cannot be attached
        """
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="playwright")
        self._closed = False
        self._playwright: Any = None
        self._browser: Any = None
        self._page: Page | None = None
        try:
            self._executor.submit(self._connect, cdp_url, connect_timeout).result()
        except Exception as e:
            self._executor.submit(self._disconnect).result()
            self._executor.shutdown(wait=True)
            raise ProvisionError(f"Cannot attach to editor at {cdp_url}: {e}") from e

    # ------------------------------------------------------------------
    # Worker-thread internals
    # ------------------------------------------------------------------

    def _connect(self, cdp_url: str, timeout: float) -> None:
        self._playwright = sync_playwright().start()
        self._browser = self._playwright.chromium.connect_over_cdp(
            cdp_url, timeout=timeout * 1000
        )
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            for context in self._browser.contexts:
                for page in context.pages:
                    if page.query_selector(WORKBENCH_SELECTOR):
                        self._page = page
                        logger.debug("Attached to editor window %s", page.url)
                        return
            time.sleep(0.25)
        raise TimeoutError(f"no editor workbench window within {timeout:g}s")

    def _disconnect(self) -> None:
        if self._browser is not None:
            try:
                self._browser.close()
            except PlaywrightError as e:
                logger.debug("Browser already closed: %s", e)
        if self._playwright is not None:
            self._playwright.stop()
        self._browser = None
        self._playwright = None
        self._page = None

    @property
    def _p(self) -> Page:
        if self._page is None:
            raise StepExecutionError("driver is not attached to an editor window")
        return self._page

    def _call(self, fn: Callable[..., Any], *args: Any, timeout: float = 0.0) -> Any:
        if self._closed:
            raise StepExecutionError("driver is closed")

        def guarded() -> Any:
            try:
                return fn(*args)
            except PlaywrightTimeoutError as e:
                raise StepTimeoutError(str(e).splitlines()[0], timeout=timeout) from e
            except PlaywrightError as e:
                raise StepExecutionError(str(e).splitlines()[0], transient=is_transient(e)) from e

        future = self._executor.submit(guarded)
        try:
            return future.result(timeout=timeout + CALL_GRACE if timeout else None)
        except TimeoutError as e:
            future.cancel()
            raise StepTimeoutError(
                f"editor did not respond within {timeout:g}s", timeout=timeout
            ) from e

    def _locate(self, target: str, window: float) -> Locator | None:
        deadline = time.monotonic() + window
        while True:
            for selector in _selector_strategies(target):
                try:
                    locator = self._p.locator(selector).first
                    if locator.count() > 0 and locator.is_visible():
                        return locator
                except PlaywrightError:
                    continue  # Not a valid selector in this engine
            if time.monotonic() >= deadline:
                return None
            time.sleep(0.1)

    def _require(self, target: str | None, timeout: float) -> Locator:
        if not target:
            raise StepExecutionError("action needs a target")
        locator = self._locate(target, min(timeout, LOCATE_WINDOW))
        if locator is None:
            raise StepExecutionError(f"Element not found: {target!r}", transient=True)
        return locator

    def _press(self, keys: str) -> None:
        self._p.keyboard.press(keys)

    def _type(self, text: str) -> None:
        self._p.keyboard.type(text, delay=TYPE_DELAY_MS)

    def _wait_visible(self, selector: str, ms: float) -> None:
        self._p.wait_for_selector(selector, state="visible", timeout=ms)

    def _do_action(
        self, action: str, target: str | None, params: Mapping[str, Any], timeout: float
    ) -> str:
        ms = timeout * 1000

        if action == "openCommandPalette":
            self._press(f"{MOD}+Shift+P")
            self._wait_visible(QUICK_INPUT_SELECTOR, ms)
        elif action == "openCopilotChat":
            self._press(f"{MOD}+Shift+I" if MOD == "Meta" else f"{MOD}+Alt+I")
            self._wait_visible(params.get("selector", ".interactive-input-part"), ms)
        elif action == "openInlineChat":
            self._press(f"{MOD}+I")
            self._wait_visible(params.get("selector", ".inline-chat"), ms)
        elif action == "sendChatMessage":
            self._type(str(params["message"]))
            self._press("Enter")
            if params.get("wait_for_response"):
                self._wait_visible(".interactive-response:not(.chat-response-loading)", ms)
        elif action == "typeText":
            self._type(str(params["text"]))
        elif action == "pressKey":
            self._press(str(params["key"]))
        elif action == "clickElement":
            self._require(params.get("selector") or target, timeout).click(timeout=ms)
        elif action == "hover":
            self._require(params.get("selector") or target, timeout).hover(timeout=ms)
        elif action == "selectFromList":
            for _ in range(int(params.get("index", 0))):
                self._press("ArrowDown")
            self._press("Enter")
        elif action == "selectAll":
            self._press(f"{MOD}+A")
        elif action == "openFile":
            self._press(f"{MOD}+P")
            self._wait_visible(QUICK_INPUT_SELECTOR, ms)
            self._type(str(params["path"]))
            self._press("Enter")
        elif action == "openSettings":
            self._press(f"{MOD}+Comma")
        elif action == "acceptSuggestion":
            self._press("Tab")
        elif action == "runTerminalCommand":
            self._press("Control+Backquote")
            self._wait_visible(".terminal-wrapper", ms)
            self._type(str(params["command"]))
            self._press("Enter")
        elif action == "openExtensionsPanel":
            self._press(f"{MOD}+Shift+X")
            self._wait_visible(".extensions-viewlet", ms)
        elif action == "searchExtensions":
            self._press(f"{MOD}+Shift+X")
            self._wait_visible(".extensions-viewlet", ms)
            self._type(str(params["query"]))
            self._press("Enter")
        else:
            raise StepExecutionError(f"Unsupported action: {action}")
        return f"{action} done"

    def _do_wait(self, target: str | None, params: Mapping[str, Any], timeout: float) -> str:
        duration = params.get("duration")
        if duration is not None:
            seconds = min(float(duration), timeout)
            self._p.wait_for_timeout(seconds * 1000)
            if not target:
                return f"waited {seconds:g}s"
        if target:
            state = params.get("state", "visible")
            self._p.wait_for_selector(target, state=state, timeout=timeout * 1000)
            return f"{target} is {state}"
        return "nothing to wait for"

    def _do_observe(self, target: str, timeout: float) -> Observation:
        locator = self._locate(target, timeout)
        if locator is None:
            return Observation(found=False)
        return Observation(found=True, visible=locator.is_visible(), text=locator.inner_text())

    def _do_screenshot(self, path: Path, method: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        if method == "electron":
            session = self._p.context.new_cdp_session(self._p)
            try:
                data = session.send("Page.captureScreenshot", {"format": "png"})
            finally:
                session.detach()
            path.write_bytes(base64.b64decode(data["data"]))
        elif method == "playwright":
            self._p.screenshot(path=str(path))
        else:
            raise ValueError(f"PlaywrightDriver cannot take {method!r} screenshots")

    # ------------------------------------------------------------------
    # AutomationDriverInterface
    # ------------------------------------------------------------------

    def perform(
        self, action: str, target: str | None, params: Mapping[str, Any], timeout: float
    ) -> str:
        return self._call(self._do_action, action, target, params, timeout, timeout=timeout)

    def wait(self, target: str | None, params: Mapping[str, Any], timeout: float) -> str:
        return self._call(self._do_wait, target, params, timeout, timeout=timeout)

    def observe(self, target: str, timeout: float) -> Observation:
        return self._call(self._do_observe, target, timeout, timeout=timeout)

    def screenshot(self, path: Path, method: str) -> None:
        self._call(self._do_screenshot, path, method)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._executor.submit(self._disconnect).result()
        self._executor.shutdown(wait=True)
