"""UIDriver backed by Playwright's sync API: one browser page per item."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Callable

from batchpilot.constants import CONTENT_CHUNK_PAUSE_MS, CONTENT_CHUNK_SIZE
from batchpilot.step_script import Target, UIDriver


_BUSY_PROBE_JS = """
() => {
  const visible = (el) => {
    if (!el) return false;
    const style = window.getComputedStyle(el);
    return style.display !== 'none' && style.visibility !== 'hidden' &&
      (el.offsetWidth > 0 || el.offsetHeight > 0 || el.getClientRects().length > 0);
  };
  const spinner = document.querySelector(
    '[data-testid*="spinner"], [class*="spinner"], [class*="loading"]'
  );
  const words = ['generating', 'AI generating', 'Creating', 'Loading'];
  const leaves = Array.from(document.querySelectorAll('body *')).filter(
    (el) => el.children.length === 0 && el.textContent
  );
  const text = leaves.find((el) => words.some((w) => el.textContent.includes(w)));
  return visible(spinner) || visible(text);
}
"""

_CONTENT_LENGTH_JS = """
(el) => {
  const raw = (el.value !== undefined && el.value !== null) ? el.value : (el.textContent || '');
  return String(raw).trim().length;
}
"""

_CLEAR_EDITABLE_JS = """
(el) => {
  el.focus();
  if (el.value !== undefined) {
    el.value = '';
  } else {
    el.textContent = '';
  }
  el.dispatchEvent(new Event('input', { bubbles: true }));
}
"""


class PlaywrightDriver(UIDriver):
    """Opens a fresh page (a tab) per item and closes it on release.

    With `cdp_url` the driver attaches to an already running Chromium and
    only closes the page it created, never the user's browser.
    """

    def __init__(
        self,
        *,
        headless: bool = False,
        cdp_url: str = "",
        downloads_dir: Path | None = None,
        log: Callable[[str], None] | None = None,
    ) -> None:
        self.headless = headless
        self.cdp_url = cdp_url
        self.downloads_dir = downloads_dir
        self._log = log
        self._playwright: Any = None
        self._browser: Any = None
        self._context: Any = None
        self._page: Any = None
        self._download_name = ""

    def open(self, url: str, *, label: str = "") -> None:
        from playwright.sync_api import sync_playwright

        self._download_name = label
        self._playwright = sync_playwright().start()
        if self.cdp_url:
            self._browser = self._playwright.chromium.connect_over_cdp(self.cdp_url)
            self._context = self._browser.contexts[0] if self._browser.contexts else self._browser.new_context(
                accept_downloads=True
            )
        else:
            self._browser = self._playwright.chromium.launch(headless=self.headless)
            self._context = self._browser.new_context(accept_downloads=True)
        self._page = self._context.new_page()
        self._page.on("download", self._on_download)
        self._page.goto(url, wait_until="domcontentloaded")

    def close(self) -> None:
        errors: list[str] = []
        page, context, browser, pw = self._page, self._context, self._browser, self._playwright
        self._page = self._context = self._browser = self._playwright = None
        for name, closer in (
            ("page", getattr(page, "close", None)),
            ("context", None if self.cdp_url else getattr(context, "close", None)),
            ("browser", None if self.cdp_url else getattr(browser, "close", None)),
            ("playwright", getattr(pw, "stop", None)),
        ):
            if closer is None:
                continue
            try:
                closer()
            except Exception as exc:
                errors.append(f"{name}: {exc}")
        if errors:
            raise RuntimeError("; ".join(errors))

    def navigate(self, url: str) -> None:
        self._require_page().goto(url, wait_until="domcontentloaded")

    def is_ready(self) -> bool:
        page = self._require_page()
        return page.evaluate("() => document.readyState === 'complete' && !!document.body")

    def locate(self, target: Target) -> Any | None:
        page = self._require_page()
        if target.selector:
            locator = page.locator(target.selector).first
        elif target.exact:
            locator = page.locator(target.scope).filter(
                has_text=_exact_text_pattern(target.text)
            ).first
        else:
            locator = page.locator(target.scope, has_text=target.text).first
        return locator if locator.count() > 0 else None

    def act(self, handle: Any, action: str, value: str = "") -> None:
        if action == "click":
            handle.click()
        elif action == "fill":
            handle.fill(value)
        elif action == "press":
            handle.press(value or "Enter")
        else:
            raise ValueError(f"Unsupported action: {action}")

    def is_enabled(self, handle: Any) -> bool:
        return bool(handle.is_enabled())

    def insert_content(self, handle: Any, text: str, *, strategy: str = "primary") -> None:
        page = self._require_page()
        if strategy == "primary":
            handle.click()
            handle.evaluate(_CLEAR_EDITABLE_JS)
            handle.fill(text)
            return
        if strategy != "chunked":
            raise ValueError(f"Unsupported insertion strategy: {strategy}")
        handle.focus()
        handle.click()
        for start in range(0, len(text), CONTENT_CHUNK_SIZE):
            page.keyboard.insert_text(text[start : start + CONTENT_CHUNK_SIZE])
            page.wait_for_timeout(CONTENT_CHUNK_PAUSE_MS)

    def content_length(self, handle: Any) -> int:
        return int(handle.evaluate(_CONTENT_LENGTH_JS) or 0)

    def is_busy(self) -> bool:
        return bool(self._require_page().evaluate(_BUSY_PROBE_JS))

    def current_url(self) -> str:
        return str(self._require_page().url)

    def _on_download(self, download: Any) -> None:
        if self.downloads_dir is None:
            return
        suggested = str(getattr(download, "suggested_filename", "") or "download")
        suffix = Path(suggested).suffix
        name = f"{self._download_name}{suffix}" if self._download_name else suggested
        target = self.downloads_dir / name
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            download.save_as(str(target))
        except Exception as exc:
            self._emit(f"download save failed for {name}: {exc}")
            return
        self._emit(f"download saved: {target}")

    def _require_page(self) -> Any:
        if self._page is None:
            raise RuntimeError("UI session is not open")
        return self._page

    def _emit(self, message: str) -> None:
        if self._log is not None:
            self._log(message)


def _exact_text_pattern(text: str) -> "re.Pattern[str]":
    return re.compile(rf"^\s*{re.escape(text)}\s*$")
