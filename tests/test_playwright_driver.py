import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

from batchpilot.playwright_driver import PlaywrightDriver, _exact_text_pattern
from batchpilot.step_script import Target


def _open_driver(**kwargs) -> tuple[PlaywrightDriver, MagicMock]:
    pw = MagicMock()
    starter = MagicMock()
    starter.start.return_value = pw
    driver = PlaywrightDriver(**kwargs)
    with patch("playwright.sync_api.sync_playwright", return_value=starter):
        driver.open("https://gamma.app/", label="launch")
    return driver, pw


class PlaywrightDriverTests(unittest.TestCase):
    def test_launch_opens_one_page_and_close_releases_everything(self) -> None:
        driver, pw = _open_driver(headless=True)
        browser = pw.chromium.launch.return_value
        context = browser.new_context.return_value
        page = context.new_page.return_value
        pw.chromium.launch.assert_called_once_with(headless=True)
        context.new_page.assert_called_once()
        page.goto.assert_called_once_with("https://gamma.app/", wait_until="domcontentloaded")

        driver.close()
        page.close.assert_called_once()
        context.close.assert_called_once()
        browser.close.assert_called_once()
        pw.stop.assert_called_once()
        with self.assertRaises(RuntimeError):
            driver.current_url()

    def test_cdp_attach_keeps_user_browser_open(self) -> None:
        driver, pw = _open_driver(cdp_url="http://127.0.0.1:9222")
        browser = pw.chromium.connect_over_cdp.return_value
        page = browser.contexts[0].new_page.return_value
        driver.close()
        page.close.assert_called_once()
        browser.close.assert_not_called()
        pw.stop.assert_called_once()

    def test_close_collects_release_errors(self) -> None:
        driver, pw = _open_driver()
        page = pw.chromium.launch.return_value.new_context.return_value.new_page.return_value
        page.close.side_effect = RuntimeError("target closed")
        with self.assertRaises(RuntimeError) as ctx:
            driver.close()
        self.assertIn("page: target closed", str(ctx.exception))
        pw.stop.assert_called_once()

    def test_locate_returns_none_when_absent(self) -> None:
        driver, pw = _open_driver()
        page = pw.chromium.launch.return_value.new_context.return_value.new_page.return_value
        page.locator.return_value.first.count.return_value = 0
        self.assertIsNone(driver.locate(Target(selector="#missing")))
        page.locator.return_value.first.count.return_value = 1
        handle = driver.locate(Target(text="Add new with AI"))
        self.assertIs(handle, page.locator.return_value.first)
        page.locator.assert_called_with("p, span, button", has_text="Add new with AI")

    def test_exact_text_pattern(self) -> None:
        pattern = _exact_text_pattern("Rename")
        self.assertTrue(pattern.match("  Rename "))
        self.assertFalse(pattern.match("Rename..."))

    def test_chunked_insertion_types_in_slices(self) -> None:
        driver, pw = _open_driver()
        page = pw.chromium.launch.return_value.new_context.return_value.new_page.return_value
        handle = MagicMock()
        driver.insert_content(handle, "x" * 250, strategy="chunked")
        chunks = [c.args[0] for c in page.keyboard.insert_text.call_args_list]
        self.assertEqual([len(c) for c in chunks], [100, 100, 50])
        with self.assertRaises(ValueError):
            driver.insert_content(handle, "x", strategy="paste")

    def test_download_saved_under_item_base_name(self) -> None:
        with tempfile.TemporaryDirectory(dir=".") as tmp:
            messages: list[str] = []
            driver, _pw = _open_driver(downloads_dir=Path(tmp), log=messages.append)
            download = MagicMock()
            download.suggested_filename = "Untitled-export.zip"
            driver._on_download(download)
            download.save_as.assert_called_once_with(str(Path(tmp) / "launch.zip"))
            self.assertTrue(messages[-1].startswith("download saved"))


if __name__ == "__main__":
    unittest.main()
