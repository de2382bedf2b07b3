"""Headless rendering through a locally spawned Chromium.

The browser is started as a child process on an OS-assigned debugging port
(read back from DevToolsActivePort) and driven over CDP, so the session owns
the process and can kill it outright if a graceful shutdown hangs. One
RenderSession holds at most one browser; callers scope it with `with`.
"""

import os
import shutil
import subprocess
import sys
import tempfile
import time

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from backend.config import get_float, get_int, get_list, get_str

KNOWN_BROWSER_PATHS = tuple(
    get_list(
        "CHROME_CANDIDATES",
        [
            "/usr/bin/google-chrome-stable",
            "/usr/bin/google-chrome",
            "/usr/bin/chromium-browser",
            "/usr/bin/chromium",
        ],
    )
)
LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-zygote",
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-blink-features=AutomationControlled",
]
RENDER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/122.0.0.0 Safari/537.36"
)

RENDER_TIMEOUT_MS = get_int("RENDER_TIMEOUT_MS", 30000) or 30000
RENDER_WAIT_UNTIL = get_str("RENDER_WAIT_UNTIL", "networkidle")
LAUNCH_TIMEOUT_SEC = get_float("RENDER_LAUNCH_TIMEOUT_SEC", 15.0) or 15.0
CLOSE_TIMEOUT_SEC = get_float("RENDER_CLOSE_TIMEOUT_SEC", 5.0) or 5.0
CONSENT_WAIT_MS = 800
CONSENT_CLICK_TIMEOUT_MS = 2000


class RenderEnvironmentError(RuntimeError):
    """The browser could not be started or reached.

    `bundled` is set when the failed launch already used Playwright's own
    browser, so retrying without an explicit binary would repeat it.
    """

    def __init__(self, code: str, detail: str = "", bundled: bool = False):
        self.code = code
        self.bundled = bundled
        super().__init__(f"{code}: {detail}" if detail else code)


class RenderError(RuntimeError):
    """The browser ran but this page could not be read."""

    def __init__(self, code: str, detail: str = ""):
        self.code = code
        super().__init__(f"{code}: {detail}" if detail else code)


def find_browser_executable(candidates=None) -> str | None:
    paths = []
    override = get_str("CHROME_PATH")
    if override:
        paths.append(override)
    paths.extend(KNOWN_BROWSER_PATHS if candidates is None else candidates)
    for path in paths:
        if path and os.path.isfile(path) and os.access(path, os.X_OK):
            return path
    return None


def _read_devtools_port(path: str) -> int | None:
    """Chrome writes the port it bound to as the first line of this file."""
    try:
        with open(path, encoding="utf-8") as f:
            first = f.readline().strip()
    except OSError:
        return None
    return int(first) if first.isdigit() else None


class RenderSession:
    def __init__(
        self,
        executable_path: str | None = None,
        *,
        playwright_factory=sync_playwright,
        popen=subprocess.Popen,
        launch_timeout: float = LAUNCH_TIMEOUT_SEC,
        close_timeout: float = CLOSE_TIMEOUT_SEC,
    ):
        self.executable_path = executable_path
        self._playwright_factory = playwright_factory
        self._popen = popen
        self.launch_timeout = launch_timeout
        self.close_timeout = close_timeout
        self._pw = None
        self._proc = None
        self._browser = None
        self._profile_dir = None

    def __enter__(self):
        try:
            self._start()
        except RenderEnvironmentError as e:
            e.bundled = self.executable_path is None
            self.close()
            raise
        except BaseException:
            self.close()
            raise
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def _start(self) -> None:
        try:
            self._pw = self._playwright_factory().start()
        except PlaywrightError as e:
            raise RenderEnvironmentError("driver_unavailable", str(e)) from e

        executable = self.executable_path or self._pw.chromium.executable_path
        if not executable or not os.path.exists(executable):
            raise RenderEnvironmentError("browser_missing", executable or "")

        self._profile_dir = tempfile.mkdtemp(prefix="render-profile-")
        args = [
            executable,
            "--headless=new",
            "--remote-debugging-port=0",
            f"--user-data-dir={self._profile_dir}",
            *LAUNCH_ARGS,
            "about:blank",
        ]
        try:
            self._proc = self._popen(args, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except OSError as e:
            raise RenderEnvironmentError("launch_failed", str(e)) from e

        port_file = os.path.join(self._profile_dir, "DevToolsActivePort")
        deadline = time.monotonic() + self.launch_timeout
        last_err = None
        while time.monotonic() < deadline:
            if self._proc.poll() is not None:
                raise RenderEnvironmentError("browser_exited", f"code={self._proc.returncode}")
            port = _read_devtools_port(port_file)
            if port is None:
                time.sleep(0.1)
                continue
            try:
                self._browser = self._pw.chromium.connect_over_cdp(f"http://127.0.0.1:{port}", timeout=2000)
                return
            except PlaywrightError as e:
                last_err = e
                time.sleep(0.25)
        raise RenderEnvironmentError("connect_timeout", str(last_err or ""))

    def _dismiss_consent(self, page, selectors) -> bool:
        for selector in selectors or ():
            try:
                button = page.query_selector(selector)
                if button is None or not button.is_visible():
                    continue
                button.click(timeout=CONSENT_CLICK_TIMEOUT_MS)
                page.wait_for_timeout(CONSENT_WAIT_MS)
                print(f"RENDER_CONSENT_DISMISSED selector={selector!r}")
                return True
            except PlaywrightError as e:
                print(
                    f"RENDER_CONSENT_FAIL selector={selector!r} err={type(e).__name__}",
                    file=sys.stderr,
                )
        return False

    def render(self, url: str, *, consent_selectors=(), timeout_ms: int = RENDER_TIMEOUT_MS) -> str:
        if self._browser is None:
            raise RenderError("session_closed")
        try:
            context = self._browser.new_context(
                user_agent=RENDER_USER_AGENT,
                locale="en-US",
                viewport={"width": 1280, "height": 800},
                extra_http_headers={"Accept-Language": "en-US,en;q=0.9"},
            )
        except PlaywrightError as e:
            raise RenderError("context_failed", str(e)) from e
        try:
            page = context.new_page()
            try:
                page.goto(url, wait_until=RENDER_WAIT_UNTIL, timeout=timeout_ms)
            except PlaywrightTimeoutError:
                # keep whatever has loaded so far
                print(f"RENDER_NAV_TIMEOUT url={url} timeout_ms={timeout_ms}")
            except PlaywrightError as e:
                raise RenderError("navigation_failed", str(e)) from e
            self._dismiss_consent(page, consent_selectors)
            try:
                return page.content()
            except PlaywrightError as e:
                raise RenderError("content_unavailable", str(e)) from e
        finally:
            try:
                context.close()
            except PlaywrightError as e:
                print(f"RENDER_CONTEXT_CLOSE_FAIL err={type(e).__name__}", file=sys.stderr)

    def close(self) -> None:
        proc, self._proc = self._proc, None
        if proc is not None and proc.poll() is None:
            proc.terminate()
            try:
                proc.wait(timeout=self.close_timeout)
            except subprocess.TimeoutExpired:
                print(f"RENDER_FORCE_KILL pid={proc.pid}", file=sys.stderr)
                proc.kill()
                try:
                    proc.wait(timeout=self.close_timeout)
                except subprocess.TimeoutExpired:
                    print(f"RENDER_KILL_TIMEOUT pid={proc.pid}", file=sys.stderr)
        browser, self._browser = self._browser, None
        if browser is not None:
            try:
                browser.close()
            except PlaywrightError as e:
                print(f"RENDER_DISCONNECT_FAIL err={type(e).__name__}", file=sys.stderr)
        pw, self._pw = self._pw, None
        if pw is not None:
            try:
                pw.stop()
            except PlaywrightError as e:
                print(f"RENDER_DRIVER_STOP_FAIL err={type(e).__name__}", file=sys.stderr)
        profile_dir, self._profile_dir = self._profile_dir, None
        if profile_dir:
            shutil.rmtree(profile_dir, ignore_errors=True)


def render_page(
    url: str,
    *,
    consent_selectors=(),
    timeout_ms: int = RENDER_TIMEOUT_MS,
    use_bundled: bool = False,
) -> str:
    """Render one page in a fresh browser and return its HTML.

    `use_bundled` skips the system browser search and uses the browser that
    ships with Playwright.
    """
    executable = None if use_bundled else find_browser_executable()
    with RenderSession(executable) as session:
        return session.render(url, consent_selectors=consent_selectors, timeout_ms=timeout_ms)
