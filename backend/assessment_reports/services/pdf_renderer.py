"""
Headless-browser rendering of report pages to PDF.

The worker depends on the ReportRenderer protocol, not on Playwright, so
tests can hand it a fake. PlaywrightRenderer is the production
implementation: it loads the report viewer page in headless Chromium,
waits until every report section has rendered, then prints it to an A4 PDF.

The viewer page cooperates through a few markers:
- [data-report-loaded]   set once the report data has been fetched
- [data-report-pages]    optional, the number of sections it will render
- .page-container        one element per printed section
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol
from urllib.parse import quote, urlsplit, urlunsplit

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from assessment_reports.config import settings
from assessment_reports.errors import RenderFailure

logger = logging.getLogger(__name__)

# Section-count polling
POLL_DELAY_SECONDS = 0.5
STABLE_CHECKS = 3
MAX_CHECKS = 10
MAX_CHECKS_WITH_EXPECTED = 20

MIN_VIEWPORT_HEIGHT = 1080

# Flatten the full-screen viewer layout so sections flow onto printed pages
PRINT_CSS = """
.report-view-container, .report-view-container > div {
  position: static !important;
  overflow: visible !important;
  display: block !important;
  height: auto !important;
  max-width: none !important;
  padding-top: 0 !important;
  padding-bottom: 0 !important;
  margin: 0 !important;
}
.page-container { margin-top: 0 !important; margin-bottom: 0 !important; }
.page-container:nth-child(2) { page-break-before: always !important; }
.page-container:first-child, .page-container:last-child { page-break-after: auto !important; }
.page-footer { position: absolute !important; bottom: 0 !important; }
.page-wrapper { padding-bottom: 59px !important; }
"""


class ReportRenderer(Protocol):
    async def render(self, url: str, readiness_selector: str) -> bytes:
        """Render the page at url to PDF bytes."""
        ...


def build_view_url(assignment_id: str, base_url: Optional[str] = None, token: Optional[str] = None) -> str:
    """Signed URL of the report viewer page for one assignment."""
    base_url = (base_url if base_url is not None else settings.APP_BASE_URL).rstrip("/")
    token = token if token is not None else settings.SERVICE_ROLE_TOKEN
    return f"{base_url}/reports/{assignment_id}/view?service_role_token={quote(token, safe='')}"


def redact_url(url: str) -> str:
    """Drop the query string so credentials never reach the logs."""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


async def wait_for_stable_count(
    count_sections: Callable[[], Awaitable[int]],
    expected: Optional[int] = None,
    delay: float = POLL_DELAY_SECONDS,
) -> int:
    """Poll the section count until the page stops adding sections.

    Stops when the expected count is reached, when a non-zero count holds
    for STABLE_CHECKS consecutive polls, or after the check limit.
    Returns the last count seen.
    """
    max_checks = MAX_CHECKS_WITH_EXPECTED if expected else MAX_CHECKS
    count = await count_sections()
    stable = 0
    for _ in range(max_checks):
        if expected and count >= expected:
            break
        await asyncio.sleep(delay)
        new_count = await count_sections()
        if new_count == count and new_count > 0:
            stable += 1
            if stable >= STABLE_CHECKS:
                break
        else:
            stable = 0
        count = new_count
    return count


class PlaywrightRenderer:
    """Renders report pages with headless Chromium."""

    def __init__(
        self,
        page_selector: Optional[str] = None,
        executable_path: Optional[str] = None,
    ):
        self.page_selector = page_selector or settings.PDF_PAGE_SELECTOR
        self.executable_path = executable_path or settings.CHROMIUM_EXECUTABLE_PATH or None

    async def render(self, url: str, readiness_selector: str) -> bytes:
        async with async_playwright() as p:
            browser = await p.chromium.launch(
                headless=True,
                executable_path=self.executable_path,
                args=["--no-sandbox", "--disable-dev-shm-usage"],
            )
            try:
                page = await browser.new_page(
                    viewport={"width": settings.PDF_VIEWPORT_WIDTH, "height": MIN_VIEWPORT_HEIGHT}
                )
                return await self._render_page(page, url, readiness_selector)
            except PlaywrightError as e:
                raise RenderFailure(f"Browser error while rendering: {e}") from e
            finally:
                await browser.close()

    async def _render_page(self, page, url: str, readiness_selector: str) -> bytes:
        logger.info("🌐 Loading %s", redact_url(url))
        await page.goto(url, wait_until="networkidle", timeout=settings.PDF_NAVIGATION_TIMEOUT_MS)

        try:
            await page.wait_for_selector(readiness_selector, timeout=settings.PDF_READY_TIMEOUT_MS)
        except PlaywrightTimeoutError:
            logger.warning("⚠️ Readiness marker %s never appeared, rendering anyway", readiness_selector)

        expected = await self._expected_page_count(page)

        try:
            await page.wait_for_selector(self.page_selector, timeout=settings.PDF_READY_TIMEOUT_MS)
        except PlaywrightTimeoutError:
            preview = (await page.inner_text("body"))[:500]
            raise RenderFailure(f"No {self.page_selector} found. Body preview: {preview}")

        await self._wait_for_images(page)
        count = await wait_for_stable_count(
            lambda: page.locator(self.page_selector).count(), expected
        )

        # Nudge lazy sections into rendering
        await page.evaluate("window.scrollTo(0, document.body.scrollHeight)")
        await asyncio.sleep(POLL_DELAY_SECONDS)
        await page.evaluate("window.scrollTo(0, 0)")
        count = await page.locator(self.page_selector).count()
        if count == 0:
            raise RenderFailure(f"No {self.page_selector} elements found for PDF")
        if expected and count < expected:
            logger.warning("⚠️ Rendering %d of %d expected sections", count, expected)

        await page.add_style_tag(content=PRINT_CSS)
        await page.emulate_media(media="print")

        height = await page.evaluate(
            """(selector) => Array.from(document.querySelectorAll(selector))
                .reduce((total, el) => total + el.getBoundingClientRect().height, 0)""",
            self.page_selector,
        )
        height = min(max(MIN_VIEWPORT_HEIGHT, int(height) + 100), settings.PDF_MAX_VIEWPORT_HEIGHT)
        await page.set_viewport_size({"width": settings.PDF_VIEWPORT_WIDTH, "height": height})

        pdf = await page.pdf(
            format="A4",
            print_background=True,
            margin={"top": "0.5cm", "right": "0.5cm", "bottom": "0.5cm", "left": "0.5cm"},
        )
        if not pdf:
            raise RenderFailure("Renderer produced an empty PDF")
        logger.info("🖨️ Rendered %d sections (%d bytes)", count, len(pdf))
        return pdf

    async def _expected_page_count(self, page) -> Optional[int]:
        marker = await page.query_selector("[data-report-pages]")
        if marker is None:
            return None
        value = await marker.get_attribute("data-report-pages")
        try:
            return int(value) if value else None
        except ValueError:
            return None

    async def _wait_for_images(self, page) -> None:
        await page.evaluate(
            """() => Promise.all(Array.from(document.images)
                .filter((img) => !img.complete)
                .map((img) => new Promise((resolve) => {
                    img.onload = img.onerror = resolve;
                })))"""
        )
