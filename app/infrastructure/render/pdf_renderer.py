# app/infrastructure/render/pdf_renderer.py
import asyncio
import logging
import math
import time
from contextlib import asynccontextmanager
from concurrent.futures import Executor
from typing import AsyncContextManager, Callable, Dict, Optional, Tuple

from playwright.async_api import async_playwright

from app.infrastructure.storage.artifact_store import ArtifactStore, StorageError

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter('%(asctime)s [%(levelname)s] [PDF] %(message)s', '%Y-%m-%d %H:%M:%S')
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False

# Intrinsic size of the first <svg>: viewBox first, then width/height attributes
MEASURE_SVG_JS = """
() => {
  const svg = document.querySelector('svg');
  if (!svg) return null;
  const vb = svg.viewBox && svg.viewBox.baseVal;
  if (vb && vb.width > 0 && vb.height > 0) {
    return { width: vb.width, height: vb.height };
  }
  const w = parseFloat(svg.getAttribute('width'));
  const h = parseFloat(svg.getAttribute('height'));
  if (w > 0 && h > 0) {
    return { width: w, height: h };
  }
  return null;
}
"""

CHROMIUM_ARGS = ["--no-sandbox", "--disable-setuid-sandbox", "--disable-dev-shm-usage"]


class RenderError(Exception):
    pass


@asynccontextmanager
async def chromium_browser():
    """Launch a fresh headless Chromium; it is closed on every exit path."""
    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=True, args=CHROMIUM_ARGS)
        try:
            yield browser
        finally:
            await browser.close()


def pdf_page_size(width: float, height: float, padding: int) -> Dict[str, str]:
    return {
        "width": f"{math.ceil(width + 2 * padding)}px",
        "height": f"{math.ceil(height + 2 * padding)}px",
    }


class PdfRenderer:
    def __init__(
        self,
        browser_factory: Callable[[], AsyncContextManager] = chromium_browser,
        navigation_timeout_ms: int = 30000,
        render_timeout_ms: int = 10000,
        padding: int = 20,
        default_size: Tuple[int, int] = (800, 600),
    ):
        self.browser_factory = browser_factory
        self.navigation_timeout_ms = navigation_timeout_ms
        self.render_timeout_ms = render_timeout_ms
        self.padding = padding
        self.default_size = default_size

    async def _measure(self, page) -> Tuple[float, float]:
        dims = await page.evaluate(MEASURE_SVG_JS)
        if not dims:
            logger.info(f"SVG has no intrinsic size, using default {self.default_size}")
            return self.default_size
        return float(dims["width"]), float(dims["height"])

    async def render(self, url: str) -> bytes:
        start = time.perf_counter()
        try:
            async with self.browser_factory() as browser:
                page = await browser.new_page()
                await page.goto(url, wait_until="networkidle", timeout=self.navigation_timeout_ms)
                await page.wait_for_selector("svg", timeout=self.render_timeout_ms)

                width, height = await self._measure(page)
                await page.set_viewport_size({
                    "width": math.ceil(width + 2 * self.padding),
                    "height": math.ceil(height + 2 * self.padding),
                })
                margin = f"{self.padding}px"
                pdf_bytes = await page.pdf(
                    **pdf_page_size(width, height, self.padding),
                    margin={"top": margin, "right": margin, "bottom": margin, "left": margin},
                    print_background=True,
                    page_ranges="1",
                )
        except Exception as e:
            raise RenderError(f"Rendering {url} failed: {type(e).__name__}: {e}") from e

        logger.info(f"Rendered {url} ({width:.0f}x{height:.0f}) in {time.perf_counter() - start:.2f}s")
        return pdf_bytes

    async def export(self, url: str, file_id: str, store: ArtifactStore, executor: Optional[Executor] = None) -> bool:
        """Render ``url`` and attach the PDF to ``file_id``. False on any failure."""
        try:
            pdf_bytes = await self.render(url)
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(executor, store.attach_rendered_pdf, file_id, pdf_bytes)
            return True
        except (RenderError, StorageError) as e:
            logger.error(f"PDF export failed for {file_id}: {e}")
            return False
