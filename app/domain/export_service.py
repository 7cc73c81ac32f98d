# app/domain/export_service.py
import logging
import os
import time
import traceback
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional
import asyncio
import aiohttp
import aiofiles
import psutil

from app.infrastructure.render.pdf_renderer import PdfRenderer
from app.infrastructure.storage.artifact_store import ArtifactStore, StorageError, StoredPdf
from app.infrastructure.svg.fonts import FontMapping, embed_fonts
from app.infrastructure.svg.placeholders import FieldValues, customize_svg, extract_placeholder_labels

# --- CONFIG ---
REQUEST_TIMEOUT = 30
EXPIRES_IN = "24 hours"

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter('%(asctime)s [%(levelname)s] %(message)s', '%Y-%m-%d %H:%M:%S')
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False


class TemplateNotFoundError(LookupError):
    pass


class ExportFailedError(RuntimeError):
    pass


def is_safe_filename(name: str) -> bool:
    return bool(name) and ".." not in name and "/" not in name and "\\" not in name


def _memory_mb() -> Optional[float]:
    try:
        return psutil.Process(os.getpid()).memory_info().rss / 1024 / 1024
    except psutil.Error as e:
        logger.warning(f"Could not get memory info: {e}")
        return None


class ExportService:
    def __init__(
        self,
        font_map: FontMapping,
        store: ArtifactStore,
        renderer: PdfRenderer,
        templates_dir: str,
        download_base_url: str,
        executor: Optional[ThreadPoolExecutor] = None,
        request_timeout: int = REQUEST_TIMEOUT,
    ):
        self.font_map = font_map
        self.store = store
        self.renderer = renderer
        self.templates_dir = templates_dir
        self.download_base_url = download_base_url.rstrip("/")
        self.executor = executor
        self.request_timeout = request_timeout

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, fn, *args)

    async def load_svg_template(self, svg_ref: str) -> Optional[str]:
        """Read a template SVG from the templates dir or, for URLs, over HTTP."""
        try:
            if svg_ref.startswith(("http://", "https://")):
                timeout = aiohttp.ClientTimeout(total=self.request_timeout)
                async with aiohttp.ClientSession(timeout=timeout) as session:
                    async with session.get(svg_ref) as response:
                        response.raise_for_status()
                        return await response.text()
            if not is_safe_filename(svg_ref):
                logger.warning(f"Rejected template file name '{svg_ref[:70]}'")
                return None
            path = os.path.join(self.templates_dir, svg_ref)
            if not os.path.isfile(path):
                logger.warning(f"Template SVG not found: {path}")
                return None
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                return await f.read()
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, UnicodeDecodeError) as e:
            logger.warning(f"Failed to load template SVG '{svg_ref[:70]}': {type(e).__name__}")
            return None

    async def render_template_svg(self, svg_ref: str) -> Optional[str]:
        svg = await self.load_svg_template(svg_ref)
        if svg is None:
            return None
        result = await self._run(embed_fonts, svg, self.font_map)
        return result.svg

    async def template_placeholders(self, svg_ref: str) -> Optional[List[str]]:
        svg = await self.load_svg_template(svg_ref)
        if svg is None:
            return None
        return extract_placeholder_labels(svg)

    async def customize_and_export(self, template_id: str, slot: str, svg_ref: str, fields: FieldValues) -> Dict:
        file_id = f"{template_id}-{slot}-{int(time.time() * 1000)}"
        logger.info(f"=== START EXPORT {file_id} ===")
        memory_mb = _memory_mb()
        if memory_mb is not None:
            logger.info(f"Memory usage at start: {memory_mb:.1f}MB for {file_id}")
        overall_start_time = time.perf_counter()

        # STAGE 1: load template
        logger.info(f"Stage 1/4: Loading template SVG '{svg_ref}' for {file_id}")
        svg_template = await self.load_svg_template(svg_ref)
        if svg_template is None:
            raise TemplateNotFoundError(f"SVG file not found for template {template_id} slot {slot}")

        try:
            # STAGE 2: substitute fields and embed fonts
            logger.info(f"Stage 2/4: Customizing SVG ({len(svg_template)} chars) for {file_id}")
            customized = await self._run(customize_svg, svg_template, fields, self.font_map)
            if customized.skipped:
                logger.warning(f"Fonts skipped for {file_id}: {[s.family for s in customized.skipped]}")

            # STAGE 3: store SVG and drop expired artifacts
            logger.info(f"Stage 3/4: Storing customized SVG for {file_id}")
            filename = f"custom-design-{template_id}-{slot}.pdf"
            svg_url = await self._run(self.store.store, file_id, customized.svg, filename)
            await self._run(self.store.sweep)

            # STAGE 4: render
            logger.info(f"Stage 4/4: Rendering PDF from {svg_url}")
            render_start_time = time.perf_counter()
            ok = await self.renderer.export(svg_url, file_id, self.store, self.executor)
            logger.info(f"Stage 4/4: Rendering finished in {time.perf_counter() - render_start_time:.2f}s for {file_id}")
            if not ok:
                raise ExportFailedError(f"Could not produce the PDF for {file_id}")
        except StorageError as e:
            logger.error(f"Storage failure for {file_id}: {e}\n{traceback.format_exc()}")
            raise ExportFailedError(f"Could not produce the PDF for {file_id}") from e

        memory_mb = _memory_mb()
        if memory_mb is not None:
            logger.info(f"Memory after render: {memory_mb:.1f}MB for {file_id}")
        logger.info(f"=== COMPLETED EXPORT {file_id} in {time.perf_counter() - overall_start_time:.2f}s ===")
        return {
            "download_id": file_id,
            "download_url": f"{self.download_base_url}/{file_id}",
            "expires_in": EXPIRES_IN,
            "skipped_fonts": [s.family for s in customized.skipped],
        }

    async def fetch_download(self, file_id: str) -> Optional[StoredPdf]:
        return await self._run(self.store.retrieve, file_id)

    async def is_ready(self, file_id: str) -> bool:
        return await self._run(self.store.is_pdf_ready, file_id)
