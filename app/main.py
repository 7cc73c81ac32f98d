# app/main.py
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from contextlib import asynccontextmanager
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
import threading
import logging
import os

from app.config.database import check_db
from app.config.settings import settings
from app.delivery.api.export import router
from app.domain.export_service import ExportService
from app.infrastructure.render.pdf_renderer import PdfRenderer
from app.infrastructure.storage.artifact_store import ArtifactStore
from app.infrastructure.svg.fonts import FontMapping

logging.getLogger("asyncio").setLevel(logging.WARNING)
logger = logging.getLogger("uvicorn.error")

# --- Lazy service bootstrap state ---
_service_lock = threading.Lock()


def build_store() -> ArtifactStore:
    return ArtifactStore(
        public_dir=settings.PUBLIC_SVG_DIR,
        private_dir=settings.STORAGE_DIR,
        public_base_url=settings.public_svg_base_url,
        ttl=timedelta(hours=settings.ARTIFACT_TTL_HOURS),
    )


def _ensure_service(app: FastAPI) -> None:
    with _service_lock:  # Always acquire lock first
        if getattr(app.state, "export_service", None) is not None:
            return
        logger.info("Initializing ExportService (lazy-init)...")
        # Font declarations are parsed once here and handed to the service
        font_map = FontMapping.load(settings.FONTS_CSS_PATH, settings.PUBLIC_DIR)
        renderer = PdfRenderer(
            navigation_timeout_ms=settings.NAVIGATION_TIMEOUT_MS,
            render_timeout_ms=settings.RENDER_TIMEOUT_MS,
            padding=settings.PDF_PADDING_PX,
            default_size=(settings.DEFAULT_SVG_WIDTH, settings.DEFAULT_SVG_HEIGHT),
        )
        app.state.export_service = ExportService(
            font_map=font_map,
            store=build_store(),
            renderer=renderer,
            templates_dir=settings.TEMPLATES_DIR,
            download_base_url=settings.download_base_url,
            executor=getattr(app.state, "executor", None),
            request_timeout=settings.REQUEST_TIMEOUT,
        )
        logger.info("Service initialization complete.")

@asynccontextmanager
async def lifespan(app: FastAPI):
    max_workers = min(4, os.cpu_count() or 1)  # Conservative limit
    app.state.executor = ThreadPoolExecutor(max_workers=max_workers)
    build_store().ensure_dirs()
    logger.info(f"'{settings.PROJECT_NAME}' started (mode: {settings.ENVIRONMENT}).")
    logger.info(f"Shared ThreadPoolExecutor created with {max_workers} workers.")
    await check_db()
    yield
    logger.info("Shutting down ThreadPoolExecutor...")
    app.state.executor.shutdown(wait=True)
    logger.info("Service stopped.")

app = FastAPI(
    title="Card Export Service",
    description="Customizes SVG card templates with user fields, embeds their fonts and exports them as PDF",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_HOSTS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Lazy-load only for API routes
@app.middleware("http")
async def lazy_boot(request: Request, call_next):
    if request.url.path.startswith(settings.API_V1_STR):
        _ensure_service(request.app)
    return await call_next(request)

app.include_router(router, prefix=settings.API_V1_STR)

# Customized SVGs must be reachable over HTTP for the headless renderer
app.mount(
    settings.PUBLIC_SVG_URL_PATH,
    StaticFiles(directory=settings.PUBLIC_SVG_DIR, check_dir=False),
    name="temp-svg",
)

@app.get("/")
async def root():
    return {"message": "Card Export Service", "version": "1.0.0", "status": "ok"}

@app.get("/health")
async def health_check():
    ready = getattr(app.state, "export_service", None) is not None
    return {"status": "ok", "service": "Card Export 1.0", "service_ready": ready}
