# app/delivery/api/export.py
from datetime import datetime, timezone
from typing import List, Tuple

from fastapi import APIRouter, Request, Depends, HTTPException, Query, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from fastapi.responses import FileResponse, Response
from app.config.settings import settings
from app.delivery.schemas.body import DownloadStatus, ExportResult, PlaceholderData, PlaceholderResponse
from app.domain.export_service import ExportFailedError, ExportService, TemplateNotFoundError, is_safe_filename
from app.infrastructure.database.template_repository import TemplateRepository, get_template_repository
from app.infrastructure.svg.placeholders import normalize_field_name
import secrets
import logging
import traceback
import asyncio

router = APIRouter()
security = HTTPBasic()
logger = logging.getLogger("uvicorn.error")

ENDPOINT_TIMEOUT_SECONDS = 55
NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

def verify_basic_auth(creds: HTTPBasicCredentials = Depends(security)) -> None:
    ok_user = secrets.compare_digest(creds.username, settings.BASIC_AUTH_USERNAME)
    ok_pass = secrets.compare_digest(creds.password, settings.BASIC_AUTH_PASSWORD)
    if not (ok_user and ok_pass):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Basic"},
        )

def query_fields(items) -> List[Tuple[str, str]]:
    # raw key first so mixed-case tokens match, then its upper-snake-case form
    fields = []
    seen = set()
    for key, value in items:
        for name in (key, normalize_field_name(key)):
            if name not in seen:
                seen.add(name)
                fields.append((name, value))
    return fields

def get_export_service(request: Request) -> ExportService:
    service = getattr(request.app.state, "export_service", None)
    if service is None:
        logger.error("Export service not initialized")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is not ready. Please try again in a moment.",
        )
    return service

@router.get("/design/{template_id}/edit/{slot}", response_model=ExportResult, dependencies=[Depends(verify_basic_auth)])
async def customize_design(
    request: Request,
    template_id: str,
    slot: str,
    repo: TemplateRepository = Depends(get_template_repository),
    service: ExportService = Depends(get_export_service),
):
    request_id = f"{template_id}/{slot}"
    logger.info(f"=== ENDPOINT START for {request_id} ===")

    fields = query_fields(request.query_params.multi_items())
    if not fields:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No field values supplied")

    try:
        svg_ref = await repo.get_svg_ref(template_id, slot)
        if not svg_ref:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="SVG template not found")

        try:
            result = await asyncio.wait_for(
                service.customize_and_export(template_id, slot, svg_ref, fields),
                timeout=ENDPOINT_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.error(f"=== ENDPOINT TIMEOUT for {request_id} after {ENDPOINT_TIMEOUT_SECONDS}s ===")
            raise HTTPException(status_code=504, detail="PDF export timed out")

        logger.info(f"=== ENDPOINT SUCCESS for {request_id} ===")
        return ExportResult(
            downloadUrl=result["download_url"],
            downloadId=result["download_id"],
            expiresIn=result["expires_in"],
            skippedFonts=result["skipped_fonts"],
        )

    except HTTPException:
        raise
    except TemplateNotFoundError as e:
        logger.warning(f"[{request_id}] {e}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="SVG file not found")
    except ExportFailedError as e:
        logger.error(f"[{request_id}] {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not produce the PDF",
        )
    except Exception as e:
        logger.error(f"=== ENDPOINT ERROR for {request_id}: {e} ===\n{traceback.format_exc()}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        )

@router.get("/download/{file_id}")
async def download(file_id: str, service: ExportService = Depends(get_export_service)):
    logger.info(f"Download requested for: {file_id}")
    stored = await service.fetch_download(file_id)
    if stored is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="PDF file not found or expired")

    return FileResponse(
        stored.path,
        media_type=stored.content_type,
        filename=stored.filename,
        headers=NO_CACHE_HEADERS,
    )

@router.get("/download/{file_id}/status", response_model=DownloadStatus)
async def download_status(file_id: str, service: ExportService = Depends(get_export_service)):
    return DownloadStatus(fileId=file_id, ready=await service.is_ready(file_id))

@router.get("/svg/props", response_model=PlaceholderResponse)
async def svg_placeholders(
    filename: str = Query(None),
    service: ExportService = Depends(get_export_service),
):
    if not filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing filename query parameter")
    if not filename.endswith(".svg") or not is_safe_filename(filename):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File must be a .svg file")

    labels = await service.template_placeholders(filename)
    if labels is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")

    return PlaceholderResponse(
        data=PlaceholderData(
            filename=filename,
            placeholders=labels,
            totalPlaceholders=len(labels),
            requestedAt=datetime.now(timezone.utc).isoformat(),
        )
    )

@router.get("/svg/{file}")
async def template_svg(file: str, service: ExportService = Depends(get_export_service)):
    if not is_safe_filename(file):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid file name")

    svg = await service.render_template_svg(file)
    if svg is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="SVG not found")

    return Response(
        content=svg,
        media_type="image/svg+xml; charset=utf-8",
        headers={"Cache-Control": "public, max-age=3600", "Content-Disposition": "inline"},
    )
