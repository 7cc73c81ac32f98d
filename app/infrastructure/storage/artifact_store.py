# app/infrastructure/storage/artifact_store.py
import json
import logging
import os
import re
import tempfile
import threading
import time
import zlib
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter('%(asctime)s [%(levelname)s] [STORE] %(message)s', '%Y-%m-%d %H:%M:%S')
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False

STATUS_SVG_CREATED = "svg_created"
STATUS_PDF_CREATED = "pdf_created"
PDF_CONTENT_TYPE = "application/pdf"

FILE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
LOCK_STRIPES = 64


class StorageError(Exception):
    pass


@dataclass(frozen=True)
class StoredPdf:
    path: Path
    content_type: str
    filename: str


def is_valid_file_id(file_id: str) -> bool:
    return bool(file_id) and FILE_ID_PATTERN.match(file_id) is not None


def _atomic_write(path: Path, data: bytes) -> None:
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise


class ArtifactStore:
    """Temporary SVG/PDF artifacts on disk, keyed by file id.

    SVGs go to ``public_dir`` so the renderer can load them over HTTP;
    PDFs and the JSON metadata records stay in ``private_dir``. Every write
    goes through a temp file and ``os.replace``, serialised per file id.
    """

    def __init__(
        self,
        public_dir,
        private_dir,
        public_base_url: str,
        ttl: timedelta = timedelta(hours=24),
        clock: Callable[[], float] = time.time,
    ):
        self.public_dir = Path(public_dir)
        self.private_dir = Path(private_dir)
        self.public_base_url = public_base_url.rstrip("/")
        self.ttl = ttl
        self.clock = clock
        self._locks = [threading.Lock() for _ in range(LOCK_STRIPES)]

    def ensure_dirs(self) -> None:
        self.public_dir.mkdir(parents=True, exist_ok=True)
        self.private_dir.mkdir(parents=True, exist_ok=True)

    def _lock_for(self, file_id: str) -> threading.Lock:
        # fixed stripe per id, shared by every caller for the lifetime of the store
        return self._locks[zlib.crc32(file_id.encode("utf-8")) % LOCK_STRIPES]

    def svg_path(self, file_id: str) -> Path:
        return self.public_dir / f"{file_id}.svg"

    def pdf_path(self, file_id: str) -> Path:
        return self.private_dir / f"{file_id}.pdf"

    def meta_path(self, file_id: str) -> Path:
        return self.private_dir / f"{file_id}.json"

    def public_url(self, file_id: str) -> str:
        return f"{self.public_base_url}/{file_id}.svg"

    def _read_meta(self, file_id: str) -> Optional[dict]:
        path = self.meta_path(file_id)
        if not path.is_file():
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write_meta(self, file_id: str, meta: dict) -> None:
        _atomic_write(self.meta_path(file_id), json.dumps(meta).encode("utf-8"))

    def store(self, file_id: str, svg_content: str, filename: Optional[str] = None) -> str:
        if not is_valid_file_id(file_id):
            raise StorageError(f"Invalid file id: {file_id!r}")
        now = self.clock()
        meta = {
            "fileId": file_id,
            "filename": filename or f"{file_id}.pdf",
            "status": STATUS_SVG_CREATED,
            "svgPath": str(self.svg_path(file_id)),
            "pdfPath": None,
            "createdAt": now,
            "expiresAt": now + self.ttl.total_seconds(),
        }
        try:
            self.ensure_dirs()
            with self._lock_for(file_id):
                _atomic_write(self.svg_path(file_id), svg_content.encode("utf-8"))
                self._write_meta(file_id, meta)
        except OSError as e:
            logger.error(f"Failed to store SVG for {file_id}: {e}")
            raise StorageError(f"Could not store SVG for {file_id}") from e
        logger.info(f"Stored SVG artifact: {file_id}")
        return self.public_url(file_id)

    def attach_rendered_pdf(self, file_id: str, pdf_bytes: bytes) -> Path:
        if not is_valid_file_id(file_id):
            raise StorageError(f"Invalid file id: {file_id!r}")
        pdf_path = self.pdf_path(file_id)
        try:
            with self._lock_for(file_id):
                meta = self._read_meta(file_id)
                if meta is None:
                    raise StorageError(f"No artifact record for {file_id}")
                _atomic_write(pdf_path, pdf_bytes)
                meta["status"] = STATUS_PDF_CREATED
                meta["pdfPath"] = str(pdf_path)
                self._write_meta(file_id, meta)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to attach PDF for {file_id}: {e}")
            raise StorageError(f"Could not attach PDF for {file_id}") from e
        logger.info(f"PDF attached: {file_id} ({len(pdf_bytes)} bytes)")
        return pdf_path

    def _is_expired(self, meta: dict) -> bool:
        return self.clock() >= float(meta.get("expiresAt", 0))

    def retrieve(self, file_id: str) -> Optional[StoredPdf]:
        if not is_valid_file_id(file_id):
            return None
        try:
            meta = self._read_meta(file_id)
        except (OSError, ValueError) as e:
            logger.error(f"Error reading artifact record {file_id}: {e}")
            return None
        if meta is None:
            logger.info(f"Artifact not found: {file_id}")
            return None
        if self._is_expired(meta):
            self.delete(file_id)
            logger.info(f"Deleted expired artifact: {file_id}")
            return None
        if meta.get("status") != STATUS_PDF_CREATED or not meta.get("pdfPath"):
            return None
        pdf_path = Path(meta["pdfPath"])
        if not pdf_path.is_file():
            logger.warning(f"PDF marked ready but missing on disk: {file_id}")
            return None

        filename = meta.get("filename") or f"{file_id}.pdf"
        if not filename.endswith(".pdf"):
            filename = os.path.splitext(filename)[0] + ".pdf"
        return StoredPdf(pdf_path, PDF_CONTENT_TYPE, filename)

    def is_pdf_ready(self, file_id: str) -> bool:
        return self.retrieve(file_id) is not None

    def delete(self, file_id: str) -> None:
        with self._lock_for(file_id):
            for path in (self.svg_path(file_id), self.pdf_path(file_id), self.meta_path(file_id)):
                try:
                    path.unlink()
                except FileNotFoundError:
                    pass

    def sweep(self) -> int:
        """Delete every expired artifact, accessed or not. Returns how many went."""
        if not self.private_dir.is_dir():
            return 0
        cleaned = 0
        for meta_file in self.private_dir.glob("*.json"):
            file_id = meta_file.stem
            try:
                with open(meta_file, "r", encoding="utf-8") as f:
                    meta = json.load(f)
                expired = self._is_expired(meta)
            except (OSError, ValueError) as e:
                # unreadable records are dropped like expired ones
                logger.warning(f"Corrupt artifact record {meta_file.name}: {e}")
                expired = True
            if expired:
                self.delete(file_id)
                cleaned += 1
        logger.info(f"Cleaned up {cleaned} expired artifacts")
        return cleaned
