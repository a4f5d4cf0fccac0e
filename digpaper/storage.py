# digpaper/storage.py
import asyncio
import logging
import mimetypes
import os
import re
import secrets
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple

import aiofiles

from digpaper.config import settings
from digpaper.errors import NotFound, PayloadTooLarge, StorageFailure
from digpaper.schemas import FileType

logger = logging.getLogger(__name__)

# declared MIME -> on-disk extension
MIME_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/pjpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/heic": "heic",
    "image/heif": "heif",
    "application/pdf": "pdf",
}

# filename extension -> file type, used when the MIME type says nothing useful
EXTENSION_FILE_TYPES = {
    "jpg": FileType.IMAGE,
    "jpeg": FileType.IMAGE,
    "png": FileType.IMAGE,
    "gif": FileType.IMAGE,
    "webp": FileType.IMAGE,
    "heic": FileType.IMAGE,
    "heif": FileType.IMAGE,
    "pdf": FileType.PDF,
}

# content types served back for names mimetypes does not know (heic/heif)
_SERVED_TYPES = {ext: mime for mime, ext in MIME_EXTENSIONS.items() if mime != "image/jpg"}

# upload time to the second plus a 4-hex suffix, e.g. 2025-12-28_01-30-12_a3f9.jpg
STORED_NAME_RE = re.compile(r"^\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2}_[0-9a-f]{4}\.[a-z0-9]+$")
_EXT_RE = re.compile(r"^[a-z0-9]{1,10}$")

# camera and browser defaults that carry no meaning for the office
_GENERIC_NAMES = {"image.jpg", "image.jpeg", "image.png", "photo.jpg", "photo.jpeg", "blob", "unknown"}
_GENERIC_PREFIXES = ("img_", "dsc", "photo_")


@dataclass(frozen=True)
class StoredFile:
    name: str
    path: Path
    size: int


def normalize_content_type(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    ct = content_type.split(";", 1)[0].strip().lower()
    return ct or None


def _extension_of(filename: Optional[str]) -> Optional[str]:
    if not filename:
        return None
    suffix = Path(filename).suffix.lower().lstrip(".")
    if suffix and _EXT_RE.match(suffix):
        return suffix
    return None


def classify_file_type(content_type: Optional[str], filename: Optional[str]) -> FileType:
    ct = normalize_content_type(content_type)
    if ct:
        if ct.startswith("image/"):
            return FileType.IMAGE
        if ct == "application/pdf":
            return FileType.PDF
    return EXTENSION_FILE_TYPES.get(_extension_of(filename), FileType.OTHER)


def is_recognized(content_type: Optional[str], filename: Optional[str]) -> bool:
    """True when either the MIME type or the extension maps to a known type."""
    ct = normalize_content_type(content_type)
    if ct and (ct in MIME_EXTENSIONS or ct.startswith("image/")):
        return True
    return _extension_of(filename) in EXTENSION_FILE_TYPES


def infer_extension(content_type: Optional[str], filename: Optional[str]) -> str:
    ct = normalize_content_type(content_type)
    if ct in MIME_EXTENSIONS:
        return MIME_EXTENSIONS[ct]
    ext = _extension_of(filename)
    if ext:
        return ext
    if ct and ct != "application/octet-stream":
        guessed = mimetypes.guess_extension(ct)
        if guessed and _EXT_RE.match(guessed.lstrip(".")):
            return guessed.lstrip(".")
    return "bin"


def generate_stored_name(extension: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"{now.strftime('%Y-%m-%d_%H-%M-%S')}_{secrets.token_hex(2)}.{extension}"


def is_generic_filename(name: str) -> bool:
    lower = name.lower()
    return lower in _GENERIC_NAMES or lower.startswith(_GENERIC_PREFIXES)


def display_name(raw_name: Optional[str], now: Optional[datetime] = None) -> str:
    """Original name for display; generic camera names become 'Photo DD-MM-YYYY HH:MM'."""
    name = Path(raw_name or "").name.strip() or "unknown"
    if is_generic_filename(name):
        now = now or datetime.now()
        return f"Photo {now.strftime('%d-%m-%Y %H:%M')}"
    return name


def upload_root() -> Path:
    root = Path(settings.upload_dir)
    root.mkdir(parents=True, exist_ok=True)
    return root


def resolve_stored_path(name: str) -> Path:
    """Map a stored name to its path. Anything that could leave the store root is NotFound."""
    if not name or name != Path(name).name or name.startswith(".") or "\\" in name or "\x00" in name:
        raise NotFound(f"File '{name}' not found")
    root = upload_root().resolve()
    path = (root / name).resolve()
    if path.parent != root:
        raise NotFound(f"File '{name}' not found")
    if not path.is_file():
        raise NotFound(f"File '{name}' not found")
    return path


def served_content_type(name: str) -> str:
    guessed, _ = mimetypes.guess_type(name)
    if guessed:
        return guessed
    return _SERVED_TYPES.get(_extension_of(name), "application/octet-stream")


def discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        logger.exception("Failed to remove %s", path)


async def open_unique(extension: str, now: Optional[datetime] = None) -> Tuple[str, Path, object]:
    """Create a new, empty file under a fresh stored name."""
    root = upload_root()
    for attempt in range(1, settings.stored_name_attempts + 1):
        name = generate_stored_name(extension, now)
        path = root / name
        try:
            # exclusive create: the filesystem detects collisions
            out = await aiofiles.open(path, "xb")
        except FileExistsError:
            logger.warning("Stored name collision on %s (attempt %d), regenerating suffix", name, attempt)
            continue
        except OSError as e:
            raise StorageFailure(f"Cannot create {name}: {e}") from e
        return name, path, out
    raise StorageFailure(
        f"Could not allocate a unique stored name after {settings.stored_name_attempts} attempts"
    )


async def write_stream(source, extension: str, max_bytes: Optional[int] = None,
                       now: Optional[datetime] = None) -> StoredFile:
    """
    Copy ``source`` (anything with ``async read(n)``, e.g. UploadFile) to a new
    file chunk by chunk. On any failure the partial file is deleted before the
    error propagates.
    """
    max_bytes = max_bytes if max_bytes is not None else settings.max_upload_size
    chunk_size = settings.upload_chunk_size
    name, path, out = await open_unique(extension, now)
    written = 0
    try:
        try:
            while True:
                chunk = await source.read(chunk_size)
                if not chunk:
                    break
                written += len(chunk)
                if written > max_bytes:
                    raise PayloadTooLarge(f"Upload exceeds {max_bytes} bytes")
                await out.write(chunk)
            await out.flush()
            if settings.fsync_uploads:
                await asyncio.to_thread(os.fsync, out.fileno())
        finally:
            await out.close()
    except OSError as e:
        discard(path)
        logger.exception("Failed to write upload to %s", path)
        raise StorageFailure(f"Failed to save file: {e}") from e
    except BaseException:
        # size limit, client disconnect, cancellation
        discard(path)
        raise
    logger.debug("File written to %s (%d bytes)", path, written)
    return StoredFile(name=name, path=path, size=written)
