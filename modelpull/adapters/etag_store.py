"""
Sidecar freshness metadata for cached artifacts.

The ETag of ``<artifact>`` lives in ``<artifact>.etag``. Writes go through a
``.tmp`` staging file and an atomic replace so readers never see a torn
sidecar.
"""
import json
import os
from pathlib import Path

from modelpull.internal.constants import ETAG_SUFFIX, LEGACY_METADATA_SUFFIX, STAGING_SUFFIX
from modelpull.internal.logging import get_logger
from modelpull.kernel.errors import LocalFilesystemError

logger = get_logger(__name__)


def _sidecar(path: Path, suffix: str) -> Path:
    return path.with_name(path.name + suffix)


def write_file_atomic(path: Path, content: str) -> None:
    """
    Write ``content`` to ``path`` via a staging file and ``os.replace``.
    """
    staging = _sidecar(path, STAGING_SUFFIX)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        staging.write_text(content, encoding="utf-8")
        os.replace(staging, path)
    except OSError as e:
        staging.unlink(missing_ok=True)
        raise LocalFilesystemError(f"failed to write file '{path}': {e}", path=str(path)) from e


def write_etag(path: Path, etag: str) -> None:
    etag_path = _sidecar(path, ETAG_SUFFIX)
    write_file_atomic(etag_path, etag)
    logger.debug("File etag saved", path=str(etag_path))


def read_etag(path: Path) -> str:
    """
    Return the stored ETag for ``path``, or an empty string when unknown.

    Older caches kept the ETag inside ``<artifact>.json``; such a file is
    migrated to the sidecar on first read.
    """
    etag_path = _sidecar(path, ETAG_SUFFIX)
    if etag_path.exists():
        try:
            with open(etag_path, "r", encoding="utf-8") as f:
                return f.readline().rstrip("\r\n")
        except OSError as e:
            logger.error("Could not read etag file", path=str(etag_path), error=str(e))
            return ""

    metadata_path = _sidecar(path, LEGACY_METADATA_SUFFIX)
    if not metadata_path.exists():
        return ""

    try:
        metadata = json.loads(metadata_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.error("Error reading legacy metadata file", path=str(metadata_path), error=str(e))
        return ""

    etag = metadata.get("etag") if isinstance(metadata, dict) else None
    if not isinstance(etag, str):
        return ""

    logger.debug("Migrating legacy metadata file", path=str(metadata_path))
    write_etag(path, etag)
    try:
        metadata_path.unlink()
    except OSError:
        logger.warning("Failed to delete legacy metadata file", path=str(metadata_path))
    return etag


def clear_etag(path: Path) -> None:
    etag_path = _sidecar(path, ETAG_SUFFIX)
    try:
        etag_path.unlink(missing_ok=True)
    except OSError as e:
        raise LocalFilesystemError(f"unable to delete file '{etag_path}': {e}", path=str(etag_path)) from e
