from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from modelpull.internal.constants import MANIFEST_EXTENSION, MANIFEST_PREFIX, MANIFEST_SEPARATOR
from modelpull.internal.logging import get_logger
from modelpull.kernel.contracts import CachedModelInfo
from modelpull.registry.hub import HubManifest, local_filename

logger = get_logger(__name__)


def _referenced_size(cache_dir: Path, repo: str, manifest_path: Path) -> int:
    """
    Bytes on disk for the files a cached manifest points at. Files that were
    never downloaded count as zero.
    """
    try:
        manifest = HubManifest.model_validate_json(manifest_path.read_bytes())
    except (OSError, ValidationError):
        return 0

    size = 0
    for entry in (manifest.ggufFile, manifest.mmprojFile):
        if entry is None or not entry.rfilename:
            continue
        path = cache_dir / local_filename(repo, entry.rfilename)
        if path.is_file():
            size += path.stat().st_size
    return size


def parse_manifest_filename(name: str) -> Optional[tuple[str, str, str]]:
    """
    ``manifest=<user>=<model>=<tag>.json`` -> ``(user, model, tag)``, or None
    for any other name.
    """
    if not (name.startswith(MANIFEST_PREFIX) and name.endswith(MANIFEST_EXTENSION)):
        return None
    parts = name[: -len(MANIFEST_EXTENSION)].split(MANIFEST_SEPARATOR)
    if len(parts) != 4:
        return None
    _, user, model, tag = parts
    return user, model, tag


def list_cached(cache_dir: Path) -> list[CachedModelInfo]:
    """
    Hub models with a cached manifest. Recomputed from the directory on every
    call; unrelated files are ignored.
    """
    if not cache_dir.is_dir():
        return []

    models = []
    for entry in sorted(cache_dir.iterdir()):
        if not entry.is_file():
            continue
        parsed = parse_manifest_filename(entry.name)
        if parsed is None:
            continue
        user, model, tag = parsed
        models.append(
            CachedModelInfo(
                user=user,
                model=model,
                tag=tag,
                manifest_path=entry,
                size=_referenced_size(cache_dir, f"{user}/{model}", entry),
            )
        )

    logger.debug("Listed cached models", count=len(models), cache_dir=str(cache_dir))
    return models
