"""
Artifact storage housekeeping: removes rendered job directories under
OUTPUT_DIR older than CLEANUP_MAX_AGE_DAYS.
"""
from __future__ import annotations

import logging
import shutil
import time
from pathlib import Path
from typing import Any

from viral_machine.settings import get_settings

logger = logging.getLogger(__name__)


def cleanup(max_age_days: int | None = None, output_dir: str | Path | None = None) -> dict[str, Any]:
    settings = get_settings()
    max_age_days = settings.cleanup_max_age_days if max_age_days is None else max_age_days
    root = Path(output_dir or settings.output_dir)
    if not root.exists():
        return {"removed": 0, "freed_bytes": 0, "root": str(root)}

    cutoff = time.time() - max_age_days * 86400
    removed = 0
    freed = 0
    for entry in root.iterdir():
        try:
            if entry.stat().st_mtime >= cutoff:
                continue
            if entry.is_dir():
                size = sum(f.stat().st_size for f in entry.rglob("*") if f.is_file())
                shutil.rmtree(entry)
            else:
                size = entry.stat().st_size
                entry.unlink()
        except OSError as e:
            logger.warning(f"[storage] Could not remove {entry}: {e}")
            continue
        removed += 1
        freed += size

    logger.info(f"[storage] Cleanup removed {removed} entries older than {max_age_days}d ({freed / 1e6:.1f} MB)")
    return {"removed": removed, "freed_bytes": freed, "root": str(root)}
