import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Union

from .errors import WriteFailure

log = logging.getLogger(__name__)

META_DIR = ".mirror"


def ensure_parent_dir(p: Path) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write ``data`` to a temp file next to ``path`` and move it into place."""
    tmp_name = None
    try:
        ensure_parent_dir(path)
        fd, tmp_name = tempfile.mkstemp(
            prefix="." + path.name[:40] + ".", suffix=".part", dir=path.parent
        )
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as e:
        raise WriteFailure(f"cannot write {path}: {e}") from e
    finally:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass


def atomic_write_json(path: Path, data: dict) -> None:
    atomic_write_bytes(path, json.dumps(data, indent=2).encode("utf-8"))


def check_writable(root: Path) -> None:
    try:
        root.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryFile(dir=root):
            pass
    except OSError as e:
        raise WriteFailure(f"output directory is not writable: {root}: {e}") from e


def write_manifest(
    root: Path,
    seed_url: str,
    *,
    pages: List[str],
    assets: List[str],
    conversions: List[Dict[str, Union[str, bool]]],
    summary: Dict[str, Dict[str, int]],
) -> Path:
    # RFC3339 UTC timestamp without microseconds
    created_ts = (
        datetime.now(timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z")
    )
    data = {
        "site": seed_url,
        "created_utc": created_ts,
        "pages": sorted(dict.fromkeys(pages)),
        "assets": sorted(dict.fromkeys(assets)),
        "conversions": conversions,
        "summary": summary,
    }
    path = root / META_DIR / "manifest.json"
    atomic_write_json(path, data)
    log.info("manifest written: %s", path)
    return path
