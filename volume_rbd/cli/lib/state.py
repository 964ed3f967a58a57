"""
Local persistent state store for the RBD volume plugin.

One record per volume, keyed by name. The file is the only source of truth for
the `device` and `mountpoint` fields, so every write goes through a temp file
and `os.replace`. Callers serialize access; the store itself takes no locks.
"""

from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from volume_rbd.cli.lib.config import load_config
from volume_rbd.exceptions import StateStoreError


def get_state_dir() -> Path:
    """
    Resolve the directory used for persistent state.

    Priority:
    1) `VOLUME_RBD_STATE_DIR` env var, if set
    2) `state_dir` from the plugin config
    3) `/var/lib/docker-volume-rbd` if writable
    4) `$XDG_STATE_HOME/docker-volume-rbd` or `~/.local/state/docker-volume-rbd`
    """
    env = os.environ.get("VOLUME_RBD_STATE_DIR")
    if env:
        return Path(env)

    cfg = load_config()
    if cfg.state_dir:
        return cfg.state_dir

    candidates: list[Path] = [Path("/var/lib/docker-volume-rbd")]
    xdg_state_home = os.environ.get("XDG_STATE_HOME")
    if xdg_state_home:
        candidates.append(Path(xdg_state_home) / "docker-volume-rbd")
    else:
        candidates.append(Path.home() / ".local" / "state" / "docker-volume-rbd")

    for candidate in candidates:
        try:
            candidate.mkdir(parents=True, exist_ok=True)
            probe = candidate / ".write_test"
            probe.write_text("ok", encoding="utf-8")
            probe.unlink(missing_ok=True)
            return candidate
        except OSError:
            continue

    return Path(".docker-volume-rbd-state")


def _volumes_file() -> Path:
    return get_state_dir() / "volumes.json"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _load_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    try:
        with open(path, "r", encoding="utf-8") as file:
            return json.load(file)
    except (OSError, ValueError) as e:
        raise StateStoreError(f"unable to read volume state {path}: {e}") from e


def _atomic_write_json(path: Path, data: Any) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    except OSError as e:
        raise StateStoreError(f"unable to write volume state {path}: {e}") from e
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as file:
            json.dump(data, file, indent=2, ensure_ascii=False, sort_keys=True)
            file.write("\n")
        os.replace(tmp_path, path)
    except OSError as e:
        raise StateStoreError(f"unable to write volume state {path}: {e}") from e
    finally:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass


def _load_items() -> List[Dict[str, Any]]:
    return _load_json(_volumes_file(), {"items": []}).get("items", [])


def list_volumes() -> List[Dict[str, Any]]:
    return _load_items()


def get_volume(name: str) -> Optional[Dict[str, Any]]:
    """Return the record stored under `name`, or None."""
    for item in _load_items():
        if item.get("name") == name:
            return item
    return None


def upsert_volume(volume: Dict[str, Any]) -> None:
    """Insert or replace a record; `created_at` is kept from the stored one."""
    items = []
    created_at = None
    for item in _load_items():
        if item.get("name") == volume.get("name"):
            created_at = item.get("created_at")
        else:
            items.append(item)
    if "created_at" not in volume:
        volume["created_at"] = created_at or _utc_now_iso()
    items.append(volume)
    _atomic_write_json(_volumes_file(), {"items": sorted(items, key=lambda x: x.get("name", ""))})


def delete_volume(name: str) -> bool:
    items = _load_items()
    new_items = [i for i in items if i.get("name") != name]
    if len(new_items) == len(items):
        return False
    _atomic_write_json(_volumes_file(), {"items": new_items})
    return True
