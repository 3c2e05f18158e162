"""Shared utility functions for the deployment tool."""

from __future__ import annotations

import json
import os
import shlex
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from src.deploy_shared.constants import ARCH_ALIASES


def atomic_write_json(path: Path | str, data: Any) -> None:
    """Write JSON data atomically by writing to a temp file then renaming.

    Args:
        path: Target file path.
        data: JSON-serialisable data to write.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(".tmp")
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
            f.flush()
            os.fsync(f.fileno())
        os.replace(str(tmp_path), str(path))
    except BaseException:
        if tmp_path.exists():
            tmp_path.unlink()
        raise


def load_json(path: Path | str) -> dict | None:
    """Load JSON data from a file.

    Returns:
        Parsed JSON data, or None if the file is missing or invalid.
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (FileNotFoundError, json.JSONDecodeError, OSError):
        return None


def normalize_arch(value: str) -> str:
    """Return the canonical docker architecture name for *value*.

    Comparison is case-insensitive and alias-aware, so ``aarch64`` and
    ``ARM64`` both map to ``arm64``.  Unknown names are returned
    lower-cased and stripped.  A ``linux/arm64`` style platform string
    is reduced to its architecture part.
    """
    arch = value.strip().lower()
    if "/" in arch:
        parts = arch.split("/")
        arch = parts[1] if len(parts) > 1 else parts[0]
    return ARCH_ALIASES.get(arch, arch)


def arch_matches(host_arch: str, image_arch: str) -> bool:
    """True when both architectures resolve to the same canonical name."""
    if not host_arch or not image_arch:
        return False
    return normalize_arch(host_arch) == normalize_arch(image_arch)


def parse_env_file(content: str) -> dict[str, str]:
    """Parse ``KEY=VALUE`` lines of a dotenv-style file.

    Blank lines, comments and lines without ``=`` are skipped.  An
    optional ``export`` prefix is accepted.  Matching single or double
    quotes around the value are removed.
    """
    values: dict[str, str] = {}
    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        key, _, value = line.partition("=")
        key = key.strip()
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            value = value[1:-1]
        if key:
            values[key] = value
    return values


def env_prefix(env: dict[str, str] | None) -> str:
    """Render *env* as a shell-quoted ``KEY=VALUE`` prefix (with trailing space)."""
    if not env:
        return ""
    return "".join(f"{key}={shlex.quote(str(value))} " for key, value in env.items())


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def backup_timestamp(moment: datetime | None = None) -> str:
    """Timestamp used in backup file names (``YYYYmmdd_HHMMSS``)."""
    moment = moment or datetime.now(timezone.utc)
    return moment.strftime("%Y%m%d_%H%M%S")
