"""External executable resolution for ffmpeg and ffprobe.

Resolution order for a tool:
1. Environment override (`BOOKMERGE_FFMPEG`, `BOOKMERGE_FFPROBE`).
2. Bundled app directories (`./bin/<tool>` then `./<tool>` from app root).
3. System `PATH`.
4. Raw command name, so subprocess raises its native missing-binary error.
"""

from __future__ import annotations

import os
from pathlib import Path
import shutil
import sys
from typing import Mapping


def resolve_executable(command_name: str, env: Mapping[str, str] | None = None) -> str:
    """Resolve an executable path for one external tool."""

    normalized = command_name.strip()
    if not normalized:
        return command_name

    env_map: Mapping[str, str] = os.environ if env is None else env
    override = env_map.get(f"BOOKMERGE_{normalized.upper()}", "").strip()
    if override:
        return override

    app_root = _app_root()
    for name in (normalized, f"{normalized}.exe"):
        for candidate in (app_root / "bin" / name, app_root / name):
            if candidate.is_file():
                return str(candidate)

    return shutil.which(normalized) or normalized


def _app_root() -> Path:
    """Resolve runtime application root for frozen and non-frozen execution."""

    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parents[1]
