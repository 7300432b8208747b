from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

DEFAULT_LEASE_TTL_SECONDS = 5.0
DEFAULT_TRANSITION_COOLDOWN_SECONDS = 5.0
DEFAULT_HTTP_TIMEOUT_SECONDS = 30


@dataclass(frozen=True)
class SyncTunables:
    lease_ttl_seconds: float = DEFAULT_LEASE_TTL_SECONDS
    transition_cooldown_seconds: float = DEFAULT_TRANSITION_COOLDOWN_SECONDS
    http_timeout_seconds: int = DEFAULT_HTTP_TIMEOUT_SECONDS


def _float_env(name: str, default: float) -> float:
    raw_value = os.environ.get(name)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError:
        return default


def load_tunables() -> SyncTunables:
    return SyncTunables(
        lease_ttl_seconds=_float_env("CRMSYNC_LEASE_TTL_SECONDS", DEFAULT_LEASE_TTL_SECONDS),
        transition_cooldown_seconds=_float_env(
            "CRMSYNC_TRANSITION_COOLDOWN_SECONDS", DEFAULT_TRANSITION_COOLDOWN_SECONDS
        ),
        http_timeout_seconds=int(_float_env("CRMSYNC_HTTP_TIMEOUT_SECONDS", DEFAULT_HTTP_TIMEOUT_SECONDS)),
    )


def project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def resolve_log_dir() -> Path:
    candidates: list[Path] = []
    env_dir = os.environ.get("CRMSYNC_LOG_DIR")
    if env_dir:
        candidates.append(Path(env_dir))
    candidates.append(project_root() / "logs")
    candidates.append(Path(tempfile.gettempdir()) / "crmsync" / "logs")

    for candidate in candidates:
        try:
            candidate.mkdir(parents=True, exist_ok=True)
            test_file = candidate / "_write_test.tmp"
            test_file.write_text("ok", encoding="utf-8")
            test_file.unlink(missing_ok=True)
            return candidate
        except OSError:
            continue

    fallback = project_root()
    fallback.mkdir(parents=True, exist_ok=True)
    return fallback


def resolve_data_dir() -> Path:
    env_dir = os.environ.get("CRMSYNC_DATA_DIR")
    if env_dir:
        return Path(env_dir)
    appdata = os.environ.get("LOCALAPPDATA")
    if appdata:
        base_dir = Path(appdata)
    else:
        base_dir = Path.home() / ".local" / "share"
    return base_dir / "crmsync"
