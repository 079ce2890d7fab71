# src/rackforge/config/settings.py

from __future__ import annotations
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional
import os

from .models import ExecutorConfig


@dataclass(frozen=True)
class ExecutorSettings:
    key_path: Optional[Path]
    connect_timeout: float
    command_timeout: Optional[float]   # None = no deadline
    max_workers: int

    def merged(self, cfg: ExecutorConfig) -> "ExecutorSettings":
        """Values from the cluster file override the environment."""
        updates = {k: v for k, v in cfg.model_dump().items() if v is not None}
        if updates.get("command_timeout") == 0:
            updates["command_timeout"] = None
        return replace(self, **updates)


def load_executor_settings() -> ExecutorSettings:
    # the private key is supplied out-of-band, never in the cluster file
    key = os.getenv("RACKFORGE_SSH_KEY_PATH")
    command_timeout = float(os.getenv("RACKFORGE_COMMAND_TIMEOUT", "1800"))
    return ExecutorSettings(
        key_path=Path(key).expanduser() if key else None,
        connect_timeout=float(os.getenv("RACKFORGE_CONNECT_TIMEOUT", "20")),
        command_timeout=command_timeout or None,
        max_workers=int(os.getenv("RACKFORGE_MAX_WORKERS", "8")),
    )


def log_dir() -> Path:
    return Path(os.getenv("RACKFORGE_LOG_DIR", str(Path.home() / ".rackforge" / "logs")))
