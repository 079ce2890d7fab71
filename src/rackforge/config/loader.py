# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/rackforge/config/loader.py

import logging
import os
from pathlib import Path

import yaml

from .models import RackforgeConfig

log = logging.getLogger("rackforge.config")

SECRETS_FILENAME = "secrets.yaml"


def _overlay(cluster: dict, secrets: dict) -> dict:
    """
    Lay secret values over the cluster file, section by section. Blank
    secret values leave the cluster file's value in place.
    """
    for key, value in secrets.items():
        current = cluster.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            _overlay(current, value)
        elif value not in (None, ""):
            cluster[key] = value
    return cluster


def _secrets_path(cluster_file: Path) -> Path | None:
    """
    RACKFORGE_SECRETS_FILE when set, otherwise secrets.yaml beside the
    cluster file. A missing override is reported, not silently replaced.
    """
    override = os.environ.get("RACKFORGE_SECRETS_FILE")
    if override:
        if Path(override).is_file():
            return Path(override)
        log.warning("RACKFORGE_SECRETS_FILE=%s does not exist, skipping", override)
        return None

    beside = cluster_file.parent / SECRETS_FILENAME
    return beside if beside.is_file() else None


def _read(path: Path) -> dict:
    # ${VAR} references resolve against the caller's environment
    return yaml.safe_load(os.path.expandvars(path.read_text())) or {}


def load_config(path: str | Path) -> RackforgeConfig:
    """
    Read a cluster file (roster, cluster spec, executor overrides).

    The fleet registration token is usually kept in a separate secrets file
    with the same layout (``cluster.registration.token``), overlaid before
    validation.
    """
    path = Path(path)
    data = _read(path)

    secrets = _secrets_path(path)
    if secrets:
        log.debug("Overlaying secrets from %s", secrets)
        _overlay(data, _read(secrets))

    return RackforgeConfig.model_validate(data)
