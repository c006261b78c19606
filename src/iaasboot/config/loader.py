# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/iaasboot/config/loader.py

import logging
import os
import yaml
from pathlib import Path
from .models import NodeParams

log = logging.getLogger("iaasboot")

# roles whose parameters carry credentials
SECRET_ROLES = ("app", "db")


class ParamsError(ValueError):
    """The parameter or secrets file cannot describe this node."""


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Recursively merge *override* into *base* (mutates base).
    Only overwrites when the override value is non-empty.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            _deep_merge(base[key], value)
        else:
            if value not in (None, ""):
                base[key] = value
    return base


def _find_secrets_file(params_path: Path) -> Path | None:
    """
    Locate secrets.yaml using this priority:

    1. IAASBOOT_SECRETS_FILE environment variable (explicit override)
    2. secrets.yaml in the same directory as the params file
    """
    env = os.environ.get("IAASBOOT_SECRETS_FILE")
    if env:
        p = Path(env)
        if p.is_file():
            return p
        log.warning("IAASBOOT_SECRETS_FILE=%s does not exist, skipping", env)
        return None

    p = params_path.parent / "secrets.yaml"
    if p.is_file():
        return p

    return None


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    return yaml.safe_load(expanded) or {}


def _merge_role_secrets(data: dict, overlay: dict, source: Path) -> dict:
    """
    One secrets.yaml may be shared by all three tiers. Only the section for
    this node's role is merged; the other tiers' credentials never enter
    this node's parameters or its logs.
    """
    role = (data.get("node") or {}).get("role")
    others = sorted(k for k in overlay if k != role)
    if others:
        log.debug("Ignoring secrets for %s in %s", ", ".join(others), source)

    section = overlay.get(role)
    if section is None:
        if role in SECRET_ROLES:
            raise ParamsError(f"{source} has no '{role}' section, but a {role} node takes its credentials from it")
        return data
    if not isinstance(section, dict):
        raise ParamsError(f"'{role}' in {source} must be a mapping, not {type(section).__name__}")

    data[role] = _deep_merge(data.get(role) or {}, section)
    return data


def load_params(path: str | Path) -> NodeParams:
    """
    Load and validate the node parameter file rendered by the provisioning
    orchestrator.

    Secrets can arrive two ways (both can be used together):

    **secrets.yaml file**
        A file mirroring the params structure. Only the section for the
        node's role is deep-merged before pydantic validation; a secrets file
        for an app or db node without that section is a ParamsError.
        Discovery order:
          1. ``IAASBOOT_SECRETS_FILE`` env var
          2. ``secrets.yaml`` next to the params file

    **environment variables**
        ``${ENV_VAR}`` placeholders inside either file, resolved by
        ``os.path.expandvars`` at load time.
    """
    path = Path(path)
    data = _load_yaml(path)

    secrets_path = _find_secrets_file(path)
    if secrets_path:
        log.debug("Merging secrets from %s", secrets_path)
        _merge_role_secrets(data, _load_yaml(secrets_path), secrets_path)
    else:
        log.debug("No secrets.yaml found, proceeding without secrets merge")

    return NodeParams.model_validate(data)
