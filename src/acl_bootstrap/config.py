"""Config file loading and auto-discovery for the ACL bootstrap.

Searches for ``acl-bootstrap.yaml`` in the current directory and parent
directories, parses it, resolves relative paths against the config file's
location, then applies ``ACL_BOOTSTRAP_*`` environment overrides.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from acl_bootstrap.retry.executor import RetryPolicy

CONFIG_FILENAME = "acl-bootstrap.yaml"
ENV_PREFIX = "ACL_BOOTSTRAP_"

_PATH_KEYS = ("policies_dir", "output")
_RETRY_KEYS = ("retry", "bootstrap", "poll")
_BOOL_KEYS = ("wait_for_capacity",)
STORE_TYPES = ("ssm", "memory")


@dataclass(frozen=True)
class BootstrapConfig:
    """Parsed ACL bootstrap configuration.

    ``retry`` covers metadata and directory lookups, ``bootstrap`` covers
    ACL API calls and store writes, ``poll`` covers waiting for a secret
    to become visible in the store.
    """

    config_path: Path | None = None
    region: str | None = None
    cluster_tag_key: str = "acl-bootstrap:cluster"
    cluster_tag_value: str | None = None
    asg_name: str | None = None
    acl_address: str = "http://127.0.0.1:4646"
    policies_dir: str | None = None
    output: str | None = None
    parameter_prefix: str = "/acl-bootstrap"
    store_type: str = "ssm"
    endpoint_url: str | None = None
    metadata_url: str = "http://169.254.169.254"
    wait_for_capacity: bool = True
    log_level: str = "INFO"
    retry: RetryPolicy = field(default_factory=lambda: RetryPolicy(attempts=10, delay=3.0))
    bootstrap: RetryPolicy = field(default_factory=lambda: RetryPolicy(attempts=5, delay=5.0))
    poll: RetryPolicy = field(default_factory=lambda: RetryPolicy(attempts=60, delay=5.0))

    def with_overrides(self, **overrides: Any) -> BootstrapConfig:
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def find_config(start: Path | None = None) -> Path | None:
    """Walk from *start* (default ``cwd()``) up to the filesystem root.

    Returns the first ``acl-bootstrap.yaml`` found, or ``None``.
    """
    current = (start or Path.cwd()).resolve()
    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            return None
        current = parent


def load_config(
    path: str | Path | None = None,
    *,
    auto_discover: bool = True,
    environ: dict[str, str] | None = None,
) -> BootstrapConfig:
    """Load an ACL bootstrap config file.

    Resolution order:

    1. Explicit *path* (error if it doesn't exist).
    2. Auto-discover by walking parent directories.
    3. Defaults.

    ``ACL_BOOTSTRAP_<FIELD>`` environment variables override file values.
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path).resolve()
        if not config_path.is_file():
            msg = f"Config file not found: {config_path}"
            raise FileNotFoundError(msg)
    elif auto_discover:
        config_path = find_config()

    config = BootstrapConfig() if config_path is None else _parse_config(config_path)
    config = _apply_env(config, os.environ if environ is None else environ)

    if config.store_type not in STORE_TYPES:
        msg = (
            f"Unknown store type: {config.store_type}. "
            f"Available: {', '.join(STORE_TYPES)}."
        )
        raise ValueError(msg)
    return config


def _parse_config(config_path: Path) -> BootstrapConfig:
    """Read and parse a YAML config file, resolving relative paths."""
    text = config_path.read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}

    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping in {config_path}, got {type(data).__name__}"
        raise ValueError(msg)

    known = {f.name for f in fields(BootstrapConfig)} - {"config_path"}
    unknown = sorted(set(data) - known)
    if unknown:
        msg = f"Unknown key(s) in {config_path}: {', '.join(unknown)}"
        raise ValueError(msg)

    base = config_path.parent
    kwargs: dict[str, Any] = {"config_path": config_path}
    for key, val in data.items():
        if val is None:
            continue
        if key in _PATH_KEYS:
            kwargs[key] = str((base / val).resolve())
        elif key in _RETRY_KEYS:
            kwargs[key] = _retry_policy(key, val, config_path)
        else:
            kwargs[key] = val

    return BootstrapConfig(**kwargs)


def _retry_policy(key: str, value: Any, source: Path | str) -> RetryPolicy:
    if not isinstance(value, dict):
        msg = f"'{key}' in {source} must be a mapping with attempts/delay"
        raise ValueError(msg)
    try:
        return RetryPolicy(**value)
    except ValidationError as e:
        msg = f"Invalid '{key}' retry settings in {source}: {e.errors()[0]['msg']}"
        raise ValueError(msg) from e


def _apply_env(config: BootstrapConfig, environ: Any) -> BootstrapConfig:
    """Apply ``ACL_BOOTSTRAP_*`` overrides.

    Retry blocks are set per field, e.g. ``ACL_BOOTSTRAP_POLL_ATTEMPTS=120``.
    """
    overrides: dict[str, Any] = {}
    for fld in fields(BootstrapConfig):
        if fld.name == "config_path":
            continue

        if fld.name in _RETRY_KEYS:
            current: RetryPolicy = getattr(config, fld.name)
            updates = {}
            for sub in RetryPolicy.model_fields:
                val = environ.get(f"{ENV_PREFIX}{fld.name.upper()}_{sub.upper()}")
                if val is not None:
                    updates[sub] = val
            if updates:
                overrides[fld.name] = _retry_policy(
                    fld.name, {**current.model_dump(), **updates}, "environment",
                )
            continue

        val = environ.get(f"{ENV_PREFIX}{fld.name.upper()}")
        if val is None:
            continue
        if fld.name in _BOOL_KEYS:
            overrides[fld.name] = val.lower() in ("1", "true", "yes")
        else:
            overrides[fld.name] = val

    return replace(config, **overrides) if overrides else config
