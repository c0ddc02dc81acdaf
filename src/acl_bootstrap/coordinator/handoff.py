"""Hand bootstrap secrets to the config renderer.

The renderer embeds secrets into the agent configuration and the
supervisor unit. It only needs plain ``name -> value`` strings, written
here as a small YAML file readable by the service user alone.
"""

from __future__ import annotations

import os
from datetime import UTC, datetime
from pathlib import Path

import yaml

from acl_bootstrap.errors import HandoffWriteError
from acl_bootstrap.models import BootstrapResult


def write_handoff(result: BootstrapResult, path: str | Path) -> Path:
    """Write *result*'s secrets to *path* (atomic, mode 0600).

    Raises:
        HandoffWriteError: If the file or its directory cannot be written.
    """
    output_path = Path(path)
    data = {
        "cluster": result.cluster.cluster_tag_value,
        "node": result.node.instance_id,
        "role": str(result.role),
        "secrets": result.secrets(),
    }
    header = (
        f"# ACL bootstrap secrets for cluster {result.cluster.cluster_tag_value}\n"
        f"# Written at: {datetime.now(tz=UTC).isoformat()}\n"
        f"# DO NOT EDIT - this file is overwritten on every bootstrap run\n\n"
    )

    tmp_path = output_path.with_suffix(output_path.suffix + ".tmp")
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        # Created 0600; a leftover temp file may carry a wider mode.
        tmp_path.unlink(missing_ok=True)
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(header + yaml.safe_dump(data, default_flow_style=False, sort_keys=True))
        tmp_path.replace(output_path)
    except OSError as e:
        raise HandoffWriteError(f"Cannot write secrets to {output_path}: {e}") from e
    return output_path


def read_handoff(path: str | Path) -> dict[str, str]:
    """Return the ``name -> value`` secrets from a handoff file."""
    text = Path(path).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict) or not isinstance(data.get("secrets"), dict):
        raise ValueError(f"Not a bootstrap handoff file: {path}")
    return {str(k): str(v) for k, v in data["secrets"].items()}
