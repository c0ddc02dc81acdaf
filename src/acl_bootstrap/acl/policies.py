"""Policy definition loader.

Policies are plain files in one directory. The file stem is the policy
name and the whole file is the policy document. A first line starting
with ``#`` doubles as the policy description.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import ValidationError

from acl_bootstrap.errors import PolicyLoadError
from acl_bootstrap.models import PolicyDefinition

POLICY_SUFFIXES = (".hcl", ".json", ".policy")


def load_policies(directory: str | Path | None) -> list[PolicyDefinition]:
    """Load every policy file in *directory*, sorted by name.

    ``None`` means no policies are configured.

    Raises:
        PolicyLoadError: If the directory is missing, a file is empty or
            badly named, or two files define the same policy.
    """
    if directory is None:
        return []

    path = Path(directory)
    if not path.is_dir():
        raise PolicyLoadError(f"Policy directory not found: {path}")

    policies: dict[str, PolicyDefinition] = {}
    for file in sorted(path.iterdir()):
        if not file.is_file() or file.suffix not in POLICY_SUFFIXES:
            continue
        policy = load_policy_file(file)
        if policy.name in policies:
            raise PolicyLoadError(f"Duplicate policy '{policy.name}' in {path}")
        policies[policy.name] = policy

    return [policies[name] for name in sorted(policies)]


def load_policy_file(file: str | Path) -> PolicyDefinition:
    """Load a single policy file."""
    file = Path(file)
    try:
        document = file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise PolicyLoadError(f"Cannot read policy file {file}: {e}") from e

    if not document.strip():
        raise PolicyLoadError(f"Policy file is empty: {file}")

    first_line = document.lstrip().splitlines()[0].strip()
    description = first_line.lstrip("#").strip() if first_line.startswith("#") else ""

    try:
        return PolicyDefinition(name=file.stem, document=document, description=description)
    except ValidationError as e:
        raise PolicyLoadError(f"Invalid policy file {file}: {e.errors()[0]['msg']}") from e
