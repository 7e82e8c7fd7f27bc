"""Configuration management for the commit coordinator."""

from __future__ import annotations

import logging
import os
import tomllib
import warnings
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

CONFIG_PATH = Path(
    os.getenv("LAKECOMMIT_CONFIG", str(Path.home() / ".config" / "lakecommit" / "config.toml"))
).expanduser()

DEFAULT_MAX_COMMIT_RETRIES = 4
DEFAULT_MANIFEST_SUBDIR = "_lakecommit/manifests"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class CommitterConfig:
    """Settings consumed by one coordinator instance."""

    table_uri: str
    manifest_dir: Path
    delete_manifests_on_commit: bool = True
    max_commit_retries: int = DEFAULT_MAX_COMMIT_RETRIES
    storage_options: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.table_uri:
            raise ValueError("table_uri is required")
        if self.max_commit_retries < 1:
            raise ValueError("max_commit_retries must be >= 1")


def _read_config_file(path: Path) -> dict:
    if not path.exists():
        return {}
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:
        warnings.warn(f"Failed to parse lakecommit config at {path}: {exc}", stacklevel=2)
        return {}


def _parse_bool(value: object, *, name: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValueError(f"{name}: expected a boolean, got {value!r}")


def default_manifest_dir(table_uri: str) -> Path:
    """Return the manifest directory used when none is configured."""
    if "://" in table_uri and not table_uri.startswith("file://"):
        raise ValueError(
            f"manifest_dir must be configured explicitly for remote table {table_uri!r}"
        )
    local = table_uri.removeprefix("file://")
    return Path(local).expanduser() / DEFAULT_MANIFEST_SUBDIR


def load_committer_config(
    path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> CommitterConfig:
    """Resolve settings from the `[committer]` TOML table, overridden by env vars."""
    env = os.environ if env is None else env
    raw = _read_config_file(path or CONFIG_PATH)
    section = raw.get("committer", {})
    if not isinstance(section, dict):
        raise ValueError("[committer] must be a table")

    table_uri = env.get("LAKECOMMIT_TABLE_URI") or section.get("table_uri")
    if not isinstance(table_uri, str) or not table_uri.strip():
        raise ValueError("table_uri is not configured (set LAKECOMMIT_TABLE_URI or [committer])")

    manifest_value = env.get("LAKECOMMIT_MANIFEST_DIR") or section.get("manifest_dir")
    if isinstance(manifest_value, str) and manifest_value.strip():
        manifest_dir = Path(manifest_value).expanduser()
    else:
        manifest_dir = default_manifest_dir(table_uri)

    delete_value = env.get("LAKECOMMIT_DELETE_MANIFESTS", section.get("delete_manifests_on_commit"))
    delete_manifests = (
        True
        if delete_value is None
        else _parse_bool(delete_value, name="delete_manifests_on_commit")
    )

    retries_value = env.get("LAKECOMMIT_MAX_COMMIT_RETRIES", section.get("max_commit_retries"))
    max_retries = DEFAULT_MAX_COMMIT_RETRIES if retries_value is None else int(retries_value)

    storage_options = section.get("storage_options", {})
    if not isinstance(storage_options, dict):
        raise ValueError("[committer.storage_options] must be a table")

    config = CommitterConfig(
        table_uri=table_uri,
        manifest_dir=manifest_dir,
        delete_manifests_on_commit=delete_manifests,
        max_commit_retries=max_retries,
        storage_options={str(k): str(v) for k, v in storage_options.items()},
    )
    logger.debug(f"Resolved committer config: {config}")
    return config
