"""Arbor config discovery: YAML files, ${VAR} references, store paths."""

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .models import ArborConfig

_ENV_REF = re.compile(r"\$\{(\w+)\}")


def config_paths(cli_path: str | None = None) -> list[Path]:
    """Candidate config files, highest priority first."""
    paths = [Path(cli_path)] if cli_path else []
    paths += [Path("arbor.yaml"), Path.home() / ".arbor" / "config.yaml"]
    return paths


def load_config(cli_path: str | None = None) -> ArborConfig:
    """First non-empty file among CLI path, ./arbor.yaml and ~/.arbor/config.yaml.

    A relative ``store.db_path`` set in a file is taken relative to that
    file's directory, so the database follows the config, not the cwd.
    """
    for path in config_paths(cli_path):
        if not path.is_file():
            continue
        raw = _read_yaml(path)
        if raw is None:
            continue
        raw = _resolve_db_path(_expand_env_vars(raw), path.parent)
        try:
            return ArborConfig.model_validate(raw)
        except ValidationError as e:
            raise ValueError(f"Invalid config in {path}: {e}") from e
    return ArborConfig()


def _read_yaml(path: Path) -> dict[str, Any] | None:
    try:
        raw = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ValueError(f"Invalid config in {path}: expected a mapping, got {type(raw).__name__}")
    return raw


def _resolve_db_path(raw: dict[str, Any], base: Path) -> dict[str, Any]:
    store = raw.get("store")
    if not isinstance(store, dict) or not isinstance(store.get("db_path"), str):
        return raw
    db_path = Path(store["db_path"]).expanduser()
    if not db_path.is_absolute():
        db_path = base / db_path
    return {**raw, "store": {**store, "db_path": str(db_path)}}


def _expand_env_vars(obj: Any) -> Any:
    """Replace ${VAR} in every string, recursively; unset variables become ''."""
    if isinstance(obj, str):
        return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), ""), obj)
    if isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_vars(v) for v in obj]
    return obj


# Default YAML template for `arbor config init`
DEFAULT_CONFIG_TEMPLATE = """\
# arbor.yaml

# Hierarchy cache
cache:
  namespace: "hierarchy"       # properties key that holds the cache record
  algorithm: "sha256"          # any fixed-size hashlib algorithm
  max_depth: 256               # ancestor hops before a ripple is abandoned
  max_conflict_retries: 2      # re-reads of an ancestor after a stale write

# Node store
store:
  provider: "sqlite"           # sqlite | memory
  db_path: ".arbor/nodes.db"   # relative to this file

# Plugins (entry point group: arbor.plugins.store)
# plugins:
#   store: "sqlite"

# Logging
log_level: "info"              # debug | info | warn | error
log_format: "text"             # text | json
"""
