"""
Layered YAML configuration loading for db_surgeon.

Record type declarations tend to be long, so config files may split them
out with ``!include``.  Files found in the usual places are merged with
"project wins" semantics, then ``${VAR}`` references are expanded so
credentials can stay in the environment (or a ``.env`` file).

Usage:
    from db_surgeon.config_loader import load_hierarchical_config

    raw = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "DB_SURGEON_CONFIG"

# ${VAR} and ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-default}`` in *value*.

    An unset or empty variable falls back to its default, or to the empty
    string when no default is given.  An unterminated ``${`` is kept.
    """

    def _replace(match: re.Match) -> str:
        env_val = os.environ.get(match.group(1))
        if env_val:
            return env_val
        return match.group(2) or ""

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _expand(obj: Any) -> Any:
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _expand(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# !include support
# ---------------------------------------------------------------------------


class IncludeLoader(yaml.SafeLoader):
    """SafeLoader with an ``!include`` tag.

    A subclass keeps the global ``yaml.SafeLoader`` untouched.  Each
    instance carries the chain of files being loaded so that circular
    includes are reported instead of recursing forever.
    """

    include_chain: list[Path]


def _construct_include(loader: IncludeLoader, node: yaml.ScalarNode) -> Any:
    target = Path(loader.construct_scalar(node))
    if not target.is_absolute():
        target = Path(loader.name).resolve().parent / target
    target = target.resolve()

    chain = loader.include_chain
    if target in chain:
        cycle = " -> ".join(str(p) for p in [*chain, target])
        raise ValueError(f"Circular include detected: {cycle}")
    if not target.exists():
        raise FileNotFoundError(
            f"Include file not found: {target} "
            f"(referenced from {Path(loader.name).resolve()})"
        )
    return load_yaml_file(target, _chain=[*chain, target])


IncludeLoader.add_constructor("!include", _construct_include)


def load_yaml_file(path: Path, *, _chain: list[Path] | None = None) -> Any:
    """Parse one YAML file, following ``!include`` directives."""
    path = path.resolve()
    with open(path, encoding="utf-8") as fh:
        loader = IncludeLoader(fh)
        loader.include_chain = _chain or [path]
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# Discovery and merge
# ---------------------------------------------------------------------------


def discover_config_files(explicit: str | None = None) -> list[Path]:
    """Return existing config files, highest precedence first.

    Search order:
        1. *explicit* path (``--config``), else ``DB_SURGEON_CONFIG``
        2. ``.db_surgeon/config.yml`` in CWD
        3. ``.db_surgeon/config.yaml`` in CWD
        4. ``~/.config/db_surgeon/config.yml``

    An explicit path that does not exist is an error rather than being
    silently skipped.
    """
    candidates: list[Path] = []

    chosen = explicit or os.environ.get(CONFIG_ENV_VAR)
    if chosen:
        chosen_path = Path(chosen).expanduser().resolve()
        if not chosen_path.exists():
            raise FileNotFoundError(f"Config file not found: {chosen_path}")
        candidates.append(chosen_path)

    cwd = Path.cwd()
    candidates.append(cwd / ".db_surgeon" / "config.yml")
    candidates.append(cwd / ".db_surgeon" / "config.yaml")
    candidates.append(Path.home() / ".config" / "db_surgeon" / "config.yml")

    return [p for p in candidates if p.exists()]


def load_hierarchical_config(explicit: str | None = None) -> dict[str, Any]:
    """Load and merge every discovered config file.

    Files are applied from lowest precedence to highest; top-level keys
    from a higher-precedence file replace (not deep-merge) earlier ones.
    Env var expansion runs once, after the merge.

    Returns an empty dict when no config file exists.
    """
    paths = discover_config_files(explicit)
    if not paths:
        logger.debug("No config files found, using defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        data = load_yaml_file(path)
        if isinstance(data, dict):
            merged.update(data)
        elif data is not None:
            logger.warning(
                "Config file %s has non-dict root (%s), skipping",
                path,
                type(data).__name__,
            )

    return _expand(merged)
