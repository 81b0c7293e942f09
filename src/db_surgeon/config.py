"""Runtime configuration for a merge run.

Combines CLI args, environment variables, .env files, and the YAML config
into one flat ``Config``.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    DB_SURGEON_SOURCE_URL: SQLAlchemy URL of the source store (required)
    DB_SURGEON_TARGET_URL: SQLAlchemy URL of the target store (required)
    DB_SURGEON_ASSET_URL: Base URL assets are downloaded from
    DB_SURGEON_ASSETS_DIR: Local assets root (default: assets)
    DB_SURGEON_BOOKMARK_FILE: Bookmark location (default: .db_surgeon/bookmark)
    DB_SURGEON_CONFLICT_STRATEGY: keep-target | keep-source | keep-both | interactive
"""

import logging
import os
from dataclasses import dataclass

from .config_schema import UnifiedConfig
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

CONFLICT_STRATEGIES = ("keep-target", "keep-source", "keep-both", "interactive")


@dataclass
class Config:
    source_url: str
    target_url: str
    asset_url: str | None = None
    assets_dir: str = "assets"
    asset_timeout: float = 30.0
    bookmark_file: str = ".db_surgeon/bookmark"
    conflict_strategy: str = "keep-target"
    max_depth: int = 64


def validate_config(config: Config) -> None:
    """Validate configuration values.

    Raises:
        ConfigurationError: If a store URL is empty, both stores point at
            the same database, or the conflict strategy is unknown.
    """
    config.source_url = config.source_url.strip()
    config.target_url = config.target_url.strip()

    if not config.source_url:
        raise ConfigurationError(
            "Source store URL is empty. Set DB_SURGEON_SOURCE_URL."
        )
    if not config.target_url:
        raise ConfigurationError(
            "Target store URL is empty. Set DB_SURGEON_TARGET_URL."
        )
    if config.source_url == config.target_url:
        raise ConfigurationError(
            "Source and target store URLs are identical; refusing to merge "
            "a store into itself"
        )

    if config.conflict_strategy not in CONFLICT_STRATEGIES:
        raise ConfigurationError(
            f"Unknown conflict strategy '{config.conflict_strategy}'. "
            f"Valid strategies: {', '.join(CONFLICT_STRATEGIES)}"
        )

    if config.asset_url:
        config.asset_url = config.asset_url.strip().removesuffix("/")


def load_config(
    source_url: str | None = None,
    target_url: str | None = None,
    asset_url: str | None = None,
    assets_dir: str | None = None,
    bookmark_file: str | None = None,
    conflict_strategy: str | None = None,
    unified: UnifiedConfig | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > YAML config > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        source_url: Override source store URL.
        target_url: Override target store URL.
        asset_url: Override asset download base URL.
        assets_dir: Override local assets directory.
        bookmark_file: Override bookmark file path.
        conflict_strategy: Override conflict strategy.
        unified: Parsed YAML config supplying fallbacks.

    Returns:
        Validated Config instance.

    Raises:
        ConfigurationError: If a store URL is missing after checking all
            sources, or validation fails.
    """
    fb = unified or UnifiedConfig()

    final_source = (
        source_url
        or os.getenv("DB_SURGEON_SOURCE_URL")
        or fb.stores.source_url
    )
    if not final_source:
        raise ConfigurationError(
            "Source store URL not found. Set DB_SURGEON_SOURCE_URL, pass "
            "--source-url, or add 'stores.source_url' to config.yml."
        )

    final_target = (
        target_url
        or os.getenv("DB_SURGEON_TARGET_URL")
        or fb.stores.target_url
    )
    if not final_target:
        raise ConfigurationError(
            "Target store URL not found. Set DB_SURGEON_TARGET_URL, pass "
            "--target-url, or add 'stores.target_url' to config.yml."
        )

    config = Config(
        source_url=final_source,
        target_url=final_target,
        asset_url=asset_url
        or os.getenv("DB_SURGEON_ASSET_URL")
        or fb.assets.source_url,
        assets_dir=assets_dir
        or os.getenv("DB_SURGEON_ASSETS_DIR")
        or fb.assets.directory,
        asset_timeout=fb.assets.timeout,
        bookmark_file=bookmark_file
        or os.getenv("DB_SURGEON_BOOKMARK_FILE")
        or fb.merge.bookmark_file,
        conflict_strategy=conflict_strategy
        or os.getenv("DB_SURGEON_CONFLICT_STRATEGY")
        or fb.merge.conflict_strategy,
        max_depth=fb.merge.max_depth,
    )

    validate_config(config)

    return config


def resolve_bookmark_file(
    bookmark_file: str | None = None,
    unified: UnifiedConfig | None = None,
) -> str:
    """Bookmark path alone, for commands that never open a store.

    Same precedence as ``load_config``.
    """
    fb = unified or UnifiedConfig()
    return (
        bookmark_file
        or os.getenv("DB_SURGEON_BOOKMARK_FILE")
        or fb.merge.bookmark_file
    )
