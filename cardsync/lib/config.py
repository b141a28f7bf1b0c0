"""
Configuration loaders for cardsync.

Project settings come from cardsync.env in the project root (KEY=value,
validated against project.schema.json). Lane and card-type vocabularies
come from an optional lifecycle.yaml merged over the built-in defaults.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from . import envparse
from . import validate
from .constants import DEFAULT_LANES, DEFAULT_TYPE_PREFIXES

logger = logging.getLogger(__name__)

PROJECT_ENV_FILE = "cardsync.env"
LIFECYCLE_FILE = "lifecycle.yaml"


@dataclass
class ProjectConfig:
    """Project-level configuration from cardsync.env"""
    root: Path
    repo: str | None  # owner/name passed to gh -R; None uses the checkout's remote
    cards_dir: Path
    archive_dir: Path
    lock_dir: Path
    lock_timeout: int  # seconds to wait for another pass on the same card
    gh_timeout: int  # seconds per gh invocation


@dataclass
class LifecycleConfig:
    """Card vocabularies from lifecycle.yaml"""
    lanes: list[str] = field(default_factory=lambda: list(DEFAULT_LANES))
    type_prefixes: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_TYPE_PREFIXES))

    @property
    def types(self) -> set[str]:
        return set(self.type_prefixes.values())

    def type_for_id(self, card_id: str) -> str | None:
        """Card type implied by the ID prefix (ARCH-123 -> architecture)."""
        prefix = card_id.split("-", 1)[0]
        return self.type_prefixes.get(prefix)


def find_project_root(start: Path) -> Path:
    """Walk up from `start` to the directory holding cardsync.env or .git.

    Falls back to `start` itself.
    """
    start = start.resolve()
    for candidate in [start, *start.parents]:
        if (candidate / PROJECT_ENV_FILE).exists() or (candidate / ".git").exists():
            return candidate
    return start


def load_project_config(root: Path) -> ProjectConfig:
    """Load cardsync.env from `root` and return ProjectConfig.

    A missing file means all defaults.

    Raises:
        ValueError: if the env file has invalid syntax
        validate.ValidationError: if a value doesn't match the schema
    """
    env_path = root / PROJECT_ENV_FILE
    env = envparse.load_env(env_path) if env_path.exists() else {}

    validate.validate(env, "project")

    return ProjectConfig(
        root=root,
        repo=env.get("REPO") or None,
        cards_dir=root / env.get("CARDS_DIR", "ideas"),
        archive_dir=root / env.get("ARCHIVE_DIR", "ideas/_archive"),
        lock_dir=root / env.get("LOCK_DIR", ".cardsync/locks"),
        lock_timeout=int(env.get("LOCK_TIMEOUT", "30")),
        gh_timeout=int(env.get("GH_TIMEOUT", "30")),
    )


def load_lifecycle_config(root: Path | None) -> LifecycleConfig:
    """Load lifecycle.yaml and return LifecycleConfig.

    If root is None or the file doesn't exist, returns defaults. A file that
    fails to parse is logged and ignored.
    """
    if root is None:
        return LifecycleConfig()

    config_path = root / LIFECYCLE_FILE
    if not config_path.exists():
        return LifecycleConfig()

    try:
        data = yaml.safe_load(config_path.read_text()) or {}
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return LifecycleConfig()

    if not isinstance(data, dict):
        logger.warning(f"Ignoring {config_path}: expected a mapping at top level")
        return LifecycleConfig()

    config = LifecycleConfig()

    lanes = data.get("lanes")
    if lanes is not None:
        if isinstance(lanes, list) and lanes and all(isinstance(x, str) and x for x in lanes):
            config.lanes = list(lanes)
        else:
            logger.warning(f"Ignoring 'lanes' in {config_path}: expected a non-empty list of strings")

    types = data.get("types")
    if types is not None:
        if isinstance(types, dict) and all(
            isinstance(k, str) and isinstance(v, str) for k, v in types.items()
        ):
            config.type_prefixes.update(types)
        else:
            logger.warning(f"Ignoring 'types' in {config_path}: expected a prefix -> type mapping")

    return config
