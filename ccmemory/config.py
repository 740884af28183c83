"""ccmemory configuration management."""

import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .xdg import get_xdg_config_path, get_xdg_data_path

logger = logging.getLogger(__name__)


class Config(BaseModel):
    """ccmemory configuration."""

    model_config = ConfigDict(
        extra="allow",
        str_strip_whitespace=True,
    )

    db_path: Optional[Path] = None
    fts_enabled: bool = True

    embeddings_enabled: bool = False
    embedding_model: str = "BAAI/bge-small-en-v1.5"
    embedding_dimension: int = Field(default=384, gt=0)

    decay_enabled: bool = True
    decay_interval_seconds: float = Field(default=3600.0, gt=0)
    decay_batch_size: int = Field(default=100, gt=0)

    dedup_enabled: bool = True
    # Near-duplicate merging is opt-in; exact hash matches are always merged when dedup is on
    dedup_near_duplicates: bool = False
    dedup_simhash_threshold: int = Field(default=3, ge=0, le=64)

    promotion_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    timeline_depth: int = Field(default=5, ge=0)
    search_limit: int = Field(default=10, gt=0)

    def resolved_db_path(self) -> Path:
        """Database path, falling back to the XDG data directory."""
        if self.db_path:
            return Path(self.db_path).expanduser()
        return get_xdg_data_path() / "memory.duckdb"

    @property
    def near_duplicate_threshold(self) -> Optional[int]:
        """Simhash Hamming threshold passed to the store, or None when disabled."""
        if not self.dedup_near_duplicates:
            return None
        return self.dedup_simhash_threshold


def get_config_path() -> Path:
    return get_xdg_config_path("config.json")


def load_config(path: Optional[Path] = None) -> Config:
    """Load ccmemory configuration from JSON file.

    Args:
        path: Path to config.json file. If None, uses default path

    Returns:
        Config object with loaded settings. Returns default config if file doesn't exist.
    """
    if path is None:
        path = get_config_path()

    if not path.exists():
        return Config()

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)

        if "db_path" in data and data["db_path"]:
            data["db_path"] = Path(data["db_path"])

        return Config.model_validate(data)

    except json.JSONDecodeError as e:
        logger.warning("Failed to parse config at %s: %s", path, e)
        return Config()
    except Exception as e:
        logger.warning("Failed to load config from %s: %s", path, e)
        return Config()


def save_config(config: Config, path: Optional[Path] = None) -> None:
    """Save ccmemory configuration to JSON file.

    Args:
        config: Config object to save
        path: Path to config.json file. If None, uses default path

    Raises:
        IOError: If file cannot be written
    """
    if path is None:
        path = get_config_path()

    path.parent.mkdir(parents=True, exist_ok=True)

    config_data = config.model_dump(exclude_none=True, mode="json")

    with open(path, "w", encoding="utf-8") as f:
        json.dump(config_data, f, indent=2)
