"""
Centralized settings and path configuration for the pricing core.
"""
import os
from pathlib import Path
from dataclasses import dataclass
from typing import Optional


def get_project_root() -> Path:
    """Get the project root directory (where pyproject.toml lives)."""
    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / 'pyproject.toml').exists():
            return parent
    # Fallback to 3 levels up from this file
    return Path(__file__).resolve().parent.parent.parent.parent


def parse_bool(value: str) -> bool:
    """Parse a boolean from an environment string."""
    return value.strip().lower() in ('true', '1', 'yes', 'on')


@dataclass
class Settings:
    """Application settings with sensible defaults."""

    project_root: Path

    # Factory rate data (workbooks and/or per-factory CSV directories)
    data_dir: Path

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # Currency symbol used in charge labels when a factory has none
    default_currency: str = "$"

    # Transformation expressions longer than this are refused before parsing
    max_expression_length: int = 2000

    # Heuristic mapping suggestions must score above this
    suggestion_threshold: float = 0.6

    @classmethod
    def load(cls, project_root: Optional[Path] = None) -> 'Settings':
        """Load settings from the project structure and environment."""
        root = project_root or get_project_root()

        data_dir = os.environ.get('SEAFOOD_PRICING_DATA_DIR')
        log_json = os.environ.get('SEAFOOD_PRICING_LOG_JSON')

        return cls(
            project_root=root,
            data_dir=Path(data_dir) if data_dir else root / 'data' / 'factories',
            log_level=os.environ.get('SEAFOOD_PRICING_LOG_LEVEL', 'INFO').upper(),
            log_json=parse_bool(log_json) if log_json is not None else True,
            default_currency=os.environ.get('SEAFOOD_PRICING_CURRENCY', '$'),
        )


# Default settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def reset_settings():
    """Drop the cached settings so the next get_settings() re-reads the environment."""
    global _settings
    _settings = None
