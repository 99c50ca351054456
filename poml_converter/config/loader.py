"""
Configuration management and loading.

Handles converter settings from YAML and environment variables.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional

import yaml

from ..core.history import DEFAULT_FREE_HISTORY_LIMIT
from ..core.quota import DEFAULT_BONUS_ALLOWANCE, DEFAULT_TRIAL_LIMIT
from ..sdk.gemini_client import (
    DEFAULT_BASE_URL,
    DEFAULT_INITIAL_BACKOFF_MS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MODEL,
    DEFAULT_TIMEOUT_SECONDS,
)

API_KEY_ENV_VAR = "GEMINI_API_KEY"


@dataclass(frozen=True)
class EndpointConfig:
    """Remote LLM endpoint settings."""
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    api_key: Optional[str] = None
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    def __post_init__(self):
        """Validate endpoint values."""
        if not self.base_url or not self.base_url.strip():
            raise ValueError("base_url cannot be empty")
        if not self.model or not self.model.strip():
            raise ValueError("model cannot be empty")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

    def resolved_api_key(self) -> Optional[str]:
        """Configured key, falling back to the GEMINI_API_KEY environment variable."""
        return self.api_key or os.environ.get(API_KEY_ENV_VAR) or None


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy for remote conversion attempts."""
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    initial_backoff_ms: int = DEFAULT_INITIAL_BACKOFF_MS

    def __post_init__(self):
        """Validate retry values."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_backoff_ms < 0:
            raise ValueError("initial_backoff_ms must be >= 0")


@dataclass(frozen=True)
class QuotaConfig:
    """Tier allowances."""
    trial_limit: int = DEFAULT_TRIAL_LIMIT
    bonus_allowance: int = DEFAULT_BONUS_ALLOWANCE

    def __post_init__(self):
        """Validate quota values are non-negative."""
        if self.trial_limit < 0:
            raise ValueError("trial_limit must be >= 0")
        if self.bonus_allowance < 0:
            raise ValueError("bonus_allowance must be >= 0")


@dataclass(frozen=True)
class HistoryConfig:
    """History persistence and read-side retention."""
    persist_anonymous: bool = False
    free_history_limit: int = DEFAULT_FREE_HISTORY_LIMIT

    def __post_init__(self):
        if self.free_history_limit < 0:
            raise ValueError("free_history_limit must be >= 0")


@dataclass(frozen=True)
class ConverterConfig:
    """Complete converter configuration."""
    endpoint: EndpointConfig = field(default_factory=EndpointConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    quota: QuotaConfig = field(default_factory=QuotaConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    pro_users: FrozenSet[str] = frozenset()


def default_config() -> ConverterConfig:
    """Configuration used when no file is given."""
    return ConverterConfig()


_SECTION_TYPES = {
    'endpoint': {'base_url': str, 'model': str, 'api_key': str, 'timeout_seconds': (int, float)},
    'retry': {'max_attempts': int, 'initial_backoff_ms': int},
    'quota': {'trial_limit': int, 'bonus_allowance': int},
    'history': {'persist_anonymous': bool, 'free_history_limit': int},
}


def load_converter_config(path: str) -> ConverterConfig:
    """Load and validate converter configuration from YAML file.

    Every section is optional; missing keys take their defaults. Unknown
    keys and wrongly typed values are rejected so a typo never silently
    changes a quota or retry policy.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated ConverterConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Converter config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = set(_SECTION_TYPES) | {'pro_users'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections = {
        name: _parse_section(raw_config.get(name, {}), name)
        for name in _SECTION_TYPES
    }

    pro_users = raw_config.get('pro_users', [])
    if not isinstance(pro_users, list) or not all(isinstance(u, str) for u in pro_users):
        raise ValueError("'pro_users' must be a list of user ids")

    return ConverterConfig(
        endpoint=EndpointConfig(**sections['endpoint']),
        retry=RetryConfig(**sections['retry']),
        quota=QuotaConfig(**sections['quota']),
        history=HistoryConfig(**sections['history']),
        pro_users=frozenset(pro_users)
    )


def _parse_section(data: Any, name: str) -> Dict[str, Any]:
    """Check one section's keys and value types.

    Args:
        data: Section data from YAML
        name: Section name for error messages

    Returns:
        Keyword arguments for the section's dataclass

    Raises:
        ValueError: If the section is invalid
    """
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")

    types = _SECTION_TYPES[name]
    unknown_keys = set(data.keys()) - set(types)
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")

    parsed = {}
    for key, value in data.items():
        if value is None:
            continue
        expected = types[key]
        # bool is an int subclass; never accept it for numeric settings
        if isinstance(value, bool) and expected is not bool:
            raise ValueError(f"'{key}' in {name} must be a number")
        if not isinstance(value, expected):
            raise ValueError(f"'{key}' in {name} has invalid type {type(value).__name__}")
        parsed[key] = value

    return parsed
