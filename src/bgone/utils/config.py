"""Configuration management for bgone."""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field

from .color import Color, ForegroundSlot, parse_foreground_literals
from .errors import ConfigurationError
from .logging import get_logger

logger = get_logger(__name__)

DEFAULT_THRESHOLD = 0.05


class UnmixConfig(BaseModel):
    """Immutable settings for one background-removal run."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    background: Optional[Color] = None
    foregrounds: Tuple[ForegroundSlot, ...] = ()
    strict: bool = False
    threshold: float = DEFAULT_THRESHOLD
    border_width: int = Field(default=1, ge=1)
    edge_sample_interval: int = Field(default=1, ge=1)
    n_jobs: int = -1
    chunk_size: int = Field(default=4096, ge=1)
    max_evaluation_colors: int = Field(default=4096, ge=1)

    @property
    def has_unknowns(self) -> bool:
        return any(slot.is_unknown for slot in self.foregrounds)

    def validate_for_run(self) -> None:
        """Reject configurations that cannot be processed.

        Raises:
            ConfigurationError: On the first invalid setting found
        """
        if not (0.0 <= self.threshold <= 1.0):
            raise ConfigurationError(
                f"threshold must be between 0 and 1 (got {self.threshold})"
            )
        if self.strict and not self.foregrounds:
            raise ConfigurationError(
                "strict mode requires at least one foreground color"
            )
        if self.n_jobs == 0:
            raise ConfigurationError("n_jobs must be non-zero")


class ConfigManager:
    """Manage configuration settings for bgone."""

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to configuration file
        """
        self.config_path = Path(config_path) if config_path else None
        self._config = self.get_default_config()

        if self.config_path and self.config_path.exists():
            self.load_config()

    def get_default_config(self) -> Dict[str, Any]:
        """Get default configuration."""
        return {
            "unmix": {
                "foregrounds": [],
                "background": None,
                "strict": False,
                "threshold": DEFAULT_THRESHOLD,
            },
            "background": {
                "border_width": 1,
                "edge_sample_interval": 1,
            },
            "performance": {
                "n_jobs": -1,
                "chunk_size": 4096,
                "max_evaluation_colors": 4096,
            },
            "output": {
                "suffix": "-bgone",
            },
        }

    def load_config(self) -> None:
        """Load configuration from file."""
        if not self.config_path or not self.config_path.exists():
            return

        try:
            with open(self.config_path, "r") as f:
                if self.config_path.suffix.lower() in (".yaml", ".yml"):
                    loaded_config = yaml.safe_load(f) or {}
                else:
                    loaded_config = json.load(f)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Failed to load configuration from {self.config_path}: {e}"
            ) from e

        if not isinstance(loaded_config, dict):
            raise ConfigurationError(
                f"Configuration file {self.config_path} must contain a mapping"
            )

        self._config = self._deep_merge(self._config, loaded_config)
        logger.debug(f"Loaded configuration from {self.config_path}")

    def save_config(self, output_path: Optional[Union[str, Path]] = None) -> None:
        """Save current configuration to file.

        Args:
            output_path: Optional output path, defaults to current config_path
        """
        save_path = Path(output_path) if output_path else self.config_path

        if not save_path:
            raise ValueError("No output path specified")

        save_path.parent.mkdir(parents=True, exist_ok=True)

        with open(save_path, "w") as f:
            if save_path.suffix.lower() in (".yaml", ".yml"):
                yaml.dump(self._config, f, default_flow_style=False, indent=2)
            else:
                json.dump(self._config, f, indent=2)

    def get_config(self) -> Dict[str, Any]:
        """Get current configuration."""
        return self._config.copy()

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by key.

        Args:
            key: Configuration key (supports dot notation)
            default: Default value if key not found

        Returns:
            Configuration value
        """
        value = self._config
        try:
            for k in key.split("."):
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any) -> None:
        """Set configuration value.

        Args:
            key: Configuration key (supports dot notation)
            value: Value to set
        """
        keys = key.split(".")
        config = self._config

        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    def update(self, updates: Dict[str, Any]) -> None:
        """Update configuration with dictionary of changes."""
        self._config = self._deep_merge(self._config, updates)

    def _deep_merge(self, base: Dict, update: Dict) -> Dict:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in update.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def get_unmix_config(self, **overrides: Any) -> UnmixConfig:
        """Build the immutable run configuration.

        Keyword overrides (e.g. from command-line flags) win over file and
        default values; ``None`` overrides are ignored.

        Args:
            **overrides: Any ``UnmixConfig`` field. ``foregrounds`` may be given
                as literals and ``background`` as a hex string.

        Returns:
            Run configuration
        """
        values: Dict[str, Any] = {
            "foregrounds": self.get("unmix.foregrounds", []),
            "background": self.get("unmix.background"),
            "strict": self.get("unmix.strict", False),
            "threshold": self.get("unmix.threshold", DEFAULT_THRESHOLD),
            "border_width": self.get("background.border_width", 1),
            "edge_sample_interval": self.get("background.edge_sample_interval", 1),
            "n_jobs": self.get("performance.n_jobs", -1),
            "chunk_size": self.get("performance.chunk_size", 4096),
            "max_evaluation_colors": self.get(
                "performance.max_evaluation_colors", 4096
            ),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})

        values["foregrounds"] = _coerce_slots(values["foregrounds"])
        background = values["background"]
        if background is not None and not isinstance(background, Color):
            values["background"] = Color.from_hex(str(background))

        return UnmixConfig(**values)

    @classmethod
    def from_env(
        cls, config_path: Optional[Union[str, Path]] = None
    ) -> "ConfigManager":
        """Create configuration manager from environment variables."""
        config_manager = cls(config_path)

        env_mappings = {
            "BGONE_THRESHOLD": "unmix.threshold",
            "BGONE_STRICT": "unmix.strict",
            "BGONE_BACKGROUND": "unmix.background",
            "BGONE_JOBS": "performance.n_jobs",
            "BGONE_BORDER_WIDTH": "background.border_width",
            "BGONE_OUTPUT_SUFFIX": "output.suffix",
        }

        string_keys = {"unmix.background", "output.suffix"}

        for env_var, config_key in env_mappings.items():
            value = os.getenv(env_var)
            if value is not None:
                if config_key not in string_keys:
                    value = _coerce_env_value(value)
                config_manager.set(config_key, value)

        return config_manager

    def validate_config(self) -> Tuple[bool, List[str]]:
        """Validate current configuration.

        Returns:
            Tuple of (is_valid, list_of_errors)
        """
        errors = []

        threshold = self.get("unmix.threshold", DEFAULT_THRESHOLD)
        if not isinstance(threshold, (int, float)) or not (0 <= threshold <= 1):
            errors.append("unmix.threshold must be between 0 and 1")

        foregrounds = self.get("unmix.foregrounds", [])
        try:
            slots = _coerce_slots(foregrounds)
        except ConfigurationError as e:
            errors.append(f"unmix.foregrounds: {e}")
            slots = ()

        if self.get("unmix.strict", False) and not slots:
            errors.append("unmix.strict requires at least one foreground color")

        background = self.get("unmix.background")
        if background is not None:
            try:
                Color.from_hex(str(background))
            except ConfigurationError as e:
                errors.append(f"unmix.background: {e}")

        for key in ("background.border_width", "background.edge_sample_interval"):
            value = self.get(key, 1)
            if not isinstance(value, int) or value < 1:
                errors.append(f"{key} must be a positive integer")

        n_jobs = self.get("performance.n_jobs", -1)
        if not isinstance(n_jobs, int) or n_jobs == 0:
            errors.append("performance.n_jobs must be a non-zero integer")

        for key in ("performance.chunk_size", "performance.max_evaluation_colors"):
            value = self.get(key, 1)
            if not isinstance(value, int) or value < 1:
                errors.append(f"{key} must be a positive integer")

        return len(errors) == 0, errors

    def get_profile_configs(self) -> Dict[str, Dict]:
        """Get predefined configuration profiles."""
        return {
            "fast": {
                "performance": {
                    "n_jobs": -1,
                    "chunk_size": 16384,
                    "max_evaluation_colors": 1024,
                },
                "background": {"edge_sample_interval": 10},
            },
            "balanced": {
                "performance": {
                    "n_jobs": -1,
                    "chunk_size": 4096,
                    "max_evaluation_colors": 4096,
                },
                "background": {"edge_sample_interval": 1},
            },
            "precise": {
                "performance": {
                    "chunk_size": 2048,
                    "max_evaluation_colors": 16384,
                },
                "background": {"border_width": 2, "edge_sample_interval": 1},
            },
        }

    def apply_profile(self, profile_name: str) -> None:
        """Apply a predefined configuration profile.

        Args:
            profile_name: Name of profile to apply
        """
        profiles = self.get_profile_configs()

        if profile_name not in profiles:
            raise ConfigurationError(
                f"Unknown profile: {profile_name}. Available: {list(profiles.keys())}"
            )

        self.update(profiles[profile_name])


def _coerce_slots(foregrounds: Any) -> Tuple[ForegroundSlot, ...]:
    if isinstance(foregrounds, str):
        foregrounds = foregrounds.split()
    if not isinstance(foregrounds, Sequence):
        raise ConfigurationError("foregrounds must be a list of color literals")
    if all(isinstance(f, ForegroundSlot) for f in foregrounds):
        return tuple(foregrounds)
    return parse_foreground_literals(str(f) for f in foregrounds)


def _coerce_env_value(value: str) -> Any:
    """Convert an environment string to bool, int or float where it parses."""
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        return value
