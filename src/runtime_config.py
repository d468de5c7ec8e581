"""
Runtime Configuration Module

Manages runtime-configurable settings that can be modified via the export dialog.
Loads default values from config.py and allows runtime modifications.
"""
from dataclasses import dataclass, asdict
from typing import Optional

# Import defaults from config.py
from config import (
    DEFAULT_QUALITY,
    DEFAULT_ASPECT_RATIO,
    DEFAULT_FPS,
    DYNAMICS_ENABLED,
    RESOURCE_LOAD_TIMEOUT,
    SEEK_TOLERANCE,
)


@dataclass
class RuntimeConfig:
    """
    Runtime configuration that can be modified via the Export dialog.

    These settings are saved/loaded with the project file.
    """
    # Export settings
    export_quality: str = DEFAULT_QUALITY
    export_aspect_ratio: str = DEFAULT_ASPECT_RATIO
    export_fps: int = DEFAULT_FPS
    export_dynamics: bool = DYNAMICS_ENABLED

    # Pipeline tuning
    resource_load_timeout: float = RESOURCE_LOAD_TIMEOUT
    seek_tolerance: float = SEEK_TOLERANCE

    def to_dict(self) -> dict:
        """Convert to dictionary for project save."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "RuntimeConfig":
        """Create from dictionary for project load."""
        # Filter only known fields to avoid errors with old/new config versions
        known_fields = {f.name for f in cls.__dataclass_fields__.values()}
        filtered_data = {k: v for k, v in data.items() if k in known_fields}
        return cls(**filtered_data)

    def reset_to_defaults(self):
        """Reset all settings to default values from config.py."""
        self.export_quality = DEFAULT_QUALITY
        self.export_aspect_ratio = DEFAULT_ASPECT_RATIO
        self.export_fps = DEFAULT_FPS
        self.export_dynamics = DYNAMICS_ENABLED
        self.resource_load_timeout = RESOURCE_LOAD_TIMEOUT
        self.seek_tolerance = SEEK_TOLERANCE


# Global singleton instance
_runtime_config: Optional[RuntimeConfig] = None


def get_config() -> RuntimeConfig:
    """Get the global runtime configuration instance."""
    global _runtime_config
    if _runtime_config is None:
        _runtime_config = RuntimeConfig()
    return _runtime_config


def set_config(config: RuntimeConfig):
    """Set the global runtime configuration instance."""
    global _runtime_config
    _runtime_config = config
