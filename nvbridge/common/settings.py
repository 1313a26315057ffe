"""Application settings singleton - single source of truth for configuration

This module provides a singleton Settings class that consolidates:
1. Protocol-level constants (must match the core's GUI runtime scripts)
2. Runtime configuration from config.yml

Usage:
    from nvbridge.common.settings import settings

    # Initialize once at startup with loaded config
    config = ConfigLoader.config_load()
    settings.initialize(config)

    # Use anywhere in the application
    transport.notify(settings.GUI_CHANNEL, ["Foreground"])
"""

from typing import Optional

from nvbridge.common.config import Config


class Settings:
    """Singleton settings manager combining config.yml and protocol constants

    This class provides:
    - GUI protocol constants shared with the core's runtime scripts
    - Access to runtime configuration loaded from config.yml

    The singleton pattern ensures every part of the bridge uses the same
    channel names and configuration values.
    """

    _instance: Optional["Settings"] = None

    def __new__(cls) -> "Settings":
        """Ensure only one Settings instance exists"""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        """Initialize settings singleton (only runs once)"""
        if getattr(self, "_initialized", False):
            return
        self._initialized = True
        self._config: Optional[Config] = None

    def initialize(self, config: Config) -> None:
        """
        Initialize with loaded configuration

        Args:
            config: Loaded configuration.
        """
        self._config = config

    # =========================================================================
    # GUI Protocol Constants
    # =========================================================================

    GUI_CHANNEL: str = "Gui"
    """RPC notification method carrying every GUI protocol event

    The first positional argument is the event discriminator (e.g. "Font"),
    the rest are the event arguments.
    """

    SUBSCRIBE_METHOD: str = "nvim_subscribe"
    """Request used once per connection to receive GUI_CHANNEL notifications"""

    SET_VAR_METHOD: str = "nvim_set_var"
    """Request used to publish presentation-side values to the core"""

    WINDOW_ID_VAR: str = "GuiWindowId"
    """Global variable holding the presentation window handle"""

    RUNTIME_PATH_COMMAND: str = "set rtp+={path}"
    """Startup command template used for runtime-path injection"""

    # =========================================================================
    # Session Constants
    # =========================================================================

    SESSION_POLL_INTERVAL: float = 0.1
    """Interval at which the session loop checks for disconnection (seconds)"""

    # =========================================================================
    # Runtime Configuration Access
    # =========================================================================

    @property
    def config(self) -> Config:
        """
        Get loaded configuration object

        Raises:
            RuntimeError: If initialize() has not been called.
        """
        if self._config is None:
            raise RuntimeError("Settings not initialized. Call settings.initialize(config) first.")
        return self._config


# Global singleton instance
settings = Settings()
"""Global settings singleton instance

Import this anywhere in the application:
    from nvbridge.common.settings import settings
"""
