"""Configuration file loading and management"""

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from nvbridge.common.errors import ConfigurationError

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _relativeRuntimePath_default() -> str:
    if sys.platform == "darwin":
        return "../Resources/runtime"
    return "../share/nvbridge/runtime"


@dataclass
class CoreConfig:
    """Core process launch settings"""
    executable: str = "nvim"
    startup_flags: list[str] = field(default_factory=lambda: ["--cmd", "set termguicolors"])
    embed_flags: list[str] = field(default_factory=lambda: ["--embed"])
    shutdown_timeout: float = 2.0


@dataclass
class RuntimeConfig:
    """Runtime-path injection candidates"""
    env_var: str = "NVIM_QT_RUNTIME_PATH"
    default_path: Optional[str] = None
    relative_path: str = field(default_factory=_relativeRuntimePath_default)


@dataclass
class TransportConfig:
    """RPC transport settings"""
    request_timeout: float = 10.0
    max_buffer_size: int = 1024 * 1024


@dataclass
class LoggingConfig:
    """Logging configuration settings"""
    level: str = "WARNING"
    file: Optional[str] = None
    format: str = DEFAULT_LOG_FORMAT
    env_var: str = "NVIM_QT_LOG"


@dataclass
class HostConfig:
    """Host environment settings"""
    login_environment: bool = field(default_factory=lambda: sys.platform == "darwin")


@dataclass
class Config:
    """Complete application configuration"""
    core: CoreConfig = field(default_factory=CoreConfig)
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    host: HostConfig = field(default_factory=HostConfig)


class ConfigLoader:
    """Loads and parses configuration from YAML files"""

    DEFAULT_CONFIG_PATHS = [
        "config.yml",
        "~/.config/nvbridge/config.yml",
        "/etc/nvbridge/config.yml",
    ]

    @staticmethod
    def configFile_find() -> Optional[Path]:
        """
        Find configuration file in standard locations

        Returns:
            Path to config file, or None if not found
        """
        for config_path in ConfigLoader.DEFAULT_CONFIG_PATHS:
            path = Path(config_path).expanduser().resolve()
            if path.exists() and path.is_file():
                return path
        return None

    @staticmethod
    def yaml_load(file_path: Path) -> Dict[str, Any]:
        """
        Load YAML configuration file

        Args:
            file_path: Path to YAML file

        Returns:
            Parsed configuration dictionary (empty for an empty file)

        Raises:
            FileNotFoundError: If file does not exist
            ConfigurationError: If file is not valid YAML or not a mapping
        """
        with open(file_path, "r") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as exc:
                raise ConfigurationError(f"Config file {file_path} is not valid YAML: {exc}") from exc

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {file_path} must contain a YAML dictionary")

        return data

    @staticmethod
    def config_parse(data: Dict[str, Any]) -> Config:
        """
        Parse configuration dictionary into Config object

        Missing sections and keys fall back to built-in defaults.

        Args:
            data: Raw configuration dictionary

        Returns:
            Parsed Config object

        Raises:
            ConfigurationError: If a section or key has the wrong type
        """
        defaults = Config()

        core_data = ConfigLoader.section_get(data, "core")
        core = CoreConfig(
            executable=ConfigLoader.value_get(core_data, "core.executable", defaults.core.executable, str),
            startup_flags=ConfigLoader.stringList_get(
                core_data, "core.startup_flags", defaults.core.startup_flags
            ),
            embed_flags=ConfigLoader.stringList_get(
                core_data, "core.embed_flags", defaults.core.embed_flags
            ),
            shutdown_timeout=float(
                ConfigLoader.value_get(
                    core_data, "core.shutdown_timeout", defaults.core.shutdown_timeout, (int, float)
                )
            ),
        )

        runtime_data = ConfigLoader.section_get(data, "runtime")
        runtime = RuntimeConfig(
            env_var=ConfigLoader.value_get(runtime_data, "runtime.env_var", defaults.runtime.env_var, str),
            default_path=ConfigLoader.value_get(runtime_data, "runtime.default_path", None, str),
            relative_path=ConfigLoader.value_get(
                runtime_data, "runtime.relative_path", defaults.runtime.relative_path, str
            ),
        )

        transport_data = ConfigLoader.section_get(data, "transport")
        transport = TransportConfig(
            request_timeout=float(
                ConfigLoader.value_get(
                    transport_data,
                    "transport.request_timeout",
                    defaults.transport.request_timeout,
                    (int, float),
                )
            ),
            max_buffer_size=ConfigLoader.value_get(
                transport_data, "transport.max_buffer_size", defaults.transport.max_buffer_size, int
            ),
        )

        logging_data = ConfigLoader.section_get(data, "logging")
        logging = LoggingConfig(
            level=ConfigLoader.logLevel_get(logging_data, "logging.level", defaults.logging.level),
            file=ConfigLoader.value_get(logging_data, "logging.file", None, str),
            format=ConfigLoader.value_get(logging_data, "logging.format", defaults.logging.format, str),
            env_var=ConfigLoader.value_get(logging_data, "logging.env_var", defaults.logging.env_var, str),
        )

        host_data = ConfigLoader.section_get(data, "host")
        host = HostConfig(
            login_environment=ConfigLoader.value_get(
                host_data, "host.login_environment", defaults.host.login_environment, bool
            ),
        )

        return Config(core=core, runtime=runtime, transport=transport, logging=logging, host=host)

    @staticmethod
    def section_get(data: Dict[str, Any], name: str) -> Dict[str, Any]:
        """
        Return a config section, empty when absent

        Raises:
            ConfigurationError: If the section is not a mapping
        """
        section = data.get(name)
        if section is None:
            return {}
        if not isinstance(section, dict):
            raise ConfigurationError(f"Config section '{name}' must be a dictionary")
        return section

    @staticmethod
    def value_get(section: Dict[str, Any], dotted: str, default: Any, expected: Any) -> Any:
        """
        Return a typed value from a section, or the default when absent

        Args:
            section: Section mapping
            dotted: Full key name for error messages
            default: Value used when the key is missing
            expected: Type or tuple of types the value must have

        Raises:
            ConfigurationError: If the value has the wrong type
        """
        key = dotted.rsplit(".", 1)[-1]
        if key not in section or section[key] is None:
            return default
        value = section[key]
        # bool is an int subclass; only accept it where bool is expected
        if isinstance(value, bool) and expected is not bool:
            raise ConfigurationError(f"Config key '{dotted}' has invalid value {value!r}")
        if not isinstance(value, expected):
            raise ConfigurationError(f"Config key '{dotted}' has invalid value {value!r}")
        return value

    @staticmethod
    def logLevel_get(section: Dict[str, Any], dotted: str, default: str) -> str:
        """
        Return a logging level name, normalized to upper case

        Raises:
            ConfigurationError: If the value is not a known level name
        """
        value = ConfigLoader.value_get(section, dotted, default, str)
        level = value.upper()
        if level not in LOG_LEVELS:
            raise ConfigurationError(
                f"Config key '{dotted}' has invalid value {value!r}; expected one of {', '.join(LOG_LEVELS)}"
            )
        return level

    @staticmethod
    def stringList_get(section: Dict[str, Any], dotted: str, default: list[str]) -> list[str]:
        """Return a list-of-strings value, or a copy of the default"""
        value = ConfigLoader.value_get(section, dotted, None, list)
        if value is None:
            return list(default)
        if not all(isinstance(item, str) for item in value):
            raise ConfigurationError(f"Config key '{dotted}' must be a list of strings")
        return list(value)

    @staticmethod
    def config_load(file_path: Optional[Path] = None) -> Config:
        """
        Load configuration from file

        Args:
            file_path: Optional path to config file. If None, searches standard
                locations and falls back to defaults when none exists.

        Returns:
            Parsed Config object

        Raises:
            FileNotFoundError: If an explicit config file does not exist
            ConfigurationError: If config file is invalid
        """
        if file_path is None:
            file_path = ConfigLoader.configFile_find()
            if file_path is None:
                return Config()

        data = ConfigLoader.yaml_load(file_path)
        return ConfigLoader.config_parse(data)

    @staticmethod
    def configWithOverrides_load(
        file_path: Optional[Path] = None,
        **overrides: Any
    ) -> Config:
        """
        Load configuration and apply command-line overrides

        Args:
            file_path: Optional path to config file
            **overrides: Key-value pairs to override config values

        Returns:
            Config object with overrides applied

        Example:
            config = ConfigLoader.configWithOverrides_load(
                executable="/usr/local/bin/nvim",
                log_level="DEBUG"
            )
        """
        config = ConfigLoader.config_load(file_path)

        if overrides.get("executable") is not None:
            config.core.executable = overrides["executable"]
        if overrides.get("log_level") is not None:
            config.logging.level = overrides["log_level"]
        if overrides.get("log_file") is not None:
            config.logging.file = overrides["log_file"]

        return config
