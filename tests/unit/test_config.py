"""Unit tests for configuration loading and parsing"""

from pathlib import Path

import pytest

from nvbridge.common.config import Config, ConfigLoader, DEFAULT_LOG_FORMAT
from nvbridge.common.errors import ConfigurationError


class TestConfigLoaderYAMLLoading:
    """Test YAML file loading"""

    def test_yaml_load_valid_file(self, tmp_path):
        """Test loading valid YAML file"""
        config_file = tmp_path / "test.yml"
        config_file.write_text(
            """
core:
  executable: /usr/local/bin/nvim
"""
        )

        data = ConfigLoader.yaml_load(config_file)
        assert isinstance(data, dict)
        assert data["core"]["executable"] == "/usr/local/bin/nvim"

    def test_yaml_load_missing_file_raises(self):
        """Test loading non-existent file raises FileNotFoundError"""
        with pytest.raises(FileNotFoundError):
            ConfigLoader.yaml_load(Path("/nonexistent/config.yml"))

    def test_yaml_load_invalid_yaml_raises(self, tmp_path):
        """Test loading invalid YAML raises ConfigurationError"""
        config_file = tmp_path / "invalid.yml"
        config_file.write_text("invalid: yaml: content: [unclosed")

        with pytest.raises(ConfigurationError, match="not valid YAML"):
            ConfigLoader.yaml_load(config_file)

    def test_yaml_load_non_dict_raises(self, tmp_path):
        """Test loading YAML that isn't a dict raises ConfigurationError"""
        config_file = tmp_path / "list.yml"
        config_file.write_text("- item1\n- item2")

        with pytest.raises(ConfigurationError, match="must contain a YAML dictionary"):
            ConfigLoader.yaml_load(config_file)

    def test_yaml_load_empty_file(self, tmp_path):
        """Test an empty file loads as an empty mapping"""
        config_file = tmp_path / "empty.yml"
        config_file.write_text("")

        assert ConfigLoader.yaml_load(config_file) == {}


class TestConfigLoaderParsing:
    """Test configuration dictionary parsing"""

    def test_config_parse_empty_uses_defaults(self):
        """Test parsing an empty mapping yields defaults"""
        config = ConfigLoader.config_parse({})

        assert config.core.executable == "nvim"
        assert config.core.startup_flags == ["--cmd", "set termguicolors"]
        assert config.core.embed_flags == ["--embed"]
        assert config.runtime.env_var == "NVIM_QT_RUNTIME_PATH"
        assert config.runtime.default_path is None
        assert config.transport.request_timeout == 10.0
        assert config.logging.level == "WARNING"
        assert config.logging.format == DEFAULT_LOG_FORMAT
        assert config.logging.env_var == "NVIM_QT_LOG"

    def test_config_parse_full(self):
        """Test parsing every section"""
        config = ConfigLoader.config_parse(
            {
                "core": {
                    "executable": "nvim-nightly",
                    "startup_flags": [],
                    "embed_flags": ["--embed", "--headless"],
                    "shutdown_timeout": 5,
                },
                "runtime": {"default_path": "/usr/share/nvbridge/runtime", "relative_path": "rt"},
                "transport": {"request_timeout": 3, "max_buffer_size": 2048},
                "logging": {"level": "DEBUG", "file": "/tmp/nvbridge.log"},
                "host": {"login_environment": True},
            }
        )

        assert config.core.executable == "nvim-nightly"
        assert config.core.startup_flags == []
        assert config.core.embed_flags == ["--embed", "--headless"]
        assert config.core.shutdown_timeout == 5.0
        assert config.runtime.default_path == "/usr/share/nvbridge/runtime"
        assert config.runtime.relative_path == "rt"
        assert config.transport.request_timeout == 3.0
        assert config.transport.max_buffer_size == 2048
        assert config.logging.level == "DEBUG"
        assert config.logging.file == "/tmp/nvbridge.log"
        assert config.host.login_environment is True

    def test_default_lists_not_shared(self):
        """Test parsed lists are independent copies of the defaults"""
        first = ConfigLoader.config_parse({})
        first.core.startup_flags.append("-n")

        assert ConfigLoader.config_parse({}).core.startup_flags == ["--cmd", "set termguicolors"]

    @pytest.mark.parametrize(
        "data",
        [
            {"core": "nvim"},
            {"core": {"executable": 7}},
            {"core": {"startup_flags": "--cmd"}},
            {"core": {"embed_flags": ["--embed", 1]}},
            {"transport": {"request_timeout": "fast"}},
            {"transport": {"max_buffer_size": True}},
            {"host": {"login_environment": "yes"}},
            {"runtime": {"default_path": 5}},
            {"runtime": {"default_path": ["/opt/runtime"]}},
            {"logging": {"file": ["nvbridge.log"]}},
            {"logging": {"file": True}},
            {"logging": {"level": 10}},
        ],
    )
    def test_config_parse_invalid_types(self, data):
        """Test wrong value types raise ConfigurationError"""
        with pytest.raises(ConfigurationError):
            ConfigLoader.config_parse(data)

    def test_config_parse_unknown_log_level(self):
        """Test a level name logging does not know is rejected at load time"""
        with pytest.raises(ConfigurationError, match="logging.level.*LOUD"):
            ConfigLoader.config_parse({"logging": {"level": "LOUD"}})

    def test_config_parse_log_level_case_insensitive(self):
        """Test level names are accepted in any case and normalized"""
        config = ConfigLoader.config_parse({"logging": {"level": "debug"}})

        assert config.logging.level == "DEBUG"

    def test_config_parse_optional_paths(self):
        """Test string runtime and log-file paths are kept"""
        config = ConfigLoader.config_parse(
            {"runtime": {"default_path": "/opt/runtime"}, "logging": {"file": "nvbridge.log"}}
        )

        assert config.runtime.default_path == "/opt/runtime"
        assert config.logging.file == "nvbridge.log"


class TestConfigLoaderLoad:
    """Test loading and overrides"""

    def test_config_load_explicit_missing_raises(self, tmp_path):
        """Test an explicit missing path raises FileNotFoundError"""
        with pytest.raises(FileNotFoundError):
            ConfigLoader.config_load(tmp_path / "missing.yml")

    def test_config_load_without_file_uses_defaults(self, tmp_path, monkeypatch):
        """Test defaults apply when no config file is found"""
        monkeypatch.setattr(ConfigLoader, "DEFAULT_CONFIG_PATHS", [str(tmp_path / "none.yml")])

        assert ConfigLoader.config_load() == Config()

    def test_sample_config_matches_defaults(self, sample_config):
        """Test the shipped config.yml documents the defaults"""
        defaults = Config()

        assert sample_config.core == defaults.core
        assert sample_config.transport == defaults.transport
        assert sample_config.logging == defaults.logging

    def test_overrides_applied(self, tmp_path):
        """Test command-line overrides replace config values"""
        config_file = tmp_path / "config.yml"
        config_file.write_text("logging:\n  level: ERROR\n")

        config = ConfigLoader.configWithOverrides_load(
            file_path=config_file,
            executable="/opt/nvim/bin/nvim",
            log_level="DEBUG",
            log_file=None,
        )

        assert config.core.executable == "/opt/nvim/bin/nvim"
        assert config.logging.level == "DEBUG"
        assert config.logging.file is None
