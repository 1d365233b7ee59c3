import pytest
import json
from mdlive.core.config_manager import ConfigManager, ServerSettings
from mdlive.main import build_parser, load_settings

@pytest.fixture
def config_manager(tmp_path):
    config_path = tmp_path / "settings" / "test_config.json"
    return ConfigManager(str(config_path))

class TestConfigManager:
    def test_default_config(self, config_manager):
        assert isinstance(config_manager.config, ServerSettings)
        assert config_manager.config.port == 8765
        assert config_manager.config.follow_active is False

    def test_save_and_load(self, config_manager):
        config_manager.override(port=9000, log_level='DEBUG')
        config_manager.save_config()

        # Create new instance to test loading
        new_config = ConfigManager(str(config_manager.config_path))

        assert new_config.config.port == 9000
        assert new_config.config.log_level == 'DEBUG'

    def test_config_file_format(self, config_manager):
        config_manager.save_config()

        with open(config_manager.config_path) as f:
            config_data = json.load(f)

        assert isinstance(config_data, dict)
        assert 'host' in config_data
        assert 'open_preview_on_open' in config_data

    def test_unknown_keys_are_ignored(self, tmp_path):
        config_path = tmp_path / "settings.json"
        config_path.write_text(json.dumps({'port': 9100, 'tpu_count': 2}))

        config_manager = ConfigManager(str(config_path))

        assert config_manager.config.port == 9100
        assert not hasattr(config_manager.config, 'tpu_count')

    def test_unreadable_file_falls_back_to_defaults(self, tmp_path):
        config_path = tmp_path / "settings.json"
        config_path.write_text("{not json")

        assert ConfigManager(str(config_path)).config == ServerSettings()

    @pytest.mark.parametrize("content", ["[]", "3", "\"localhost\"", "null"])
    def test_non_object_file_falls_back_to_defaults(self, tmp_path, caplog, content):
        config_path = tmp_path / "settings.json"
        config_path.write_text(content)

        assert ConfigManager(str(config_path)).config == ServerSettings()
        assert "does not hold a JSON object" in caplog.text

    def test_override_skips_unset_values(self, config_manager):
        config_manager.override(port=0, host=None, follow_active=True)

        assert config_manager.config.port == 0
        assert config_manager.config.host == 'localhost'
        assert config_manager.config.follow_active is True
        assert not config_manager.config_path.exists()

    def test_override_unknown_key(self, config_manager):
        with pytest.raises(KeyError):
            config_manager.override(max_memory=1024)


class TestLoadSettings:
    def test_command_line_overrides_file(self, tmp_path):
        config_path = tmp_path / "settings.json"
        config_path.write_text(json.dumps({'port': 9100, 'follow_active': True}))
        args = build_parser().parse_args(["--settings", str(config_path), "--port", "9200"])

        settings = load_settings(args)

        assert settings.port == 9200
        assert settings.follow_active is True
        assert json.loads(config_path.read_text())['port'] == 9100

    def test_save_settings_persists_overrides(self, tmp_path):
        config_path = tmp_path / "nested" / "settings.json"
        args = build_parser().parse_args(
            ["--settings", str(config_path), "--port", "9300", "--no-browser", "--save-settings"]
        )

        load_settings(args)

        saved = json.loads(config_path.read_text())
        assert saved['port'] == 9300
        assert saved['open_browser'] is False

    def test_settings_file_that_is_not_an_object(self, tmp_path):
        config_path = tmp_path / "settings.json"
        config_path.write_text("[]")
        args = build_parser().parse_args(["--settings", str(config_path)])

        assert load_settings(args) == ServerSettings()
