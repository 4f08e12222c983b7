from __future__ import annotations

from pathlib import Path

import pytest

from etternabot.config import load_settings
from etternabot.errors import ConfigError

ENV = {"ETTERNA_API_KEY": "api-key", "DISCORD_BOT_TOKEN": "bot-token"}


def _write(tmp_path: Path, text: str) -> str:
    path = tmp_path / "settings.yaml"
    path.write_text(text, encoding="utf-8")
    return str(path)


@pytest.mark.light
def test_load_settings(tmp_path):
    path = _write(tmp_path, """
db_path: bot.sqlite
log_level: debug
tracker:
  interval_seconds: 60
  min_accuracy: 99.0
etterna:
  base_url: https://example.test
  timeout_seconds: 5
""")

    settings = load_settings(path, env=ENV)

    assert settings.db_path == "bot.sqlite"
    assert settings.log_level == "DEBUG"
    assert settings.tracker.interval_seconds == 60
    assert settings.tracker.min_accuracy == 99.0
    assert settings.tracker.lookup_count == 10
    assert settings.etterna.base_url == "https://example.test"
    assert settings.etterna.base_api_url == "https://api.etternaonline.com/v1"
    assert settings.etterna.timeout_seconds == 5
    assert settings.etterna.api_key == "api-key"
    assert settings.discord.bot_token == "bot-token"
    assert settings.discord.api_base == "https://discord.com/api/v10"


@pytest.mark.light
def test_load_settings_defaults_for_empty_file(tmp_path):
    settings = load_settings(_write(tmp_path, ""), env=ENV)
    assert settings.log_level == "INFO"
    assert settings.tracker.min_accuracy == 99.5
    assert settings.tracker.interval_seconds == 120
    assert settings.logs_dir is None


@pytest.mark.light
def test_settings_path_from_environment(tmp_path):
    path = _write(tmp_path, "db_path: from-env.sqlite\n")
    settings = load_settings(env={**ENV, "SETTINGS_PATH": path})
    assert settings.db_path == "from-env.sqlite"


@pytest.mark.light
@pytest.mark.parametrize("missing", ["ETTERNA_API_KEY", "DISCORD_BOT_TOKEN"])
def test_missing_secret_is_config_error(tmp_path, missing):
    env = {k: v for k, v in ENV.items() if k != missing}
    with pytest.raises(ConfigError) as excinfo:
        load_settings(_write(tmp_path, ""), env=env)
    assert missing in str(excinfo.value)


@pytest.mark.light
def test_missing_file_is_config_error(tmp_path):
    with pytest.raises(ConfigError):
        load_settings(str(tmp_path / "nope.yaml"), env=ENV)


@pytest.mark.light
@pytest.mark.parametrize(
    "text",
    [
        "tracker: [1, 2]\n",
        "tracker:\n  interval_seconds: soon\n",
        "tracker:\n  interval_seconds: 0\n",
        "db_path: [unclosed\n",
    ],
)
def test_invalid_settings_are_config_errors(tmp_path, text):
    with pytest.raises(ConfigError):
        load_settings(_write(tmp_path, text), env=ENV)
