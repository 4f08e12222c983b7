"""
設定ファイル(settings.yaml)と環境変数の読み込み処理を提供するモジュール。

settings.yaml からボットの動作設定を読み込み、秘密情報（APIキー、Botトークン）は
環境変数から読み込んで、アプリ内で扱いやすい dataclass に変換する。
"""

import os
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import yaml

from etternabot.errors import ConfigError

ENV_ETTERNA_API_KEY = "ETTERNA_API_KEY"
ENV_DISCORD_BOT_TOKEN = "DISCORD_BOT_TOKEN"
ENV_SETTINGS_PATH = "SETTINGS_PATH"

DEFAULT_SETTINGS_PATH = "settings.yaml"


@dataclass(frozen=True)
class TrackerConfig:
    """
    直近プレイ追跡の設定。

    Attributes:
        interval_seconds: ポーリング間隔(秒)。
        min_accuracy: レーティングが上がらなかったプレイを表示する最低精度(%)。
        lookup_count: 直近プレイを探すために取得するスコア件数。
    """

    interval_seconds: float = 120.0
    min_accuracy: float = 99.5
    lookup_count: int = 10


@dataclass(frozen=True)
class EtternaConfig:
    """
    EtternaOnline 接続設定。

    Attributes:
        base_api_url: v1 API のベースURL。
        base_url: WebサイトのベースURL。
        timeout_seconds: 1リクエストあたりのタイムアウト秒。
        api_key: APIキー（環境変数から設定）。
    """

    base_api_url: str = "https://api.etternaonline.com/v1"
    base_url: str = "https://etternaonline.com"
    timeout_seconds: float = 10.0
    api_key: str = ""


@dataclass(frozen=True)
class DiscordConfig:
    """
    Discord REST API の設定。

    Attributes:
        api_base: REST API のベースURL。
        bot_token: Botトークン（環境変数から設定）。
    """

    api_base: str = "https://discord.com/api/v10"
    bot_token: str = ""


@dataclass(frozen=True)
class Settings:
    """
    アプリケーション全体設定。

    Attributes:
        db_path: SQLiteファイルパス。
        log_level: ログレベル名。
        logs_dir: ログファイル出力先（未指定ならコンソールのみ）。
        tracker: 追跡設定。
        etterna: EtternaOnline 接続設定。
        discord: Discord 設定。
    """

    db_path: str = "etternabot.sqlite"
    log_level: str = "INFO"
    logs_dir: Optional[str] = None
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    etterna: EtternaConfig = field(default_factory=EtternaConfig)
    discord: DiscordConfig = field(default_factory=DiscordConfig)


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"'{name}' must be a mapping in settings")
    return value


def _require_env(env: Mapping[str, str], name: str) -> str:
    value = (env.get(name) or "").strip()
    if not value:
        raise ConfigError(f"Environment variable {name} is not set")
    return value


def load_settings(
    path: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Settings:
    """
    settings.yaml と環境変数を読み込み Settings に変換する。

    ファイルに存在しないキーはデフォルト値を使う。

    Args:
        path: settings.yaml のファイルパス。None の場合は SETTINGS_PATH 環境変数、
            それも無ければ "settings.yaml"。
        env: 環境変数の辞書。None の場合は os.environ。

    Returns:
        Settingsオブジェクト。

    Raises:
        ConfigError: ファイルが存在しない、YAMLが不正、値の型変換に失敗した、
            または ETTERNA_API_KEY / DISCORD_BOT_TOKEN が未設定の場合。
    """
    env = os.environ if env is None else env
    path = path or env.get(ENV_SETTINGS_PATH) or DEFAULT_SETTINGS_PATH

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError as e:
        raise ConfigError(f"Settings file not found: {path}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse settings file: {path}") from e

    if not isinstance(data, Mapping):
        raise ConfigError(f"Settings file must contain a mapping: {path}")

    tracker_data = _section(data, "tracker")
    etterna_data = _section(data, "etterna")
    discord_data = _section(data, "discord")

    defaults_tracker = TrackerConfig()
    defaults_etterna = EtternaConfig()
    defaults_discord = DiscordConfig()

    try:
        tracker = TrackerConfig(
            interval_seconds=float(
                tracker_data.get("interval_seconds", defaults_tracker.interval_seconds)
            ),
            min_accuracy=float(tracker_data.get("min_accuracy", defaults_tracker.min_accuracy)),
            lookup_count=int(tracker_data.get("lookup_count", defaults_tracker.lookup_count)),
        )
        timeout = float(etterna_data.get("timeout_seconds", defaults_etterna.timeout_seconds))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid numeric value in settings: {e}") from e

    if tracker.interval_seconds <= 0 or timeout <= 0 or tracker.lookup_count <= 0:
        raise ConfigError("interval_seconds, timeout_seconds and lookup_count must be positive")

    logs_dir = data.get("logs_dir")

    return Settings(
        db_path=str(data.get("db_path", "etternabot.sqlite")),
        log_level=str(data.get("log_level", "INFO")).upper(),
        logs_dir=None if logs_dir is None else str(logs_dir),
        tracker=tracker,
        etterna=EtternaConfig(
            base_api_url=str(etterna_data.get("base_api_url", defaults_etterna.base_api_url)),
            base_url=str(etterna_data.get("base_url", defaults_etterna.base_url)),
            timeout_seconds=timeout,
            api_key=_require_env(env, ENV_ETTERNA_API_KEY),
        ),
        discord=DiscordConfig(
            api_base=str(discord_data.get("api_base", defaults_discord.api_base)),
            bot_token=_require_env(env, ENV_DISCORD_BOT_TOKEN),
        ),
    )
