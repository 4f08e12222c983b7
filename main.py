import signal
import sys
import threading

from etternabot.config import load_settings
from etternabot.db import connect_db, init_schema
from etternabot.discord_notify import DiscordDispatcher
from etternabot.errors import ConfigError
from etternabot.etterna import EtternaAPI
from etternabot.logging_utils import setup_logger
from etternabot.play_tracker import PlayTracker


def main() -> int:
    """
    直近プレイ追跡ボットを起動する。

    以下の処理を順序実行する:
    1. settings.yaml と環境変数から設定を読み込む
    2. ロガーを初期化する
    3. SQLite DB へ接続し、スキーマを初期化する
    4. SIGINT / SIGTERM を受けるまで、一定間隔で直近プレイを追跡する

    環境変数の要件:
    - ETTERNA_API_KEY: EtternaOnline API キー
    - DISCORD_BOT_TOKEN: Discord Bot トークン
    - SETTINGS_PATH: 設定ファイルパス(デフォルト: "settings.yaml")

    Returns:
        終了コード。設定エラーの場合は 1。
    """
    try:
        settings = load_settings()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    logger = setup_logger("etternabot", settings.log_level, settings.logs_dir)

    con = connect_db(settings.db_path)
    init_schema(con)

    api = EtternaAPI(
        api_key=settings.etterna.api_key,
        base_api_url=settings.etterna.base_api_url,
        base_url=settings.etterna.base_url,
        timeout=settings.etterna.timeout_seconds,
    )
    dispatcher = DiscordDispatcher(
        bot_token=settings.discord.bot_token,
        api_base=settings.discord.api_base,
    )
    tracker = PlayTracker(
        con,
        api,
        dispatcher,
        min_accuracy=settings.tracker.min_accuracy,
        lookup_count=settings.tracker.lookup_count,
    )

    stop_event = threading.Event()

    def _stop(signum, frame):
        logger.info("Received signal %s, shutting down", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    try:
        tracker.run_forever(settings.tracker.interval_seconds, stop_event)
    finally:
        con.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
