"""
ロガー初期化ユーティリティ。

コンソール出力と、必要に応じてタイムスタンプ付きのファイル出力を設定する。
各モジュールは logging.getLogger(__name__) を使い、本モジュールは
エントリポイントから一度だけ呼ばれる想定。
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logger(
    name: str,
    level: Union[int, str] = logging.INFO,
    logs_dir: Optional[Union[str, Path]] = None,
) -> logging.Logger:
    """
    ロガーを初期化して返す。

    既存のハンドラは取り除くため、何度呼び出してもハンドラは重複しない。

    Args:
        name: ロガー名（通常はパッケージ名 "etternabot"）。
        level: ログレベル（数値または "INFO" などの名前）。
        logs_dir: ログファイルの出力先。None の場合はファイル出力しない。

    Returns:
        設定済みの Logger。
    """
    logger = logging.getLogger(name)
    logger.setLevel(level.upper() if isinstance(level, str) else level)

    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if logs_dir is None:
        return logger

    logs_path = Path(logs_dir)
    try:
        logs_path.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        file_handler = logging.FileHandler(
            logs_path / f"{name}_{timestamp}.log", encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except PermissionError:
        # ファイルに書けない場合はコンソールのみで続行
        logger.warning("Could not write to log directory: %s", logs_path)

    return logger
