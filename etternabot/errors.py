"""
アプリケーション固有の例外定義モジュール。

EtternaOnline API 呼び出し、レスポンス解析、設定読み込みで発生する例外を
分類して扱うために、基底例外および派生例外を定義する。

呼び出し側が区別するのは NotFoundError と UnexpectedError の2種類のみ。
ParseError は UnexpectedError の一種として扱われる。
"""

from __future__ import annotations

from typing import Optional


class EtternaBotError(Exception):
    """etternabot 全体の基底例外。"""


class EtternaAPIError(EtternaBotError):
    """
    EtternaOnline との通信・解析に起因する例外。

    Attributes:
        message: ユーザーへそのまま表示できるメッセージ。
        cause: ログ出力用の元例外（存在しない場合は None）。
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if not self.message and self.cause is not None:
            return str(self.cause)
        return self.message


class NotFoundError(EtternaAPIError):
    """ユーザー名・スコアキー・曲IDなどがリモートに存在しない場合の例外。"""


class UnexpectedError(EtternaAPIError):
    """通信失敗、権限エラー、想定外のステータスやペイロードの場合の例外。"""


class ParseError(UnexpectedError):
    """HTML断片やJSONフィールドが想定の構造を満たさない場合の例外。"""


class ConfigError(EtternaBotError):
    """設定ファイルや環境変数が不足・不正な場合の例外。"""
