"""
Discordへの送信を行うユーティリティ。

Discord REST API (channels/{id}/messages, channels/{id}/typing) を Botトークンで呼び出し、
テキストメッセージと埋め込み(Embed)をチャンネルへ送信する。
送信失敗は処理全体の失敗とはみなさず、ログに残して False を返す。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests
from requests import RequestException

logger = logging.getLogger(__name__)

DISCORD_API_BASE = "https://discord.com/api/v10"
DEFAULT_TIMEOUT = 15

EMBED_COLOR = 8519899
ETTERNA_ICON_URL = "https://i.imgur.com/HwIkGCk.png"


@dataclass(frozen=True)
class EmbedField:
    name: str
    value: str
    inline: bool = False


@dataclass
class Embed:
    """
    Discordの埋め込みメッセージ。

    None / 空文字の項目は送信ペイロードから省く。
    """

    title: str = ""
    url: str = ""
    description: str = ""
    color: int = EMBED_COLOR
    timestamp: Optional[datetime] = None
    author_name: str = ""
    author_icon_url: str = ""
    author_url: str = ""
    footer_text: str = ""
    footer_icon_url: str = ""
    thumbnail_url: str = ""
    fields: List[EmbedField] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Discord API の embed オブジェクト形式へ変換する。"""
        payload: Dict[str, Any] = {"color": self.color}

        if self.title:
            payload["title"] = self.title
        if self.url:
            payload["url"] = self.url
        if self.description:
            payload["description"] = self.description
        if self.timestamp is not None:
            payload["timestamp"] = self.timestamp.isoformat()

        if self.author_name:
            author = {"name": self.author_name}
            if self.author_icon_url:
                author["icon_url"] = self.author_icon_url
            if self.author_url:
                author["url"] = self.author_url
            payload["author"] = author

        if self.footer_text:
            footer = {"text": self.footer_text}
            if self.footer_icon_url:
                footer["icon_url"] = self.footer_icon_url
            payload["footer"] = footer

        if self.thumbnail_url:
            payload["thumbnail"] = {"url": self.thumbnail_url}

        if self.fields:
            payload["fields"] = [
                {"name": f.name, "value": f.value, "inline": f.inline}
                for f in self.fields
            ]

        return payload


class DiscordDispatcher:
    """
    Discord REST API への送信クライアント。

    Attributes:
        bot_token: Botトークン。
        api_base: REST API のベースURL。
        timeout: 1リクエストあたりのタイムアウト秒。
    """

    def __init__(
        self,
        bot_token: str,
        api_base: str = DISCORD_API_BASE,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.bot_token = bot_token
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

    def _post(self, path: str, payload: Optional[Dict[str, Any]] = None) -> bool:
        """
        APIへPOSTする。

        Returns:
            2xx で完了した場合は True。通信失敗や非2xxの場合は False。
        """
        url = f"{self.api_base}/{path}"
        headers = {"Authorization": f"Bot {self.bot_token}"}

        try:
            resp = requests.post(url, json=payload, headers=headers, timeout=self.timeout)
        except RequestException as e:
            # 送信失敗は致命にしない
            logger.warning("Discord request failed: %s (%s)", path, e)
            return False

        if not 200 <= resp.status_code < 300:
            logger.warning(
                "Discord request rejected: %s status=%s body=%s",
                path,
                resp.status_code,
                resp.text[:200],
            )
            return False

        return True

    def send_message(self, channel_id: str, text: str) -> bool:
        """チャンネルへテキストメッセージを送信する。"""
        if not text:
            return False
        return self._post(f"channels/{channel_id}/messages", {"content": text})

    def send_embed(self, channel_id: str, embed: Embed) -> bool:
        """チャンネルへ埋め込みメッセージを送信する。"""
        return self._post(f"channels/{channel_id}/messages", {"embeds": [embed.to_dict()]})

    def send_typing(self, channel_id: str) -> bool:
        """チャンネルに入力中表示を出す。"""
        return self._post(f"channels/{channel_id}/typing")
