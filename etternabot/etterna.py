"""
EtternaOnline API クライアント。

EtternaOnline への HTTP 通信を行い、レスポンスの解析を parser.py に委譲する責務を持つ。
公式APIは一部の情報（ユーザーID、nerf レーティング、判定数など）を返さないため、
Webサイト側のエンドポイントやHTMLも併用する。

例外方針:
- 404 は NotFoundError に変換する
- 403（APIキー不正など）、その他のステータス、requests 由来の例外（タイムアウト含む）、
  JSONデコード失敗、解析失敗は UnexpectedError に変換して上位へ伝播する
- リトライは行わない
"""

from __future__ import annotations

import logging
from enum import IntEnum
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from etternabot.errors import EtternaAPIError, NotFoundError, UnexpectedError
from etternabot.models import Rank, Score, Song, User
from etternabot.parser import (
    SCORE_KEY_LENGTH,
    extract_user_id,
    is_invalid_entry,
    parse_score_detail,
    parse_score_entry,
    parse_song,
    parse_user_profile,
    parse_user_ranks,
)

logger = logging.getLogger(__name__)

BASE_API_URL = "https://api.etternaonline.com/v1"
BASE_URL = "https://etternaonline.com"
DEFAULT_TIMEOUT = 10

MSG_USER_NOT_FOUND = "No user with that username exists."
MSG_FORBIDDEN = "API access is denied due to insufficient permissions (bad API key?)."


class SortColumn(IntEnum):
    """score/userScores の order[0][column] に渡す列番号。"""

    SONG_NAME = 0
    RATE = 1
    OVERALL = 2
    NERF = 3
    ACCURACY = 4
    DATE = 5
    STREAM = 6
    JUMPSTREAM = 7
    HANDSTREAM = 8
    STAMINA = 9
    JACK_SPEED = 10
    CHORDJACK = 11
    TECHNICAL = 12


class EtternaAPI:
    """
    EtternaOnline へのリクエストをまとめたクライアント。

    Attributes:
        api_key: v1 API 用のAPIキー。
        base_api_url: v1 API のベースURL。
        base_url: WebサイトのベースURL。
        timeout: 1リクエストあたりのタイムアウト秒。
    """

    def __init__(
        self,
        api_key: str,
        base_api_url: str = BASE_API_URL,
        base_url: str = BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.api_key = api_key
        self.base_api_url = base_api_url.rstrip("/")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    # ------------------------------------------------------------------
    # 通信の共通処理
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        url: str,
        unexpected_msg: str,
        not_found_msg: str,
        **kwargs: Any,
    ) -> requests.Response:
        """
        HTTPリクエストを送り、ステータスを例外へ対応付ける。

        Args:
            method: "GET" または "POST"。
            url: リクエストURL。
            unexpected_msg: UnexpectedError に載せるメッセージ。
            not_found_msg: NotFoundError に載せるメッセージ。
            **kwargs: requests に渡す params / data。

        Returns:
            2xx のレスポンス。

        Raises:
            NotFoundError: 404 の場合。
            UnexpectedError: 通信失敗、403、その他の非2xxの場合。
        """
        sender = requests.get if method == "GET" else requests.post
        logger.debug("%s %s", method, url)

        try:
            resp = sender(url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise UnexpectedError(unexpected_msg, e) from e

        if resp.status_code == 404:
            raise NotFoundError(not_found_msg)
        if resp.status_code == 403:
            raise UnexpectedError(MSG_FORBIDDEN)

        try:
            resp.raise_for_status()
        except requests.HTTPError as e:
            raise UnexpectedError(unexpected_msg, e) from e

        return resp

    @staticmethod
    def _json(resp: requests.Response, unexpected_msg: str) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise UnexpectedError(unexpected_msg, e) from e

    @staticmethod
    def _first(payload: Any, unexpected_msg: str, not_found_msg: str) -> Dict[str, Any]:
        """単一要素の配列で返るエンドポイントから先頭要素を取り出す。"""
        if isinstance(payload, dict):
            return payload
        if not isinstance(payload, list):
            raise UnexpectedError(unexpected_msg)
        if not payload:
            raise NotFoundError(not_found_msg)
        return payload[0]

    # ------------------------------------------------------------------
    # ユーザー
    # ------------------------------------------------------------------

    def get_by_username(self, username: str) -> User:
        """
        ユーザー名からプロフィール(MSD)と順位を取得する。

        Args:
            username: ユーザー名（大文字小文字は区別されない）。

        Returns:
            User。username はサイト側の正規の表記、id は含まない。

        Raises:
            NotFoundError: ユーザーが存在しない場合。
            UnexpectedError: 通信・解析に失敗した場合。
        """
        msg = "Unexpected error trying to look up user."
        resp = self._request(
            "GET",
            f"{self.base_api_url}/user_data",
            msg,
            MSG_USER_NOT_FOUND,
            params={"api_key": self.api_key, "username": username},
        )

        payload = self._json(resp, msg)
        try:
            user = parse_user_profile(payload)
        except EtternaAPIError as e:
            raise UnexpectedError(msg, e) from e

        rank = self.get_user_ranks(user.username or username)
        return User(
            username=user.username or username,
            avatar=user.avatar,
            country_code=user.country_code,
            msd=user.msd,
            rank=rank,
        )

    def get_user_ranks(self, username: str) -> Rank:
        """ユーザーのカテゴリ別順位を取得する。"""
        msg = "Unexpected error trying to look up user."
        resp = self._request(
            "GET",
            f"{self.base_api_url}/user_rank",
            msg,
            MSG_USER_NOT_FOUND,
            params={"api_key": self.api_key, "username": username},
        )

        payload = self._json(resp, msg)
        try:
            return parse_user_ranks(payload)
        except EtternaAPIError as e:
            raise UnexpectedError(msg, e) from e

    def get_user_id(self, username: str) -> int:
        """
        ユーザーの数値IDを取得する。

        user_data エンドポイントはIDを返さないため、プロフィールページのHTMLを取得して
        埋め込みスクリプトから抽出する。ページ全体を取得するため重く、
        呼び出し側は取得できたIDをキャッシュすること。

        Raises:
            NotFoundError: ユーザーが存在しない場合。
            UnexpectedError: 通信失敗、またはページからIDが見つからない場合。
        """
        msg = "Unexpected error trying to look up user ID."
        resp = self._request(
            "GET",
            f"{self.base_url}/user/{quote(username, safe='')}",
            msg,
            MSG_USER_NOT_FOUND,
        )

        try:
            return extract_user_id(resp.text)
        except EtternaAPIError as e:
            raise UnexpectedError(msg, e) from e

    # ------------------------------------------------------------------
    # スコア
    # ------------------------------------------------------------------

    def get_scores(
        self,
        user_id: int,
        search: str = "",
        count: int = 25,
        start: int = 0,
        sort: SortColumn = SortColumn.DATE,
        ascending: bool = False,
    ) -> List[Score]:
        """
        ユーザーのスコア一覧を取得する。

        無効スコア（nerf が "0"）は解析前に除外する。

        Args:
            user_id: ユーザーの数値ID。
            search: 曲名の絞り込み文字列（空なら絞り込みなし）。
            count: 取得件数。
            start: 取得開始位置。
            sort: ソート列。
            ascending: 昇順なら True。

        Returns:
            有効スコアのリスト。

        Raises:
            NotFoundError: ユーザーが存在しない場合。
            UnexpectedError: 通信・解析に失敗した場合。
        """
        msg = "Unexpected error trying to retrieve scores"
        form = {
            "start": str(int(start)),
            "length": str(int(count)),
            "userid": str(int(user_id)),
            "order[0][column]": str(int(sort)),
            "order[0][dir]": "asc" if ascending else "desc",
        }
        if search:
            form["search[value]"] = search

        resp = self._request(
            "POST",
            f"{self.base_url}/score/userScores",
            msg,
            "User does not exist.",
            data=form,
        )

        payload = self._json(resp, msg)
        if not isinstance(payload, dict) or not isinstance(payload.get("data", []), list):
            raise UnexpectedError(msg)

        scores: List[Score] = []
        for entry in payload.get("data") or []:
            try:
                if is_invalid_entry(entry):
                    continue
                scores.append(parse_score_entry(entry))
            except EtternaAPIError as e:
                raise UnexpectedError(msg, e) from e

        return scores

    def get_score_detail(self, score_key: str) -> Score:
        """
        スコアの詳細（最大コンボ、地雷、モディファイア、日時、有効フラグ）を取得する。

        リクエストに使うのはキーの先頭41文字のみ。41文字目以降にユーザーIDが
        付与されていれば、それを Score.user.id として復元する。

        Raises:
            NotFoundError: スコアが存在しない場合。
            UnexpectedError: 通信・解析に失敗した場合。
        """
        msg = "Unexpected error trying to retrieve score details"
        not_found = "Score does not exist."
        resp = self._request(
            "POST",
            f"{self.base_api_url}/score",
            msg,
            not_found,
            params={"api_key": self.api_key, "key": score_key[:SCORE_KEY_LENGTH]},
        )

        entry = self._first(self._json(resp, msg), msg, not_found)
        try:
            return parse_score_detail(entry, score_key)
        except EtternaAPIError as e:
            raise UnexpectedError(msg, e) from e

    # ------------------------------------------------------------------
    # 曲
    # ------------------------------------------------------------------

    def get_song(self, song_id: int) -> Song:
        """
        曲IDから曲情報を取得する。

        Raises:
            NotFoundError: 曲が存在しない場合。
            UnexpectedError: 通信・解析に失敗した場合。
        """
        msg = "Unexpected error trying to retrieve song details"
        not_found = "Song does not exist."
        resp = self._request(
            "POST",
            f"{self.base_api_url}/song",
            msg,
            not_found,
            params={"api_key": self.api_key, "key": int(song_id)},
        )

        entry = self._first(self._json(resp, msg), msg, not_found)
        try:
            return parse_song(entry, song_id)
        except EtternaAPIError as e:
            raise UnexpectedError(msg, e) from e

    # ------------------------------------------------------------------
    # URL
    # ------------------------------------------------------------------

    def score_url(self, score_key: str, user_id: Optional[int]) -> str:
        """スコア閲覧ページのURLを返す。キー末尾にユーザーIDを付与する。"""
        suffix = "" if user_id is None else str(user_id)
        return f"{self.base_url}/score/view/{score_key[:SCORE_KEY_LENGTH]}{suffix}"

    def profile_url(self, username: str) -> str:
        return f"{self.base_url}/user/{quote(username, safe='')}"

    def avatar_url(self, avatar: str) -> str:
        return f"{self.base_url}/avatars/{avatar}"

    def song_background_url(self, background: str) -> str:
        return f"{self.base_url}/song_images/bg/{background}"
