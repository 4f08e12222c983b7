from __future__ import annotations

import sys
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pytest
import requests

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from etternabot.db import connect_db, init_schema
from etternabot.discord_notify import DiscordDispatcher, Embed
from etternabot.errors import NotFoundError, UnexpectedError
from etternabot.etterna import MSG_USER_NOT_FOUND, EtternaAPI, SortColumn
from etternabot.models import MSD, Judgements, Score, Song, User
from etternabot.parser import SCORE_KEY_LENGTH, user_id_from_score_key


def make_key(n: int) -> str:
    """41文字のスコアキーを作る。"""
    key = "S" + f"{n:040x}"
    assert len(key) == SCORE_KEY_LENGTH
    return key


def song_link_html(name: str, song_id: int) -> str:
    return f'<a href="https://etternaonline.com/song/view/{song_id}">{name}</a>'


def wife_score_html(
    accuracy: str = "96.34%",
    marvelous: int = 1489,
    perfect: int = 509,
    great: int = 61,
    good: int = 3,
    bad: int = 1,
    miss: int = 7,
) -> str:
    title = (
        f"Marvelous: {marvelous}<br/>Perfect: {perfect}<br/>Great: {great}<br/>"
        f"Good: {good}<br/>Bad: {bad}<br/>Miss: {miss}"
    )
    return f'<div title="{title}"><span>{accuracy}</span></div>'


def score_entry(
    key: str,
    song_name: str = "ETERNAL DRAIN",
    song_id: int = 2254,
    overall: Any = "23.456",
    nerf: Any = "22.1",
    rate: str = "1.05",
    accuracy: str = "96.34%",
    date: str = "2019-12-08 10:20:30",
) -> Dict[str, Any]:
    """score/userScores の data 1件を作る。"""
    return {
        "scorekey": key,
        "songname": song_link_html(song_name, song_id),
        "wifescore": wife_score_html(accuracy),
        "nerf": nerf,
        "user_chart_rate_rate": rate,
        "Overall": overall,
        "stream": "21.5",
        "jumpstream": "22.75",
        "handstream": "20.1",
        "stamina": "19.99",
        "jackspeed": "15.2",
        "chordjack": "18.005",
        "technical": "21.3",
        "datetime": date,
    }


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, text: str = ""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")


class FakeDispatcher(DiscordDispatcher):
    """送信内容を記録するだけの Dispatcher。"""

    def __init__(self):
        super().__init__("test-token")
        self.messages: List[Tuple[str, str]] = []
        self.embeds: List[Tuple[str, Embed]] = []
        self.typing: List[str] = []

    def send_message(self, channel_id: str, text: str) -> bool:
        self.messages.append((channel_id, text))
        return True

    def send_embed(self, channel_id: str, embed: Embed) -> bool:
        self.embeds.append((channel_id, embed))
        return True

    def send_typing(self, channel_id: str) -> bool:
        self.typing.append(channel_id)
        return True


class FakeEtternaAPI(EtternaAPI):
    """通信の代わりに登録済みのデータを返す EtternaAPI。"""

    def __init__(self):
        super().__init__("test-key")
        self.users: Dict[str, User] = {}
        self.user_ids: Dict[str, int] = {}
        self.scores: Dict[int, List[Score]] = {}
        self.details: Dict[str, Score] = {}
        self.songs: Dict[int, Song] = {}
        self.failing_user_ids: set = set()
        self.calls: List[Tuple[Any, ...]] = []

    def add_user(self, username: str, etterna_id: int, msd: Optional[MSD] = None) -> User:
        user = User(username=username, avatar=f"{username}.png", msd=msd or MSD())
        self.users[username.lower()] = user
        self.user_ids[username.lower()] = etterna_id
        return user

    def add_score(
        self,
        etterna_id: int,
        key: str,
        song: Song,
        accuracy: float = 96.34,
        overall: float = 23.45,
        rate: float = 1.0,
        date: Optional[datetime] = None,
        max_combo: int = 512,
        username: str = "",
        valid: bool = True,
    ) -> Score:
        """一覧用と詳細用のスコアを登録する。一覧の先頭に追加される。"""
        date = date or datetime(2019, 12, 8, 10, 20, 30)
        listed = Score(
            key=key,
            song=Song(id=song.id, name=song.name),
            accuracy=accuracy,
            judgements=Judgements(marvelous=1489, perfect=509, great=61),
            rate=rate,
            msd=MSD(overall=overall),
            nerfed=overall - 0.5,
            date=date.replace(hour=0, minute=0, second=0),
        )
        self.scores.setdefault(etterna_id, []).insert(0, listed)
        self.details[key] = Score(
            key=key,
            song=Song(id=0),
            rate=rate,
            msd=MSD(overall=overall),
            max_combo=max_combo,
            mines_hit=0,
            mods="C900",
            valid=valid,
            date=date,
            user=User(username=username),
        )
        self.songs.setdefault(song.id, song)
        return listed

    def get_by_username(self, username: str) -> User:
        self.calls.append(("get_by_username", username))
        user = self.users.get(username.lower())
        if user is None:
            raise NotFoundError(MSG_USER_NOT_FOUND)
        return user

    def get_user_id(self, username: str) -> int:
        self.calls.append(("get_user_id", username))
        if username.lower() not in self.user_ids:
            raise NotFoundError(MSG_USER_NOT_FOUND)
        return self.user_ids[username.lower()]

    def get_scores(
        self,
        user_id: int,
        search: str = "",
        count: int = 25,
        start: int = 0,
        sort: SortColumn = SortColumn.DATE,
        ascending: bool = False,
    ) -> List[Score]:
        self.calls.append(("get_scores", user_id, search, count, sort))
        if user_id in self.failing_user_ids:
            raise UnexpectedError("Unexpected error trying to retrieve scores")

        scores = self.scores.get(user_id, [])
        if search:
            scores = [s for s in scores if search.lower() in s.song.name.lower()]
        return list(scores[start:start + count])

    def get_score_detail(self, score_key: str) -> Score:
        self.calls.append(("get_score_detail", score_key))
        detail = self.details.get(score_key[:SCORE_KEY_LENGTH])
        if detail is None:
            raise NotFoundError("Score does not exist.")
        user = detail.user or User(username="")
        return replace(detail, user=replace(user, id=user_id_from_score_key(score_key)))

    def get_song(self, song_id: int) -> Song:
        self.calls.append(("get_song", song_id))
        song = self.songs.get(song_id)
        if song is None:
            raise NotFoundError("Song does not exist.")
        return song

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)


@pytest.fixture
def con(tmp_path: Path):
    connection = connect_db(str(tmp_path / "etternabot.sqlite"))
    init_schema(connection)
    try:
        yield connection
    finally:
        connection.close()


@pytest.fixture
def fake_api() -> FakeEtternaAPI:
    return FakeEtternaAPI()


@pytest.fixture
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()
