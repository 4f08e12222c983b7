"""
データモデル定義モジュール。

EtternaOnline から取得した情報（ユーザー、スコア、曲）を表すドメインモデルと、
SQLite に保存するキャッシュ・設定レコードを定義する。

- User / Score / Song / MSD / Rank / Judgements は API パーサが生成する不変モデル
- TrackedUser / ServerConfig は DB の1行に対応する可変レコード
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple

from etternabot.numeric import round_to_precision

# (属性名, 表示名) の順序付き一覧。MSD と Rank は同じ並びを持つ。
SKILLSETS: Tuple[Tuple[str, str], ...] = (
    ("overall", "Overall"),
    ("stream", "Stream"),
    ("jumpstream", "Jumpstream"),
    ("handstream", "Handstream"),
    ("stamina", "Stamina"),
    ("jack_speed", "JackSpeed"),
    ("chordjack", "Chordjack"),
    ("technical", "Technical"),
)


@dataclass(frozen=True)
class MSD:
    """
    8カテゴリのスキルレーティング。

    ユーザー単位の値とスコア単位の値の両方に使う。
    """

    overall: float = 0.0
    stream: float = 0.0
    jumpstream: float = 0.0
    handstream: float = 0.0
    stamina: float = 0.0
    jack_speed: float = 0.0
    chordjack: float = 0.0
    technical: float = 0.0

    def rounded(self, precision: int = 2) -> "MSD":
        """全カテゴリを round_to_precision で丸めた MSD を返す。"""
        return MSD(**{
            name: round_to_precision(getattr(self, name), precision)
            for name, _ in SKILLSETS
        })

    def minus(self, other: "MSD") -> "MSD":
        """カテゴリごとの差分(self - other)を返す。"""
        return MSD(**{
            name: getattr(self, name) - getattr(other, name)
            for name, _ in SKILLSETS
        })


@dataclass(frozen=True)
class Rank:
    """8カテゴリのリーダーボード順位。0 は未ランクを表す。"""

    overall: int = 0
    stream: int = 0
    jumpstream: int = 0
    handstream: int = 0
    stamina: int = 0
    jack_speed: int = 0
    chordjack: int = 0
    technical: int = 0


@dataclass(frozen=True)
class Judgements:
    """判定ごとのヒット数。"""

    marvelous: int = 0
    perfect: int = 0
    great: int = 0
    good: int = 0
    bad: int = 0
    miss: int = 0


@dataclass(frozen=True)
class Song:
    """
    譜面（曲）情報。

    id はサイト側で一意な数値IDであり、ローカルキャッシュのキーとして使う。
    """

    id: int
    name: str = ""
    artist: str = ""
    background: str = ""
    key: str = ""


@dataclass(frozen=True)
class User:
    """
    EtternaOnline のユーザー情報。

    id はプロフィールページをスクレイピングしないと得られないため、
    未取得の場合は None となる。
    """

    username: str
    id: Optional[int] = None
    avatar: str = ""
    country_code: str = ""
    msd: MSD = field(default_factory=MSD)
    rank: Rank = field(default_factory=Rank)


@dataclass(frozen=True)
class Score:
    """
    1回のプレイ記録。

    key の先頭41文字が本来のスコアキーで、エンドポイントによっては
    ユーザーIDの数字が末尾に付与される。
    """

    key: str
    song: Song
    accuracy: float = 0.0
    judgements: Judgements = field(default_factory=Judgements)
    rate: float = 1.0
    msd: MSD = field(default_factory=MSD)
    nerfed: float = 0.0
    max_combo: int = 0
    mines_hit: int = 0
    mods: str = ""
    valid: bool = True
    date: Optional[datetime] = None
    user: Optional[User] = None


@dataclass
class TrackedUser:
    """
    etterna_users テーブルの1行（キャッシュ済みユーザー＋追跡カーソル）。

    last_recent_score_key / last_recent_score_date はポーリングループのみが更新する。
    """

    username: str
    etterna_id: int
    avatar: str = ""
    msd: MSD = field(default_factory=MSD)
    rank: Rank = field(default_factory=Rank)
    last_recent_score_key: Optional[str] = None
    last_recent_score_date: Optional[datetime] = None
    id: Optional[int] = None


@dataclass
class ServerConfig:
    """discord_servers テーブルの1行（サーバーごとの設定）。"""

    server_id: str
    command_prefix: str = ";"
    score_channel_id: Optional[str] = None
    last_song_id: Optional[int] = None
    id: Optional[int] = None
