"""
EtternaOnline API レスポンスのパーサ。

API のJSONレコード（一部のフィールドは生のHTML断片を含む）から
Score / Song / User / Rank などのドメインモデルへ変換する責務を持つ。
通信は etterna.py 側で行い、本モジュールは純粋な変換のみを担当する。

想定仕様:
- JSONキーの大文字小文字は揃っていないため、小文字化して照合する
- songname は <a href=".../song/view/<id>">曲名</a> 形式
- wifescore は title 属性に "Marvelous: 1234<br/>..." を持つ要素と、
  "96.34%" のような精度テキストを持つ span で構成される
- overall はアンカーで囲まれている場合とプレーンな数値の場合がある
- nerf が文字列 "0" のスコアは無効スコア

例外方針:
- HTML構造の不一致（アンカーやツールチップの欠落）や数値変換失敗は ParseError とする。
  黙ってデフォルト値にすると、後段のレーティング差分計算が壊れるため。
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Tuple

from bs4 import BeautifulSoup

from etternabot.errors import ParseError
from etternabot.models import MSD, SKILLSETS, Judgements, Rank, Score, Song, User

SCORE_KEY_LENGTH = 41
INVALID_NERF_SENTINEL = "0"

_RE_JUDGEMENT = re.compile(r"([a-zA-Z]+):\s+(\d+)")
_RE_USER_ID = re.compile(r"'userid': '(\d+)'")

_DATETIME_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d")

# MSD属性名 -> JSONキー(小文字)
_MSD_KEYS: Dict[str, str] = {name: label.lower() for name, label in SKILLSETS}


def _fields(entry: Mapping[str, Any]) -> Dict[str, Any]:
    """JSONレコードのキーを小文字化した辞書を返す。"""
    if not isinstance(entry, Mapping):
        raise ParseError(f"Expected a JSON object, got {type(entry).__name__}")
    return {str(k).lower(): v for k, v in entry.items()}


def _to_float(value: Any, name: str) -> float:
    """
    数値文字列(または数値)を float に変換する。

    サイトは値が0のカテゴリを空文字や欠落で返すことがあるため、
    None / 空文字は 0.0 として扱う。

    Raises:
        ParseError: 数値として解釈できない場合。
    """
    if value is None:
        return 0.0
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)

    s = str(value).strip()
    if s == "":
        return 0.0

    try:
        return float(s)
    except ValueError as e:
        raise ParseError(f"Invalid number in field '{name}': {value!r}", e) from e


def _to_int(value: Any, name: str) -> int:
    """数値文字列(または数値)を int に変換する。None / 空文字は 0。"""
    if value is None:
        return 0
    if isinstance(value, int) and not isinstance(value, bool):
        return value

    s = str(value).strip()
    if s == "":
        return 0

    try:
        return int(s)
    except ValueError as e:
        raise ParseError(f"Invalid integer in field '{name}': {value!r}", e) from e


def _to_str(value: Any) -> str:
    return "" if value is None else str(value)


def _parse_datetime(value: Any, name: str) -> Optional[datetime]:
    """
    "YYYY-MM-DD HH:MM:SS" または "YYYY-MM-DD" 形式の日時を解析する。

    Returns:
        datetime（タイムゾーンなし）。値が空の場合は None。

    Raises:
        ParseError: どの形式にも一致しない場合。
    """
    s = _to_str(value).strip()
    if s == "":
        return None

    for fmt in _DATETIME_FORMATS:
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            continue

    raise ParseError(f"Invalid datetime in field '{name}': {value!r}")


def _parse_msd(fields: Mapping[str, Any], overall: Optional[float] = None) -> MSD:
    """8カテゴリのMSDを読み取り、小数2桁へ四捨五入した MSD を返す。"""
    values = {
        name: (
            overall
            if name == "overall" and overall is not None
            else _to_float(fields.get(key), key)
        )
        for name, key in _MSD_KEYS.items()
    }
    return MSD(**values).rounded(2)


def _soup(html: Any) -> BeautifulSoup:
    return BeautifulSoup(_to_str(html), "html.parser")


def parse_song_link(html: str) -> Tuple[str, int]:
    """
    songname フィールドのアンカーから曲名と曲IDを抽出する。

    例: '<a href="https://etternaonline.com/song/view/2254">ETERNAL DRAIN</a>'
        -> ("ETERNAL DRAIN", 2254)

    Args:
        html: アンカータグを含むHTML断片。

    Returns:
        (曲名, 曲ID) のタプル。

    Raises:
        ParseError: アンカーや href が存在しない、または末尾が数値でない場合。
    """
    anchor = _soup(html).find("a")
    if anchor is None:
        raise ParseError(f"Song link has no anchor: {html!r}")

    href = anchor.get("href")
    if not href:
        raise ParseError(f"Song link has no href: {html!r}")

    last_segment = str(href).rstrip("/").split("/")[-1]
    if not last_segment.isdigit():
        raise ParseError(f"Song link does not end with an ID: {href!r}")

    return anchor.get_text(), int(last_segment)


def parse_wife_score(html: str) -> Tuple[Judgements, float]:
    """
    wifescore フィールドから判定数と精度を抽出する。

    title 属性は "Marvelous: 1489<br/>Perfect: 509<br/>..." の形式で、
    判定名は大文字小文字を区別しない。精度は span のテキスト("96.34%")から取る。

    Args:
        html: wifescore のHTML断片。

    Returns:
        (Judgements, 精度) のタプル。

    Raises:
        ParseError: title 属性を持つ要素や span が存在しない場合。
    """
    soup = _soup(html)

    tooltip = soup.find(attrs={"title": True})
    if tooltip is None:
        raise ParseError(f"Wife score has no judgement tooltip: {html!r}")

    counts: Dict[str, int] = {}
    for name, count in _RE_JUDGEMENT.findall(str(tooltip["title"])):
        counts[name.lower()] = int(count)

    judgements = Judgements(
        marvelous=counts.get("marvelous", 0),
        perfect=counts.get("perfect", 0),
        great=counts.get("great", 0),
        good=counts.get("good", 0),
        bad=counts.get("bad", 0),
        miss=counts.get("miss", 0),
    )

    span = soup.find("span")
    if span is None:
        raise ParseError(f"Wife score has no accuracy span: {html!r}")

    text = span.get_text().strip()
    if text.endswith("%"):
        text = text[:-1]

    return judgements, _to_float(text, "wifescore")


def parse_overall(value: Any) -> float:
    """
    overall フィールドを数値に変換する。

    レスポンスによってはアンカーで囲まれている("<a href=...>23.45</a>")ため、
    HTMLであればアンカーの内側テキストを読む。

    Raises:
        ParseError: HTMLなのにアンカーが存在しない、または数値でない場合。
    """
    if isinstance(value, str) and "<" in value:
        anchor = _soup(value).find("a")
        if anchor is None:
            raise ParseError(f"Overall rating has no anchor: {value!r}")
        return _to_float(anchor.get_text(), "overall")

    return _to_float(value, "overall")


def is_invalid_entry(entry: Mapping[str, Any]) -> bool:
    """
    スコア一覧の1件が無効スコアかどうかを判定する。

    nerf は有効スコアでは数値、無効スコアでは文字列 "0" になる。
    """
    return _fields(entry).get("nerf") == INVALID_NERF_SENTINEL


def parse_score_entry(entry: Mapping[str, Any]) -> Score:
    """
    スコア一覧エンドポイント(score/userScores)の1件を Score に変換する。

    無効スコア(nerf == "0")はこの関数に渡す前に除外しておくこと。

    Args:
        entry: data 配列の1要素。

    Returns:
        Score。max_combo / mines_hit / mods は一覧に含まれないため初期値のまま。

    Raises:
        ParseError: HTML断片や数値が解析できない場合。
    """
    f = _fields(entry)

    judgements, accuracy = parse_wife_score(f.get("wifescore"))
    song_name, song_id = parse_song_link(f.get("songname"))

    nerf = f.get("nerf")
    nerfed = 0.0 if nerf == INVALID_NERF_SENTINEL else _to_float(nerf, "nerf")

    return Score(
        key=_to_str(f.get("scorekey")),
        song=Song(id=song_id, name=song_name),
        accuracy=accuracy,
        judgements=judgements,
        rate=_to_float(f.get("user_chart_rate_rate"), "user_chart_rate_rate"),
        msd=_parse_msd(f, overall=parse_overall(f.get("overall"))),
        nerfed=nerfed,
        date=_parse_datetime(f.get("datetime"), "datetime"),
    )


def user_id_from_score_key(score_key: str) -> Optional[int]:
    """
    スコアキーの41文字目以降に付与されたユーザーIDを取り出す。

    付与されていない、または数字でない場合は None を返す。
    """
    suffix = (score_key or "")[SCORE_KEY_LENGTH:]
    if not suffix.isdigit():
        return None
    return int(suffix)


def parse_score_detail(entry: Mapping[str, Any], score_key: str) -> Score:
    """
    スコア詳細エンドポイント(v1/score)の1件を Score に変換する。

    詳細ペイロードにはユーザーIDが含まれないため、リクエストに使った
    スコアキーの末尾から復元する。曲の情報は含まれないため song.id は 0 となる。

    Args:
        entry: レスポンス配列の先頭要素。
        score_key: リクエストに使ったスコアキー(末尾にユーザーIDを含みうる)。

    Returns:
        Score。

    Raises:
        ParseError: 日時や数値が解析できない場合。
    """
    f = _fields(entry)

    user = User(
        username=_to_str(f.get("username")),
        id=user_id_from_score_key(score_key),
        avatar=_to_str(f.get("avatarurl") or f.get("avatar")),
        country_code=_to_str(f.get("countrycode")),
    )

    return Score(
        key=(score_key or "")[:SCORE_KEY_LENGTH],
        song=Song(id=0),
        rate=_to_float(f.get("user_chart_rate_rate"), "user_chart_rate_rate"),
        msd=_parse_msd(f),
        max_combo=_to_int(f.get("maxcombo"), "maxcombo"),
        mines_hit=_to_int(f.get("hitmine"), "hitmine"),
        mods=_to_str(f.get("modifiers")),
        valid=_to_str(f.get("valid")) == "1",
        date=_parse_datetime(f.get("datetime"), "datetime"),
        user=user,
    )


def parse_song(entry: Mapping[str, Any], song_id: int) -> Song:
    """
    曲エンドポイント(v1/song)の1件を Song に変換する。

    id は文字列で返ることがあるため int に変換する。欠落時は要求した ID を使う。
    """
    f = _fields(entry)
    raw_id = f.get("id")

    return Song(
        id=_to_int(raw_id, "id") if raw_id not in (None, "") else song_id,
        name=_to_str(f.get("songname")),
        artist=_to_str(f.get("artist")),
        background=_to_str(f.get("background")),
        key=_to_str(f.get("songkey")),
    )


def parse_user_profile(entry: Mapping[str, Any]) -> User:
    """
    ユーザーデータエンドポイント(v1/user_data)を User に変換する。

    MSD は小数2桁へ四捨五入する。順位は別エンドポイントのため含まれない。
    """
    f = _fields(entry)

    return User(
        username=_to_str(f.get("username")),
        avatar=_to_str(f.get("avatar")),
        country_code=_to_str(f.get("countrycode")),
        msd=_parse_msd(f),
    )


def parse_user_ranks(entry: Mapping[str, Any]) -> Rank:
    """ユーザー順位エンドポイント(v1/user_rank)を Rank に変換する。"""
    f = _fields(entry)
    return Rank(**{
        name: _to_int(f.get(key), key) for name, key in _MSD_KEYS.items()
    })


def extract_user_id(html: str) -> int:
    """
    プロフィールページHTMLの埋め込みスクリプトからユーザーIDを抽出する。

    Raises:
        ParseError: "'userid': '<digits>'" が見つからない場合。
    """
    match = _RE_USER_ID.search(html or "")
    if match is None:
        raise ParseError("Failed to find userid in profile page")
    return int(match.group(1))
