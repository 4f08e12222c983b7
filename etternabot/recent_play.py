"""
直近プレイ・ベストスコアの解決処理。

スコア一覧エンドポイントの結果から対象のスコアを選び、一覧に含まれない
詳細情報（最大コンボ、地雷、モディファイア、正確な日時、有効フラグ）を
スコア詳細エンドポイントから補完する。
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import List, Optional, Tuple

from etternabot.errors import NotFoundError
from etternabot.etterna import EtternaAPI, SortColumn
from etternabot.models import Score, Song
from etternabot.parser import SCORE_KEY_LENGTH

logger = logging.getLogger(__name__)

RECENT_PLAY_LOOKUP_COUNT = 10
BEST_SCORE_LOOKUP_COUNT = 50
RATE_SCORE_LOOKUP_COUNT = 100
SCORE_LINK_LOOKUP_COUNT = 100

# overall がこの値未満のスコアは無効（失敗）扱い
MIN_VALID_OVERALL = 0.001


def merge_score_detail(score: Score, detail: Score) -> Score:
    """
    一覧由来の Score に詳細由来のフィールドを上書きした Score を返す。

    詳細側を正とするのは max_combo / mines_hit / mods / date / valid のみ。
    曲、精度、レート、判定数、レーティングは一覧側の値を保持する。
    """
    return replace(
        score,
        max_combo=detail.max_combo,
        mines_hit=detail.mines_hit,
        mods=detail.mods,
        date=detail.date or score.date,
        valid=detail.valid,
        user=score.user or detail.user,
    )


def _first_valid(api: EtternaAPI, candidates: List[Score]) -> Optional[Score]:
    """
    候補を順に詳細で補完し、詳細の有効フラグが立っている最初のスコアを返す。

    一覧の overall による判定は目安であり、詳細の Valid を正とする。
    """
    for candidate in candidates:
        merged = merge_score_detail(candidate, api.get_score_detail(candidate.key))
        if merged.valid:
            return merged
        logger.debug("Skipping score marked invalid: key=%s", candidate.key)
    return None


def get_recent_play(
    api: EtternaAPI,
    user_id: int,
    lookup_count: int = RECENT_PLAY_LOOKUP_COUNT,
) -> Optional[Score]:
    """
    ユーザーの直近の有効なプレイを取得する。

    日付の降順で lookup_count 件を取得し、overall が0でない最初のスコアを選ぶ。
    overall が0のスコアは失敗・無効スコアとみなす。
    詳細の有効フラグが立っていないスコアは飛ばして次の候補を見る。

    Args:
        api: EtternaAPI。
        user_id: ユーザーの数値ID。
        lookup_count: 走査する件数。

    Returns:
        詳細で補完した Score。有効なスコアが無い場合は None。

    Raises:
        NotFoundError / UnexpectedError: API 呼び出しに失敗した場合。
    """
    scores = api.get_scores(user_id, count=lookup_count, sort=SortColumn.DATE, ascending=False)

    candidates = [s for s in scores if s.msd.overall >= MIN_VALID_OVERALL]
    latest = _first_valid(api, candidates)
    if latest is None:
        logger.debug("No recent valid scores for user_id=%s", user_id)
    return latest


def find_best_score_on_song(
    api: EtternaAPI,
    user_id: int,
    song: Song,
    rate: Optional[float] = None,
) -> Tuple[Optional[Score], bool]:
    """
    指定曲におけるユーザーのベストスコア(nerf レーティング順)を取得する。

    曲名で検索した結果から曲IDが一致するものを選ぶ。rate を指定した場合は
    そのレートのスコアに限定する。

    Args:
        api: EtternaAPI。
        user_id: ユーザーの数値ID。
        song: 対象の曲。
        rate: 絞り込むレート倍率（None なら全レート）。

    Returns:
        (詳細で補完した Score または None, 曲に何らかのスコアがあるか) のタプル。
    """
    count = BEST_SCORE_LOOKUP_COUNT if rate is None else RATE_SCORE_LOOKUP_COUNT
    scores = api.get_scores(user_id, search=song.name, count=count, sort=SortColumn.NERF)

    on_song = [s for s in scores if s.song.id == song.id]
    candidates = on_song
    if rate is not None:
        candidates = [s for s in on_song if abs(s.rate - rate) < 1e-9]

    return _first_valid(api, candidates), bool(on_song)


def resolve_score_link(api: EtternaAPI, score_key: str) -> Score:
    """
    スコアURLに含まれるキーからスコアを復元する。

    詳細エンドポイントは nerf レーティングと判定数を返さないため、
    詳細から得たユーザーIDでスコア一覧(nerf 順)を取得し、キーが一致するものを使う。

    Args:
        api: EtternaAPI。
        score_key: URL中のスコアキー(末尾にユーザーIDを含む)。

    Returns:
        詳細で補完した Score。

    Raises:
        NotFoundError: 詳細にユーザーIDが無い、または一致するスコアが見つからない場合。
        UnexpectedError: API 呼び出しに失敗した場合。
    """
    detail = api.get_score_detail(score_key)
    if detail.user is None or detail.user.id is None:
        raise NotFoundError("Score URL does not contain a user ID.")

    key = score_key[:SCORE_KEY_LENGTH]
    scores = api.get_scores(
        detail.user.id,
        count=SCORE_LINK_LOOKUP_COUNT,
        sort=SortColumn.NERF,
    )

    for s in scores:
        if s.key[:SCORE_KEY_LENGTH] == key:
            return replace(merge_score_detail(s, detail), user=detail.user)

    raise NotFoundError("Failed to get score (could not be found)")
