"""
直近プレイの追跡（ポーリング）処理。

登録ユーザーごとに直近の有効プレイを取得し、未通知のプレイであれば
レーティング上昇を計算して、ユーザーが登録されている各サーバーの
スコアチャンネルへ要約を投稿する。

処理方針:
- 既読判定はスコアキーと日時の組で行う（サイトは同じ曲の連続プレイで
  スコアキーを使い回すことがあるため、キーだけでは判定しない）
- 新しいプレイを検出したら、表示するかどうかに関わらずカーソル・MSD・順位を保存する
- 表示条件: いずれかのカテゴリが 0.01 以上上昇した、または精度が閾値以上
- 1ユーザーの失敗はそのユーザーをスキップするだけで、サイクル全体は継続する
- サイクルは重複実行しない（実行中に呼ばれた場合は何もせずに戻る）
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass
from typing import List, Optional

from etternabot import db
from etternabot.discord_notify import DiscordDispatcher
from etternabot.errors import EtternaAPIError
from etternabot.etterna import EtternaAPI
from etternabot.lookup import get_song_or_create
from etternabot.models import MSD, SKILLSETS, Score, ServerConfig, TrackedUser
from etternabot.numeric import round_to_precision
from etternabot.recent_play import RECENT_PLAY_LOOKUP_COUNT, get_recent_play
from etternabot.summary import MIN_DISPLAY_GAIN, build_play_embed, format_gains

logger = logging.getLogger(__name__)

DEFAULT_MIN_ACCURACY = 99.5
DEFAULT_INTERVAL_SECONDS = 120


@dataclass
class CycleReport:
    """
    1サイクルの処理結果。

    Attributes:
        users_checked: 確認したユーザー数。
        new_plays: 新しいプレイを検出したユーザー数。
        displayed: 表示条件を満たしたプレイ数。
        messages_sent: 送信に成功したメッセージ数。
        errors: スキップしたユーザー数（API・DBエラー）。
        skipped_overlap: 前のサイクルが実行中のため何もしなかった場合 True。
    """

    users_checked: int = 0
    new_plays: int = 0
    displayed: int = 0
    messages_sent: int = 0
    errors: int = 0
    skipped_overlap: bool = False


def is_new_play(tracked: TrackedUser, score: Score) -> bool:
    """
    スコアが未通知のプレイかどうかを判定する。

    カーソルが無い、キーが異なる、またはキーが同じでも日時が異なる場合に新しいプレイとみなす。
    """
    if tracked.last_recent_score_key is None:
        return True
    if score.key != tracked.last_recent_score_key:
        return True
    return score.date != tracked.last_recent_score_date


def msd_gains(latest: MSD, cached: MSD) -> MSD:
    """カテゴリごとの上昇量(latest - cached)を小数2桁に丸めて返す。"""
    diff = latest.minus(cached)
    return MSD(**{
        name: round_to_precision(getattr(diff, name), 2) for name, _ in SKILLSETS
    })


def should_display(gains: MSD, accuracy: float, min_accuracy: float) -> bool:
    """いずれかのカテゴリが上昇した、または精度が閾値以上であれば表示する。"""
    if any(getattr(gains, name) >= MIN_DISPLAY_GAIN for name, _ in SKILLSETS):
        return True
    return accuracy >= min_accuracy


class PlayTracker:
    """
    登録ユーザーの直近プレイを監視してスコアチャンネルへ投稿する。

    Attributes:
        con: このスレッド専用の SQLite 接続。
        api: EtternaAPI。
        dispatcher: Discordへの送信クライアント。
        min_accuracy: レーティングが上がらなかったプレイを表示する最低精度(%)。
        lookup_count: 直近プレイを探すために取得するスコア件数。
    """

    def __init__(
        self,
        con: sqlite3.Connection,
        api: EtternaAPI,
        dispatcher: DiscordDispatcher,
        min_accuracy: float = DEFAULT_MIN_ACCURACY,
        lookup_count: int = RECENT_PLAY_LOOKUP_COUNT,
    ):
        self.con = con
        self.api = api
        self.dispatcher = dispatcher
        self.min_accuracy = min_accuracy
        self.lookup_count = lookup_count
        self._lock = threading.Lock()

    def run_cycle(self) -> CycleReport:
        """
        全登録ユーザーについて1回分の追跡を行う。

        Returns:
            CycleReport。前のサイクルが実行中の場合は skipped_overlap=True。
        """
        if not self._lock.acquire(blocking=False):
            logger.info("Previous tracking cycle is still running; skipping")
            return CycleReport(skipped_overlap=True)

        try:
            return self._run_cycle()
        finally:
            self._lock.release()

    def _run_cycle(self) -> CycleReport:
        report = CycleReport()

        try:
            targets = db.list_registered_users_with_channels(self.con)
        except sqlite3.Error:
            logger.exception("Failed to look up users for recent plays")
            return report

        for tracked, servers in targets:
            report.users_checked += 1
            try:
                self._track_user(tracked, servers, report)
            except (EtternaAPIError, sqlite3.Error) as e:
                report.errors += 1
                logger.warning("Skipping %s this cycle: %s", tracked.username, e)

        logger.info(
            "Tracking cycle done: users=%d new=%d displayed=%d sent=%d errors=%d",
            report.users_checked,
            report.new_plays,
            report.displayed,
            report.messages_sent,
            report.errors,
        )
        return report

    def _track_user(
        self,
        tracked: TrackedUser,
        servers: List[ServerConfig],
        report: CycleReport,
    ) -> None:
        score = get_recent_play(self.api, tracked.etterna_id, self.lookup_count)
        if score is None or not is_new_play(tracked, score):
            return

        report.new_plays += 1

        latest = self.api.get_by_username(tracked.username)
        latest_msd = latest.msd.rounded(2)
        gains = msd_gains(latest_msd, tracked.msd)

        tracked.msd = latest_msd
        tracked.rank = latest.rank
        if latest.avatar:
            tracked.avatar = latest.avatar
        tracked.last_recent_score_key = score.key
        tracked.last_recent_score_date = score.date
        db.save_user(self.con, tracked)

        if not should_display(gains, score.accuracy, self.min_accuracy):
            logger.debug("Not displaying play by %s (key=%s)", tracked.username, score.key)
            return

        report.displayed += 1
        song = get_song_or_create(self.con, self.api, score.song.id)
        gains_text = format_gains(latest_msd, gains)

        for server in servers:
            if server.score_channel_id is None:
                continue

            embed = build_play_embed(self.api, score, song, tracked)
            if gains_text:
                embed.description += "\n\n" + gains_text

            if self.dispatcher.send_embed(server.score_channel_id, embed):
                report.messages_sent += 1

            server.last_song_id = score.song.id
            db.set_last_song_id(self.con, server.server_id, score.song.id)

    def run_forever(
        self,
        interval: float = DEFAULT_INTERVAL_SECONDS,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        """
        stop_event がセットされるまで interval 秒ごとに run_cycle を実行する。

        1サイクルの想定外の例外はログに残し、次のサイクルへ進む。
        """
        stop_event = stop_event or threading.Event()
        logger.info("Tracking recent plays every %s seconds", interval)

        while not stop_event.is_set():
            try:
                self.run_cycle()
            except Exception:
                logger.exception("Tracking cycle failed")
            stop_event.wait(interval)

        logger.info("Stopped tracking recent plays")
