"""
チャットコマンドの振り分けと各コマンドの処理。

Discordゲートウェイ（メッセージ受信）は本パッケージの対象外で、受信側は
handle_message(ctx, content) を呼び出す。返信は ctx の dispatcher 経由で送信する。

例外方針:
- EtternaAPIError はメッセージをそのままチャンネルへ返信する（ログはdebugのみ）
- 未登録・スコア無しなど想定内の結果は例外にせず、案内メッセージを返信する
"""

from __future__ import annotations

import logging
import re
import sqlite3
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from etternabot import db
from etternabot.discord_notify import DiscordDispatcher, Embed
from etternabot.errors import EtternaAPIError
from etternabot.etterna import EtternaAPI
from etternabot.lookup import (
    DEFAULT_COMMAND_PREFIX,
    get_server_or_create,
    get_song_or_create,
    get_user_or_create,
    refresh_user_info,
)
from etternabot.models import ServerConfig, TrackedUser
from etternabot.numeric import format_rate
from etternabot.parser import SCORE_KEY_LENGTH
from etternabot.recent_play import find_best_score_on_song, get_recent_play, resolve_score_link
from etternabot.summary import (
    build_help_embed,
    build_play_embed,
    build_profile_embed,
    build_versus_embed,
)

logger = logging.getLogger(__name__)

RE_COMMAND = re.compile(r"^[a-z\d\.@]+$")
RE_COMPARE_RATE = re.compile(r"^compare@(\d*\.?\d*)$")
RE_SCORE_URL = re.compile(r"etternaonline\.com/score/view/(S[a-f0-9]+)")

MIN_RATE = 0.7
MAX_RATE = 3.0

MSG_NOT_REGISTERED = (
    "You are not registered with an Etterna user. "
    "Please register using the `setuser` command, or specify a user: recent <username>"
)
MSG_NO_LAST_SONG = "No scores to compare to."


@dataclass
class CommandContext:
    """
    1件の受信メッセージに対する処理コンテキスト。

    Attributes:
        con: SQLite接続。
        api: EtternaAPI。
        dispatcher: 返信に使う送信クライアント。
        server_id: DiscordサーバーID。
        channel_id: メッセージが送られたチャンネルID。
        author_id: 送信者のDiscordユーザーID。
        default_prefix: 初めてのサーバーに割り当てるコマンドプレフィックス。
    """

    con: sqlite3.Connection
    api: EtternaAPI
    dispatcher: DiscordDispatcher
    server_id: str
    channel_id: str
    author_id: str
    default_prefix: str = DEFAULT_COMMAND_PREFIX

    def reply(self, text: str) -> bool:
        return self.dispatcher.send_message(self.channel_id, text)

    def reply_embed(self, embed: Embed) -> bool:
        return self.dispatcher.send_embed(self.channel_id, embed)

    def typing(self) -> bool:
        return self.dispatcher.send_typing(self.channel_id)


Handler = Callable[[CommandContext, ServerConfig, List[str]], None]


def _remember_song(ctx: CommandContext, server: ServerConfig, song_id: int) -> None:
    server.last_song_id = song_id
    db.set_last_song_id(ctx.con, server.server_id, song_id)


def _resolve_user(ctx: CommandContext, args: List[str], refresh: bool = False) -> Optional[TrackedUser]:
    """
    引数のユーザー名、無ければ送信者の登録ユーザーを返す。

    未登録の場合は案内を返信して None を返す。
    """
    if len(args) > 1:
        user = get_user_or_create(ctx.con, ctx.api, args[1])
    else:
        user = db.get_registered_user(ctx.con, ctx.server_id, ctx.author_id)

    if user is None:
        ctx.reply(MSG_NOT_REGISTERED)
        return None

    return refresh_user_info(ctx.api, user) if refresh else user


# ----------------------------------------------------------------------
# コマンド
# ----------------------------------------------------------------------


def _reply_if_registered(ctx: CommandContext, username: str) -> bool:
    """
    username または送信者がサーバー内で登録済みなら、その旨を返信して True を返す。
    """
    discord_id = db.get_registered_discord_user_id(ctx.con, ctx.server_id, username)

    if discord_id == ctx.author_id:
        ctx.reply(f"You are already registered as '{username}'.")
        return True
    if discord_id is not None:
        ctx.reply(f"Another user is already registered as '{username}'.")
        return True

    if db.get_registered_user(ctx.con, ctx.server_id, ctx.author_id) is not None:
        ctx.reply(
            "You are already registered as another user. "
            "Use the 'unset' command first and try again."
        )
        return True

    return False


def cmd_setuser(ctx: CommandContext, server: ServerConfig, args: List[str]) -> None:
    """
    送信者と Etternaユーザーを紐付ける。

    サーバー内では Discordユーザーと Etternaユーザーは1対1。
    """
    if len(args) < 2:
        ctx.reply("Usage: setuser <username>")
        return

    username = args[1].strip()
    if _reply_if_registered(ctx, username):
        return

    user = get_user_or_create(ctx.con, ctx.api, username)

    if not db.register(ctx.con, user.username, ctx.server_id, ctx.author_id):
        # 同時に登録された場合のみ到達する。どちらの一意制約に違反したかを読み直す
        if not _reply_if_registered(ctx, user.username):
            ctx.reply(f"Failed to register as '{user.username}'. Please try again.")
        return

    logger.info("Registered %s as %s in server %s", ctx.author_id, user.username, ctx.server_id)
    ctx.reply(f"Success! You are now registered as '{user.username}'.")


def cmd_unset(ctx: CommandContext, server: ServerConfig, args: List[str]) -> None:
    if db.unregister(ctx.con, ctx.server_id, ctx.author_id):
        ctx.reply(
            "Success! You are no longer registered. "
            "Use the setuser command to register as another user."
        )
    else:
        ctx.reply("You are not registered to an etterna user.")


def cmd_profile(ctx: CommandContext, server: ServerConfig, args: List[str]) -> None:
    """最新のレーティングと順位を表示する（キャッシュは更新しない）。"""
    user = _resolve_user(ctx, args, refresh=True)
    if user is None:
        return
    ctx.reply_embed(build_profile_embed(ctx.api, user))


def cmd_recent(ctx: CommandContext, server: ServerConfig, args: List[str]) -> None:
    user = _resolve_user(ctx, args)
    if user is None:
        return

    ctx.typing()
    score = get_recent_play(ctx.api, user.etterna_id)
    if score is None:
        ctx.reply(f"{user.username} has no recent valid scores.")
        return

    song = get_song_or_create(ctx.con, ctx.api, score.song.id)
    ctx.reply_embed(build_play_embed(ctx.api, score, song, user))
    _remember_song(ctx, server, song.id)


def cmd_compare(ctx: CommandContext, server: ServerConfig, args: List[str]) -> None:
    """最後に投稿された曲のベストスコアを表示する。"""
    _compare(ctx, server, args, rate=None)


def cmd_compare_rate(ctx: CommandContext, server: ServerConfig, args: List[str]) -> None:
    """
    最後に投稿された曲の、指定レートでのベストスコアを表示する。

    レートは 0.7 から 3.0 の範囲で、0.05 刻みであること。
    """
    match = RE_COMPARE_RATE.match(args[0])
    if match is None or not match.group(1) or match.group(1) == ".":
        ctx.reply("Usage: compare@<rate> [user]")
        return

    rate_str = match.group(1)
    rate = float(rate_str)

    if rate < MIN_RATE or rate > MAX_RATE:
        ctx.reply("Rate must be between 0.7 and 3.0.")
        return

    _, _, decimals = rate_str.partition(".")
    if len(decimals) > 2 or (len(decimals) == 2 and decimals[1] not in "05"):
        ctx.reply("Rate must be in 0.05 increments.")
        return

    _compare(ctx, server, args, rate=rate)


def _compare(
    ctx: CommandContext,
    server: ServerConfig,
    args: List[str],
    rate: Optional[float],
) -> None:
    if server.last_song_id is None:
        ctx.reply(MSG_NO_LAST_SONG)
        return

    user = _resolve_user(ctx, args)
    if user is None:
        return

    ctx.typing()
    song = get_song_or_create(ctx.con, ctx.api, server.last_song_id)
    score, has_any = find_best_score_on_song(ctx.api, user.etterna_id, song, rate)

    if score is None:
        if rate is not None and has_any:
            ctx.reply(f"{user.username} has no scores on '{song.name}' at {format_rate(rate)}")
        else:
            ctx.reply(f"{user.username} has no scores on '{song.name}'")
        return

    ctx.reply_embed(build_play_embed(ctx.api, score, song, user, author_prefix="Played by"))


def cmd_vs(ctx: CommandContext, server: ServerConfig, args: List[str]) -> None:
    """2ユーザーのレーティングを比較する。1人だけ指定した場合は送信者と比較する。"""
    if len(args) < 2:
        ctx.reply("Usage: vs <username> [username]")
        return

    if len(args) == 2:
        user1 = _resolve_user(ctx, args[:1], refresh=True)
        if user1 is None:
            return
        user2 = refresh_user_info(ctx.api, get_user_or_create(ctx.con, ctx.api, args[1]))
    else:
        user1 = refresh_user_info(ctx.api, get_user_or_create(ctx.con, ctx.api, args[1]))
        user2 = refresh_user_info(ctx.api, get_user_or_create(ctx.con, ctx.api, args[2]))

    ctx.reply_embed(build_versus_embed(user1, user2))


def cmd_here(ctx: CommandContext, server: ServerConfig, args: List[str]) -> None:
    """このチャンネルを追跡したプレイの投稿先にする。"""
    server.score_channel_id = ctx.channel_id
    db.save_server(ctx.con, server)
    ctx.reply("Recent plays will be posted in this channel.")


def cmd_help(ctx: CommandContext, server: ServerConfig, args: List[str]) -> None:
    ctx.reply_embed(build_help_embed(server.command_prefix))


COMMANDS: Dict[str, Handler] = {
    "setuser": cmd_setuser,
    "unset": cmd_unset,
    "profile": cmd_profile,
    "recent": cmd_recent,
    "compare": cmd_compare,
    "vs": cmd_vs,
    "here": cmd_here,
    "help": cmd_help,
}


# ----------------------------------------------------------------------
# スコアURL
# ----------------------------------------------------------------------


def handle_score_urls(ctx: CommandContext, server: ServerConfig, content: str) -> bool:
    """
    メッセージ中のスコアURLを要約して返信する。

    Returns:
        スコアURLが含まれていた場合は True。
    """
    match = RE_SCORE_URL.search(content)
    if match is None:
        return False

    key = match.group(1)
    if len(key) < SCORE_KEY_LENGTH:
        ctx.reply("Score URL does not look correct (did you copy it right?)")
        return True

    ctx.typing()

    try:
        score = resolve_score_link(ctx.api, key)
    except EtternaAPIError as e:
        ctx.reply(f"Failed to get score ({e})")
        return True

    username = score.user.username if score.user else ""
    try:
        user = get_user_or_create(ctx.con, ctx.api, username)
    except EtternaAPIError as e:
        ctx.reply(f"Could not find user {username} ({e})")
        return True

    song = get_song_or_create(ctx.con, ctx.api, score.song.id)
    ctx.reply_embed(build_play_embed(ctx.api, score, song, user, author_prefix="Played by"))
    _remember_song(ctx, server, song.id)
    return True


# ----------------------------------------------------------------------
# 振り分け
# ----------------------------------------------------------------------


def handle_message(ctx: CommandContext, content: str) -> Optional[str]:
    """
    受信メッセージを処理する。

    プレフィックスで始まるメッセージはコマンドとして振り分け、それ以外は
    スコアURLの有無を確認する。

    Args:
        ctx: 処理コンテキスト。
        content: メッセージ本文。

    Returns:
        処理したコマンド名（小文字）。コマンドでなければ None。
    """
    server = get_server_or_create(ctx.con, ctx.server_id, ctx.default_prefix)
    name: Optional[str] = None

    try:
        if not content.startswith(server.command_prefix):
            handle_score_urls(ctx, server, content)
            return None

        args = content[len(server.command_prefix):].split()
        if not args:
            return None

        args[0] = args[0].lower()
        name = args[0]
        if not RE_COMMAND.match(name):
            return None

        handler = COMMANDS.get(name)
        if handler is None and name.startswith("compare@"):
            handler = cmd_compare_rate

        if handler is None:
            ctx.reply(f"Unrecognized command '{name}'.")
            return name

        handler(ctx, server, args)
        return name

    except EtternaAPIError as e:
        logger.debug("Command failed for %s: %s", ctx.author_id, e)
        ctx.reply(str(e))
        return name
