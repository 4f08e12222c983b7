"""
キャッシュ優先の取得処理。

DBにキャッシュがあればそれを返し、無ければ EtternaOnline から取得して保存する。
プロセス内のキャッシュは持たず、すべて DB を経由する。
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import replace

from etternabot import db
from etternabot.etterna import EtternaAPI
from etternabot.models import MSD, SKILLSETS, ServerConfig, Song, TrackedUser
from etternabot.numeric import truncate_float

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_PREFIX = ";"


def get_user_or_create(con: sqlite3.Connection, api: EtternaAPI, username: str) -> TrackedUser:
    """
    ユーザーをキャッシュから取得し、無ければAPIから取得して保存する。

    未キャッシュの場合のみ、重いプロフィールページ取得(get_user_id)を行う。

    Raises:
        NotFoundError: ユーザーが存在しない場合。
        UnexpectedError: 通信・解析に失敗した場合。
    """
    user = db.get_cached_user(con, username)
    if user is not None:
        return user

    profile = api.get_by_username(username)
    etterna_id = api.get_user_id(profile.username or username)

    user = TrackedUser(
        username=profile.username or username,
        etterna_id=etterna_id,
        avatar=profile.avatar,
        msd=profile.msd,
        rank=profile.rank,
    )
    db.save_user(con, user)
    logger.info("Cached new user %s (id=%s)", user.username, etterna_id)
    return user


def refresh_user_info(api: EtternaAPI, user: TrackedUser) -> TrackedUser:
    """
    最新のアバター・MSD・順位を反映したユーザーを返す（保存はしない）。

    プロフィール表示用。キャッシュ済みのMSDは追跡処理がレーティング上昇を
    判定するための基準値なので、ここでは書き換えない。
    """
    profile = api.get_by_username(user.username)
    msd = MSD(**{
        name: truncate_float(getattr(profile.msd, name), 2)
        for name, _ in SKILLSETS
    })
    return replace(user, avatar=profile.avatar, msd=msd, rank=profile.rank)


def get_song_or_create(con: sqlite3.Connection, api: EtternaAPI, song_id: int) -> Song:
    """
    曲をキャッシュから取得し、無ければAPIから取得して保存する。

    Raises:
        NotFoundError: 曲が存在しない場合。
        UnexpectedError: 通信・解析に失敗した場合。
    """
    song = db.get_song(con, song_id)
    if song is not None:
        return song

    song = api.get_song(song_id)
    db.save_song(con, song)
    logger.debug("Cached song %s (%s)", song.id, song.name)
    return song


def get_server_or_create(
    con: sqlite3.Connection,
    server_id: str,
    command_prefix: str = DEFAULT_COMMAND_PREFIX,
) -> ServerConfig:
    """サーバー設定を取得し、初回であればデフォルト設定で作成する。"""
    server = db.get_server(con, server_id)
    if server is not None:
        return server

    server = ServerConfig(server_id=server_id, command_prefix=command_prefix)
    db.save_server(con, server)
    logger.info("Created record for server %s", server_id)
    return server
