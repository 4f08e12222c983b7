"""
SQLiteへのキャッシュ・設定保存処理を提供するモジュール。

EtternaOnline ユーザーのキャッシュ（追跡カーソル・MSD・順位を含む）、
Discordサーバー設定、サーバーごとのユーザー登録、曲情報を保存する。

処理方針:
- users_discord_servers は (server_id, username) と (server_id, discord_user_id) の
  2つの一意制約を持ち、サーバー内で Discordユーザー <-> Etternaユーザー を1対1に保つ
- 一意制約違反は例外ではなく「登録済み」という結果(False)として返す
- username は大文字小文字を区別せずに照合する(COLLATE NOCASE)
- 書き込み関数はそれぞれコミットまで行う
"""

import sqlite3
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from etternabot.models import MSD, SKILLSETS, Rank, ServerConfig, Song, TrackedUser

_SKILL_NAMES = [name for name, _ in SKILLSETS]
_MSD_COLUMNS = [f"msd_{name.replace('_', '')}" for name in _SKILL_NAMES]
_RANK_COLUMNS = [f"rank_{name.replace('_', '')}" for name in _SKILL_NAMES]


def now_iso() -> str:
    """
    現在時刻(UTC)をISO 8601形式で返す。

    Returns:
        UTC時刻のISO文字列。
    """
    return datetime.now(timezone.utc).isoformat()


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    return None if value is None else value.isoformat()


def _from_iso(value: Optional[str]) -> Optional[datetime]:
    return None if value is None else datetime.fromisoformat(value)


def connect_db(path: str) -> sqlite3.Connection:
    """
    SQLite DBへ接続する。

    ポーリングスレッドとコマンド処理はそれぞれ自分の接続を開くこと。

    Args:
        path: SQLiteファイルパス。

    Returns:
        sqlite3.Connectionオブジェクト。
    """
    con = sqlite3.connect(path)
    con.row_factory = sqlite3.Row
    con.execute("PRAGMA foreign_keys = ON")
    return con


def init_schema(con: sqlite3.Connection) -> None:
    """
    DBスキーマを初期化する。

    各テーブルが存在しない場合に作成する。

    Args:
        con: SQLite接続。
    """
    cur = con.cursor()

    msd_cols = ",\n        ".join(f"{c} REAL NOT NULL DEFAULT 0" for c in _MSD_COLUMNS)
    rank_cols = ",\n        ".join(f"{c} INTEGER NOT NULL DEFAULT 0" for c in _RANK_COLUMNS)

    cur.execute(f"""
    CREATE TABLE IF NOT EXISTS etterna_users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        username TEXT NOT NULL UNIQUE COLLATE NOCASE,
        etterna_id INTEGER NOT NULL,
        avatar TEXT NOT NULL DEFAULT '',
        last_recent_score_key TEXT NULL,
        last_recent_score_date TEXT NULL,
        {msd_cols},
        {rank_cols},
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """)

    cur.execute("""
    CREATE TABLE IF NOT EXISTS discord_servers (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        server_id TEXT NOT NULL UNIQUE,
        command_prefix TEXT NOT NULL,
        score_channel_id TEXT NULL,
        last_song_id INTEGER NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """)

    cur.execute("""
    CREATE TABLE IF NOT EXISTS users_discord_servers (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        server_id TEXT NOT NULL,
        username TEXT NOT NULL COLLATE NOCASE,
        discord_user_id TEXT NOT NULL,
        created_at TEXT NOT NULL,
        UNIQUE(server_id, username),
        UNIQUE(server_id, discord_user_id),
        FOREIGN KEY(server_id) REFERENCES discord_servers(server_id),
        FOREIGN KEY(username) REFERENCES etterna_users(username)
    )
    """)

    cur.execute("""
    CREATE TABLE IF NOT EXISTS songs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        etterna_id INTEGER NOT NULL UNIQUE,
        name TEXT NOT NULL,
        artist TEXT NOT NULL,
        background_url TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """)

    con.commit()


# ----------------------------------------------------------------------
# Row <-> モデル変換
# ----------------------------------------------------------------------


def _row_to_user(row: sqlite3.Row, prefix: str = "") -> TrackedUser:
    msd = MSD(**{
        name: float(row[f"{prefix}{col}"]) for name, col in zip(_SKILL_NAMES, _MSD_COLUMNS)
    })
    rank = Rank(**{
        name: int(row[f"{prefix}{col}"]) for name, col in zip(_SKILL_NAMES, _RANK_COLUMNS)
    })
    return TrackedUser(
        id=int(row[f"{prefix}id"]),
        username=row[f"{prefix}username"],
        etterna_id=int(row[f"{prefix}etterna_id"]),
        avatar=row[f"{prefix}avatar"],
        msd=msd,
        rank=rank,
        last_recent_score_key=row[f"{prefix}last_recent_score_key"],
        last_recent_score_date=_from_iso(row[f"{prefix}last_recent_score_date"]),
    )


def _row_to_server(row: sqlite3.Row, prefix: str = "") -> ServerConfig:
    last_song_id = row[f"{prefix}last_song_id"]
    return ServerConfig(
        id=int(row[f"{prefix}id"]),
        server_id=row[f"{prefix}server_id"],
        command_prefix=row[f"{prefix}command_prefix"],
        score_channel_id=row[f"{prefix}score_channel_id"],
        last_song_id=None if last_song_id is None else int(last_song_id),
    )


# ----------------------------------------------------------------------
# discord_servers
# ----------------------------------------------------------------------


def get_server(con: sqlite3.Connection, server_id: str) -> Optional[ServerConfig]:
    """
    Discordサーバーの設定を取得する。

    Args:
        con: SQLite接続。
        server_id: DiscordサーバーID。

    Returns:
        ServerConfig。未登録の場合は None。
    """
    cur = con.cursor()
    cur.execute("SELECT * FROM discord_servers WHERE server_id=?", (server_id,))
    row = cur.fetchone()
    return None if row is None else _row_to_server(row)


def save_server(con: sqlite3.Connection, server: ServerConfig) -> None:
    """
    Discordサーバーの設定をupsertする。

    server_idをキーに存在判定を行い、存在しなければINSERT、存在すればUPDATEを行う。
    INSERT した場合は server.id に採番されたIDを設定する。

    Args:
        con: SQLite接続。
        server: サーバー設定。
    """
    cur = con.cursor()
    now = now_iso()

    cur.execute("SELECT id FROM discord_servers WHERE server_id=?", (server.server_id,))
    row = cur.fetchone()

    if row is None:
        cur.execute("""
        INSERT INTO discord_servers (
            server_id, command_prefix, score_channel_id, last_song_id,
            created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?)
        """, (
            server.server_id,
            server.command_prefix,
            server.score_channel_id,
            server.last_song_id,
            now,
            now,
        ))
        server.id = int(cur.lastrowid)
    else:
        server.id = int(row["id"])
        cur.execute("""
        UPDATE discord_servers
        SET command_prefix=?,
            score_channel_id=?,
            last_song_id=?,
            updated_at=?
        WHERE id=?
        """, (
            server.command_prefix,
            server.score_channel_id,
            server.last_song_id,
            now,
            server.id,
        ))

    con.commit()


def set_last_song_id(con: sqlite3.Connection, server_id: str, song_id: int) -> bool:
    """
    サーバーの last_song_id のみを更新する。

    他の設定（プレフィックス、スコアチャンネル）は読み込み後に変更されている
    可能性があるため書き戻さない。

    Returns:
        更新対象のサーバーが存在した場合は True。
    """
    cur = con.cursor()
    cur.execute("""
    UPDATE discord_servers
    SET last_song_id=?,
        updated_at=?
    WHERE server_id=?
    """, (song_id, now_iso(), server_id))
    con.commit()
    return cur.rowcount > 0


# ----------------------------------------------------------------------
# etterna_users
# ----------------------------------------------------------------------


def get_cached_user(con: sqlite3.Connection, username: str) -> Optional[TrackedUser]:
    """
    キャッシュ済みのEtternaユーザーを取得する。

    見つからない場合でもユーザーが存在しないとは限らず、未キャッシュなだけの可能性がある。

    Args:
        con: SQLite接続。
        username: ユーザー名（大文字小文字を区別しない）。

    Returns:
        TrackedUser。未キャッシュの場合は None。
    """
    cur = con.cursor()
    cur.execute("SELECT * FROM etterna_users WHERE username=?", (username,))
    row = cur.fetchone()
    return None if row is None else _row_to_user(row)


def save_user(con: sqlite3.Connection, user: TrackedUser) -> None:
    """
    Etternaユーザーのキャッシュ(追跡カーソル、MSD、順位を含む)をupsertする。

    usernameをキーに存在判定を行い、存在しなければINSERT、存在すればUPDATEを行う。

    Args:
        con: SQLite接続。
        user: 保存するユーザー。
    """
    cur = con.cursor()
    now = now_iso()

    msd_values = [getattr(user.msd, name) for name in _SKILL_NAMES]
    rank_values = [getattr(user.rank, name) for name in _SKILL_NAMES]

    cur.execute("SELECT id FROM etterna_users WHERE username=?", (user.username,))
    row = cur.fetchone()

    if row is None:
        columns = [
            "username", "etterna_id", "avatar",
            "last_recent_score_key", "last_recent_score_date",
            *_MSD_COLUMNS, *_RANK_COLUMNS,
            "created_at", "updated_at",
        ]
        placeholders = ", ".join("?" for _ in columns)
        cur.execute(
            f"INSERT INTO etterna_users ({', '.join(columns)}) VALUES ({placeholders})",
            (
                user.username,
                user.etterna_id,
                user.avatar,
                user.last_recent_score_key,
                _to_iso(user.last_recent_score_date),
                *msd_values,
                *rank_values,
                now,
                now,
            ),
        )
        user.id = int(cur.lastrowid)
    else:
        user.id = int(row["id"])
        assignments = ", ".join(
            f"{c}=?" for c in [
                "etterna_id", "avatar",
                "last_recent_score_key", "last_recent_score_date",
                *_MSD_COLUMNS, *_RANK_COLUMNS,
                "updated_at",
            ]
        )
        cur.execute(
            f"UPDATE etterna_users SET {assignments} WHERE id=?",
            (
                user.etterna_id,
                user.avatar,
                user.last_recent_score_key,
                _to_iso(user.last_recent_score_date),
                *msd_values,
                *rank_values,
                now,
                user.id,
            ),
        )

    con.commit()


# ----------------------------------------------------------------------
# users_discord_servers
# ----------------------------------------------------------------------


def get_registered_user(
    con: sqlite3.Connection,
    server_id: str,
    discord_user_id: str,
) -> Optional[TrackedUser]:
    """
    サーバー内で Discordユーザーに登録されている Etternaユーザーを取得する。

    Returns:
        TrackedUser。未登録の場合は None。
    """
    cur = con.cursor()
    cur.execute("""
    SELECT u.* FROM users_discord_servers uds
    INNER JOIN etterna_users u ON u.username=uds.username
    WHERE uds.server_id=? AND uds.discord_user_id=?
    """, (server_id, discord_user_id))
    row = cur.fetchone()
    return None if row is None else _row_to_user(row)


def get_registered_discord_user_id(
    con: sqlite3.Connection,
    server_id: str,
    username: str,
) -> Optional[str]:
    """
    サーバー内で Etternaユーザーに登録されている DiscordユーザーIDを取得する。

    Returns:
        DiscordユーザーID。未登録の場合は None。
    """
    cur = con.cursor()
    cur.execute("""
    SELECT discord_user_id FROM users_discord_servers
    WHERE server_id=? AND username=?
    """, (server_id, username))
    row = cur.fetchone()
    return None if row is None else row["discord_user_id"]


def register(
    con: sqlite3.Connection,
    username: str,
    server_id: str,
    discord_user_id: str,
) -> bool:
    """
    サーバー内で DiscordユーザーとEtternaユーザーを紐付ける。

    一意制約に違反した場合（どちらかが既に登録済み）は例外にせず False を返す。
    同時に登録しようとした場合の競合もここで判定される。

    Args:
        con: SQLite接続。
        username: Etternaユーザー名（etterna_users に保存済みであること）。
        server_id: DiscordサーバーID。
        discord_user_id: DiscordユーザーID。

    Returns:
        登録できた場合は True。
    """
    try:
        con.execute("""
        INSERT INTO users_discord_servers (server_id, username, discord_user_id, created_at)
        VALUES (?, ?, ?, ?)
        """, (server_id, username, discord_user_id, now_iso()))
        con.commit()
    except sqlite3.IntegrityError:
        con.rollback()
        return False

    return True


def unregister(con: sqlite3.Connection, server_id: str, discord_user_id: str) -> bool:
    """
    サーバー内の Discordユーザーの登録を解除する。

    Returns:
        解除した登録があれば True。
    """
    cur = con.cursor()
    cur.execute("""
    DELETE FROM users_discord_servers WHERE server_id=? AND discord_user_id=?
    """, (server_id, discord_user_id))
    con.commit()
    return cur.rowcount > 0


def list_registered_users_with_channels(
    con: sqlite3.Connection,
) -> List[Tuple[TrackedUser, List[ServerConfig]]]:
    """
    スコア投稿チャンネルが設定されたサーバーに登録されているユーザーを列挙する。

    Returns:
        (ユーザー, そのユーザーが登録されているサーバー設定のリスト) のリスト。
    """
    user_cols = ", ".join(
        f'u.{c} AS "u_{c}"' for c in [
            "id", "username", "etterna_id", "avatar",
            "last_recent_score_key", "last_recent_score_date",
            *_MSD_COLUMNS, *_RANK_COLUMNS,
        ]
    )
    server_cols = ", ".join(
        f's.{c} AS "s_{c}"' for c in [
            "id", "server_id", "command_prefix", "score_channel_id", "last_song_id",
        ]
    )

    cur = con.cursor()
    cur.execute(f"""
    SELECT {user_cols}, {server_cols}
    FROM etterna_users u
    INNER JOIN users_discord_servers uds ON uds.username=u.username
    INNER JOIN discord_servers s ON s.server_id=uds.server_id
    WHERE s.score_channel_id IS NOT NULL
    ORDER BY u.id, s.id
    """)

    grouped: Dict[int, Tuple[TrackedUser, List[ServerConfig]]] = {}
    for row in cur.fetchall():
        user_id = int(row["u_id"])
        if user_id not in grouped:
            grouped[user_id] = (_row_to_user(row, "u_"), [])
        grouped[user_id][1].append(_row_to_server(row, "s_"))

    return list(grouped.values())


# ----------------------------------------------------------------------
# songs
# ----------------------------------------------------------------------


def get_song(con: sqlite3.Connection, song_id: int) -> Optional[Song]:
    """キャッシュ済みの曲を EtternaOnline の曲IDで取得する。"""
    cur = con.cursor()
    cur.execute("SELECT * FROM songs WHERE etterna_id=?", (song_id,))
    row = cur.fetchone()
    if row is None:
        return None
    return Song(
        id=int(row["etterna_id"]),
        name=row["name"],
        artist=row["artist"],
        background=row["background_url"],
    )


def save_song(con: sqlite3.Connection, song: Song) -> None:
    """
    曲をキャッシュする。

    曲名・アーティストは変化しないため、既に存在する場合は何もしない。
    """
    con.execute("""
    INSERT OR IGNORE INTO songs (etterna_id, name, artist, background_url, created_at)
    VALUES (?, ?, ?, ?, ?)
    """, (song.id, song.name, song.artist, song.background, now_iso()))
    con.commit()
