from __future__ import annotations

from dataclasses import replace
from datetime import datetime

import pytest

from etternabot import db
from etternabot.models import MSD, Rank, ServerConfig, Song, TrackedUser


def _user(username: str = "jesse", etterna_id: int = 42) -> TrackedUser:
    return TrackedUser(
        username=username,
        etterna_id=etterna_id,
        avatar=f"{username}.png",
        msd=MSD(overall=20.0, stream=19.5, jack_speed=15.25),
        rank=Rank(overall=1200, technical=33),
    )


@pytest.mark.light
def test_init_schema_is_idempotent(con):
    db.init_schema(con)
    tables = {
        row["name"]
        for row in con.execute("SELECT name FROM sqlite_master WHERE type='table'")
    }
    assert {"etterna_users", "discord_servers", "users_discord_servers", "songs"} <= tables


@pytest.mark.light
def test_save_user_inserts_then_updates(con):
    user = _user()
    db.save_user(con, user)
    assert user.id is not None

    cached = db.get_cached_user(con, "JESSE")
    assert cached.username == "jesse"
    assert cached.etterna_id == 42
    assert cached.msd.jack_speed == 15.25
    assert cached.rank.technical == 33
    assert cached.last_recent_score_key is None
    assert cached.last_recent_score_date is None

    cached.last_recent_score_key = "Sabc"
    cached.last_recent_score_date = datetime(2019, 12, 8, 10, 20, 30)
    cached.msd = MSD(overall=20.15)
    db.save_user(con, cached)

    again = db.get_cached_user(con, "jesse")
    assert again.id == user.id
    assert again.last_recent_score_key == "Sabc"
    assert again.last_recent_score_date == datetime(2019, 12, 8, 10, 20, 30)
    assert again.msd.overall == 20.15
    assert con.execute("SELECT COUNT(*) FROM etterna_users").fetchone()[0] == 1


@pytest.mark.light
def test_get_cached_user_missing(con):
    assert db.get_cached_user(con, "nobody") is None


@pytest.mark.light
def test_save_server_roundtrip(con):
    server = ServerConfig(server_id="s1")
    db.save_server(con, server)

    loaded = db.get_server(con, "s1")
    assert loaded.command_prefix == ";"
    assert loaded.score_channel_id is None
    assert loaded.last_song_id is None

    loaded.score_channel_id = "c1"
    loaded.last_song_id = 2254
    db.save_server(con, loaded)

    assert db.get_server(con, "s1") == loaded
    assert db.get_server(con, "s2") is None


@pytest.mark.light
def test_set_last_song_id_keeps_other_settings(con):
    db.save_server(con, ServerConfig(server_id="s1", score_channel_id="c1"))
    stale = db.get_server(con, "s1")

    db.save_server(con, replace(stale, command_prefix="!", score_channel_id="c2"))
    assert db.set_last_song_id(con, "s1", 2254) is True

    loaded = db.get_server(con, "s1")
    assert loaded.last_song_id == 2254
    assert loaded.command_prefix == "!"
    assert loaded.score_channel_id == "c2"
    assert db.set_last_song_id(con, "s2", 2254) is False


@pytest.mark.light
def test_register_is_one_to_one_per_server(con):
    db.save_user(con, _user("jesse", 42))
    db.save_user(con, _user("alice", 43))
    db.save_server(con, ServerConfig(server_id="s1"))
    db.save_server(con, ServerConfig(server_id="s2"))

    assert db.register(con, "jesse", "s1", "d1") is True
    # 同じEtternaユーザーを別のDiscordユーザーが登録
    assert db.register(con, "jesse", "s1", "d2") is False
    # ユーザー名の大文字小文字は区別しない
    assert db.register(con, "JESSE", "s1", "d3") is False
    # 同じDiscordユーザーが別のEtternaユーザーを登録
    assert db.register(con, "alice", "s1", "d1") is False
    # 別サーバーであれば登録できる
    assert db.register(con, "jesse", "s2", "d2") is True

    assert db.get_registered_user(con, "s1", "d1").username == "jesse"
    assert db.get_registered_user(con, "s1", "d2") is None
    assert db.get_registered_discord_user_id(con, "s1", "Jesse") == "d1"
    assert db.get_registered_discord_user_id(con, "s1", "alice") is None


@pytest.mark.light
def test_unregister(con):
    db.save_user(con, _user())
    db.save_server(con, ServerConfig(server_id="s1"))
    db.register(con, "jesse", "s1", "d1")

    assert db.unregister(con, "s1", "d1") is True
    assert db.unregister(con, "s1", "d1") is False
    assert db.get_registered_user(con, "s1", "d1") is None


@pytest.mark.light
def test_list_registered_users_with_channels_groups_servers(con):
    db.save_user(con, _user("jesse", 42))
    db.save_user(con, _user("alice", 43))
    db.save_server(con, ServerConfig(server_id="s1", score_channel_id="c1"))
    db.save_server(con, ServerConfig(server_id="s2", score_channel_id="c2"))
    db.save_server(con, ServerConfig(server_id="s3"))

    db.register(con, "jesse", "s1", "d1")
    db.register(con, "jesse", "s2", "d1")
    db.register(con, "jesse", "s3", "d1")
    db.register(con, "alice", "s3", "d2")

    result = db.list_registered_users_with_channels(con)

    assert len(result) == 1, "スコアチャンネルの無いサーバーだけのユーザーは含まない"
    user, servers = result[0]
    assert user.username == "jesse"
    assert user.msd.stream == 19.5
    assert [s.score_channel_id for s in servers] == ["c1", "c2"]


@pytest.mark.light
def test_songs_are_immutable_once_stored(con):
    db.save_song(con, Song(id=2254, name="ETERNAL DRAIN", artist="Mameyudoufu", background="ed.jpg"))
    db.save_song(con, Song(id=2254, name="Renamed", artist="Someone", background="x.jpg"))

    song = db.get_song(con, 2254)
    assert song.name == "ETERNAL DRAIN"
    assert song.background == "ed.jpg"
    assert db.get_song(con, 1) is None
