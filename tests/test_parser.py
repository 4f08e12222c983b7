from __future__ import annotations

from datetime import datetime

import pytest

from conftest import make_key, score_entry, song_link_html, wife_score_html
from etternabot.errors import ParseError, UnexpectedError
from etternabot.models import Judgements
from etternabot.parser import (
    extract_user_id,
    is_invalid_entry,
    parse_overall,
    parse_score_detail,
    parse_score_entry,
    parse_song,
    parse_song_link,
    parse_user_profile,
    parse_user_ranks,
    parse_wife_score,
    user_id_from_score_key,
)


@pytest.mark.light
def test_parse_song_link():
    name, song_id = parse_song_link(song_link_html("ETERNAL DRAIN", 2254))
    assert name == "ETERNAL DRAIN"
    assert song_id == 2254


@pytest.mark.light
@pytest.mark.parametrize(
    "html",
    [
        "ETERNAL DRAIN",
        "<a>ETERNAL DRAIN</a>",
        '<a href="https://etternaonline.com/song/view/abc">ETERNAL DRAIN</a>',
    ],
)
def test_parse_song_link_rejects_malformed_anchor(html):
    with pytest.raises(ParseError):
        parse_song_link(html)


@pytest.mark.light
def test_parse_wife_score():
    judgements, accuracy = parse_wife_score(wife_score_html("96.34%"))
    assert judgements == Judgements(
        marvelous=1489, perfect=509, great=61, good=3, bad=1, miss=7
    )
    assert accuracy == pytest.approx(96.34)


@pytest.mark.light
def test_parse_wife_score_judgement_names_are_case_insensitive():
    html = '<div title="MARVELOUS: 10<br/>perfect: 2"><span>99.1%</span></div>'
    judgements, accuracy = parse_wife_score(html)
    assert judgements.marvelous == 10
    assert judgements.perfect == 2
    assert judgements.miss == 0
    assert accuracy == pytest.approx(99.1)


@pytest.mark.light
def test_parse_wife_score_missing_tooltip_is_parse_error():
    with pytest.raises(ParseError):
        parse_wife_score("<div><span>96.34%</span></div>")


@pytest.mark.light
def test_parse_wife_score_missing_span_is_parse_error():
    with pytest.raises(ParseError):
        parse_wife_score('<div title="Marvelous: 1"></div>')


@pytest.mark.light
def test_parse_overall_anchor_and_plain():
    assert parse_overall('<a href="https://etternaonline.com/score/view/x">23.45</a>') == 23.45
    assert parse_overall("23.45") == 23.45
    assert parse_overall(23.45) == 23.45


@pytest.mark.light
def test_parse_overall_html_without_anchor_is_parse_error():
    with pytest.raises(ParseError):
        parse_overall("<span>23.45</span>")


@pytest.mark.light
def test_is_invalid_entry_uses_string_zero_nerf():
    assert is_invalid_entry({"nerf": "0"}) is True
    assert is_invalid_entry({"Nerf": "0"}) is True
    assert is_invalid_entry({"nerf": 0}) is False
    assert is_invalid_entry({"nerf": "12.5"}) is False


@pytest.mark.light
def test_parse_score_entry():
    key = make_key(1)
    score = parse_score_entry(score_entry(key))

    assert score.key == key
    assert score.song.id == 2254
    assert score.song.name == "ETERNAL DRAIN"
    assert score.rate == 1.05
    assert score.accuracy == pytest.approx(96.34)
    assert score.nerfed == pytest.approx(22.1)
    assert score.judgements.marvelous == 1489
    assert score.date == datetime(2019, 12, 8, 10, 20, 30)

    # MSDは小数2桁に四捨五入される
    assert score.msd.overall == 23.46
    assert score.msd.chordjack == 18.01
    assert score.msd.jack_speed == 15.2


@pytest.mark.light
def test_parse_score_entry_reads_anchor_wrapped_overall():
    entry = score_entry(make_key(1), overall='<a href="/score/view/x">24.125</a>')
    assert parse_score_entry(entry).msd.overall == 24.13


@pytest.mark.light
def test_parse_score_entry_malformed_number_is_parse_error():
    entry = score_entry(make_key(1), rate="fast")
    with pytest.raises(ParseError):
        parse_score_entry(entry)


@pytest.mark.light
def test_parse_error_is_an_unexpected_error():
    with pytest.raises(UnexpectedError):
        parse_score_entry(score_entry(make_key(1), date="yesterday"))


@pytest.mark.light
def test_user_id_from_score_key():
    key = make_key(5)
    assert user_id_from_score_key(key + "12345") == 12345
    assert user_id_from_score_key(key) is None
    assert user_id_from_score_key(key + "abc") is None


@pytest.mark.light
def test_parse_score_detail():
    key = make_key(7)
    entry = {
        "MaxCombo": "812",
        "valid": "1",
        "Modifiers": "C900, Overhead",
        "datetime": "2019-12-08 10:20:30",
        "hitmine": "2",
        "username": "jesse",
        "avatarUrl": "jesse.png",
        "countryCode": "US",
        "Overall": "23.456",
    }
    score = parse_score_detail(entry, key + "98765")

    assert score.key == key
    assert score.max_combo == 812
    assert score.mines_hit == 2
    assert score.mods == "C900, Overhead"
    assert score.valid is True
    assert score.date == datetime(2019, 12, 8, 10, 20, 30)
    assert score.user.username == "jesse"
    assert score.user.id == 98765
    assert score.user.avatar == "jesse.png"
    assert score.user.country_code == "US"
    assert score.msd.overall == 23.46


@pytest.mark.light
def test_parse_score_detail_invalid_flag():
    score = parse_score_detail({"valid": "0", "datetime": "2019-12-08"}, make_key(1))
    assert score.valid is False
    assert score.user.id is None
    assert score.date == datetime(2019, 12, 8)


@pytest.mark.light
def test_parse_song_converts_string_id():
    song = parse_song(
        {"id": "2254", "songname": "ETERNAL DRAIN", "artist": "Mameyudoufu", "background": "ed.jpg"},
        2254,
    )
    assert song.id == 2254
    assert song.name == "ETERNAL DRAIN"
    assert song.artist == "Mameyudoufu"
    assert song.background == "ed.jpg"


@pytest.mark.light
def test_parse_user_profile_rounds_msd_and_treats_missing_as_zero():
    user = parse_user_profile({
        "username": "Jesse",
        "avatar": "jesse.png",
        "countrycode": "US",
        "Overall": "20.004",
        "Stream": "21.255",
        "Technical": "",
    })
    assert user.username == "Jesse"
    assert user.country_code == "US"
    assert user.msd.overall == 20.0
    assert user.msd.stream == 21.26
    assert user.msd.technical == 0.0
    assert user.msd.stamina == 0.0


@pytest.mark.light
def test_parse_user_ranks():
    rank = parse_user_ranks({
        "Overall": "120", "Stream": "80", "Jumpstream": "300", "Handstream": "45",
        "Stamina": "12", "JackSpeed": "900", "Chordjack": "77", "Technical": "5",
    })
    assert rank.overall == 120
    assert rank.jack_speed == 900
    assert rank.technical == 5


@pytest.mark.light
def test_extract_user_id():
    html = "<script>var data = {'username': 'jesse', 'userid': '4321'};</script>"
    assert extract_user_id(html) == 4321


@pytest.mark.light
def test_extract_user_id_missing_is_parse_error():
    with pytest.raises(ParseError):
        extract_user_id("<html></html>")
