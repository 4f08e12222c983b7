"""
Discord向けの表示用埋め込み(Embed)を組み立てるモジュール。

スコアの要約、レーティング上昇、プロフィール、2ユーザー比較、ヘルプの表示を担当する。
通信は行わず、必要な情報（曲、ユーザー）は呼び出し側で解決して渡す。
"""

from __future__ import annotations

from typing import List, Tuple

from etternabot.discord_notify import ETTERNA_ICON_URL, Embed, EmbedField
from etternabot.etterna import EtternaAPI
from etternabot.models import MSD, SKILLSETS, Score, Song, TrackedUser
from etternabot.numeric import equality_sign, format_accuracy, format_rate

EMOTE_AAAA = "<:AAAA:655488390141313024>"
EMOTE_AAA = "<:AAA:655483030789685265>"
EMOTE_AA = "<:AA:655488727187193856>"
EMOTE_A = "<:A:655488727212359710>"
EMOTE_B = "<:B:655488727434395688>"
EMOTE_C = "<:C:655488727258234880>"
EMOTE_MINES = "<:LULW:458394552886099972>"

VERSUS_THUMBNAIL_URL = "https://i.imgur.com/AkfAZtJ.png"

# (最低精度, 絵文字) の降順
_GRADES: Tuple[Tuple[float, str], ...] = (
    (99.955, EMOTE_AAAA),
    (99.70, EMOTE_AAA),
    (93.00, EMOTE_AA),
    (80.00, EMOTE_A),
    (70.00, EMOTE_B),
    (60.00, EMOTE_C),
)

MIN_DISPLAY_GAIN = 0.01


def grade_emote(accuracy: float) -> str:
    """精度に対応するグレード絵文字を返す。60%未満は空文字。"""
    for threshold, emote in _GRADES:
        if accuracy >= threshold:
            return emote
    return ""


def build_play_embed(
    api: EtternaAPI,
    score: Score,
    song: Song,
    user: TrackedUser,
    author_prefix: str = "Recent play by",
) -> Embed:
    """
    スコアの要約を Embed にする。

    Args:
        api: URL生成に使う EtternaAPI。
        score: 表示するスコア（詳細で補完済みであること）。
        song: キャッシュから解決した曲情報。
        user: プレイしたユーザー。
        author_prefix: 見出しの前置き（"Recent play by" / "Played by"）。

    Returns:
        Embed。
    """
    rate = format_rate(score.rate)
    score_url = api.score_url(score.key, user.etterna_id)

    description = (
        f"**{grade_emote(score.accuracy)} [{song.name} ({rate}x)]({score_url})**\n\n"
        f"➤ **Acc:** {format_accuracy(score.accuracy)} @ {rate}x\n"
        f"➤ **Score:** {score.msd.overall:.2f} | **Nerfed:** {score.nerfed:.2f}\n"
        f"➤ **Hits:** {score.judgements.marvelous}/{score.judgements.perfect}/"
        f"{score.judgements.great}/{score.judgements.good}/"
        f"{score.judgements.bad}/{score.judgements.miss}\n"
        f"➤ **Max combo:** x{score.max_combo}"
    )

    if score.mines_hit > 0:
        description += f"\n➤ **Mines hit:** {score.mines_hit} {EMOTE_MINES}"

    return Embed(
        url=score_url,
        description=description,
        timestamp=score.date,
        author_name=f"{author_prefix} {user.username}",
        author_icon_url=api.avatar_url(user.avatar),
        footer_text=user.username,
        footer_icon_url=ETTERNA_ICON_URL,
        thumbnail_url=api.song_background_url(song.background),
    )


def format_gains(latest: MSD, gains: MSD) -> str:
    """
    上昇したカテゴリを "➤ **Overall:** 20.15 (+0.15)" 形式で列挙する。

    上昇量が 0.01 未満のカテゴリは省く。何も上昇していなければ空文字。
    """
    lines: List[str] = []
    for name, label in SKILLSETS:
        gain = getattr(gains, name)
        if gain >= MIN_DISPLAY_GAIN:
            lines.append(f"➤ **{label}:** {getattr(latest, name):.2f} (+{gain:.2f})")
    return "\n".join(lines)


def build_profile_embed(api: EtternaAPI, user: TrackedUser) -> Embed:
    """ユーザーのカテゴリ別レーティングと順位を Embed にする。"""
    lines = [
        f"➤ **{label}:** {getattr(user.msd, name):.2f} (#{getattr(user.rank, name)})"
        for name, label in SKILLSETS
    ]
    profile_url = api.profile_url(user.username)

    return Embed(
        title="View profile",
        url=profile_url,
        description="\n".join(lines),
        author_name=f"EtternaOnline: {user.username}",
        author_icon_url=ETTERNA_ICON_URL,
        author_url=profile_url,
        thumbnail_url=api.avatar_url(user.avatar),
    )


def build_versus_embed(user1: TrackedUser, user2: TrackedUser) -> Embed:
    """2ユーザーのカテゴリ別レーティングを並べた比較表を Embed にする。"""
    lines = []
    for name, label in SKILLSETS:
        a = getattr(user1.msd, name)
        b = getattr(user2.msd, name)
        lines.append(f"{label:>10}:  {a:5.2f}  {equality_sign(a, b)}  {b:5.2f}  ({a - b:+.2f})")

    return Embed(
        description="```\n" + "\n".join(lines) + "\n```",
        author_name=f"{user1.username} vs. {user2.username}",
        author_icon_url=ETTERNA_ICON_URL,
        thumbnail_url=VERSUS_THUMBNAIL_URL,
    )


def build_help_embed(prefix: str) -> Embed:
    """コマンド一覧を Embed にする。"""
    return Embed(
        title="EtternaBot Help",
        description=(
            "I'm a bot for tracking Etterna Online plays. https://etternaonline.com\n"
            f"For commands, use this prefix: `{prefix}`\n\n"
            "I can also post score summaries if you send a link to a score."
        ),
        fields=[
            EmbedField("**help**", "Shows this help text. Cool."),
            EmbedField(
                "**setuser** <username>",
                "Links an Etterna Online user to you. "
                "This will cause your recent plays to be tracked automatically.",
            ),
            EmbedField(
                "**unset**",
                "Unlinks you from any Etterna Online users. "
                "Your recent plays will no longer be tracked.",
            ),
            EmbedField(
                "**here**",
                "Posts tracked plays of registered users in this channel.",
            ),
            EmbedField(
                "**compare** [username]",
                "Compares you or someone else's best score on the last posted song.",
            ),
            EmbedField(
                "**compare**@<rate> [username]",
                "Compares you or someone else's best score on the last posted song at a "
                "specific rate. The rate must be a number between 0.7 and 3.0, and it must "
                "be in 0.05 increments.",
            ),
            EmbedField("**profile** [username]", "Gets a summary of your current ranks and ratings."),
            EmbedField(
                "**recent** [username]",
                "Gets a summary of your latest play, or the play of whichever player you specify.",
            ),
            EmbedField(
                "**vs** <username> [username]",
                "Compares two user's profiles. If you only specify one username, "
                "that user's profile will be compared to yours.",
            ),
        ],
    )
