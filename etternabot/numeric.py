"""
数値の丸め・表示用ユーティリティ。

MSD（スキルレーティング）の正規化や、レート・精度の表示文字列生成で利用する。
丸めは「2進浮動小数点の表現誤差を補正したうえでの四捨五入」を方針とする。
"""

from __future__ import annotations

import math


def round_to_precision(value: float, precision: int) -> float:
    """
    指定した小数桁で四捨五入した値を返す。

    10^precision 倍した値を +inf 方向へ1ulpだけずらしてから丸める。
    1.255 * 100 は 125.4999... になるため、そのまま丸めると 1.25 になってしまう。

    例:
        round_to_precision(0.125, 2) == 0.13
        round_to_precision(1.255, 2) == 1.26

    Args:
        value: 丸め対象の値。
        precision: 小数点以下の桁数(0以上)。

    Returns:
        丸め済みの値。

    Raises:
        ValueError: precision が負の場合。
    """
    if precision < 0:
        raise ValueError("precision must not be negative")

    scalar = 10 ** precision
    f = math.nextafter(value * scalar, math.inf)

    # 0.5 は0から遠い方へ丸める
    rounded = math.floor(abs(f) + 0.5)
    return math.copysign(rounded, f) / scalar


def truncate_float(value: float, precision: int) -> float:
    """指定した小数桁で切り捨てた値を返す。"""
    if precision < 0:
        raise ValueError("precision must not be negative")

    scalar = 10 ** precision
    return math.trunc(value * scalar) / scalar


def equality_sign(a: float, b: float) -> str:
    """a と b を比較し、対応する記号(">" / "<" / "=")を返す。"""
    if a > b:
        return ">"
    if a < b:
        return "<"
    return "="


def format_rate(rate: float) -> str:
    """
    レート倍率を表示用文字列に変換する。

    小数第2位が0の場合は1桁に縮める（0.80 -> "0.8", 1.00 -> "1.0"）。

    Args:
        rate: レート倍率。

    Returns:
        表示用文字列。
    """
    s = f"{rate:.2f}"
    if s.endswith("0"):
        s = s[:-1]
    return s


def format_accuracy(accuracy: float) -> str:
    """精度を表示用文字列に変換する。99.75%以上は小数4桁で表示する。"""
    if accuracy >= 99.75:
        return f"{accuracy:.4f}%"
    return f"{accuracy:.2f}%"
