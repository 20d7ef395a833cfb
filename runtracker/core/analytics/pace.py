"""
跑步配速计算

说明：
- 配速单位统一为 秒/公里（整数）
- 取整规则：四舍五入，.5 远离零进位（与 Python 内置 round 的银行家舍入不同）
- 平均配速只有在距离、时长都为正且结果落在合理区间（开区间）内时才给出
"""

import math
from typing import Optional


def round_half_away(value: float) -> int:
    """四舍五入到整数，.5 时远离零进位：140.5 -> 141，-2.5 -> -3。"""
    if value >= 0:
        return int(math.floor(value + 0.5))
    return -int(math.floor(-value + 0.5))


def average_pace_seconds_per_km(
    duration_seconds: float,
    distance_meters: float,
    lower: float = 0.0,
    upper: float = 1200.0,
) -> Optional[int]:
    """
    计算平均配速 = round(时长 / 公里数)。

    参数：
        duration_seconds: 已记录时长（秒）
        distance_meters: 累计距离（米）
        lower / upper: 合理配速区间（开区间，秒/公里）

    返回：
        配速（秒/公里），不满足条件时返回 None
    """
    if not distance_meters or not duration_seconds:
        return None
    if distance_meters <= 0 or duration_seconds <= 0:
        return None
    pace = round_half_away(duration_seconds / (distance_meters / 1000.0))
    if lower < pace < upper:
        return pace
    return None


def pace_from_speed(speed_mps: Optional[float]) -> Optional[int]:
    """瞬时速度（米/秒）换算为配速（秒/公里）。"""
    if speed_mps is None or not math.isfinite(speed_mps) or speed_mps <= 0:
        return None
    return round_half_away(1000.0 / speed_mps)


def format_pace(seconds_per_km: Optional[int]) -> str:
    """配速格式化为 MM:SS，无效值返回 --:--。"""
    if seconds_per_km is None or seconds_per_km <= 0:
        return '--:--'
    minutes, seconds = divmod(int(seconds_per_km), 60)
    return f"{minutes:02d}:{seconds:02d}"
