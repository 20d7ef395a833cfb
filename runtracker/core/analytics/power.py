"""
跑步功率估算核心算法

说明：
- 在没有功率计（如 Stryd）时，根据速度、海拔变化和时间间隔估算跑步功率
- 水平分量：体重 × ECOR × 速度
- 垂直分量：仅上坡计入，体重 × g × 爬升 / 时间
- 下坡制动：按坡度对水平分量追加惩罚（分段线性插值，保证估算值随速度单调递增）
"""

import logging
import math
from typing import Optional

import numpy as np

from ..errors import InvalidInput
from .runner import DEFAULT_ECOR, RunnerModel

logger = logging.getLogger(__name__)

GRAVITY = 9.81

# 下坡惩罚锚点：坡度（小数） -> 水平功率的附加比例；1% 以下忽略，20% 以上封顶 30%
DOWNHILL_GRADES = (0.01, 0.05, 0.10, 0.15, 0.20)
DOWNHILL_PENALTIES = (0.0, 0.05, 0.10, 0.20, 0.30)


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def downhill_penalty_factor(grade: float) -> float:
    """下坡坡度对应的额外能耗比例（0 ~ 0.30）。"""
    if grade <= DOWNHILL_GRADES[0]:
        return 0.0
    return float(np.interp(grade, DOWNHILL_GRADES, DOWNHILL_PENALTIES))


class PowerEstimator:
    """基于速度与海拔变化的跑步功率模型，纯函数，无内部状态。"""

    def __init__(self, runner: Optional[RunnerModel] = None, use_custom_ecor: bool = True):
        self.runner = runner or RunnerModel()
        self.mass = float(self.runner.weight_kg)
        self.ecor = self.runner.ecor() if use_custom_ecor else DEFAULT_ECOR

    def estimate(self, speed_mps: float, elevation_change_m: float, elapsed_seconds: float) -> float:
        """
        估算时间间隔内的平均跑步功率（瓦特）。

        参数：
            speed_mps: 速度（米/秒）
            elevation_change_m: 区间内海拔变化（米，上坡为正，下坡为负）
            elapsed_seconds: 区间时长（秒），必须为正

        返回：
            功率（瓦特，浮点数，由调用方决定取整方式）
        """
        if not _is_number(elapsed_seconds) or elapsed_seconds <= 0:
            raise InvalidInput(f"elapsed_seconds must be positive, got {elapsed_seconds!r}")
        if not _is_number(speed_mps) or not _is_number(elevation_change_m):
            raise InvalidInput(
                f"speed/elevation must be finite numbers, got speed={speed_mps!r} elevation={elevation_change_m!r}"
            )
        if speed_mps < 0:
            logger.warning("[power-estimate] negative speed %.3f, using absolute value", speed_mps)
            speed_mps = abs(speed_mps)

        horizontal = self.mass * self.ecor * speed_mps
        vertical = self.mass * GRAVITY * elevation_change_m / elapsed_seconds if elevation_change_m > 0 else 0.0

        downhill = 0.0
        if elevation_change_m < 0:
            ground_distance = speed_mps * elapsed_seconds
            if ground_distance > 0:
                grade = abs(elevation_change_m) / ground_distance
                downhill = horizontal * downhill_penalty_factor(grade)

        return horizontal + vertical + downhill

    @staticmethod
    def calories_per_hour(power_watts: float) -> float:
        # 1 W = 3.6 kJ/h，1 kcal = 4.184 kJ
        if not _is_number(power_watts) or power_watts <= 0:
            return 0.0
        return power_watts * 3.6 / 4.184
