"""
功率传感器融合

在没有功率计数据时，用心率与步频对估算功率做有界修正：
- 步频偏离高效区间（160~200 spm）时略微上调功率；
- 实际心率显著高于/低于按功率推算的期望心率时，朝心率方向微调；
- 总修正倍数被限制在 [1 - tolerance, 1 + tolerance] 之内，
  心率突然飙升但步频不变时不会产生不合理的功率跳变。
"""

import math
from typing import Optional

from .runner import RunnerModel

CADENCE_LOW_SPM = 160
CADENCE_HIGH_SPM = 200
HR_RATIO_HIGH = 1.2
HR_RATIO_LOW = 0.8


def cadence_efficiency_factor(cadence: int) -> float:
    if cadence < CADENCE_LOW_SPM:
        return 1.0 + (CADENCE_LOW_SPM - cadence) * 0.003
    if cadence > CADENCE_HIGH_SPM:
        return 1.0 + (cadence - CADENCE_HIGH_SPM) * 0.002
    return 1.0


class SensorFusion:
    def __init__(self, runner: Optional[RunnerModel] = None, tolerance: float = 0.15):
        self.runner = runner or RunnerModel()
        self.tolerance = max(0.0, float(tolerance))

    def expected_heart_rate(self, power_watts: float) -> float:
        """
        按功率推算期望心率（简化的心率储备曲线）。

        阈值（85% FTP）以下心率随功率近似线性上升，阈值以上上升更快，封顶为最大心率。
        """
        base_hr = float(self.runner.resting_hr)
        reserve = self.runner.heart_rate_max() - base_hr
        ftp = self.runner.estimated_ftp()
        if reserve <= 0 or ftp <= 0:
            return 0.0

        pct_ftp = power_watts / ftp
        if pct_ftp <= 0.85:
            pct_reserve = pct_ftp * 0.9
        else:
            pct_reserve = 0.765 + (pct_ftp - 0.85) * 1.5
        pct_reserve = min(1.0, pct_reserve)
        return base_hr + reserve * pct_reserve

    def _heart_rate_factor(self, basic_power: float, heart_rate: int) -> float:
        expected = self.expected_heart_rate(basic_power)
        if expected <= 0:
            return 1.0
        ratio = heart_rate / expected
        if ratio > HR_RATIO_HIGH:
            return min(1.0 + self.tolerance, 1.0 + (ratio - 1.0) * 0.5)
        if ratio < HR_RATIO_LOW:
            return max(1.0 - self.tolerance, 1.0 - (1.0 - ratio) * 0.5)
        return 1.0

    def fuse(self, basic_power: float, heart_rate: Optional[int] = None, cadence: Optional[int] = None) -> float:
        """
        融合估算功率与心率/步频，返回修正后的功率（瓦特）。

        两个辅助信号都缺失（或非正）时原样返回输入。
        """
        if basic_power is None or not math.isfinite(basic_power) or basic_power <= 0:
            return basic_power
        hr = heart_rate if heart_rate is not None and heart_rate > 0 else None
        cad = cadence if cadence is not None and cadence > 0 else None
        if hr is None and cad is None:
            return basic_power

        factor = 1.0
        if cad is not None:
            factor *= cadence_efficiency_factor(cad)
        if hr is not None:
            factor *= self._heart_rate_factor(basic_power, hr)

        factor = min(max(factor, 1.0 - self.tolerance), 1.0 + self.tolerance)
        return basic_power * factor
