"""跑者生理参数（体重、年龄、性别、ECOR），供功率估算与传感器融合使用。"""

from dataclasses import dataclass
from typing import Optional

# 平地跑步能耗系数（J/kg/m）
DEFAULT_ECOR = 0.98
DEFAULT_WEIGHT_KG = 70.0
DEFAULT_AGE = 30
DEFAULT_RESTING_HR = 70


@dataclass(frozen=True)
class RunnerModel:
    weight_kg: float = DEFAULT_WEIGHT_KG
    age: int = DEFAULT_AGE
    biological_sex: str = 'male'
    custom_ecor: Optional[float] = None
    resting_hr: int = DEFAULT_RESTING_HR
    max_hr: Optional[int] = None

    def ecor(self) -> float:
        """
        计算跑步能耗系数 ECOR。

        规则：
        - 设置了自定义 ECOR 时直接使用；
        - 女性基础值约高 3%；
        - 50 岁以上每岁 +0.3%；
        - 体重 80kg 以上每 kg +0.2%，50kg 以下每 kg -0.1%。
        """
        if self.custom_ecor is not None and self.custom_ecor > 0:
            return float(self.custom_ecor)

        ecor = DEFAULT_ECOR
        if (self.biological_sex or '').lower() == 'female':
            ecor *= 1.03
        if self.age > 50:
            ecor *= 1.0 + (self.age - 50) * 0.003
        if self.weight_kg > 80:
            ecor *= 1.0 + (self.weight_kg - 80) * 0.002
        elif self.weight_kg < 50:
            ecor *= 1.0 - (50 - self.weight_kg) * 0.001
        return ecor

    def heart_rate_max(self) -> float:
        # 未测得最大心率时按 220 - 年龄 估计
        if self.max_hr and self.max_hr > 0:
            return float(self.max_hr)
        return 220.0 - float(self.age)

    def estimated_ftp(self) -> float:
        # 跑步功能阈值功率的粗略估计：3.5 W/kg
        return self.weight_kg * 3.5
