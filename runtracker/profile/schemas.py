"""
跑者资料的请求与响应模型。

1. RunnerProfileBase: 基础字段
2. RunnerProfileUpdate: 更新请求（所有字段可选）
3. RunnerProfile: 完整响应，附带当前生效的 ECOR
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class RunnerProfileBase(BaseModel):
    """跑者资料基础模型"""
    weight_kg: float = Field(70.0, gt=0, le=300)
    height_cm: float = Field(175.0, gt=0, le=260)
    age: int = Field(30, gt=0, le=120)
    biological_sex: Literal['male', 'female'] = 'male'
    custom_ecor: Optional[float] = Field(None, gt=0, le=3)
    max_hr: Optional[int] = Field(None, gt=0, le=250)
    resting_hr: int = Field(70, gt=0, le=150)


class RunnerProfileUpdate(BaseModel):
    """更新跑者资料时的请求模型（所有字段都是可选的）"""
    weight_kg: Optional[float] = Field(None, gt=0, le=300)
    height_cm: Optional[float] = Field(None, gt=0, le=260)
    age: Optional[int] = Field(None, gt=0, le=120)
    biological_sex: Optional[Literal['male', 'female']] = None
    custom_ecor: Optional[float] = Field(None, gt=0, le=3)
    max_hr: Optional[int] = Field(None, gt=0, le=250)
    resting_hr: Optional[int] = Field(None, gt=0, le=150)


class RunnerProfile(RunnerProfileBase):
    """跑者资料完整响应模型"""
    ecor: float
    model_config = ConfigDict(from_attributes=True)
