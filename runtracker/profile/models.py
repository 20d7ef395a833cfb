"""
本文件定义了跑者资料的数据模型（ORM类）。

本地单人使用，只保存一条资料（id=1），用于功率估算与传感器融合：
- weight_kg / height_cm / age / biological_sex：生理参数，影响 ECOR 与期望心率
- custom_ecor：自定义跑步能耗系数（J/kg/m），设置后优先使用
- max_hr / resting_hr：最大心率与静息心率
"""

from sqlalchemy import Column, Float, Integer, String

from ..db_base import Base

PROFILE_ID = 1


class TbRunnerProfile(Base):
    __tablename__ = 'tb_runner_profile'
    id = Column(Integer, primary_key=True, default=PROFILE_ID)
    weight_kg = Column(Float, nullable=False, default=70.0)
    height_cm = Column(Float, nullable=False, default=175.0)
    age = Column(Integer, nullable=False, default=30)
    biological_sex = Column(String(16), nullable=False, default='male')
    custom_ecor = Column(Float, nullable=True)
    max_hr = Column(Integer, nullable=True)
    resting_hr = Column(Integer, nullable=False, default=70)
