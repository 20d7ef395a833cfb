"""
本文件定义了活动相关的数据模型（ORM类），用于数据库表结构的声明。

1. TbActivity 类：一次跑步活动的汇总记录，对应 tb_activity 表。
   时间字段为毫秒时间戳，状态为固定字符串（in_progress / paused / completed），
   轨迹点以带版本号的 JSON 文本存储（见 tracking/codec.py）。
2. TbSensorReading 类：活动过程中的单条传感器读数，对应 tb_sensor_reading 表，
   按 activity_id 与 timestamp 建索引，用于历史回看与显式重算。
"""

from sqlalchemy import BIGINT, Column, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from ..db_base import Base


class TbActivity(Base):
    """
    活动表模型
    - id: 主键（uuid 字符串）
    - name: 活动名称，必填，可由用户修改
    - start_time / end_time: 开始/结束时间（毫秒时间戳），结束时间在活动完成时写入
    - duration_seconds: 已记录时长（秒）
    - distance_meters / elevation_gain_meters / elevation_loss_meters: 距离与累计爬升/下降（米）
    - average_* / max_*: 心率、功率、步频的平均值与最大值，无有效数据时为 NULL
    - average_pace_seconds_per_km: 平均配速（秒/公里），不合理时为 NULL
    - route_points_json: 轨迹点 JSON
    - status: 活动状态
    - notes: 用户备注
    """
    __tablename__ = 'tb_activity'

    id = Column(String(36), primary_key=True, index=True)
    name = Column(String(128), nullable=False)
    start_time = Column(BIGINT, nullable=False, index=True, comment="开始时间（毫秒时间戳）")
    end_time = Column(BIGINT, nullable=True, comment="结束时间（毫秒时间戳）")
    duration_seconds = Column(Integer, nullable=False, default=0)
    distance_meters = Column(Float(53), nullable=False, default=0.0)
    elevation_gain_meters = Column(Float(53), nullable=False, default=0.0)
    elevation_loss_meters = Column(Float(53), nullable=False, default=0.0)
    average_heart_rate = Column(Integer, nullable=True)
    max_heart_rate = Column(Integer, nullable=True)
    average_power = Column(Integer, nullable=True)
    max_power = Column(Integer, nullable=True)
    average_pace_seconds_per_km = Column(Integer, nullable=True)
    average_cadence = Column(Integer, nullable=True)
    max_cadence = Column(Integer, nullable=True)
    route_points_json = Column(Text, nullable=True)
    status = Column(String(16), nullable=False)
    notes = Column(Text, nullable=True)

    readings = relationship('TbSensorReading', back_populates='activity', cascade='all, delete-orphan', lazy='dynamic')


class TbSensorReading(Base):
    """传感器读数表模型，每条记录属于一个活动（activity_id）"""
    __tablename__ = 'tb_sensor_reading'
    __table_args__ = (
        Index('idx_sensor_reading_activity_ts', 'activity_id', 'timestamp'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    activity_id = Column(String(36), ForeignKey('tb_activity.id', ondelete='CASCADE'), nullable=False, index=True)
    timestamp = Column(BIGINT, nullable=False, comment="读数时间（毫秒时间戳）")
    latitude = Column(Float(53), nullable=True)
    longitude = Column(Float(53), nullable=True)
    elevation_meters = Column(Float(53), nullable=True)
    heart_rate = Column(Integer, nullable=True)
    power = Column(Integer, nullable=True)
    cadence = Column(Integer, nullable=True)
    distance_meters = Column(Float(53), nullable=True)
    pace_seconds_per_km = Column(Integer, nullable=True)
    source = Column(String(32), nullable=False)

    activity = relationship('TbActivity', back_populates='readings')
