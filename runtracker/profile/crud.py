"""
本文件包含跑者资料的数据库操作函数。

提供以下功能：
1. 读取资料（不存在时按默认值创建）
2. 更新资料（只更新提供的字段）
3. 转换为功率模型使用的 RunnerModel
"""

from sqlalchemy.orm import Session

from ..core.analytics.runner import RunnerModel
from . import models, schemas

NULLABLE_FIELDS = ('custom_ecor', 'max_hr')


def get_profile(db: Session) -> models.TbRunnerProfile:
    """获取跑者资料，首次访问时写入默认资料"""
    profile = db.query(models.TbRunnerProfile).filter(models.TbRunnerProfile.id == models.PROFILE_ID).first()
    if profile is None:
        defaults = schemas.RunnerProfileBase()
        profile = models.TbRunnerProfile(id=models.PROFILE_ID, **defaults.model_dump())
        db.add(profile)
        db.commit()
        db.refresh(profile)
    return profile


def update_profile(db: Session, profile_update: schemas.RunnerProfileUpdate) -> models.TbRunnerProfile:
    """更新跑者资料"""
    profile = get_profile(db)
    update_data = profile_update.model_dump(exclude_unset=True)
    for field, value in update_data.items():
        # 只有可空字段允许显式置空
        if value is None and field not in NULLABLE_FIELDS:
            continue
        setattr(profile, field, value)
    db.commit()
    db.refresh(profile)
    return profile


def to_runner_model(profile: models.TbRunnerProfile) -> RunnerModel:
    return RunnerModel(
        weight_kg=profile.weight_kg,
        age=profile.age,
        biological_sex=profile.biological_sex,
        custom_ecor=profile.custom_ecor,
        resting_hr=profile.resting_hr,
        max_hr=profile.max_hr,
    )


def to_schema(profile: models.TbRunnerProfile) -> schemas.RunnerProfile:
    return schemas.RunnerProfile(
        weight_kg=profile.weight_kg,
        height_cm=profile.height_cm,
        age=profile.age,
        biological_sex=profile.biological_sex,
        custom_ecor=profile.custom_ecor,
        max_hr=profile.max_hr,
        resting_hr=profile.resting_hr,
        ecor=round(to_runner_model(profile).ecor(), 4),
    )
