from datetime import datetime, timedelta, timezone
from typing import Optional

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MS = timedelta(milliseconds=1)


def truncate_to_ms(value: datetime) -> datetime:
    """统一到 UTC 并截断到毫秒（存储精度），保证编码/解码无损。"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.replace(microsecond=value.microsecond - value.microsecond % 1000)


def utc_now() -> datetime:
    return truncate_to_ms(datetime.now(timezone.utc))


def to_epoch_ms(value: Optional[datetime]) -> Optional[int]:
    """datetime -> 毫秒时间戳；无时区信息的按 UTC 处理。"""
    if value is None:
        return None
    return (truncate_to_ms(value) - EPOCH) // _ONE_MS


def from_epoch_ms(value: Optional[int]) -> Optional[datetime]:
    if value is None:
        return None
    return EPOCH + timedelta(milliseconds=int(value))


def format_duration(seconds: int) -> Optional[str]:
    """秒数格式化为 HH:MM:SS。"""
    try:
        seconds = int(seconds)
        if seconds < 0:
            seconds = 0
        hours = seconds // 3600
        minutes = (seconds % 3600) // 60
        secs = seconds % 60
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    except (ValueError, TypeError):
        return None
