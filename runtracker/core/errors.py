"""
追踪核心的异常类型。

- InvalidStateTransition：非法的生命周期调用（如 Idle 状态下 pause），调用方本地恢复，无副作用
- InvalidInput：非法输入（经过时间非正、读数格式错误），读数被丢弃，追踪继续
- PersistenceFailure：存储层错误，向调用方暴露，记录保留在内存中以便重试
- DecodeFailure：已存储的轨迹点数据损坏，跳过损坏的点，保留有效点
"""

from typing import Optional


class TrackerError(Exception):
    """追踪核心异常基类"""


class InvalidStateTransition(TrackerError):
    def __init__(self, operation: str, state: str):
        self.operation = operation
        self.state = state
        super().__init__(f"cannot {operation} while {state}")


class InvalidInput(TrackerError):
    pass


class PersistenceFailure(TrackerError):
    def __init__(self, message: str, activity_id: Optional[str] = None):
        self.activity_id = activity_id
        super().__init__(message)


class DecodeFailure(TrackerError):
    pass
