"""Tracker Service（实时追踪服务编排层）

职责：
- 持有当前活动的状态机（同一时刻最多一个进行中的活动），活动完成后下一次 start 创建新的状态机；
- 串行处理来自多个传感器流的事件（单一逻辑消费者），接收后批量写入读数；
- 运动中按已记录时长做检查点保存，结束时保存最终记录；
- 最终保存失败时把记录与读数按活动 ID 保留在内存中，可通过 retry_save 逐个重试，不丢数据；
- 检查点与最终保存共用保存锁，已完成的记录不会被较早的检查点快照覆盖；
- 历史回看：列表、详情、读数、修改名称备注、显式重算、删除。
"""

import asyncio
import logging
import threading
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from ..activities.crud import ActivityRepository
from ..activities.schemas import ActivitySummary
from ..config import TrackingSettings, load_tracking_settings
from ..core.analytics.fusion import SensorFusion
from ..core.analytics.power import PowerEstimator
from ..core.errors import InvalidStateTransition, PersistenceFailure
from ..profile.crud import get_profile, to_runner_model
from ..tracking.aggregator import MetricsAggregator
from ..tracking.models import (
    ActivityRecord,
    GpsFix,
    IngestResult,
    LiveMetrics,
    SensorReading,
    StateChange,
    TrackerState,
)
from ..tracking.state_machine import ActivityStateMachine

logger = logging.getLogger(__name__)

SensorEvent = Union[SensorReading, GpsFix]
UnsavedEntry = Tuple[ActivityRecord, List[SensorReading]]


class _StreamFailure:
    __slots__ = ('error',)

    def __init__(self, error: Exception):
        self.error = error


async def merge_streams(*streams: AsyncIterator[SensorEvent]) -> AsyncIterator[SensorEvent]:
    """
    把多个独立的传感器事件流合并为一个流（到达顺序，不保证跨流有序）。

    任一源流抛出异常时，其余源流被取消，异常由合并流原样抛给消费者。
    """
    queue: asyncio.Queue = asyncio.Queue()
    done = object()

    async def pump(stream: AsyncIterator[SensorEvent]) -> None:
        try:
            async for event in stream:
                await queue.put(event)
        except Exception as e:
            await queue.put(_StreamFailure(e))
            return
        await queue.put(done)

    tasks = [asyncio.create_task(pump(s)) for s in streams]
    remaining = len(tasks)
    try:
        while remaining:
            event = await queue.get()
            if event is done:
                remaining -= 1
                continue
            if isinstance(event, _StreamFailure):
                logger.error("[sensor-stream] source stream failed: %r", event.error)
                raise event.error
            yield event
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


class TrackerService:
    def __init__(self, settings: Optional[TrackingSettings] = None, clock: Optional[Callable[[], datetime]] = None):
        self.settings = settings or load_tracking_settings()
        self._clock = clock
        self._lock = threading.RLock()
        # 检查点与最终保存互斥，快照与写库作为一个整体
        self._save_lock = threading.RLock()
        self._machine: Optional[ActivityStateMachine] = None
        self._listeners: List[Callable[[StateChange], None]] = []
        self._last_checkpoint = 0
        self._unsaved: Dict[str, UnsavedEntry] = {}

    def reset(self, settings: Optional[TrackingSettings] = None) -> None:
        """丢弃内存中的状态机、订阅者与未保存记录（不涉及数据库）。"""
        with self._lock:
            if settings is not None:
                self.settings = settings
            self._machine = None
            self._listeners = []
            self._last_checkpoint = 0
            self._unsaved = {}

    # ---- 状态 ----

    @property
    def machine(self) -> Optional[ActivityStateMachine]:
        return self._machine

    @property
    def state(self) -> TrackerState:
        machine = self._machine
        return machine.state if machine else TrackerState.IDLE

    @property
    def unsaved_activity_ids(self) -> List[str]:
        """保存失败、等待重试的活动 ID（按结束先后）。"""
        with self._lock:
            return list(self._unsaved)

    @property
    def unsaved_activity_id(self) -> Optional[str]:
        ids = self.unsaved_activity_ids
        return ids[0] if ids else None

    def subscribe(self, listener: Callable[[StateChange], None]) -> Callable[[], None]:
        """订阅状态变化；对当前及之后创建的状态机都生效。"""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _forward(self, change: StateChange) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(change)
            except Exception:
                logger.exception("[state-listener] listener failed on %s -> %s", change.previous.value, change.current.value)

    def _new_machine(self, db: Session) -> ActivityStateMachine:
        runner = to_runner_model(get_profile(db))
        machine = ActivityStateMachine(
            settings=self.settings,
            estimator=PowerEstimator(runner),
            fusion=SensorFusion(runner, tolerance=self.settings.fusion_tolerance),
            clock=self._clock,
        )
        machine.subscribe(self._forward)
        return machine

    def _require_machine(self, operation: str) -> ActivityStateMachine:
        machine = self._machine
        if machine is None:
            raise InvalidStateTransition(operation, TrackerState.IDLE.value)
        return machine

    # ---- 持久化 ----

    @staticmethod
    def _persist(db: Session, record: ActivityRecord, readings: List[SensorReading]) -> None:
        repo = ActivityRepository(db)
        repo.save(record)
        repo.save_readings(record.id, readings)

    def checkpoint(self, db: Session) -> bool:
        """检查点：刷新实时平均值并保存当前记录与待写读数；失败时读数放回队列，返回 False。"""
        with self._save_lock:
            machine = self._machine
            if machine is None or not machine.is_active:
                return False
            machine.finalize_averages()
            record = machine.record_snapshot()
            readings = machine.drain_pending_readings()
            try:
                self._persist(db, record, readings)
            except PersistenceFailure as e:
                machine.requeue_readings(readings)
                logger.warning("[checkpoint-failed] activity_id=%s err=%s", record.id, e)
                return False
        with self._lock:
            self._last_checkpoint = record.duration_seconds
        logger.debug("[checkpoint] activity_id=%s duration=%s readings=%s", record.id, record.duration_seconds, len(readings))
        return True

    def flush_readings(self, db: Session) -> int:
        with self._save_lock:
            machine = self._machine
            if machine is None or machine.activity_id is None:
                return 0
            readings = machine.drain_pending_readings()
            try:
                return ActivityRepository(db).save_readings(machine.activity_id, readings)
            except PersistenceFailure as e:
                machine.requeue_readings(readings)
                logger.warning("[reading-flush-failed] activity_id=%s pending=%s err=%s", machine.activity_id, len(readings), e)
                return 0

    # ---- 生命周期 ----

    def start(self, db: Session) -> ActivityRecord:
        with self._lock:
            if self._machine is not None and self._machine.is_active:
                raise InvalidStateTransition('start', self._machine.state.value)
            machine = self._new_machine(db)
            record = machine.start()
            self._machine = machine
            self._last_checkpoint = 0
        try:
            ActivityRepository(db).save(record)
        except PersistenceFailure as e:
            # 初始写入失败不影响追踪，后续检查点会再次保存
            logger.warning("[tracker-start] initial save failed activity_id=%s err=%s", record.id, e)
        return record

    def pause(self, db: Session) -> ActivityRecord:
        record = self._require_machine('pause').pause()
        self.checkpoint(db)
        return record

    def resume(self, db: Session) -> ActivityRecord:
        record = self._require_machine('resume').resume()
        self.checkpoint(db)
        return record

    def stop(self, db: Session) -> ActivityRecord:
        with self._save_lock:
            machine = self._require_machine('stop')
            record = machine.stop()
            readings = machine.drain_pending_readings()
            try:
                self._persist(db, record, readings)
            except PersistenceFailure:
                with self._lock:
                    self._unsaved[record.id] = (record, readings)
                logger.error("[tracker-stop] save failed, record kept for retry activity_id=%s readings=%s", record.id, len(readings))
                raise
        with self._lock:
            self._unsaved.pop(record.id, None)
        return record

    def retry_save(self, db: Session, activity_id: Optional[str] = None) -> ActivityRecord:
        """重试保存一条结束时保存失败的记录；未指定 activity_id 时取最早的一条。"""
        with self._lock:
            if activity_id is None:
                activity_id = next(iter(self._unsaved), None)
            entry = self._unsaved.get(activity_id) if activity_id is not None else None
        if entry is None:
            raise InvalidStateTransition('retry save', self.state.value)
        record, readings = entry
        with self._save_lock:
            self._persist(db, record, list(readings))
        with self._lock:
            if self._unsaved.get(record.id) is entry:
                del self._unsaved[record.id]
        logger.info("[tracker-retry-save] activity_id=%s readings=%s", record.id, len(readings))
        return record

    def discard(self, db: Session) -> str:
        """放弃当前进行中的活动，并删除已保存的检查点数据；删除失败时活动保持不变，可再次放弃。"""
        with self._save_lock:
            machine = self._require_machine('discard')
            if not machine.is_active:
                raise InvalidStateTransition('discard', machine.state.value)
            activity_id = machine.activity_id
            ActivityRepository(db).delete(activity_id)
            with self._lock:
                if self._machine is machine:
                    self._machine = None
                    self._last_checkpoint = 0
        logger.info("[tracker-discard] activity_id=%s", activity_id)
        return activity_id

    # ---- 数据接收 ----

    def _after_ingest(self, db: Optional[Session], machine: ActivityStateMachine) -> None:
        if db is None:
            return
        if machine.pending_count() >= self.settings.reading_batch_size:
            self.flush_readings(db)
        self._maybe_checkpoint(db, machine)

    def _maybe_checkpoint(self, db: Session, machine: ActivityStateMachine) -> None:
        interval = self.settings.checkpoint_interval_seconds
        if interval <= 0 or machine.state != TrackerState.TRACKING:
            return
        duration = machine.tick()
        if duration - self._last_checkpoint >= interval:
            self.checkpoint(db)

    def ingest_reading(self, db: Optional[Session], reading: Union[SensorReading, Dict[str, Any]]) -> IngestResult:
        machine = self._machine
        if machine is None:
            return IngestResult.NOT_TRACKING
        result = machine.ingest_reading(reading)
        if result == IngestResult.ACCEPTED:
            self._after_ingest(db, machine)
        return result

    def ingest_gps_fix(self, db: Optional[Session], fix: Union[GpsFix, Dict[str, Any]]) -> IngestResult:
        machine = self._machine
        if machine is None:
            return IngestResult.NOT_TRACKING
        result = machine.ingest_gps_fix(fix)
        if result == IngestResult.ACCEPTED:
            self._after_ingest(db, machine)
        return result

    def dispatch(self, db: Optional[Session], event: SensorEvent) -> IngestResult:
        if isinstance(event, GpsFix):
            return self.ingest_gps_fix(db, event)
        return self.ingest_reading(db, event)

    async def consume(
        self,
        events: AsyncIterator[SensorEvent],
        session_factory: Optional[Callable[[], Session]] = None,
    ) -> Dict[IngestResult, int]:
        """
        单一消费者循环：逐个处理事件流中的读数/定位，返回各接收结果的计数。

        传入 session_factory 时，批量写库与检查点在线程中执行，不阻塞事件循环。
        """
        counts: Dict[IngestResult, int] = {result: 0 for result in IngestResult}
        db = session_factory() if session_factory else None
        try:
            async for event in events:
                if db is None:
                    result = self.dispatch(None, event)
                else:
                    result = await asyncio.to_thread(self.dispatch, db, event)
                counts[result] += 1
        finally:
            if db is not None:
                db.close()
        return counts

    def tick(self, db: Optional[Session] = None) -> int:
        machine = self._machine
        if machine is None:
            return 0
        duration = machine.tick()
        if db is not None:
            self._maybe_checkpoint(db, machine)
        return duration

    async def run_ticker(self, interval_seconds: float, session_factory: Callable[[], Session]) -> None:
        """后台计时器：周期性结算时长并按需保存检查点，直到任务被取消。"""
        def tick_once() -> None:
            db = session_factory()
            try:
                self.tick(db)
            finally:
                db.close()

        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await asyncio.to_thread(tick_once)
            except Exception:
                logger.exception("[tracker-ticker] tick failed")

    def snapshot(self) -> LiveMetrics:
        machine = self._machine
        if machine is None:
            return LiveMetrics(state=TrackerState.IDLE)
        return machine.snapshot()

    # ---- 历史回看 ----

    def list_activities(self, db: Session, skip: int = 0, limit: int = 100) -> List[ActivitySummary]:
        return ActivityRepository(db).list_all(skip=skip, limit=limit)

    def get_activity(self, db: Session, activity_id: str) -> Optional[ActivityRecord]:
        return ActivityRepository(db).load(activity_id)

    def get_readings(self, db: Session, activity_id: str) -> List[SensorReading]:
        return ActivityRepository(db).load_readings(activity_id)

    def update_activity(self, db: Session, activity_id: str, name: Optional[str] = None,
                        notes: Optional[str] = None) -> Optional[ActivityRecord]:
        return ActivityRepository(db).update_details(activity_id, name=name, notes=notes)

    def recompute_activity(self, db: Session, activity_id: str) -> Optional[ActivityRecord]:
        """基于已保存的全部读数显式重算平均值/最大值/配速并保存。"""
        self._ensure_not_live(activity_id, 'recompute')
        repo = ActivityRepository(db)
        record = repo.load(activity_id)
        if record is None:
            return None
        readings = repo.load_readings(activity_id)
        MetricsAggregator(record, self.settings).recompute(readings)
        repo.save(record)
        return record

    def delete_activity(self, db: Session, activity_id: str) -> bool:
        self._ensure_not_live(activity_id, 'delete')
        return ActivityRepository(db).delete(activity_id)

    def _ensure_not_live(self, activity_id: str, operation: str) -> None:
        machine = self._machine
        if machine is not None and machine.is_active and machine.activity_id == activity_id:
            raise InvalidStateTransition(operation, machine.state.value)


tracker_service = TrackerService()
