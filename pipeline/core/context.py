"""Pipeline Context - 批次执行上下文

职责：
- 批次状态机 PENDING -> EXTRACTING -> SCORING -> AGGREGATING -> DONE
- 批次截止时间（单调时钟）
- 批次产物：BatchSummary / BatchResult
- 解析后的配置文档 PipelineConfig（由 ConfigService 构建）
"""
from __future__ import annotations
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, TYPE_CHECKING
import threading
import time
import uuid

if TYPE_CHECKING:
    from docmetrics.core.config_loader import EngineSettings
    from docmetrics.features.extractor import ExtractionConfig
    from docmetrics.models import MetricDefinition, Report, ReportError
    from docmetrics.scoring.aggregator import AggregationConfig


class BatchState(str, Enum):
    PENDING = "pending"
    EXTRACTING = "extracting"
    SCORING = "scoring"
    AGGREGATING = "aggregating"
    DONE = "done"


# 合法迁移
_TRANSITIONS: Dict[BatchState, Tuple[BatchState, ...]] = {
    BatchState.PENDING: (BatchState.EXTRACTING,),
    BatchState.EXTRACTING: (BatchState.SCORING,),
    BatchState.SCORING: (BatchState.AGGREGATING,),
    BatchState.AGGREGATING: (BatchState.DONE,),
    BatchState.DONE: (),
}


@dataclass(frozen=True)
class PipelineConfig:
    """解析并校验后的配置文档"""
    definitions: Tuple['MetricDefinition', ...]
    extraction: 'ExtractionConfig'
    aggregation: 'AggregationConfig'
    settings: 'EngineSettings'
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False)


@dataclass
class BatchContext:
    """单个批次的共享执行上下文

    状态机只能按顺序前进，非法迁移抛 RuntimeError。
    截止时间基于单调时钟；deadline=None 表示不限时。
    """
    record_count: int
    deadline: Optional[float] = None
    batch_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    clock: Callable[[], float] = time.monotonic
    state: BatchState = BatchState.PENDING
    started_at: float = 0.0
    finished_at: Optional[float] = None
    history: List[Tuple[BatchState, float]] = field(default_factory=list)
    _cancelled: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def __post_init__(self):
        self.started_at = self.clock()
        self.history.append((self.state, self.started_at))

    @classmethod
    def with_timeout(cls, record_count: int, seconds: Optional[float],
                     clock: Callable[[], float] = time.monotonic) -> 'BatchContext':
        """seconds 为相对时长（秒），换算为单调时钟上的绝对截止时间"""
        deadline = clock() + seconds if seconds is not None else None
        return cls(record_count=record_count, deadline=deadline, clock=clock)

    def transition(self, target: BatchState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"illegal batch transition {self.state.value} -> {target.value}")
        self.state = target
        now = self.clock()
        self.history.append((target, now))
        if target is BatchState.DONE:
            self.finished_at = now

    def expired(self) -> bool:
        return self.deadline is not None and self.clock() >= self.deadline

    def mark_cancelled(self) -> None:
        with self._lock:
            self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def elapsed(self) -> float:
        end = self.finished_at if self.finished_at is not None else self.clock()
        return end - self.started_at

    def phase_durations(self) -> Dict[str, float]:
        """各阶段耗时（秒）"""
        out: Dict[str, float] = {}
        for (state, t0), (_, t1) in zip(self.history, self.history[1:]):
            out[state.value] = round(t1 - t0, 6)
        return out


@dataclass(frozen=True)
class BatchSummary:
    """批次观测摘要"""
    batch_id: str
    records_processed: int
    reports_by_status: Mapping[str, int]
    metrics_succeeded: int
    metrics_failed: int
    scorer_invocations: int
    cache_hits: int
    cache_misses: int
    cache_hit_ratio: float
    duration_seconds: float
    cancelled: bool = False
    phases: Mapping[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['reports_by_status'] = dict(self.reports_by_status)
        data['phases'] = dict(self.phases)
        return data


@dataclass(frozen=True)
class BatchFailure:
    """扁平化的失败条目（带输入记录下标）"""
    index: int
    record_id: Optional[str]
    error: 'ReportError'


@dataclass(frozen=True)
class BatchResult:
    """批次输出：reports 顺序与输入记录顺序一致"""
    reports: Tuple['Report', ...]
    failures: Tuple[BatchFailure, ...]
    summary: BatchSummary
    state: BatchState
    cancelled: bool = False

    def __len__(self) -> int:
        return len(self.reports)

    def __iter__(self):
        return iter(self.reports)


__all__ = [
    'BatchState',
    'BatchContext',
    'BatchSummary',
    'BatchFailure',
    'BatchResult',
    'PipelineConfig',
]
