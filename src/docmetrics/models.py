"""
指标引擎数据模型
================

集中定义引擎中流转的不可变值对象：
- Record / RecordSchema / FieldSpec: 输入记录与字段 Schema
- FeatureVector: 由单条 Record 抽取出的特征
- MetricDefinition: 静态指标配置
- MetricResult / ScoringFailure: 单次评分结果
- Report / ReportError: 单条记录的最终输出
- CacheKey: 计算缓存键
"""

from __future__ import annotations

import hashlib
import json
import math
import numbers
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from orchestrator.errors import ConfigurationError, ScoringError


# ============================================================================
# Record
# ============================================================================

class _Missing:
    """缺失值标记（单例）"""

    _instance: Optional['_Missing'] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


def _canonical_token(value: Any) -> List[str]:
    """字段值 -> [类型标签, 规范化文本]

    1 与 "1" 的标签不同；浮点数使用 repr；NaN 统一为 "nan"。
    """
    if value is MISSING:
        return ["missing", ""]
    if isinstance(value, bool):
        return ["bool", "true" if value else "false"]
    if isinstance(value, numbers.Integral):
        return ["int", str(int(value))]
    if isinstance(value, numbers.Real):
        f = float(value)
        return ["float", "nan" if math.isnan(f) else repr(f)]
    if isinstance(value, str):
        return ["str", value]
    return [type(value).__name__, str(value)]


def compute_fingerprint(fields: Mapping[str, Any]) -> str:
    canonical = {name: _canonical_token(v) for name, v in fields.items()}
    payload = json.dumps(canonical, sort_keys=True, ensure_ascii=False, separators=(',', ':'))
    return hashlib.sha256(payload.encode('utf-8')).hexdigest()


@dataclass(frozen=True)
class Record:
    """一条已解析的输入记录（不可变）

    fields:      字段名 -> 值 (数值 / 文本 / 类别 / MISSING)，None 归一为 MISSING
    record_id:   外部标识（可选，不参与指纹）
    fingerprint: 规范化字段值的 SHA-256
    """
    fields: Mapping[str, Any]
    record_id: Optional[str] = None
    fingerprint: str = field(init=False, compare=False)

    def __post_init__(self):
        normalized = {str(k): (MISSING if v is None else v) for k, v in dict(self.fields).items()}
        object.__setattr__(self, 'fields', MappingProxyType(normalized))
        object.__setattr__(self, 'fingerprint', compute_fingerprint(normalized))

    def __hash__(self) -> int:
        return hash(self.fingerprint)

    def get(self, name: str, default: Any = MISSING) -> Any:
        return self.fields.get(name, default)


class FieldType(str, Enum):
    NUMERIC = "numeric"
    TEXT = "text"
    CATEGORICAL = "categorical"


@dataclass(frozen=True)
class FieldSpec:
    name: str
    type: FieldType
    required: bool = True


@dataclass(frozen=True)
class RecordSchema:
    """记录 Schema：有序字段规范"""
    fields: Tuple[FieldSpec, ...] = ()

    def __iter__(self) -> Iterator[FieldSpec]:
        return iter(self.fields)

    def __len__(self) -> int:
        return len(self.fields)

    @property
    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    @classmethod
    def from_config(cls, entries: Sequence[Mapping[str, Any]]) -> 'RecordSchema':
        """从配置列表构建，例如 [{'name': 'body', 'type': 'text'}]"""
        specs = []
        seen = set()
        for entry in entries or []:
            if not isinstance(entry, Mapping) or 'name' not in entry:
                raise ConfigurationError(f"invalid field spec: {entry!r}")
            name = str(entry['name'])
            if name in seen:
                raise ConfigurationError(f"duplicate field in schema: {name}")
            seen.add(name)
            try:
                ftype = FieldType(str(entry.get('type', 'numeric')).lower())
            except ValueError as e:
                raise ConfigurationError(f"unknown field type for '{name}': {entry.get('type')}") from e
            specs.append(FieldSpec(name=name, type=ftype, required=bool(entry.get('required', True))))
        return cls(fields=tuple(specs))


# ============================================================================
# FeatureVector
# ============================================================================

@dataclass(frozen=True)
class FeatureVector:
    """特征向量（float 或 str），携带源记录指纹"""
    fingerprint: str
    features: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'features', MappingProxyType(dict(self.features)))

    def __hash__(self) -> int:
        return hash(self.fingerprint)

    def __contains__(self, name: str) -> bool:
        return name in self.features

    def __len__(self) -> int:
        return len(self.features)

    def get(self, name: str, default: Any = None) -> Any:
        return self.features.get(name, default)

    def require(self, name: str) -> Any:
        if name not in self.features:
            raise ScoringError(f"feature '{name}' not available", code='missing_feature')
        return self.features[name]


# ============================================================================
# MetricDefinition
# ============================================================================

def _as_tuple(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


@dataclass(frozen=True)
class MetricDefinition:
    """静态指标配置（启动期加载，进程内不可变）

    name:           指标名
    kind:           评分器类型 (statistical / model / derived / readability / lexicon_sentiment)
    inputs:         声明的输入特征
    depends_on:     上游指标
    version:        评分器版本标签，参与缓存键
    weight:         组合权重 (>= 0)
    params:         评分器参数（只读）
    implementation: 固定评分器实现版本（可选，缺省由注册中心选择）
    """
    name: str
    kind: str
    inputs: Tuple[str, ...] = ()
    depends_on: Tuple[str, ...] = ()
    version: str = "1.0.0"
    weight: float = 1.0
    params: Mapping[str, Any] = field(default_factory=dict, hash=False)
    implementation: Optional[str] = None

    def __post_init__(self):
        if not self.name or not isinstance(self.name, str):
            raise ConfigurationError(f"metric name must be a non-empty string: {self.name!r}")
        if not self.kind:
            raise ConfigurationError(f"metric '{self.name}' has no kind")
        try:
            weight = float(self.weight)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"metric '{self.name}' weight is not numeric: {self.weight!r}") from e
        if not math.isfinite(weight) or weight < 0:
            raise ConfigurationError(f"metric '{self.name}' weight must be >= 0, got {self.weight}")
        object.__setattr__(self, 'weight', weight)
        object.__setattr__(self, 'inputs', _as_tuple(self.inputs))
        object.__setattr__(self, 'depends_on', _as_tuple(self.depends_on))
        object.__setattr__(self, 'version', str(self.version))
        object.__setattr__(self, 'params', _freeze(dict(self.params or {})))

    @classmethod
    def from_dict(cls, entry: Mapping[str, Any]) -> 'MetricDefinition':
        if not isinstance(entry, Mapping):
            raise ConfigurationError(f"metric entry must be a mapping: {entry!r}")
        missing = [k for k in ('name', 'kind') if k not in entry]
        if missing:
            raise ConfigurationError(f"metric entry missing keys {missing}: {dict(entry)!r}")
        params = entry.get('params') or {}
        if not isinstance(params, Mapping):
            raise ConfigurationError(f"metric '{entry['name']}' params must be a mapping")
        implementation = entry.get('implementation')
        return cls(
            name=str(entry['name']),
            kind=str(entry['kind']),
            inputs=entry.get('inputs', ()),
            depends_on=entry.get('depends_on', ()),
            version=str(entry.get('version', '1.0.0')),
            weight=entry.get('weight', 1.0),
            params=params,
            implementation=str(implementation) if implementation is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'kind': self.kind,
            'inputs': list(self.inputs),
            'depends_on': list(self.depends_on),
            'version': self.version,
            'weight': self.weight,
            'params': _thaw(self.params),
            'implementation': self.implementation,
        }

    def config_digest(self) -> str:
        """配置摘要：kind/inputs/depends_on/version/params/weight/implementation 的稳定哈希"""
        data = self.to_dict()
        data.pop('name')
        payload = json.dumps(data, sort_keys=True, default=str, separators=(',', ':'))
        return hashlib.sha256(payload.encode('utf-8')).hexdigest()[:16]


# ============================================================================
# MetricResult
# ============================================================================

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ScoringFailure:
    """评分失败标记"""
    code: str
    message: str = ""


@dataclass(frozen=True)
class MetricResult:
    """单次评分结果（创建后不可变，缓存中整体替换）

    computed_at 不参与相等比较：同一输入在不同时间计算的结果视为相等。
    """
    metric: str
    value: Optional[float]
    confidence: float = 1.0
    scorer_version: str = ""
    computed_at: datetime = field(default_factory=_utcnow, compare=False)
    label: Optional[str] = None
    failure: Optional[ScoringFailure] = None
    details: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        object.__setattr__(self, 'details', MappingProxyType(dict(self.details or {})))

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, metric: str, value: float, *, version: str, confidence: float = 1.0,
                label: Optional[str] = None, details: Optional[Mapping[str, Any]] = None) -> 'MetricResult':
        return cls(
            metric=metric,
            value=float(value),
            confidence=max(0.0, min(1.0, float(confidence))),
            scorer_version=version,
            label=label,
            details=details or {},
        )

    @classmethod
    def failed(cls, metric: str, *, version: str, code: str, message: str = "") -> 'MetricResult':
        return cls(
            metric=metric,
            value=None,
            confidence=0.0,
            scorer_version=version,
            failure=ScoringFailure(code=code, message=message),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'metric': self.metric,
            'value': self.value,
            'confidence': self.confidence,
            'scorer_version': self.scorer_version,
            'computed_at': self.computed_at.isoformat(),
            'label': self.label,
            'failure': {'code': self.failure.code, 'message': self.failure.message} if self.failure else None,
            'details': _thaw(self.details),
        }


# ============================================================================
# Report
# ============================================================================

class ReportStatus(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass(frozen=True)
class ReportError:
    """Report 上的结构化错误条目

    scope: 'record' (抽取/记录级) | 'metric' (评分级)
    """
    scope: str
    code: str
    message: str = ""
    metric: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'scope': self.scope, 'code': self.code, 'message': self.message, 'metric': self.metric}


@dataclass(frozen=True)
class Report:
    """单条记录的最终输出（纯值对象，无引擎反向引用）"""
    record_id: Optional[str]
    fingerprint: str
    results: Mapping[str, MetricResult]
    composite: Optional[float]
    confidence: float
    status: ReportStatus
    errors: Tuple[ReportError, ...] = ()
    cancelled: bool = False

    def __post_init__(self):
        object.__setattr__(self, 'results', MappingProxyType(dict(self.results)))
        object.__setattr__(self, 'errors', tuple(self.errors))

    def __hash__(self) -> int:
        return hash((self.fingerprint, self.status, self.composite))

    @property
    def failed_metrics(self) -> List[str]:
        return [name for name, r in self.results.items() if not r.ok]

    def value(self, metric: str) -> Optional[float]:
        result = self.results.get(metric)
        return result.value if result is not None else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'record_id': self.record_id,
            'fingerprint': self.fingerprint,
            'status': self.status.value,
            'composite': self.composite,
            'confidence': self.confidence,
            'cancelled': self.cancelled,
            'results': {name: r.to_dict() for name, r in self.results.items()},
            'errors': [e.to_dict() for e in self.errors],
        }


# ============================================================================
# CacheKey
# ============================================================================

@dataclass(frozen=True)
class CacheKey:
    """(记录指纹, 指标名, 评分器有效版本)"""
    fingerprint: str
    metric: str
    scorer_version: str


__all__ = [
    'MISSING', 'Record', 'FieldType', 'FieldSpec', 'RecordSchema', 'compute_fingerprint',
    'FeatureVector', 'MetricDefinition', 'ScoringFailure', 'MetricResult',
    'ReportStatus', 'ReportError', 'Report', 'CacheKey',
]
