"""
DocMetrics
==========

结构化文档指标计算引擎的领域层：
- models:   Record / FeatureVector / MetricDefinition / MetricResult / Report
- features: 特征抽取与文本统计
- scorers:  内置评分器 (statistical / readability / lexicon_sentiment / model / derived)
- scoring:  结果聚合
- core:     配置加载与引擎参数

运行时（依赖图、缓存、编排）位于 pipeline 包。
"""

from .models import (
    MISSING,
    CacheKey,
    FeatureVector,
    FieldSpec,
    FieldType,
    MetricDefinition,
    MetricResult,
    Record,
    RecordSchema,
    Report,
    ReportError,
    ReportStatus,
    ScoringFailure,
)

__version__ = "1.0.0"

__all__ = [
    'MISSING',
    'CacheKey',
    'FeatureVector',
    'FieldSpec',
    'FieldType',
    'MetricDefinition',
    'MetricResult',
    'Record',
    'RecordSchema',
    'Report',
    'ReportError',
    'ReportStatus',
    'ScoringFailure',
]
