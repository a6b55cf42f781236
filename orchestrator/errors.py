"""DocMetrics 异常体系

分层：
- ConfigurationError: 启动期致命错误（指标图非法、未知评分器类型、参数错误）
- ExtractionError:    记录级错误，写入 Report，不中断批次
- ScoringError:       指标级错误，写入 MetricResult 的失败标记，不中断记录
- BatchError:         批次级致命错误（仅基础设施故障，如缓存不可用）
"""
from __future__ import annotations
from typing import Any, List, Optional


class MetricsEngineError(Exception):
    """基础引擎异常"""


class ConfigurationError(MetricsEngineError):
    """配置错误（启动期，致命）"""


class ExtractionError(MetricsEngineError):
    """特征抽取失败

    problems: 字段级问题列表 (field, code, message)
    partial:  由合法字段构建出的部分 FeatureVector（可能为 None）
    """

    def __init__(self, message: str, problems: Optional[List[tuple]] = None, partial: Any = None):
        super().__init__(message)
        self.problems = list(problems or [])
        self.partial = partial


class ScoringError(MetricsEngineError):
    """评分失败（输入超出支持域）

    code: 机器可读的失败码，例如 'nan_input' / 'unseen_category' / 'upstream_failed'
    """

    def __init__(self, message: str, code: str = 'scoring_error'):
        super().__init__(message)
        self.code = code


class CacheWaitTimeout(ScoringError):
    """等待他人计算同一缓存键超时"""

    def __init__(self, message: str):
        super().__init__(message, code='cache_timeout')


class BatchError(MetricsEngineError):
    """批次级致命错误"""


class CacheUnavailableError(BatchError):
    pass


# ---------------- Registry errors -----------------
class RegistryError(ConfigurationError):
    """评分器注册中心异常"""


class ScorerNotFound(RegistryError):
    pass


class RegistryConflictError(RegistryError):
    pass


class RegistryStrategyError(RegistryError):
    pass
