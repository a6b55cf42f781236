"""DocMetrics Orchestrator

评分器类型注册中心：
- register_scorer: 评分器注册装饰器
- ScorerRegistry:  线程安全单例，负责实现选择、实例化与调用统计
"""

from .registry.registry import ScorerRegistry
from .decorators.register import register_scorer

__all__ = ['ScorerRegistry', 'register_scorer']
