"""Pipeline Core Module - 核心组件导出

提供批次指标计算的核心抽象和服务层组件。

Public API:
- BatchContext / BatchState: 批次执行上下文与状态机
- BatchResult / BatchSummary / BatchFailure: 批次产物
- DependencyGraph / ExecutionPlan: 指标依赖图与分层执行计划
- MetricRegistry: 已配置指标 + 绑定的评分器
- PipelineOrchestrator: 批次编排器

Services (高级用户):
- ConfigService: 配置解析
- ComputationCache: 计算缓存
- FlowExecutor: 批次流执行
- HookManager: 事件钩子
"""
from __future__ import annotations

# Context & Data Classes
from .context import (
    BatchContext,
    BatchFailure,
    BatchResult,
    BatchState,
    BatchSummary,
    PipelineConfig,
)

# Dependency Management
from .dependency_graph import (
    DependencyGraph,
    DependencyEdge,
    ExecutionPlan,
    ExecutionLayer,
    CyclicDependencyError,
    MissingDependencyError,
)

from .metric_registry import MetricRegistry

# Manager
from .execute_manager import PipelineOrchestrator

__all__ = [
    # Context
    'BatchContext',
    'BatchFailure',
    'BatchResult',
    'BatchState',
    'BatchSummary',
    'PipelineConfig',
    # Dependency Graph
    'DependencyGraph',
    'DependencyEdge',
    'ExecutionPlan',
    'ExecutionLayer',
    'CyclicDependencyError',
    'MissingDependencyError',
    # Registry
    'MetricRegistry',
    # Manager
    'PipelineOrchestrator',
]
