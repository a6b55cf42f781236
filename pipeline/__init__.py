#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
DocMetrics Pipeline
===================

Configuration-driven batch metrics computation with dependency-aware scheduling.

Core Components:
- PipelineOrchestrator: 批次编排器
- MetricRegistry: 指标注册表（依赖排序 + 评分器绑定）
- DependencyGraph: 指标依赖图
- ComputationCache: reserve-then-fill 计算缓存
- HookManager: 事件钩子系统

Usage Example:
    from pipeline import create_pipeline

    orchestrator = create_pipeline('metrics.yaml')
    result = orchestrator.run(records)
    for report in result.reports:
        print(report.status, report.composite)
"""
from __future__ import annotations

# Core Components
from .core.execute_manager import PipelineOrchestrator
from .core.context import BatchContext, BatchFailure, BatchResult, BatchState, BatchSummary
from .core.metric_registry import MetricRegistry
from .core.dependency_graph import (
    DependencyGraph,
    DependencyEdge,
    ExecutionPlan,
    ExecutionLayer,
    CyclicDependencyError,
    MissingDependencyError,
)

# Services (Advanced)
from .core.services.computation_cache import ComputationCache
from .core.services.hook_manager import HookManager

__version__ = "1.0.0"

__all__ = [
    # Core
    'PipelineOrchestrator',
    'MetricRegistry',
    'BatchContext',
    'BatchFailure',
    'BatchResult',
    'BatchState',
    'BatchSummary',
    # Dependency Graph
    'DependencyGraph',
    'DependencyEdge',
    'ExecutionPlan',
    'ExecutionLayer',
    'CyclicDependencyError',
    'MissingDependencyError',
    # Services
    'ComputationCache',
    'HookManager',
    # Functions
    'create_pipeline',
    'get_system_info',
]


def create_pipeline(config_path: str, **kwargs) -> PipelineOrchestrator:
    """从 YAML 配置创建编排器

    Args:
        config_path: YAML 配置文件路径
        **kwargs: 传递给 PipelineOrchestrator.from_config 的额外参数
    """
    return PipelineOrchestrator.from_config(config_path, **kwargs)


def get_system_info() -> dict:
    """获取系统信息"""
    from orchestrator import ScorerRegistry

    registry = ScorerRegistry.get()
    return {
        'version': __version__,
        'scorers': registry.list_scorers(),
        'features': [
            'dependency_graph',
            'execution_plan',
            'computation_cache',
            'hook_system',
            'config_reload',
        ]
    }
