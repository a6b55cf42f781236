#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""PipelineOrchestrator - 批次指标计算编排器

职责：
1. 持有 MetricRegistry / FeatureExtractor / Aggregator / ComputationCache
2. 驱动批次状态机 PENDING -> EXTRACTING -> SCORING -> AGGREGATING -> DONE（FlowExecutor）
3. 汇总 BatchResult / BatchSummary（ResultAssembler + CacheStatsService）
4. 热重载配置：重建并校验注册表，按有效版本失效缓存
"""
from __future__ import annotations
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence, Union
import logging
import os
import threading
import time

from orchestrator import ScorerRegistry
from orchestrator.errors import BatchError
from docmetrics.core.config_loader import EngineSettings
from docmetrics.features.extractor import FeatureExtractor
from docmetrics.models import Record
from docmetrics.scoring.aggregator import Aggregator

from pipeline.core.context import BatchContext, BatchResult, BatchState, PipelineConfig
from pipeline.core.metric_registry import MetricRegistry
from pipeline.core.services.cache_stats_service import CacheStatsService
from pipeline.core.services.computation_cache import ComputationCache
from pipeline.core.services.config_service import ConfigService
from pipeline.core.services.flow_executor import FlowExecutor
from pipeline.core.services.hook_manager import HookManager
from pipeline.core.services.result_assembler import ResultAssembler

ConfigSource = Union[str, Path, Mapping[str, Any]]


class PipelineOrchestrator:
    """批次编排器

    功能：
    - run(records): 每条输入记录恰好对应一份 Report，顺序与输入一致
    - 记录级 / 指标级错误在报告内收敛，只有配置与基础设施故障以 BatchError 抛出
    - reload(config): 原子替换注册表，只失效有效版本发生变化的指标缓存
    """

    def __init__(self, registry: Optional[MetricRegistry], extractor: Optional[FeatureExtractor] = None, *,
                 cache: Optional[ComputationCache] = None, aggregator: Optional[Aggregator] = None,
                 settings: Optional[EngineSettings] = None, hooks: Optional[HookManager] = None,
                 load_plugins: bool = False, clock=time.monotonic):
        self.settings = settings or EngineSettings()
        self.logger = logging.getLogger("DocMetricsPipeline")
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
            self.logger.addHandler(handler)
        self.logger.setLevel(getattr(logging, self.settings.log_level, logging.INFO))

        self.registry = registry
        self.extractor = extractor or FeatureExtractor()
        self.aggregator = aggregator
        if self.aggregator is None and registry is not None:
            self.aggregator = Aggregator.for_registry(registry)
        self.cache = cache or ComputationCache.from_settings(self.settings, clock=clock)
        self.hooks = hooks or HookManager.get()
        self.clock = clock
        self.config: Optional[PipelineConfig] = None

        # 服务层
        self._swap_lock = threading.RLock()
        self._config_service = ConfigService(self.logger)
        self._cache_stats_service = CacheStatsService(self.logger)
        self._result_assembler = ResultAssembler(self._cache_stats_service, self.logger)
        self._flow_executor = FlowExecutor(
            self.cache,
            self.hooks,
            record_workers=self.settings.record_workers,
            scorer_workers=self.settings.scorer_workers,
            logger=self.logger,
        )
        if load_plugins:
            self._load_plugins()

    @classmethod
    def from_config(cls, source: ConfigSource, *, scorer_registry: Optional[ScorerRegistry] = None,
                    **kwargs) -> 'PipelineOrchestrator':
        """从一个 YAML 文档（路径或已解析映射）构建全部组件"""
        config = ConfigService().load(source)
        registry = MetricRegistry(config.definitions, scorer_registry=scorer_registry)
        orchestrator = cls(
            registry,
            FeatureExtractor(config.extraction),
            aggregator=Aggregator.for_registry(registry, config.aggregation),
            settings=config.settings,
            **kwargs,
        )
        orchestrator.config = config
        return orchestrator

    # ------------------------------------------------------------------
    # 插件
    # ------------------------------------------------------------------
    def _load_plugins(self):
        """加载 pipeline/plugins 目录下的插件"""
        import importlib
        import pkgutil

        plugins_dir = Path(__file__).parent.parent / 'plugins'
        if not plugins_dir.is_dir():
            return

        # 获取禁用插件列表
        disabled = {x.strip() for x in os.getenv('PIPELINE_DISABLE_PLUGINS', '').split(',') if x.strip()}
        disable_file = Path.cwd() / '.pipeline_disable_plugins'
        if disable_file.exists():
            disabled.update(x.strip() for x in disable_file.read_text(encoding='utf-8').split(',') if x.strip())

        for module_info in pkgutil.iter_modules([str(plugins_dir)]):
            if module_info.name in disabled:
                self.logger.info(f"🚫 跳过插件: {module_info.name}")
                continue
            try:
                mod = importlib.import_module(f'pipeline.plugins.{module_info.name}')
                if hasattr(mod, 'register'):
                    mod.register(self.hooks)
                    self.logger.info(f"🔌 已加载插件: {module_info.name}")
            except Exception as e:
                self.logger.warning(f"插件加载失败 {module_info.name}: {e}")

    # ------------------------------------------------------------------
    # 执行
    # ------------------------------------------------------------------
    def run(self, records: Sequence[Union[Record, Mapping[str, Any]]], *,
            deadline: Optional[float] = None) -> BatchResult:
        """执行一个批次

        Args:
            records: Record 序列（也接受字段映射，自动包装为 Record）
            deadline: 相对截止时间（秒），None 时取 settings.batch_deadline_seconds

        Raises:
            BatchError: 未配置注册表或缓存已关闭
        """
        with self._swap_lock:
            registry, extractor, aggregator = self.registry, self.extractor, self.aggregator
        if registry is None or aggregator is None:
            raise BatchError("no metric registry configured")
        if self.cache.closed:
            raise BatchError("computation cache is closed")

        batch = [r if isinstance(r, Record) else Record(r) for r in records]
        seconds = deadline if deadline is not None else self.settings.batch_deadline_seconds
        ctx = BatchContext.with_timeout(len(batch), seconds, clock=self.clock)

        self.logger.info(f"🚀 批次开始 {ctx.batch_id}: 记录数={len(batch)} 指标数={len(registry)}")
        self.hooks.emit('before_batch', ctx.batch_id, len(batch))

        cache_before = self.cache.stats()
        calls_before = registry.scorer_registry.metrics.calls()
        reports = self._flow_executor.run(ctx, batch, registry, extractor, aggregator)
        ctx.transition(BatchState.DONE)
        invocations = registry.scorer_registry.metrics.calls() - calls_before

        result = self._result_assembler.assemble(
            ctx, reports,
            cache_before=cache_before,
            cache_after=self.cache.stats(),
            scorer_invocations=invocations,
        )
        summary = result.summary
        flag = "⏱️ 已取消" if result.cancelled else "✅"
        self.logger.info(
            f"{flag} 批次完成 {ctx.batch_id}: {dict(summary.reports_by_status)} "
            f"调用={summary.scorer_invocations} 命中率={summary.cache_hit_ratio:.2%} "
            f"耗时={summary.duration_seconds:.3f}s"
        )
        self.hooks.emit('after_batch', ctx.batch_id, summary)
        return result

    # ------------------------------------------------------------------
    # 热重载
    # ------------------------------------------------------------------
    def reload(self, source: ConfigSource) -> set:
        """重新加载配置

        新注册表构建并校验通过后才替换；校验失败抛 ConfigurationError，当前注册表保持不变。

        Returns:
            有效版本发生变化（或被移除）的指标名集合
        """
        config = self._config_service.load(source)
        scorer_registry = self.registry.scorer_registry if self.registry is not None else None
        new_registry = MetricRegistry(config.definitions, scorer_registry=scorer_registry)
        new_aggregator = Aggregator.for_registry(new_registry, config.aggregation)

        with self._swap_lock:
            old_registry = self.registry
            extraction_changed = config.extraction != self.extractor.config
            changed = new_registry.diff(old_registry) if old_registry is not None else set(new_registry.names())
            self.registry = new_registry
            self.aggregator = new_aggregator
            if extraction_changed:
                self.extractor = FeatureExtractor(config.extraction)
            self.config = config

        if extraction_changed:
            self.cache.clear()
            self.logger.info("♻️ 抽取配置已变化，缓存已清空")
        else:
            for name in sorted(changed):
                keep = new_registry.cache_version(name) if name in new_registry else None
                self.cache.invalidate_metric(name, keep_version=keep)
        self.logger.info(f"🔄 配置已重载: 指标数={len(new_registry)} 变化={sorted(changed)}")
        return changed

    # ------------------------------------------------------------------
    # 生命周期
    # ------------------------------------------------------------------
    def close(self) -> None:
        self.cache.close()
        self.logger.info("🛑 编排器已关闭")

    def __enter__(self) -> 'PipelineOrchestrator':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def stats(self) -> dict:
        return {
            'cache': self.cache.stats(),
            'scorers': self.registry.scorer_registry.metrics.export() if self.registry is not None else {},
            'hooks': self.hooks.get_stats(),
        }


__all__ = ["PipelineOrchestrator"]
