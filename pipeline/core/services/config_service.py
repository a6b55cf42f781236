"""ConfigService: 负责配置加载/解析/校验

职责：
1. 加载 YAML 配置文件 (engine / extraction / metrics / aggregation 四段)
2. 校验文档结构，构建 MetricDefinition、ExtractionConfig、AggregationConfig、EngineSettings
3. 使用 DependencyGraph 预检依赖（未定义上游 / 循环）

设计原则：
- 单一职责：只负责配置解析，不执行任何业务逻辑
- 启动期快速失败：任何结构问题抛 ConfigurationError
"""
from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, List, Mapping, Tuple, Union
import logging

import yaml

from orchestrator.errors import ConfigurationError
from docmetrics.core.config_loader import EngineSettings
from docmetrics.features.extractor import ExtractionConfig
from docmetrics.models import MetricDefinition
from docmetrics.scoring.aggregator import AggregationConfig

from ..context import PipelineConfig
from ..dependency_graph import DependencyGraph

KNOWN_SECTIONS = frozenset(['engine', 'extraction', 'metrics', 'aggregation'])


class ConfigService:
    """配置服务

    核心流程：
    1. load_config() -> 解析 YAML
    2. parse() -> 结构校验 + 构建值对象
    3. _check_graph() -> 依赖图预检
    """

    __slots__ = ('logger',)

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger(__name__)

    # ========== Public API ==========

    def load_config(self, path: Union[str, Path]) -> Dict[str, Any]:
        """加载 YAML 配置文件

        Raises:
            ConfigurationError: 文件不存在或 YAML 语法错误
        """
        try:
            with open(path, 'r', encoding='utf-8') as f:
                config = yaml.safe_load(f) or {}
        except FileNotFoundError as e:
            raise ConfigurationError(f"配置文件不存在: {path}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"配置文件解析失败 {path}: {e}") from e
        self.logger.info(f"🧾 已加载配置: {path}")
        return config

    def load(self, source: Union[str, Path, Mapping[str, Any]]) -> PipelineConfig:
        """路径或已解析的映射 -> PipelineConfig"""
        if isinstance(source, Mapping):
            return self.parse(source)
        return self.parse(self.load_config(source))

    def parse(self, config: Mapping[str, Any]) -> PipelineConfig:
        if not isinstance(config, Mapping):
            raise ConfigurationError("配置文档顶层必须为映射")
        unknown = set(config) - KNOWN_SECTIONS
        if unknown:
            raise ConfigurationError(f"未知配置段: {sorted(unknown)}")

        definitions = self.parse_metrics(config.get('metrics'))
        self._check_graph(definitions)
        aggregation = AggregationConfig.from_mapping(config.get('aggregation'))
        aggregation.validate_against(d.name for d in definitions)

        return PipelineConfig(
            definitions=definitions,
            extraction=ExtractionConfig.from_mapping(config.get('extraction')),
            aggregation=aggregation,
            settings=EngineSettings.from_mapping(config.get('engine')),
            raw=dict(config),
        )

    def parse_metrics(self, raw_metrics: Any) -> Tuple[MetricDefinition, ...]:
        """metrics 段 -> MetricDefinition 元组（保持声明顺序）"""
        if not isinstance(raw_metrics, list) or not raw_metrics:
            raise ConfigurationError("配置中 metrics 必须为非空列表")
        definitions: List[MetricDefinition] = []
        seen = set()
        for idx, entry in enumerate(raw_metrics):
            if not isinstance(entry, Mapping):
                raise ConfigurationError(f"metrics[{idx}] 必须为映射: {entry!r}")
            definition = MetricDefinition.from_dict(entry)
            if definition.name in seen:
                raise ConfigurationError(f"重复的指标名: {definition.name}")
            seen.add(definition.name)
            definitions.append(definition)
        return tuple(definitions)

    # ========== Internal: Dependency Graph ==========

    def _check_graph(self, definitions: Tuple[MetricDefinition, ...]) -> None:
        graph = DependencyGraph.from_dependencies(
            {d.name: d.depends_on for d in definitions}, logger=self.logger
        )
        plan = graph.build_execution_plan()
        self.logger.info(f"🧭 执行顺序: {plan.order}")
        self.logger.info(f"📊 执行计划: {plan.depth} 层, 最大并行度 {plan.max_parallelism}")
        if plan.critical_path:
            self.logger.debug(f"🔥 关键路径: {' -> '.join(plan.critical_path)}")


__all__ = ["ConfigService"]
