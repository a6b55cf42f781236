"""MetricRegistry - 已配置指标 + 绑定的评分器实例

加载期一次性完成：
- 结构校验（重名 / derived 缺少 depends_on）
- 依赖图校验（未定义上游 -> MissingDependencyError，循环 -> CyclicDependencyError，均为 ConfigurationError）
- 拓扑排序（上游严格先于下游，平局按声明顺序）与并发分层
- 评分器绑定（未知 kind / 非法参数 -> ConfigurationError）
- 有效缓存版本计算

运行期只读，可被所有工作线程共享。
"""
from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Optional, Sequence, Set, Tuple, Union
import hashlib
import logging

from orchestrator import ScorerRegistry
from orchestrator.errors import ConfigurationError
from orchestrator.models import ScorerRegistration
from docmetrics.models import MetricDefinition

from .dependency_graph import DependencyGraph, ExecutionPlan

__all__ = ['MetricRegistry']


class MetricRegistry:
    """指标注册表（不可变）"""

    def __init__(self, definitions: Sequence[MetricDefinition],
                 scorer_registry: Optional[ScorerRegistry] = None,
                 logger: Optional[logging.Logger] = None):
        self._logger = logger or logging.getLogger(__name__)
        self._scorer_registry = scorer_registry or ScorerRegistry.get()
        definitions = tuple(definitions)
        if not definitions:
            raise ConfigurationError("no metrics configured")

        self._definitions: Dict[str, MetricDefinition] = {}
        for d in definitions:
            if d.name in self._definitions:
                raise ConfigurationError(f"duplicate metric name: {d.name}")
            if d.kind == 'derived' and not d.depends_on:
                raise ConfigurationError(f"derived metric '{d.name}' must declare depends_on")
            self._definitions[d.name] = d

        self._graph = DependencyGraph.from_dependencies(
            {d.name: d.depends_on for d in definitions}, logger=self._logger
        )
        self._plan: ExecutionPlan = self._graph.build_execution_plan()
        self._order: Tuple[MetricDefinition, ...] = tuple(self._definitions[n] for n in self._plan.order)
        self._layers: Tuple[Tuple[str, ...], ...] = tuple(tuple(layer.nodes) for layer in self._plan.layers)

        self._scorers: Dict[str, Any] = {}
        self._registrations: Dict[str, ScorerRegistration] = {}
        for d in self._order:
            scorer, reg = self._scorer_registry.create(d)
            self._scorers[d.name] = scorer
            self._registrations[d.name] = reg

        self._cache_versions: Dict[str, str] = {}
        for d in self._order:
            self._cache_versions[d.name] = self._effective_version(d)

        self._logger.debug(f"[metric-registry] {len(self)} metrics, {self._plan!r}")

    # ---------------- Factories -----------------
    @classmethod
    def from_config(cls, config: Union[Mapping[str, Any], str, Path],
                    scorer_registry: Optional[ScorerRegistry] = None) -> 'MetricRegistry':
        """从完整配置文档（或仅 metrics 列表所在的映射）构建"""
        from .services.config_service import ConfigService

        service = ConfigService()
        if isinstance(config, Mapping) and set(config) == {'metrics'}:
            definitions = service.parse_metrics(config['metrics'])
        else:
            definitions = service.load(config).definitions
        return cls(definitions, scorer_registry=scorer_registry)

    @classmethod
    def from_yaml(cls, path: Union[str, Path],
                  scorer_registry: Optional[ScorerRegistry] = None) -> 'MetricRegistry':
        return cls.from_config(path, scorer_registry=scorer_registry)

    # ---------------- Ordering -----------------
    def ordered_scorers(self) -> Tuple[MetricDefinition, ...]:
        """依赖安全的求值顺序：上游严格先于下游，平局按声明顺序"""
        return self._order

    def execution_layers(self) -> Tuple[Tuple[str, ...], ...]:
        """互不依赖的指标分组（层内按声明顺序）"""
        return self._layers

    @property
    def plan(self) -> ExecutionPlan:
        return self._plan

    @property
    def graph(self) -> DependencyGraph:
        return self._graph

    # ---------------- Lookup -----------------
    def definition(self, name: str) -> MetricDefinition:
        return self._definitions[name]

    def scorer_for(self, name: str) -> Any:
        return self._scorers[name]

    def registration(self, name: str) -> ScorerRegistration:
        return self._registrations[name]

    @property
    def scorer_registry(self) -> ScorerRegistry:
        return self._scorer_registry

    @property
    def executor(self):
        return self._scorer_registry.executor

    def names(self) -> Tuple[str, ...]:
        return tuple(d.name for d in self._order)

    # ---------------- Versioning -----------------
    def _effective_version(self, d: MetricDefinition) -> str:
        h = hashlib.sha256()
        h.update(d.config_digest().encode('utf-8'))
        h.update(self._registrations[d.name].full_key.encode('utf-8'))
        for dep in d.depends_on:
            h.update(b'|')
            h.update(self._cache_versions[dep].encode('utf-8'))
        return f"{d.version}+{h.hexdigest()[:12]}"

    def cache_version(self, name: str) -> str:
        """CacheKey 中使用的有效版本

        覆盖版本标签、配置摘要、评分器实现版本与上游的有效版本，
        上游变化会连带使下游失效。
        """
        return self._cache_versions[name]

    def cache_versions(self) -> Dict[str, str]:
        return dict(self._cache_versions)

    def diff(self, other: 'MetricRegistry') -> Set[str]:
        """本注册表中有效版本与 other 不同（或 other 中不存在）的指标名"""
        theirs = other.cache_versions()
        changed = {n for n, v in self._cache_versions.items() if theirs.get(n) != v}
        removed = set(theirs) - set(self._cache_versions)
        return changed | removed

    # ---------------- Dunder -----------------
    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, name: object) -> bool:
        return name in self._definitions

    def __iter__(self) -> Iterator[MetricDefinition]:
        return iter(self._order)

    def __repr__(self) -> str:
        return f"MetricRegistry(metrics={len(self)}, layers={len(self._layers)})"
