"""DependencyGraph - 指标依赖图

提供指标间依赖关系建模、拓扑排序、循环检测和层次化执行计划。

约定：
- 节点按声明顺序登记，声明顺序是所有排序中的确定性 tie-break
- 边 from_node -> to_node 表示 to_node 依赖 from_node（上游先执行）
- 图在加载期解析一次，运行期只读
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence
import heapq
import logging

from orchestrator.errors import ConfigurationError

__all__ = [
    'DependencyEdge',
    'DependencyGraph',
    'ExecutionPlan',
    'ExecutionLayer',
    'CyclicDependencyError',
    'MissingDependencyError',
]


@dataclass(frozen=True)
class DependencyEdge:
    """依赖边（不可变）

    Attributes:
        from_node: 上游节点（被依赖方）
        to_node: 下游节点（依赖方）
        metadata: 额外元数据
    """
    from_node: str
    to_node: str
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    def __hash__(self) -> int:
        return hash((self.from_node, self.to_node))


class CyclicDependencyError(ConfigurationError):
    """循环依赖错误"""
    def __init__(self, cycle: List[str]):
        self.cycle = cycle
        super().__init__(f"检测到循环依赖: {' -> '.join(cycle)}")


class MissingDependencyError(ConfigurationError):
    """缺失依赖错误"""
    def __init__(self, node: str, missing_deps: List[str]):
        self.node = node
        self.missing_deps = missing_deps
        super().__init__(f"节点 '{node}' 依赖的节点不存在: {missing_deps}")


@dataclass
class ExecutionLayer:
    """执行层

    表示可并行执行的一组节点（层内按声明顺序）。
    """
    index: int
    nodes: List[str]

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self):
        return iter(self.nodes)


@dataclass
class ExecutionPlan:
    """执行计划

    order 为确定性的扁平执行顺序，layers 为并发调度用的分层。
    """
    order: List[str]
    layers: List[ExecutionLayer]
    critical_path: List[str] = field(default_factory=list)

    @property
    def total_nodes(self) -> int:
        return len(self.order)

    @property
    def max_parallelism(self) -> int:
        """最大并行度"""
        return max(len(layer) for layer in self.layers) if self.layers else 0

    @property
    def depth(self) -> int:
        """执行深度（层数）"""
        return len(self.layers)

    def __repr__(self) -> str:
        return f"ExecutionPlan(layers={self.depth}, nodes={self.total_nodes}, max_parallelism={self.max_parallelism})"


class DependencyGraph:
    """依赖图

    管理节点间的依赖关系，提供：
    - 依赖添加
    - 缺失依赖校验 / 循环检测
    - 拓扑排序（声明顺序 tie-break）
    - 层次化执行计划生成

    线程安全：本类不是线程安全的，构建完成后只读使用。
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._logger = logger or logging.getLogger(__name__)
        # 节点 -> 声明序号
        self._position: Dict[str, int] = {}
        # node -> 下游节点（依赖于该节点的节点），按声明顺序
        self._successors: Dict[str, List[str]] = {}
        # node -> 上游节点（该节点依赖的节点），按声明顺序
        self._predecessors: Dict[str, List[str]] = {}
        self._edges: Dict[tuple, DependencyEdge] = {}

    def add_node(self, name: str) -> None:
        """添加节点（重复添加忽略）"""
        if name not in self._position:
            self._position[name] = len(self._position)
            self._successors[name] = []
            self._predecessors[name] = []

    def add_nodes(self, names: Iterable[str]) -> None:
        for name in names:
            self.add_node(name)

    def add_dependency(self, from_node: str, to_node: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        """添加依赖：to_node 依赖 from_node

        Raises:
            MissingDependencyError: 任一端节点尚未登记
        """
        if to_node not in self._position:
            raise MissingDependencyError(to_node, [to_node])
        if from_node not in self._position:
            raise MissingDependencyError(to_node, [from_node])
        if (from_node, to_node) in self._edges:
            return
        edge = DependencyEdge(from_node=from_node, to_node=to_node, metadata=metadata or {})
        self._successors[from_node].append(to_node)
        self._predecessors[to_node].append(from_node)
        self._edges[(from_node, to_node)] = edge

    def get_predecessors(self, node: str) -> FrozenSet[str]:
        """获取节点的所有前驱（上游依赖）"""
        return frozenset(self._predecessors.get(node, ()))

    def get_successors(self, node: str) -> FrozenSet[str]:
        """获取节点的所有后继（下游依赖）"""
        return frozenset(self._successors.get(node, ()))

    def nodes(self) -> List[str]:
        """按声明顺序返回全部节点"""
        return list(self._position)

    def has_cycle(self) -> bool:
        return self.find_cycle() is not None

    def find_cycle(self) -> Optional[List[str]]:
        """查找循环依赖路径（如果存在）"""
        visited = set()
        rec_stack = set()
        path: List[str] = []

        def dfs(node: str) -> Optional[List[str]]:
            visited.add(node)
            rec_stack.add(node)
            path.append(node)

            for succ in self._successors.get(node, ()):
                if succ not in visited:
                    result = dfs(succ)
                    if result:
                        return result
                elif succ in rec_stack:
                    # 找到循环
                    cycle_start = path.index(succ)
                    return path[cycle_start:] + [succ]

            path.pop()
            rec_stack.remove(node)
            return None

        for node in self._position:
            if node not in visited:
                cycle = dfs(node)
                if cycle:
                    return cycle
        return None

    def topological_sort(self) -> List[str]:
        """Kahn 算法；就绪节点中总是先取声明序号最小者

        Raises:
            CyclicDependencyError: 如果存在循环依赖
        """
        in_degree = {node: len(preds) for node, preds in self._predecessors.items()}
        heap = [self._position[n] for n, d in in_degree.items() if d == 0]
        heapq.heapify(heap)
        names = list(self._position)
        result = []

        while heap:
            node = names[heapq.heappop(heap)]
            result.append(node)
            for succ in self._successors[node]:
                in_degree[succ] -= 1
                if in_degree[succ] == 0:
                    heapq.heappush(heap, self._position[succ])

        if len(result) != len(self._position):
            cycle = self.find_cycle()
            raise CyclicDependencyError(cycle or [n for n in names if n not in set(result)])
        return result

    def build_execution_plan(self) -> ExecutionPlan:
        """构建层次化执行计划

        第 k 层 = 所有上游都位于前 k-1 层的节点。

        Raises:
            CyclicDependencyError: 如果存在循环依赖
        """
        order = self.topological_sort()
        level: Dict[str, int] = {}
        for node in order:
            preds = self._predecessors[node]
            level[node] = 1 + max((level[p] for p in preds), default=-1)

        layers: List[ExecutionLayer] = []
        for node in sorted(order, key=lambda n: (level[n], self._position[n])):
            idx = level[node]
            if idx == len(layers):
                layers.append(ExecutionLayer(index=idx, nodes=[]))
            layers[idx].nodes.append(node)

        return ExecutionPlan(order=order, layers=layers, critical_path=self._critical_path(order))

    def _critical_path(self, order: Sequence[str]) -> List[str]:
        """DAG 中的最长依赖链"""
        if not order:
            return []
        dist = {node: 0 for node in order}
        prev: Dict[str, Optional[str]] = {node: None for node in order}
        for node in order:
            for succ in self._successors[node]:
                if dist[node] + 1 > dist[succ]:
                    dist[succ] = dist[node] + 1
                    prev[succ] = node

        current: Optional[str] = max(order, key=lambda n: dist[n])
        path = []
        while current is not None:
            path.append(current)
            current = prev[current]
        return list(reversed(path))

    @classmethod
    def from_dependencies(cls, dependencies: Mapping[str, Sequence[str]],
                          logger: Optional[logging.Logger] = None) -> 'DependencyGraph':
        """从 {node: [upstream, ...]}（按声明顺序）构建并校验依赖图

        Raises:
            MissingDependencyError: 引用了未定义的上游
            CyclicDependencyError: 存在循环依赖（含自依赖）
        """
        graph = cls(logger=logger)
        graph.add_nodes(dependencies.keys())
        for node, upstream in dependencies.items():
            missing = [dep for dep in upstream if dep not in graph._position]
            if missing:
                raise MissingDependencyError(node, missing)
            for dep in upstream:
                graph.add_dependency(dep, node, metadata={'declared_in': 'depends_on'})
        cycle = graph.find_cycle()
        if cycle:
            raise CyclicDependencyError(cycle)
        return graph

    def to_dict(self) -> Dict[str, Any]:
        """导出为字典格式（便于序列化）"""
        return {
            'nodes': self.nodes(),
            'edges': [
                {'from': edge.from_node, 'to': edge.to_node, 'metadata': edge.metadata}
                for edge in self._edges.values()
            ]
        }

    def __len__(self) -> int:
        return len(self._position)

    def __contains__(self, node: str) -> bool:
        return node in self._position

    def __repr__(self) -> str:
        return f"DependencyGraph(nodes={len(self._position)}, edges={len(self._edges)})"
