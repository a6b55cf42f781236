from __future__ import annotations
import logging
import threading
from typing import Any, Dict, Optional, Tuple
from ..models import ScorerRegistration
from ..errors import (
    ConfigurationError, RegistryConflictError, ScorerNotFound
)
from ..config import RegistryConfig
from .index import RegistryIndex
from .strategies import resolve_strategy
from .metrics import MetricsService
from .executor import ScorerExecutor
from .loader import ModuleLoader

logger = logging.getLogger(__name__)


class ScorerRegistry:
    """评分器注册中心（线程安全的单例）

    职责：
    - 评分器类型 (kind) 的注册与索引管理
    - 实现版本选择 (策略)
    - 评分器实例化与调用统计
    - 内置评分器自动加载
    """

    _instance: Optional['ScorerRegistry'] = None
    _lock = threading.Lock()

    def __init__(self, config: Optional[RegistryConfig] = None):
        self.config = config or RegistryConfig()
        self.index = RegistryIndex()
        self.metrics = MetricsService()
        self.executor = ScorerExecutor(self.metrics)
        self.loader = ModuleLoader(self.config)
        self._loaded = False

    # ---------------- Singleton (Thread-Safe) -----------------
    @classmethod
    def get(cls) -> 'ScorerRegistry':
        """获取单例实例（线程安全）"""
        if cls._instance is None:
            with cls._lock:
                # Double-check locking
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """重置单例（主要用于测试）"""
        with cls._lock:
            cls._instance = None

    # ---------------- Registration --------------
    def register(self, reg: ScorerRegistration) -> bool:
        full_key = reg.full_key
        if full_key in self.index.by_full_key:
            existing = self.index.by_full_key[full_key]
            if existing.factory is reg.factory:
                return False
            mode = self.config.conflict_mode
            if mode == 'error':
                raise RegistryConflictError(f'conflict: {full_key}')
            if mode == 'ignore':
                return False
            # warn: 覆盖
            logger.warning(f"⚠️ 评分器注册冲突，覆盖: {full_key}")
        self.index.add(reg)
        return True

    # ---------------- Discover / Load -----------
    def auto_load(self) -> int:
        """导入内置评分器模块并登记其中的注册信息

        模块已被导入过（例如单例被 reset 之后）时装饰器不会再次执行，
        因此这里扫描模块内带 _scorer_registration 的类补登记。
        """
        modules = self.loader.load_all()
        for mod in modules:
            for obj in vars(mod).values():
                reg = getattr(obj, '_scorer_registration', None)
                if isinstance(reg, ScorerRegistration) and reg.module_path == mod.__name__:
                    self.register(reg)
        self._loaded = True
        return len(modules)

    def ensure_loaded(self) -> None:
        if not self._loaded:
            count = self.auto_load()
            logger.debug(f"[registry] builtin scorer modules loaded={count} kinds={self.index.kinds()}")

    # ---------------- Selection -----------------
    def select(self, kind: str, *, strategy: str = 'default', version: Optional[str] = None) -> ScorerRegistration:
        """选择评分器实现

        Args:
            kind: 评分器类型
            strategy: 选择策略
            version: 固定实现版本（给出时强制使用 pinned 策略）
        """
        self.ensure_loaded()
        candidates = self.index.candidates(kind)
        if not candidates:
            raise ScorerNotFound(f'scorer kind "{kind}" not registered (known: {self.index.kinds()})')
        strat = resolve_strategy('pinned' if version else strategy, version=version)
        return strat.select(candidates)

    def create(self, definition: Any) -> Tuple[Any, ScorerRegistration]:
        """为一个 MetricDefinition 构建评分器实例

        参数校验失败统一转换为 ConfigurationError（启动期快速失败）。
        """
        reg = self.select(definition.kind, version=getattr(definition, 'implementation', None))
        if reg.factory is None:
            raise ConfigurationError(f"factory not bound for {reg.full_key}")
        try:
            scorer = reg.factory(definition)
        except ConfigurationError:
            raise
        except (TypeError, ValueError, KeyError) as e:
            raise ConfigurationError(f"invalid parameters for metric '{definition.name}' ({reg.full_key}): {e}") from e
        return scorer, reg

    # ---------------- Introspection -------------
    def list_scorers(self) -> Dict[str, Dict[str, Any]]:
        self.ensure_loaded()
        return {
            reg.full_key: {
                'kind': reg.kind,
                'version': reg.version,
                'description': reg.description,
                'deprecated': reg.deprecated,
                'priority': reg.priority,
                'module': reg.module_path,
                'tags': list(reg.tags),
            }
            for reg in self.index.by_full_key.values()
        }

    def stats(self) -> Dict[str, Any]:
        return self.metrics.export()
