from __future__ import annotations
import importlib
import logging
import pkgutil
from types import ModuleType
from typing import List
from ..config import RegistryConfig
from ..errors import ConfigurationError

logger = logging.getLogger(__name__)


class ModuleLoader:
    """内置评分器模块加载器

    导入 builtin_packages 下的全部模块，模块中的 @register_scorer 装饰器完成注册。
    """

    def __init__(self, config: RegistryConfig):
        self.config = config

    def discover_modules(self, package: str) -> List[str]:
        pkg = importlib.import_module(package)
        mods = []
        for _, modname, ispkg in pkgutil.iter_modules(pkg.__path__):
            if ispkg or modname.startswith('_'):
                continue
            if any(p in modname.lower() for p in self.config.skip_patterns):
                continue
            mods.append(f"{package}.{modname}")
        return mods

    def load_all(self) -> List[ModuleType]:
        modules = []
        for package in self.config.builtin_packages:
            for module_path in self.discover_modules(package):
                modules.append(self._import(module_path))
        return modules

    def _import(self, module_path: str) -> ModuleType:
        try:
            return importlib.import_module(module_path)
        except ImportError as e:
            logger.error(f"评分器模块加载失败 {module_path}: {e}")
            raise ConfigurationError(f"failed to load scorer module {module_path}: {e}") from e
