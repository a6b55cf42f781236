import os
from dataclasses import dataclass, field


def _env_conflict_mode() -> str:
    return os.getenv('DOCMETRICS_REGISTRY_CONFLICT', 'warn').lower()


@dataclass(frozen=True)
class RegistryConfig:
    """评分器注册中心配置

    conflict_mode:    同一 kind+version 重复注册的处理模式 ('error' | 'warn' | 'ignore')
    builtin_packages: 自动加载内置评分器的包
    skip_patterns:    自动加载时跳过的模块名模式
    """
    conflict_mode: str = field(default_factory=_env_conflict_mode)
    builtin_packages: tuple[str, ...] = ('docmetrics.scorers',)
    skip_patterns: tuple[str, ...] = ('backup', 'bak', 'tmp', 'deprecated')
