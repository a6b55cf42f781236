"""
配置加载器 (Config Loader)
=========================

引擎运行参数的分层合并：
- 默认值 -> engine 段 (YAML)
- 环境变量覆盖 (前缀 DOCMETRICS_)
- 引擎运行参数 EngineSettings 构建与校验
"""

import os
from typing import Dict, Any, Mapping, Optional
from dataclasses import dataclass, asdict

from orchestrator.errors import ConfigurationError

ENV_PREFIX = "DOCMETRICS_"

# 全局默认配置（扁平键，与 EngineSettings 字段一一对应）
DEFAULT_ENGINE_CONFIG: Dict[str, Any] = {
    "cache_max_entries": 10000,
    "cache_success_ttl": None,
    "cache_failure_ttl": 30.0,
    "cache_wait_timeout": 30.0,
    "record_workers": 4,
    "scorer_workers": 4,
    "batch_deadline_seconds": None,
    "log_level": "INFO",
}

_OPTIONAL_FLOATS = ("cache_success_ttl", "batch_deadline_seconds")


def get_config_with_env_override(
    config: Dict[str, Any],
    env_prefix: str = ENV_PREFIX
) -> Dict[str, Any]:
    """
    获取配置，支持环境变量覆盖

    环境变量格式: {env_prefix}{KEY}
    例如: DOCMETRICS_RECORD_WORKERS=8

    类型按原值推断；原值为 None 时保留字符串，由 EngineSettings 负责转换。
    """
    result = config.copy()

    for key, value in config.items():
        env_key = f"{env_prefix}{key.upper()}"
        env_value = os.environ.get(env_key)

        if env_value is not None:
            if isinstance(value, bool):
                result[key] = env_value.lower() in ('true', '1', 'yes')
            elif isinstance(value, int):
                result[key] = int(env_value)
            elif isinstance(value, float):
                result[key] = float(env_value)
            else:
                result[key] = env_value

    return result


def merge_configs(*configs: Dict[str, Any]) -> Dict[str, Any]:
    """
    合并多个配置，后面的覆盖前面的
    """
    result: Dict[str, Any] = {}

    for config in configs:
        for key, value in config.items():
            if isinstance(value, dict) and key in result and isinstance(result[key], dict):
                result[key] = merge_configs(result[key], value)
            else:
                result[key] = value

    return result


def flatten_engine_section(section: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """engine 段 -> 扁平键

    支持嵌套写法:
        engine:
          cache: {max_entries: 500, failure_ttl: 10}
          workers: {records: 8, scorers: 2}
    等价于 cache_max_entries / cache_failure_ttl / record_workers / scorer_workers。
    """
    flat: Dict[str, Any] = {}
    for key, value in (section or {}).items():
        if key == 'cache' and isinstance(value, Mapping):
            for k, v in value.items():
                flat[f"cache_{k}"] = v
        elif key == 'workers' and isinstance(value, Mapping):
            if 'records' in value:
                flat['record_workers'] = value['records']
            if 'scorers' in value:
                flat['scorer_workers'] = value['scorers']
        else:
            flat[key] = value
    return flat


def _optional_float(value: Any) -> Optional[float]:
    if value is None or (isinstance(value, str) and value.strip().lower() in ('', 'none', 'null')):
        return None
    return float(value)


@dataclass(frozen=True)
class EngineSettings:
    """引擎运行参数"""
    cache_max_entries: int = 10000
    cache_success_ttl: Optional[float] = None
    cache_failure_ttl: float = 30.0
    cache_wait_timeout: float = 30.0
    record_workers: int = 4
    scorer_workers: int = 4
    batch_deadline_seconds: Optional[float] = None
    log_level: str = "INFO"

    def __post_init__(self):
        if self.cache_max_entries < 1:
            raise ConfigurationError("cache_max_entries must be >= 1")
        if self.record_workers < 1 or self.scorer_workers < 1:
            raise ConfigurationError("worker counts must be >= 1")
        if self.cache_failure_ttl < 0 or self.cache_wait_timeout <= 0:
            raise ConfigurationError("cache_failure_ttl must be >= 0 and cache_wait_timeout > 0")
        for key in _OPTIONAL_FLOATS:
            value = getattr(self, key)
            if value is not None and value <= 0:
                raise ConfigurationError(f"{key} must be > 0 when set")

    @classmethod
    def from_mapping(cls, section: Optional[Mapping[str, Any]] = None,
                     env_prefix: Optional[str] = ENV_PREFIX) -> 'EngineSettings':
        """默认值 -> engine 段 -> 环境变量"""
        if section is not None and not isinstance(section, Mapping):
            raise ConfigurationError("'engine' section must be a mapping")
        flat = flatten_engine_section(section)
        unknown = set(flat) - set(DEFAULT_ENGINE_CONFIG)
        if unknown:
            raise ConfigurationError(f"unknown engine settings: {sorted(unknown)}")
        merged = merge_configs(DEFAULT_ENGINE_CONFIG, flat)
        if env_prefix:
            merged = get_config_with_env_override(merged, env_prefix)
        try:
            return cls(
                cache_max_entries=int(merged['cache_max_entries']),
                cache_success_ttl=_optional_float(merged['cache_success_ttl']),
                cache_failure_ttl=float(merged['cache_failure_ttl']),
                cache_wait_timeout=float(merged['cache_wait_timeout']),
                record_workers=int(merged['record_workers']),
                scorer_workers=int(merged['scorer_workers']),
                batch_deadline_seconds=_optional_float(merged['batch_deadline_seconds']),
                log_level=str(merged['log_level']).upper(),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"invalid engine settings: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
