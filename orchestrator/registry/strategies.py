from __future__ import annotations
from typing import List, Protocol, Optional
from ..models import ScorerRegistration
from ..errors import ScorerNotFound, RegistryStrategyError
from ..utils_version import parse_version


class SelectionStrategy(Protocol):
    def select(self, candidates: List[ScorerRegistration]) -> ScorerRegistration: ...


class DefaultStrategy:
    def select(self, candidates: List[ScorerRegistration]) -> ScorerRegistration:
        if not candidates:
            raise ScorerNotFound("no candidates")
        return max(candidates, key=lambda c: (c.priority, not c.deprecated, parse_version(c.version)))


class LatestVersionStrategy:
    def select(self, candidates: List[ScorerRegistration]) -> ScorerRegistration:
        if not candidates:
            raise ScorerNotFound("no candidates")
        return max(candidates, key=lambda c: (parse_version(c.version), -int(c.deprecated)))


class PinnedVersionStrategy:
    def __init__(self, version: str):
        self.version = version

    def select(self, candidates: List[ScorerRegistration]) -> ScorerRegistration:
        for c in candidates:
            if c.version == self.version:
                return c
        raise ScorerNotFound(f"implementation version {self.version} not found among candidates")


def resolve_strategy(name: str = 'default', *, version: Optional[str] = None) -> SelectionStrategy:
    """解析实现选择策略

    Args:
        name: 策略名称 ('default' | 'prefer_latest' | 'pinned')
        version: 固定的实现版本（仅当 name='pinned' 时使用）
    """
    if name == 'default':
        return DefaultStrategy()
    if name == 'prefer_latest':
        return LatestVersionStrategy()
    if name == 'pinned':
        if not version:
            raise RegistryStrategyError('pinned strategy requires version parameter')
        return PinnedVersionStrategy(version)
    raise RegistryStrategyError(f'unknown strategy: {name}')
