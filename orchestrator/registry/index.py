from __future__ import annotations
from typing import Dict, List
from ..models import ScorerRegistration


class RegistryIndex:
    """评分器注册索引

    索引结构：
    - by_kind[kind][version] -> ScorerRegistration
    - by_full_key[full_key] -> ScorerRegistration

    full_key 格式: "kind::version"
    """

    def __init__(self) -> None:
        self.by_kind: Dict[str, Dict[str, ScorerRegistration]] = {}
        self.by_full_key: Dict[str, ScorerRegistration] = {}

    def add(self, reg: ScorerRegistration) -> None:
        """添加注册到索引"""
        self.by_kind.setdefault(reg.kind, {})[reg.version] = reg
        self.by_full_key[reg.full_key] = reg

    def candidates(self, kind: str) -> List[ScorerRegistration]:
        """获取某个 kind 的全部候选实现"""
        return list(self.by_kind.get(kind, {}).values())

    def kinds(self) -> List[str]:
        return sorted(self.by_kind.keys())

    def clear(self) -> None:
        """清空所有索引"""
        self.by_kind.clear()
        self.by_full_key.clear()
