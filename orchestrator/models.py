from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple


@dataclass(frozen=True)
class ScorerRegistration:
    """轻量评分器注册模型 (不可变，便于缓存/哈希)

    kind:        评分器类型名 (statistical / model / derived / ...)，对应 MetricDefinition.kind
    version:     实现版本号 (参与缓存键的有效版本计算)
    factory:     评分器类，调用 factory(definition) 得到实例
    deprecated:  是否弃用
    priority:    default 策略下越大越先被选中
    tags:        标签
    description: 描述 (默认取类 docstring 首行)
    module_path: 源模块路径
    """

    kind: str
    version: str = "1.0.0"
    factory: Optional[Callable] = None
    description: str = ""
    tags: Tuple[str, ...] = tuple()
    deprecated: bool = False
    priority: int = 0
    module_path: str = ""
    registered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def full_key(self) -> str:
        return f"{self.kind}::{self.version}"
