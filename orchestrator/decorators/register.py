from __future__ import annotations
from typing import Optional, List


def register_scorer(
    kind: str,
    version: str = "1.0.0",
    priority: int = 0,
    deprecated: bool = False,
    tags: Optional[List[str]] = None,
    description: str = ""
):
    """
    Decorator to register a scorer class with the ScorerRegistry.

    The decorated class is constructed as ``cls(definition)`` and must expose
    ``score(features, upstream) -> MetricResult``.
    """
    def decorator(cls):
        # Lazy import to avoid circular dependency
        from ..registry.registry import ScorerRegistry
        from ..models import ScorerRegistration

        doc = description or (cls.__doc__ or "").strip().split("\n")[0]
        reg = ScorerRegistration(
            kind=kind,
            version=version,
            factory=cls,
            description=doc.strip(),
            tags=tuple(tags or []),
            deprecated=deprecated,
            priority=priority,
            module_path=cls.__module__,
        )
        ScorerRegistry.get().register(reg)
        cls._scorer_registration = reg
        cls.scorer_kind = kind
        cls.scorer_impl_version = version
        return cls
    return decorator
