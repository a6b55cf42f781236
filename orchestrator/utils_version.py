from __future__ import annotations
import re
from typing import Tuple

_NUMERIC = re.compile(r'\d+')


def parse_version(v: str) -> Tuple[int, int, int]:
    """'1.2.3' / 'v1.2' / '2.0.0+3f9a1c' -> (major, minor, patch)

    '+' 之后的构建标签（缓存版本的配置哈希）不参与比较；无法识别的段按 0 处理。
    """
    core = str(v or '0.0.0').strip().lstrip('vV').split('+', 1)[0]
    nums = []
    for part in core.split('.')[:3]:
        m = _NUMERIC.match(part)
        nums.append(int(m.group()) if m else 0)
    while len(nums) < 3:
        nums.append(0)
    return tuple(nums)  # type: ignore
