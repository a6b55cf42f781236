"""
文本统计
========

纯函数：词数、句数、段落数、字符数、平均句长、音节统计。
空文本（或仅空白）所有统计量均为 0。
"""

from __future__ import annotations

import re
from dataclasses import dataclass, asdict
from typing import Dict, List

_SENTENCE_SPLIT = re.compile(r'[.!?]+')
_PARAGRAPH_SPLIT = re.compile(r'\n\s*\n')
_NON_LETTERS = re.compile(r'[^a-z]')
_VOWEL_GROUPS = re.compile(r'[aeiouy]+')


@dataclass(frozen=True)
class TextStatistics:
    word_count: int = 0
    sentence_count: int = 0
    paragraph_count: int = 0
    char_count: int = 0
    char_count_no_spaces: int = 0
    avg_sentence_length: float = 0.0
    avg_syllables_per_word: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def split_words(text: str) -> List[str]:
    return text.split()


def count_sentences(text: str) -> int:
    return sum(1 for part in _SENTENCE_SPLIT.split(text) if part.strip())


def count_paragraphs(text: str) -> int:
    return sum(1 for part in _PARAGRAPH_SPLIT.split(text) if part.strip())


def count_syllables(word: str) -> int:
    """元音组计数法

    小写 -> 去掉非字母 -> 去掉词尾不发音的 e -> 统计 [aeiouy]+ 组数，至少为 1。
    不含字母的词（数字、符号）计 0 个音节，但仍计入词数。
    """
    cleaned = _NON_LETTERS.sub('', word.lower())
    if not cleaned:
        return 0
    if cleaned.endswith('e') and len(cleaned) > 1:
        cleaned = cleaned[:-1]
    return max(1, len(_VOWEL_GROUPS.findall(cleaned)))


def analyze_text(text: str) -> TextStatistics:
    if not text or not text.strip():
        return TextStatistics()

    words = split_words(text)
    word_count = len(words)
    sentence_count = count_sentences(text)
    syllables = sum(count_syllables(w) for w in words)

    return TextStatistics(
        word_count=word_count,
        sentence_count=sentence_count,
        paragraph_count=count_paragraphs(text),
        char_count=len(text),
        char_count_no_spaces=sum(1 for ch in text if not ch.isspace()),
        avg_sentence_length=(word_count / sentence_count) if sentence_count else 0.0,
        avg_syllables_per_word=(syllables / word_count) if word_count else 0.0,
    )
