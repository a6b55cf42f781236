"""
词典情感评分器
==============

kind = "lexicon_sentiment"：对文本特征做基于规则的情感打分，取值 [-1, 1]。

规则：
- 正/负向词典命中记 +1 / -1
- 否定词在 negation_window 个情感词内翻转极性；连续两个否定相互抵消；"not only" / "not without" 不构成否定
- 情感词前两个 token 内的 booster / dampener 调整强度（下限 0）
- 转折词 (but / however ...) 之后 contrastive_window 个情感词强度 x1.2
- 逐句处理，句间重置上下文
- 多词短语额外加减分 (phrases)
- 归一化 s / sqrt(s^2 + alpha)

置信度 = max(0.1, min(|s|*2, 1) * min(词数/10, 1))，>= high 取 high，否则不超过 medium。
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Mapping

from orchestrator import register_scorer
from orchestrator.errors import ConfigurationError, ScoringError
from ..models import FeatureVector, MetricDefinition, MetricResult

logger = logging.getLogger(__name__)

DEFAULT_POSITIVE_WORDS = frozenset({
    'good', 'great', 'excellent', 'amazing', 'awesome', 'fantastic', 'wonderful', 'love', 'loved', 'like',
    'happy', 'pleased', 'best', 'better', 'nice', 'helpful', 'reliable', 'fast', 'easy', 'clear',
    'recommend', 'impressive', 'perfect', 'satisfied', 'enjoy', 'enjoyed', 'brilliant', 'useful',
    'smooth', 'friendly', 'positive', 'superb', 'efficient', 'accurate', 'valuable',
})

DEFAULT_NEGATIVE_WORDS = frozenset({
    'bad', 'terrible', 'awful', 'horrible', 'poor', 'worst', 'worse', 'hate', 'hated', 'slow',
    'broken', 'buggy', 'useless', 'disappointing', 'disappointed', 'disappointment', 'confusing', 'difficult',
    'annoying', 'angry', 'sad', 'unhappy', 'fail', 'failed', 'failure', 'problem', 'problems',
    'crash', 'crashes', 'unreliable', 'negative', 'wrong', 'expensive', 'unresponsive', 'frustrating',
})

DEFAULT_BOOSTERS: Dict[str, float] = {
    'extremely': 0.30, 'very': 0.29, 'really': 0.27, 'highly': 0.27, 'so': 0.25, 'totally': 0.25,
    'completely': 0.25, 'utterly': 0.25, 'absolutely': 0.25, 'incredibly': 0.30, 'too': 0.20,
}

DEFAULT_DAMPENERS: Dict[str, float] = {
    'slightly': -0.29, 'somewhat': -0.27, 'bit': -0.25, 'little': -0.25, 'mildly': -0.25,
    'rather': -0.20, 'fairly': -0.20, 'kinda': -0.20, 'quite': -0.15, 'average': -0.10,
}

DEFAULT_PHRASES: Dict[str, float] = {
    'waste of time': -1.5,
    'poorly communicated': -1.0,
    'customer support unresponsive': -1.2,
    'fell apart': -1.2,
    'not good': -0.8,
    'worth recommending': 0.6,
    'hard to believe': -0.8,
    'total disappointment': -1.5,
    'more bugs than it fixed': -1.3,
    'performance has drastically worsened': -1.4,
}

DEFAULT_CONTRASTIVES = frozenset({'but', 'however', 'though', 'yet'})

DEFAULT_NEGATIONS = frozenset({
    'not', 'no', 'never', 'none', 'nobody', 'nothing', 'neither', 'nowhere', 'hardly', 'scarcely', 'barely',
    'isnt', "isn't", 'arent', "aren't", 'wasnt', "wasn't", 'werent', "weren't", 'dont', "don't", 'doesnt',
    "doesn't", 'didnt', "didn't", 'cant', "can't", 'cannot', 'couldnt', "couldn't", 'wont', "won't",
    'wouldnt', "wouldn't", 'shouldnt', "shouldn't", 'hasnt', "hasn't", 'havent', "haven't", 'hadnt', "hadn't",
})

CONTRASTIVE_MODIFIER = 1.2

_SENTENCES = re.compile(r'(?<=[.!?])\s+')
_TOKENS = re.compile(r"[^\w']+")


@dataclass(frozen=True)
class SentimentRules:
    positive: FrozenSet[str] = DEFAULT_POSITIVE_WORDS
    negative: FrozenSet[str] = DEFAULT_NEGATIVE_WORDS
    boosters: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_BOOSTERS))
    dampeners: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_DAMPENERS))
    phrases: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_PHRASES))
    negations: FrozenSet[str] = DEFAULT_NEGATIONS
    contrastives: FrozenSet[str] = DEFAULT_CONTRASTIVES
    negation_window: int = 3
    contrastive_window: int = 10
    normalization_alpha: float = 15.0
    normalize_hyphens: bool = True

    @classmethod
    def from_params(cls, definition: MetricDefinition) -> 'SentimentRules':
        p = definition.params

        def words(key: str, default: FrozenSet[str]) -> FrozenSet[str]:
            raw = p.get(key)
            return default if raw is None else frozenset(str(w).lower() for w in raw)

        def weights(key: str, default: Mapping[str, float]) -> Dict[str, float]:
            raw = p.get(key)
            if raw is None:
                return dict(default)
            if not isinstance(raw, Mapping):
                raise ConfigurationError(f"metric '{definition.name}': {key} must be a mapping")
            return {str(k).lower(): float(v) for k, v in raw.items()}

        rules = cls(
            positive=words('positive_words', DEFAULT_POSITIVE_WORDS),
            negative=words('negative_words', DEFAULT_NEGATIVE_WORDS),
            boosters=weights('boosters', DEFAULT_BOOSTERS),
            dampeners=weights('dampeners', DEFAULT_DAMPENERS),
            phrases=weights('phrases', DEFAULT_PHRASES),
            negations=words('negations', DEFAULT_NEGATIONS),
            contrastives=words('contrastives', DEFAULT_CONTRASTIVES),
            negation_window=int(p.get('negation_window', 3)),
            contrastive_window=int(p.get('contrastive_window', 10)),
            normalization_alpha=float(p.get('normalization_alpha', 15.0)),
            normalize_hyphens=bool(p.get('normalize_hyphens', True)),
        )
        if rules.normalization_alpha <= 0:
            raise ConfigurationError(f"metric '{definition.name}': normalization_alpha must be > 0")
        both = rules.positive & rules.negative
        if both:
            logger.warning(f"⚠️ 情感词同时出现在正负词典中，将被忽略: {sorted(both)}")
        return rules


class _Context:
    __slots__ = ('negation_active', 'negation_window', 'after_contrastive', 'contrastive_countdown')

    def __init__(self):
        self.negation_active = False
        self.negation_window = 0
        self.after_contrastive = False
        self.contrastive_countdown = 0


class SentimentAnalyzer:
    """无状态情感计算（规则只读，可被多线程共享）"""

    def __init__(self, rules: SentimentRules):
        self.rules = rules

    def tokenize(self, text: str) -> List[str]:
        if self.rules.normalize_hyphens:
            text = text.replace('-', ' ')
        return [t for t in _TOKENS.split(text.strip().lower()) if t]

    def raw_score(self, text: str) -> float:
        """加权情感和（归一化前）"""
        total = self._phrase_adjustment(text)
        for sentence in _SENTENCES.split(text):
            if sentence.strip():
                total += self._sentence_sum(self.tokenize(sentence))
        return total

    def score(self, text: str) -> float:
        if not text or not text.strip() or not self.tokenize(text):
            return 0.0
        s = self.raw_score(text)
        return s / math.sqrt(s * s + self.rules.normalization_alpha)

    def _phrase_adjustment(self, text: str) -> float:
        lowered = text.lower()
        return sum(w for phrase, w in self.rules.phrases.items() if phrase in lowered)

    def _sentence_sum(self, tokens: List[str]) -> float:
        rules = self.rules
        ctx = _Context()
        total = 0.0
        for i, token in enumerate(tokens):
            if token in rules.contrastives:
                ctx.after_contrastive = True
                ctx.contrastive_countdown = rules.contrastive_window
                continue
            self._update_negation(token, i, tokens, ctx)

            positive = token in rules.positive
            negative = token in rules.negative
            if not positive and not negative:
                continue
            if positive and negative:
                valence = 0.0
            else:
                valence = 1.0 if positive else -1.0
                if ctx.negation_active:
                    valence = -valence
            total += valence * self._modifier(tokens, i, ctx)

            if ctx.negation_window > 0:
                ctx.negation_window -= 1
                if ctx.negation_window == 0:
                    ctx.negation_active = False
        return total

    def _update_negation(self, token: str, i: int, tokens: List[str], ctx: _Context) -> None:
        nxt = tokens[i + 1] if i + 1 < len(tokens) else None
        if token == 'not' and nxt in ('only', 'without'):
            ctx.negation_active = False
            ctx.negation_window = 0
            return
        if token in self.rules.negations:
            if ctx.negation_active:
                ctx.negation_active = False
                ctx.negation_window = 0
            else:
                ctx.negation_active = True
                ctx.negation_window = self.rules.negation_window

    def _modifier(self, tokens: List[str], i: int, ctx: _Context) -> float:
        modifier = 1.0
        for prev in tokens[max(0, i - 2):i]:
            if prev in self.rules.boosters:
                modifier += abs(self.rules.boosters[prev])
            if prev in self.rules.dampeners:
                modifier -= abs(self.rules.dampeners[prev])
        modifier = max(0.0, modifier)
        if ctx.after_contrastive:
            modifier *= CONTRASTIVE_MODIFIER
            if ctx.contrastive_countdown > 0:
                ctx.contrastive_countdown -= 1
                if ctx.contrastive_countdown == 0:
                    ctx.after_contrastive = False
        return modifier


@register_scorer('lexicon_sentiment', version='1.0.0', tags=['text'])
class LexiconSentimentScorer:
    """Rule-based lexicon sentiment in [-1, 1]"""

    def __init__(self, definition: MetricDefinition):
        self.definition = definition
        params = definition.params
        self.field = params.get('field') or (definition.inputs[0] if definition.inputs else None)
        if not self.field:
            raise ConfigurationError(f"metric '{definition.name}': lexicon_sentiment needs a text field")
        self.analyzer = SentimentAnalyzer(SentimentRules.from_params(definition))
        self.positive_threshold = float(params.get('positive_threshold', 0.1))
        self.negative_threshold = float(params.get('negative_threshold', -0.1))
        self.high_confidence = float(params.get('high_confidence', 0.8))
        self.medium_confidence = float(params.get('medium_confidence', 0.6))
        if self.negative_threshold > self.positive_threshold:
            raise ConfigurationError(f"metric '{definition.name}': negative_threshold > positive_threshold")

    def label(self, value: float) -> str:
        if value > self.positive_threshold:
            return 'POSITIVE'
        if value < self.negative_threshold:
            return 'NEGATIVE'
        return 'NEUTRAL'

    def confidence(self, value: float, word_count: int) -> float:
        base = min(abs(value) * 2.0, 1.0)
        length_factor = min(word_count / 10.0, 1.0)
        conf = max(0.1, base * length_factor)
        if conf >= self.high_confidence:
            return self.high_confidence
        return min(conf, self.medium_confidence)

    def score(self, features: FeatureVector, upstream) -> MetricResult:
        text = features.require(self.field)
        if not isinstance(text, str):
            raise ScoringError(f"feature '{self.field}' is not text", code='invalid_input')
        words = len(text.split())
        if words == 0:
            raise ScoringError(f"text field '{self.field}' is empty", code='empty_text')
        value = self.analyzer.score(text)
        return MetricResult.success(
            self.definition.name, value, version=self.definition.version,
            confidence=self.confidence(value, words), label=self.label(value),
            details={'raw_score': self.analyzer.raw_score(text), 'word_count': words},
        )
