"""内置评分器

导入本包即完成全部内置 kind 的注册（statistical / readability / lexicon_sentiment / model / derived）。
"""
from .base import Scorer
from .statistical import StatisticalScorer
from .readability import ReadabilityScorer
from .sentiment import LexiconSentimentScorer, SentimentAnalyzer, SentimentRules
from .model_based import ModelBasedScorer, ModelStore
from .derived import DerivedScorer

__all__ = [
    'Scorer',
    'StatisticalScorer',
    'ReadabilityScorer',
    'LexiconSentimentScorer',
    'SentimentAnalyzer',
    'SentimentRules',
    'ModelBasedScorer',
    'ModelStore',
    'DerivedScorer',
]
