from .extractor import ExtractionConfig, FeatureExtractor, TEXT_FEATURES
from .text_stats import TextStatistics, analyze_text, count_syllables

__all__ = [
    'ExtractionConfig',
    'FeatureExtractor',
    'TEXT_FEATURES',
    'TextStatistics',
    'analyze_text',
    'count_syllables',
]
