from .aggregator import AggregationConfig, Aggregator

__all__ = ['AggregationConfig', 'Aggregator']
