"""
特征抽取器
==========

FeatureExtractor.extract(record) -> FeatureVector

纯函数：输出只取决于记录字段值与静态 ExtractionConfig，同一指纹的记录总是得到相同的特征。

字段映射：
- NUMERIC      -> "<field>": float（拒绝 bool 与数字字符串；NaN 原样保留，由评分器拒绝）
- CATEGORICAL  -> "<field>": str（数值转为字符串）
- TEXT         -> "<field>": 原文 + "<field>.word_count" 等文本统计
"""

from __future__ import annotations

import logging
import numbers
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from orchestrator.errors import ConfigurationError, ExtractionError
from ..models import MISSING, FeatureVector, FieldSpec, FieldType, Record, RecordSchema
from .text_stats import analyze_text

logger = logging.getLogger(__name__)

TEXT_FEATURES: Tuple[str, ...] = (
    'word_count',
    'sentence_count',
    'paragraph_count',
    'char_count',
    'char_count_no_spaces',
    'avg_sentence_length',
    'avg_syllables_per_word',
)


@dataclass(frozen=True)
class ExtractionConfig:
    """静态抽取配置

    schema:          记录 Schema
    text_statistics: 是否为 TEXT 字段生成文本统计特征
    """
    schema: RecordSchema = RecordSchema()
    text_statistics: bool = True

    @classmethod
    def from_mapping(cls, section: Optional[Mapping[str, Any]]) -> 'ExtractionConfig':
        section = section or {}
        if not isinstance(section, Mapping):
            raise ConfigurationError("'extraction' section must be a mapping")
        return cls(
            schema=RecordSchema.from_config(section.get('fields') or []),
            text_statistics=bool(section.get('text_statistics', True)),
        )


class FeatureExtractor:
    """记录 -> 特征向量"""

    def __init__(self, config: Optional[ExtractionConfig] = None):
        self.config = config or ExtractionConfig()

    @property
    def schema(self) -> RecordSchema:
        return self.config.schema

    def feature_names(self) -> List[str]:
        """本配置下可能产生的全部特征名"""
        names: List[str] = []
        for spec in self.schema:
            names.append(spec.name)
            if spec.type is FieldType.TEXT and self.config.text_statistics:
                names.extend(f"{spec.name}.{stat}" for stat in TEXT_FEATURES)
        return names

    def extract(self, record: Record) -> FeatureVector:
        """抽取特征

        Raises:
            ExtractionError: 必填字段缺失或类型错误；携带字段问题列表与部分特征向量
        """
        features: Dict[str, Any] = {}
        problems: List[tuple] = []

        for spec in self.schema:
            value = record.fields.get(spec.name, MISSING)
            if value is MISSING:
                if spec.required:
                    problems.append((spec.name, 'missing_field', f"required field '{spec.name}' is missing"))
                continue
            try:
                features.update(self._extract_field(spec, value))
            except TypeError as e:
                problems.append((spec.name, 'invalid_type', str(e)))

        vector = FeatureVector(fingerprint=record.fingerprint, features=features)
        if problems:
            fields = ', '.join(p[0] for p in problems)
            logger.debug(f"[extract] record={record.record_id} problems={problems}")
            raise ExtractionError(f"extraction failed for fields: {fields}", problems=problems, partial=vector)
        return vector

    def _extract_field(self, spec: FieldSpec, value: Any) -> Dict[str, Any]:
        if spec.type is FieldType.NUMERIC:
            if isinstance(value, bool) or not isinstance(value, numbers.Real):
                raise TypeError(f"field '{spec.name}' expects numeric, got {type(value).__name__}")
            return {spec.name: float(value)}

        if spec.type is FieldType.CATEGORICAL:
            if isinstance(value, bool) or not isinstance(value, (str, numbers.Real)):
                raise TypeError(f"field '{spec.name}' expects categorical, got {type(value).__name__}")
            return {spec.name: str(value)}

        if not isinstance(value, str):
            raise TypeError(f"field '{spec.name}' expects text, got {type(value).__name__}")
        out: Dict[str, Any] = {spec.name: value}
        if self.config.text_statistics:
            stats = analyze_text(value).to_dict()
            for stat in TEXT_FEATURES:
                out[f"{spec.name}.{stat}"] = float(stats[stat])
        return out
