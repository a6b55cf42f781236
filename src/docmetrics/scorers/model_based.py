"""
模型评分器
==========

kind = "model"：包装预训练的 scikit-learn 估计器（引擎内不训练）。

params:
    model / model_name   joblib 文件路径，或通过 ModelStore.register 预先注册的名字
    task                 classifier | clusterer | regressor
    categories           {feature: [level, ...]}，类别特征按声明顺序 one-hot 编码
    positive_label       (classifier) 取该类别的概率作为 value；缺省取预测类别的概率
    confidence           (regressor) 固定置信度，默认 1.0

输出：
- classifier: value = 概率，label = 预测类别，confidence = top1 - top2
- clusterer:  value = 到最近质心的距离，label = 簇编号，confidence = 1 - d1 / d2
- regressor:  value = 预测值

未见过的类别、NaN、非有限输出 -> ScoringError。
模型在构造期加载一次，由 ModelStore 在进程内共享且只读。
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import joblib
import numpy as np

from orchestrator import register_scorer
from orchestrator.errors import ConfigurationError, ScoringError
from ..models import FeatureVector, MetricDefinition, MetricResult
from .base import ensure_finite, numeric_feature

logger = logging.getLogger(__name__)

TASKS = ('classifier', 'clusterer', 'regressor')


class ModelStore:
    """预训练模型仓库（线程安全单例）

    - load(path): joblib 加载，同一路径只加载一次
    - register(name, model): 注册内存中的已训练模型
    """

    _instance: Optional['ModelStore'] = None
    _lock = threading.Lock()

    def __init__(self):
        self._models: Dict[str, Any] = {}
        self._models_lock = threading.Lock()
        self.load_count = 0

    @classmethod
    def get(cls) -> 'ModelStore':
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        with cls._lock:
            cls._instance = None

    def register(self, name: str, model: Any) -> None:
        with self._models_lock:
            self._models[name] = model
        logger.info(f"📦 模型已注册: {name} ({type(model).__name__})")

    def load(self, path: str) -> Any:
        key = str(Path(path).expanduser().resolve())
        with self._models_lock:
            if key in self._models:
                return self._models[key]
            if not Path(key).exists():
                raise ConfigurationError(f"model file not found: {path}")
            try:
                model = joblib.load(key)
            except Exception as e:
                raise ConfigurationError(f"failed to load model {path}: {e}") from e
            self._models[key] = model
            self.load_count += 1
        logger.info(f"📦 模型已加载: {key} ({type(model).__name__})")
        return model

    def resolve(self, name: Optional[str] = None, path: Optional[str] = None) -> Any:
        if name is not None:
            with self._models_lock:
                if name not in self._models:
                    raise ConfigurationError(f"model '{name}' not registered in ModelStore")
                return self._models[name]
        if path is not None:
            return self.load(path)
        raise ConfigurationError("either 'model' (path) or 'model_name' is required")

    def __contains__(self, name: str) -> bool:
        return name in self._models

    def __len__(self) -> int:
        return len(self._models)


class FeatureEncoder:
    """FeatureVector -> 模型输入行 (1, n_features)"""

    def __init__(self, definition: MetricDefinition):
        self.inputs: Tuple[str, ...] = definition.inputs
        raw = definition.params.get('categories') or {}
        unknown = set(raw) - set(self.inputs)
        if unknown:
            raise ConfigurationError(f"metric '{definition.name}': categories for undeclared inputs {sorted(unknown)}")
        self.categories: Dict[str, Tuple[str, ...]] = {k: tuple(str(v) for v in levels) for k, levels in raw.items()}
        for name, levels in self.categories.items():
            if not levels:
                raise ConfigurationError(f"metric '{definition.name}': categories for '{name}' are empty")

    @property
    def width(self) -> int:
        return sum(len(self.categories[n]) if n in self.categories else 1 for n in self.inputs)

    def encode(self, features: FeatureVector) -> np.ndarray:
        row: List[float] = []
        for name in self.inputs:
            if name in self.categories:
                level = str(features.require(name))
                levels = self.categories[name]
                if level not in levels:
                    raise ScoringError(f"unseen category '{level}' for feature '{name}'", code='unseen_category')
                row.extend(1.0 if level == lv else 0.0 for lv in levels)
            else:
                row.append(numeric_feature(features, name))
        return np.asarray(row, dtype=float).reshape(1, -1)


@register_scorer('model', version='1.0.0', tags=['sklearn'])
class ModelBasedScorer:
    """Pre-fitted scikit-learn classifier / clusterer / regressor"""

    def __init__(self, definition: MetricDefinition, store: Optional[ModelStore] = None):
        self.definition = definition
        params = definition.params
        if not definition.inputs:
            raise ConfigurationError(f"metric '{definition.name}': model scorer needs inputs")
        self.task = str(params.get('task', 'classifier'))
        if self.task not in TASKS:
            raise ConfigurationError(f"metric '{definition.name}': unknown model task '{self.task}'")

        store = store or ModelStore.get()
        self.model = store.resolve(name=params.get('model_name'), path=params.get('model'))
        self.encoder = FeatureEncoder(definition)
        self._validate_model()

        self.positive_index: Optional[int] = None
        if self.task == 'classifier' and params.get('positive_label') is not None:
            classes = [str(c) for c in self.model.classes_]
            label = str(params['positive_label'])
            if label not in classes:
                raise ConfigurationError(f"metric '{definition.name}': positive_label '{label}' not in {classes}")
            self.positive_index = classes.index(label)
        self.fixed_confidence = float(params.get('confidence', 1.0))

    def _validate_model(self) -> None:
        name = self.definition.name
        required = {
            'classifier': ('predict_proba', 'classes_'),
            'clusterer': ('cluster_centers_',),
            'regressor': ('predict',),
        }[self.task]
        missing = [attr for attr in required if not hasattr(self.model, attr)]
        if missing:
            raise ConfigurationError(
                f"metric '{name}': {type(self.model).__name__} lacks {missing} required for task '{self.task}'")
        expected = getattr(self.model, 'n_features_in_', None)
        if self.task == 'clusterer':
            expected = np.asarray(self.model.cluster_centers_).shape[1]
        if expected is not None and int(expected) != self.encoder.width:
            raise ConfigurationError(
                f"metric '{name}': model expects {expected} features, inputs encode to {self.encoder.width}")

    def score(self, features: FeatureVector, upstream) -> MetricResult:
        x = self.encoder.encode(features)
        if self.task == 'classifier':
            value, label, confidence, details = self._classify(x)
        elif self.task == 'clusterer':
            value, label, confidence, details = self._cluster(x)
        else:
            value = float(np.ravel(self.model.predict(x))[0])
            label, confidence, details = None, self.fixed_confidence, {}
        value = ensure_finite(value, self.definition.name)
        return MetricResult.success(self.definition.name, value, version=self.definition.version,
                                    confidence=confidence, label=label, details=details)

    def _classify(self, x: np.ndarray):
        proba = np.asarray(self.model.predict_proba(x))[0]
        if not np.all(np.isfinite(proba)):
            raise ScoringError("classifier produced non-finite probabilities", code='non_finite')
        order = np.argsort(proba)[::-1]
        top = int(order[0])
        confidence = float(proba[top] - proba[order[1]]) if len(order) > 1 else 1.0
        idx = self.positive_index if self.positive_index is not None else top
        label = str(self.model.classes_[top])
        details = {'probabilities': {str(c): float(p) for c, p in zip(self.model.classes_, proba)}}
        return float(proba[idx]), label, confidence, details

    def _cluster(self, x: np.ndarray):
        centers = np.asarray(self.model.cluster_centers_, dtype=float)
        distances = np.linalg.norm(centers - x, axis=1)
        order = np.argsort(distances)
        d1 = float(distances[order[0]])
        if len(order) > 1 and distances[order[1]] > 0:
            confidence = 1.0 - d1 / float(distances[order[1]])
        else:
            confidence = 1.0
        return d1, str(int(order[0])), confidence, {'distances': [float(d) for d in distances]}
