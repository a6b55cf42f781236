import copy
import os

import joblib
import numpy as np
import pytest
from sklearn.cluster import KMeans
from sklearn.linear_model import LinearRegression, LogisticRegression

from orchestrator import ScorerRegistry
from docmetrics.models import Record, RecordSchema
from docmetrics.scorers.model_based import ModelStore
from pipeline.core.services.hook_manager import HookManager


SAMPLE_CONFIG = {
    "engine": {
        "workers": {"records": 2, "scorers": 2},
        "log_level": "WARNING",
    },
    "extraction": {
        "fields": [
            {"name": "body", "type": "text"},
            {"name": "rating", "type": "numeric"},
            {"name": "category", "type": "categorical", "required": False},
        ],
    },
    "metrics": [
        {
            "name": "body_readability",
            "kind": "readability",
            "inputs": ["body"],
            "weight": 0.5,
            "params": {"normalize": True},
        },
        {
            "name": "rating_score",
            "kind": "statistical",
            "inputs": ["rating"],
            "weight": 0.3,
            "params": {"op": "minmax", "low": 0, "high": 5},
        },
        {
            "name": "body_sentiment",
            "kind": "lexicon_sentiment",
            "inputs": ["body"],
            "weight": 0.2,
        },
        {
            "name": "quality",
            "kind": "derived",
            "depends_on": ["body_readability", "rating_score"],
            "weight": 0,
            "params": {"op": "mean"},
        },
    ],
    "aggregation": {"policy": "renormalize"},
}


class FakeClock:
    """可手动推进的单调时钟"""

    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_singletons(monkeypatch):
    for key in list(os.environ):
        if key.startswith("DOCMETRICS_") or key.startswith("PIPELINE_"):
            monkeypatch.delenv(key, raising=False)
    ScorerRegistry.reset()
    HookManager.reset()
    ModelStore.reset()
    yield
    ScorerRegistry.reset()
    HookManager.reset()
    ModelStore.reset()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sample_config():
    return copy.deepcopy(SAMPLE_CONFIG)


@pytest.fixture
def schema():
    return RecordSchema.from_config(SAMPLE_CONFIG["extraction"]["fields"])


@pytest.fixture
def records():
    return [
        Record({"body": "The product is great. It works well!", "rating": 4.5}, record_id="r1"),
        Record({"body": "Setup was slow. The docs are clear, though.", "category": "tools"}, record_id="r2"),
        Record({"body": "I love it.\n\nIt is fast and easy to use.", "rating": 3}, record_id="r3"),
    ]


@pytest.fixture
def classifier_path(tmp_path):
    X = np.array([[0.0], [1.0], [2.0], [3.0], [10.0], [11.0], [12.0], [13.0]])
    y = np.array(["low"] * 4 + ["high"] * 4)
    model = LogisticRegression().fit(X, y)
    path = tmp_path / "classifier.joblib"
    joblib.dump(model, path)
    return path


@pytest.fixture
def clusterer_path(tmp_path):
    X = np.array([[0.0, 0.0], [0.0, 1.0], [10.0, 10.0], [10.0, 11.0]])
    model = KMeans(n_clusters=2, n_init=10, random_state=0).fit(X)
    path = tmp_path / "clusterer.joblib"
    joblib.dump(model, path)
    return path


@pytest.fixture
def regressor_path(tmp_path):
    X = np.array([[0.0], [1.0], [2.0], [3.0]])
    y = 2 * X.ravel() + 1
    model = LinearRegression().fit(X, y)
    path = tmp_path / "regressor.joblib"
    joblib.dump(model, path)
    return path
