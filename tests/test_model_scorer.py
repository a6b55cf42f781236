import numpy as np
import pytest
from sklearn.linear_model import LogisticRegression

from orchestrator.errors import ConfigurationError, ScoringError
from docmetrics.models import FeatureVector, MetricDefinition
from docmetrics.scorers.model_based import FeatureEncoder, ModelBasedScorer, ModelStore


def definition(inputs=("length",), **params):
    return MetricDefinition("model_metric", "model", inputs=inputs, params=params)


def test_classifier_probability_of_positive_label(classifier_path):
    scorer = ModelBasedScorer(definition(model=str(classifier_path), task="classifier", positive_label="high"))
    result = scorer.score(FeatureVector("fp", {"length": 12.0}), {})
    assert result.ok
    assert result.label == "high"
    assert result.value > 0.5
    assert 0.0 <= result.confidence <= 1.0
    assert set(result.details["probabilities"]) == {"high", "low"}

    low = scorer.score(FeatureVector("fp", {"length": 0.0}), {})
    assert low.label == "low"
    assert low.value < 0.5


def test_classifier_is_deterministic(classifier_path):
    scorer = ModelBasedScorer(definition(model=str(classifier_path)))
    fv = FeatureVector("fp", {"length": 5.0})
    assert scorer.score(fv, {}) == scorer.score(fv, {})


def test_model_loaded_once_and_shared(classifier_path):
    store = ModelStore.get()
    a = ModelBasedScorer(definition(model=str(classifier_path)))
    b = ModelBasedScorer(definition(model=str(classifier_path)))
    assert a.model is b.model
    assert store.load_count == 1


def test_clusterer_distance_and_label(clusterer_path):
    scorer = ModelBasedScorer(definition(inputs=("x", "y"), model=str(clusterer_path), task="clusterer"))
    result = scorer.score(FeatureVector("fp", {"x": 0.0, "y": 0.5}), {})
    assert result.label in {"0", "1"}
    assert result.value == pytest.approx(0.0)
    assert result.confidence == pytest.approx(1.0)

    far = scorer.score(FeatureVector("fp", {"x": 5.0, "y": 5.5}), {})
    assert far.value > 5.0
    assert far.confidence < 0.2


def test_regressor(regressor_path):
    scorer = ModelBasedScorer(definition(model=str(regressor_path), task="regressor", confidence=0.9))
    result = scorer.score(FeatureVector("fp", {"length": 2.0}), {})
    assert result.value == pytest.approx(5.0)
    assert result.confidence == pytest.approx(0.9)


def test_registered_model_with_categories():
    X = np.array([[1, 0, 0.0], [1, 0, 1.0], [0, 1, 5.0], [0, 1, 6.0]])
    y = np.array(["a", "a", "b", "b"])
    ModelStore.get().register("cat_model", LogisticRegression().fit(X, y))

    scorer = ModelBasedScorer(definition(inputs=("category", "length"), model_name="cat_model",
                                         categories={"category": ["x", "y"]}))
    result = scorer.score(FeatureVector("fp", {"category": "y", "length": 5.5}), {})
    assert result.label == "b"

    with pytest.raises(ScoringError) as info:
        scorer.score(FeatureVector("fp", {"category": "z", "length": 5.5}), {})
    assert info.value.code == "unseen_category"


def test_nan_input_rejected(classifier_path):
    scorer = ModelBasedScorer(definition(model=str(classifier_path)))
    with pytest.raises(ScoringError) as info:
        scorer.score(FeatureVector("fp", {"length": float("nan")}), {})
    assert info.value.code == "nan_input"


def test_encoder_width():
    enc = FeatureEncoder(definition(inputs=("c", "n"), categories={"c": ["a", "b", "c"]}))
    assert enc.width == 4
    row = enc.encode(FeatureVector("fp", {"c": "b", "n": 2.0}))
    assert row.tolist() == [[0.0, 1.0, 0.0, 2.0]]


def test_feature_width_mismatch(classifier_path):
    with pytest.raises(ConfigurationError):
        ModelBasedScorer(definition(inputs=("a", "b"), model=str(classifier_path)))


@pytest.mark.parametrize("params", [
    {"task": "ranker"},
    {"model_name": "unknown"},
    {"positive_label": "medium"},
])
def test_invalid_configuration(classifier_path, params):
    with pytest.raises(ConfigurationError):
        ModelBasedScorer(definition(model=str(classifier_path), **params))


def test_model_source_required():
    with pytest.raises(ConfigurationError):
        ModelBasedScorer(definition())


def test_missing_model_file(tmp_path):
    with pytest.raises(ConfigurationError):
        ModelBasedScorer(definition(model=str(tmp_path / "nope.joblib")))


def test_clusterer_needs_centers(regressor_path):
    with pytest.raises(ConfigurationError):
        ModelBasedScorer(definition(model=str(regressor_path), task="clusterer"))
