import pytest

from orchestrator.errors import ConfigurationError, ScoringError
from docmetrics.models import FeatureVector, MetricDefinition, MetricResult
from docmetrics.scorers.derived import DerivedScorer

EMPTY = FeatureVector("fp", {})


def make(depends_on=("a", "b"), **params):
    return DerivedScorer(MetricDefinition("d", "derived", depends_on=depends_on, params=params))


def ok(name, value, confidence=1.0):
    return MetricResult.success(name, value, version="1", confidence=confidence)


def bad(name):
    return MetricResult.failed(name, version="1", code="nan_input")


@pytest.mark.parametrize("op,expected", [
    ("mean", 3.0),
    ("min", 2.0),
    ("max", 4.0),
    ("product", 8.0),
    ("difference", -2.0),
    ("ratio", 0.5),
])
def test_ops(op, expected):
    result = make(op=op).score(EMPTY, {"a": ok("a", 2.0), "b": ok("b", 4.0)})
    assert result.value == pytest.approx(expected)


def test_weighted_mean():
    scorer = make(op="weighted_mean", weights={"a": 3, "b": 1})
    assert scorer.score(EMPTY, {"a": ok("a", 1.0), "b": ok("b", 0.0)}).value == pytest.approx(0.75)


def test_confidence_propagation():
    upstream = {"a": ok("a", 1.0, 0.5), "b": ok("b", 1.0, 0.8)}
    assert make().score(EMPTY, upstream).confidence == pytest.approx(0.5)
    assert make(confidence="product").score(EMPTY, upstream).confidence == pytest.approx(0.4)
    assert make(confidence="mean").score(EMPTY, upstream).confidence == pytest.approx(0.65)


def test_upstream_failure_is_strict_by_default():
    with pytest.raises(ScoringError) as info:
        make().score(EMPTY, {"a": ok("a", 1.0), "b": bad("b")})
    assert info.value.code == "upstream_failed"


def test_missing_upstream_counts_as_failed():
    with pytest.raises(ScoringError) as info:
        make().score(EMPTY, {"a": ok("a", 1.0)})
    assert info.value.code == "upstream_failed"


def test_allow_partial_uses_available_upstream():
    result = make(allow_partial=True).score(EMPTY, {"a": ok("a", 1.0), "b": bad("b")})
    assert result.value == pytest.approx(1.0)
    assert result.details["upstream"] == ["a"]


def test_allow_partial_still_fails_when_nothing_succeeded():
    with pytest.raises(ScoringError):
        make(allow_partial=True).score(EMPTY, {"a": bad("a"), "b": bad("b")})


def test_ratio_division_by_zero():
    with pytest.raises(ScoringError) as info:
        make(op="ratio").score(EMPTY, {"a": ok("a", 1.0), "b": ok("b", 0.0)})
    assert info.value.code == "division_by_zero"


def test_rules():
    scorer = make(depends_on=("a",), op="rules", default=0.0, rules=[
        {"metric": "a", "op": ">=", "value": 0.8, "then": 1.0},
        {"metric": "a", "op": ">=", "value": 0.5, "then": 0.5},
    ])
    assert scorer.score(EMPTY, {"a": ok("a", 0.9)}).value == 1.0
    assert scorer.score(EMPTY, {"a": ok("a", 0.6)}).value == 0.5
    assert scorer.score(EMPTY, {"a": ok("a", 0.1)}).value == 0.0


def test_rules_without_default():
    scorer = make(depends_on=("a",), op="rules", rules=[{"metric": "a", "op": ">", "value": 1, "then": 1}])
    with pytest.raises(ScoringError) as info:
        scorer.score(EMPTY, {"a": ok("a", 0.0)})
    assert info.value.code == "no_rule_matched"


@pytest.mark.parametrize("depends_on,params", [
    ((), {}),
    (("a", "b"), {"op": "median"}),
    (("a", "b", "c"), {"op": "ratio"}),
    (("a", "b"), {"op": "weighted_mean", "weights": {"a": 1}}),
    (("a", "b"), {"confidence": "max"}),
    (("a",), {"op": "rules", "rules": [{"metric": "z", "op": ">", "value": 0, "then": 1}]}),
    (("a",), {"op": "rules", "rules": [{"metric": "a", "op": "~", "value": 0, "then": 1}]}),
])
def test_invalid_configuration(depends_on, params):
    with pytest.raises(ConfigurationError):
        make(depends_on=depends_on, **params)
