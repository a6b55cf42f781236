import pytest

from orchestrator.errors import ConfigurationError
from docmetrics.models import MetricDefinition, MetricResult, Record, ReportError, ReportStatus
from docmetrics.scoring.aggregator import AggregationConfig, Aggregator

DEFINITIONS = [
    MetricDefinition("A", "statistical", weight=0.5),
    MetricDefinition("B", "statistical", weight=0.3),
    MetricDefinition("C", "statistical", weight=0.2),
]
RECORD = Record({"x": 1}, record_id="r")


def ok(name, value, confidence=1.0):
    return MetricResult.success(name, value, version="1", confidence=confidence)


def bad(name):
    return MetricResult.failed(name, version="1", code="nan_input", message="NaN")


def test_renormalizes_when_a_weighted_metric_fails():
    aggregator = Aggregator(DEFINITIONS)
    report = aggregator.aggregate(RECORD, {"A": ok("A", 0.8), "B": bad("B"), "C": ok("C", 0.4)})

    assert report.composite == pytest.approx(0.8 * 0.5 / 0.7 + 0.4 * 0.2 / 0.7)
    assert report.status is ReportStatus.PARTIAL
    assert report.failed_metrics == ["B"]
    assert report.errors == (ReportError(scope="metric", code="nan_input", message="NaN", metric="B"),)
    assert report.confidence == pytest.approx(0.7)


def test_zero_fill_policy():
    aggregator = Aggregator(DEFINITIONS, AggregationConfig(policy="zero_fill"))
    report = aggregator.aggregate(RECORD, {"A": ok("A", 0.8), "B": bad("B"), "C": ok("C", 0.4)})
    assert report.composite == pytest.approx(0.48)


def test_all_succeeded_is_complete():
    report = Aggregator(DEFINITIONS).aggregate(RECORD, {"A": ok("A", 1), "B": ok("B", 1), "C": ok("C", 1)})
    assert report.status is ReportStatus.COMPLETE
    assert report.composite == pytest.approx(1.0)
    assert report.record_id == "r"
    assert report.fingerprint == RECORD.fingerprint


def test_record_error_makes_report_partial():
    results = {"A": ok("A", 1), "B": ok("B", 1), "C": ok("C", 1)}
    errors = [ReportError(scope="record", code="missing_field", message="rating")]
    report = Aggregator(DEFINITIONS).aggregate(RECORD, results, errors)
    assert report.status is ReportStatus.PARTIAL
    assert report.errors[0].scope == "record"


def test_all_failed():
    report = Aggregator(DEFINITIONS).aggregate(RECORD, {"A": bad("A"), "B": bad("B"), "C": bad("C")})
    assert report.status is ReportStatus.FAILED
    assert report.composite is None
    assert report.confidence == 0.0


def test_missing_results_are_reported_as_not_computed():
    report = Aggregator(DEFINITIONS).aggregate(RECORD, {"A": ok("A", 1)})
    assert report.results["B"].failure.code == "not_computed"
    assert list(report.results) == ["A", "B", "C"]


def test_zero_weight_metrics_do_not_contribute():
    definitions = DEFINITIONS + [MetricDefinition("D", "derived", depends_on=("A",), weight=0)]
    results = {"A": ok("A", 1), "B": ok("B", 1), "C": ok("C", 1), "D": ok("D", 100)}
    assert Aggregator(definitions).aggregate(RECORD, results).composite == pytest.approx(1.0)


def test_unweighted_confidence_is_the_mean():
    definitions = [MetricDefinition("A", "statistical", weight=0), MetricDefinition("B", "statistical", weight=0)]
    report = Aggregator(definitions).aggregate(RECORD, {"A": ok("A", 1, 0.6), "B": bad("B")})
    assert report.composite is None
    assert report.confidence == pytest.approx(0.3)


def test_override_rule_forces_composite():
    config = AggregationConfig.from_mapping({
        "overrides": [{"metric": "A", "op": "<", "value": 0.2, "composite": 0.0}],
    })
    aggregator = Aggregator(DEFINITIONS, config)
    forced = aggregator.aggregate(RECORD, {"A": ok("A", 0.1), "B": ok("B", 1), "C": ok("C", 1)})
    assert forced.composite == 0.0
    normal = aggregator.aggregate(RECORD, {"A": ok("A", 0.9), "B": ok("B", 1), "C": ok("C", 1)})
    assert normal.composite > 0.9


@pytest.mark.parametrize("section", [
    {"policy": "average"},
    {"overrides": [{"metric": "A", "op": "<"}]},
    {"overrides": [{"metric": "A", "op": "~", "value": 1, "composite": 0}]},
    {"overrides": [{"metric": "Z", "op": "<", "value": 1, "composite": 0}]},
])
def test_invalid_aggregation_config(section):
    with pytest.raises(ConfigurationError):
        Aggregator(DEFINITIONS, AggregationConfig.from_mapping(section))


def test_report_to_dict():
    report = Aggregator(DEFINITIONS).aggregate(RECORD, {"A": ok("A", 0.8), "B": bad("B"), "C": ok("C", 0.4)})
    data = report.to_dict()
    assert data["status"] == "partial"
    assert data["results"]["B"]["failure"]["code"] == "nan_input"
    assert data["errors"][0]["metric"] == "B"
