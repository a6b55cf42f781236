import copy
import threading
from pathlib import Path

import pytest

from orchestrator import register_scorer
from orchestrator.errors import BatchError, ConfigurationError
from docmetrics.features.extractor import ExtractionConfig, FeatureExtractor
from docmetrics.models import CacheKey, MetricResult, Record, ReportStatus
from pipeline import PipelineOrchestrator
from pipeline.core.context import BatchState
from pipeline.core.metric_registry import MetricRegistry
from pipeline.core.services.hook_manager import HookManager

EXAMPLE_CONFIG = Path(__file__).resolve().parent.parent / "config" / "metrics.example.yaml"


@pytest.fixture
def orchestrator(sample_config):
    orch = PipelineOrchestrator.from_config(sample_config)
    yield orch
    orch.close()


def test_batch_with_missing_required_field(orchestrator, records):
    result = orchestrator.run(records)

    assert result.state is BatchState.DONE
    assert [r.record_id for r in result.reports] == ["r1", "r2", "r3"]
    assert [r.status for r in result.reports] == [
        ReportStatus.COMPLETE, ReportStatus.PARTIAL, ReportStatus.COMPLETE,
    ]

    partial = result.reports[1]
    assert partial.results["rating_score"].failure.code == "missing_feature"
    assert partial.results["quality"].failure.code == "upstream_failed"
    assert partial.results["body_readability"].ok
    assert partial.errors[0].scope == "record"
    assert partial.errors[0].code == "missing_field"
    assert partial.composite is not None

    assert dict(result.summary.reports_by_status) == {"complete": 2, "partial": 1, "failed": 0}
    assert {f.index for f in result.failures} == {1}
    assert len(result.failures) == 3
    assert result.summary.metrics_succeeded == 10
    assert result.summary.metrics_failed == 2


def test_second_run_is_served_from_cache(orchestrator, records):
    first = orchestrator.run(records)
    second = orchestrator.run(records)

    assert first.summary.scorer_invocations == 12
    assert second.summary.scorer_invocations == 0
    assert second.summary.cache_hit_ratio == 1.0
    assert second.reports == first.reports


def test_duplicate_records_in_one_batch_compute_once(orchestrator, records):
    result = orchestrator.run([records[0], records[0]])
    assert result.summary.scorer_invocations == 4
    assert result.reports[0] == result.reports[1]


def test_output_order_matches_input_order(orchestrator):
    batch = [
        Record({"body": f"Report number {i} is good.", "rating": i % 6}, record_id=f"id-{i}")
        for i in range(20)
    ]
    result = orchestrator.run(batch)

    assert [r.record_id for r in result.reports] == [r.record_id for r in batch]
    assert [r.fingerprint for r in result.reports] == [r.fingerprint for r in batch]
    for i, report in enumerate(result.reports):
        assert report.value("rating_score") == pytest.approx((i % 6) / 5)


def test_plain_mappings_are_accepted(orchestrator):
    result = orchestrator.run([{"body": "Nice and clear.", "rating": 5}])
    assert result.reports[0].status is ReportStatus.COMPLETE


def test_metric_order_in_report_follows_dependencies(orchestrator, records):
    report = orchestrator.run(records[:1]).reports[0]
    assert list(report.results) == list(orchestrator.registry.names())
    assert report.value("quality") == pytest.approx(
        (report.value("body_readability") + report.value("rating_score")) / 2)


def test_expired_deadline_skips_all_work(orchestrator, records):
    result = orchestrator.run(records, deadline=0)

    assert result.cancelled
    assert result.summary.scorer_invocations == 0
    for report in result.reports:
        assert report.cancelled
        assert {r.failure.code for r in report.results.values()} == {"deadline_exceeded"}
    assert len(orchestrator.cache) == 0


def test_in_flight_result_is_cached_but_excluded_after_deadline(clock):
    @register_scorer("clock_advancing")
    class ClockAdvancingScorer:
        def __init__(self, definition):
            self.definition = definition

        def score(self, features, upstream):
            clock.advance(10)
            return MetricResult.success(self.definition.name, 1.0, version=self.definition.version)

    config = {
        "engine": {"workers": {"records": 1, "scorers": 1}},
        "extraction": {"fields": [{"name": "x", "type": "numeric"}]},
        "metrics": [
            {"name": "slow", "kind": "clock_advancing", "inputs": ["x"]},
            {"name": "after", "kind": "statistical", "inputs": ["x"]},
        ],
    }
    orch = PipelineOrchestrator.from_config(config, clock=clock)
    record = Record({"x": 1.0})

    result = orch.run([record], deadline=5)
    report = result.reports[0]
    assert result.cancelled and report.cancelled
    assert report.results["slow"].failure.code == "deadline_exceeded"
    assert report.results["after"].failure.code == "deadline_exceeded"
    assert CacheKey(record.fingerprint, "slow", orch.registry.cache_version("slow")) in orch.cache

    rerun = orch.run([record])
    assert rerun.summary.scorer_invocations == 1
    assert rerun.reports[0].status is ReportStatus.COMPLETE
    assert not rerun.cancelled


def test_scorer_fault_is_isolated_to_its_metric(records):
    @register_scorer("exploding")
    class ExplodingScorer:
        def __init__(self, definition):
            self.definition = definition

        def score(self, features, upstream):
            raise RuntimeError("boom")

    config = {
        "extraction": {"fields": [{"name": "rating", "type": "numeric", "required": False}]},
        "metrics": [
            {"name": "broken", "kind": "exploding"},
            {"name": "rating_mean", "kind": "statistical", "inputs": ["rating"]},
        ],
    }
    orch = PipelineOrchestrator.from_config(config)
    report = orch.run([records[0]]).reports[0]
    assert report.results["broken"].failure.code == "scorer_fault"
    assert report.results["rating_mean"].value == 4.5
    assert report.status is ReportStatus.PARTIAL


def test_unexpected_extractor_fault_stays_in_its_report(sample_config, records):
    class FlakyExtractor(FeatureExtractor):
        def extract(self, record):
            if record.record_id == "r3":
                raise RuntimeError("corrupt record")
            return super().extract(record)

    registry = MetricRegistry.from_config(sample_config)
    orch = PipelineOrchestrator(registry, FlakyExtractor(ExtractionConfig.from_mapping(sample_config["extraction"])))
    result = orch.run(records)

    assert len(result.reports) == 3
    assert result.reports[0].status is ReportStatus.COMPLETE
    broken = result.reports[2]
    assert broken.status is ReportStatus.FAILED
    assert broken.errors[0].code == "record_fault"


def test_batch_errors():
    with pytest.raises(BatchError):
        PipelineOrchestrator(None).run([Record({"x": 1})])


def test_closed_orchestrator_rejects_batches(orchestrator, records):
    orchestrator.close()
    with pytest.raises(BatchError):
        orchestrator.run(records)


def test_reload_invalidates_only_changed_metrics(orchestrator, sample_config, records):
    orchestrator.run(records[:1])

    updated = copy.deepcopy(sample_config)
    updated["metrics"][1]["params"]["high"] = 10
    changed = orchestrator.reload(updated)
    assert changed == {"rating_score", "quality"}

    result = orchestrator.run(records[:1])
    assert result.summary.scorer_invocations == 2
    assert result.reports[0].value("rating_score") == pytest.approx(0.45)


def test_reload_without_changes_keeps_cache(orchestrator, sample_config, records):
    orchestrator.run(records[:1])
    assert orchestrator.reload(copy.deepcopy(sample_config)) == set()
    assert orchestrator.run(records[:1]).summary.scorer_invocations == 0


def test_reload_rejects_cycles_and_keeps_current_registry(orchestrator, sample_config):
    current = orchestrator.registry
    broken = copy.deepcopy(sample_config)
    broken["metrics"].append({"name": "loop", "kind": "derived", "depends_on": ["loop"]})
    with pytest.raises(ConfigurationError):
        orchestrator.reload(broken)
    assert orchestrator.registry is current


def test_reload_with_new_extraction_clears_cache(orchestrator, sample_config, records):
    orchestrator.run(records[:1])
    assert len(orchestrator.cache) > 0

    updated = copy.deepcopy(sample_config)
    updated["extraction"]["fields"].append({"name": "extra", "type": "numeric", "required": False})
    orchestrator.reload(updated)
    assert len(orchestrator.cache) == 0
    assert orchestrator.extractor.schema.field_names[-1] == "extra"


def test_hooks_receive_batch_events(orchestrator, records):
    hooks = HookManager.get()
    events = []
    hooks.register("before_batch", lambda batch_id, count: events.append(("before", count)))
    hooks.register("after_record", lambda batch_id, index, report: events.append(("record", index)))
    hooks.register("on_failure", lambda batch_id, index, error: events.append(("failure", index)))
    hooks.register("on_cache_hit", lambda batch_id, metric: events.append(("hit", metric)))
    hooks.register("after_batch", lambda batch_id, summary: events.append(("after", summary.records_processed)))

    orchestrator.run(records)
    assert events[0] == ("before", 3)
    assert events[-1] == ("after", 3)
    assert [e for e in events if e[0] == "record"] == [("record", 0), ("record", 1), ("record", 2)]
    assert [e for e in events if e[0] == "failure"] == [("failure", 1)] * 3

    events.clear()
    orchestrator.run(records)
    assert len([e for e in events if e[0] == "hit"]) == 12


def test_summary_and_phases(orchestrator, records):
    summary = orchestrator.run(records).summary
    data = summary.to_dict()
    assert data["records_processed"] == 3
    assert set(data["phases"]) == {"pending", "extracting", "scoring", "aggregating"}
    assert data["cache_misses"] == 12
    assert data["cancelled"] is False


def test_plugins_are_discovered_and_can_be_disabled(sample_config, monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("PIPELINE_DISABLE_PLUGINS", "prometheus_plugin")
    orch = PipelineOrchestrator.from_config(sample_config, load_plugins=True)
    assert len(orch.hooks.get_handlers("before_batch")) == 1
    assert len(orch.hooks.get_handlers("after_batch")) == 1


def test_example_config_end_to_end():
    orch = PipelineOrchestrator.from_config(EXAMPLE_CONFIG)
    result = orch.run([
        Record({"body": "The guide is clear and helpful. Setup took minutes.", "rating": 4}, record_id="good"),
        Record({"body": "It crashed.", "rating": 0}, record_id="zero"),
    ])
    good, zero = result.reports
    assert good.status is ReportStatus.COMPLETE
    assert good.results["body_sentiment"].label == "POSITIVE"
    assert zero.composite == 0.0
    assert orch.settings.scorer_workers == 2
    orch.close()


def two_inputs_config(down_params, **engine):
    return {
        "engine": {"workers": {"records": 1, "scorers": 1}, **engine},
        "extraction": {"fields": [{"name": "x", "type": "numeric"}, {"name": "y", "type": "numeric"}]},
        "metrics": [
            {"name": "up1", "kind": "statistical", "inputs": ["x"], "params": {"op": "mean"}},
            {"name": "up2", "kind": "statistical", "inputs": ["y"], "params": {"op": "mean"}},
            {"name": "down", "kind": "derived", "depends_on": ["up1", "up2"], "params": down_params},
        ],
    }


@pytest.mark.parametrize("down_params", [
    {"op": "mean", "allow_partial": True},
    {"op": "mean"},
])
def test_dependents_of_timed_out_upstream_bypass_cache(down_params):
    orch = PipelineOrchestrator.from_config(two_inputs_config(down_params, cache={"wait_timeout": 0.05}))
    record = Record({"x": 1.0, "y": 3.0})
    up1_key = CacheKey(record.fingerprint, "up1", orch.registry.cache_version("up1"))
    down_key = CacheKey(record.fingerprint, "down", orch.registry.cache_version("down"))

    reserved, release = threading.Event(), threading.Event()

    def slow_up1():
        reserved.set()
        release.wait(5)
        return MetricResult.success("up1", 1.0, version="1.0.0")

    holder = threading.Thread(target=orch.cache.get_or_compute, args=(up1_key, slow_up1))
    holder.start()
    assert reserved.wait(5)
    try:
        first = orch.run([record]).reports[0]
    finally:
        release.set()
        holder.join(5)

    assert first.results["up1"].failure.code == "cache_timeout"
    assert first.status is ReportStatus.PARTIAL
    assert down_key not in orch.cache

    second = orch.run([record]).reports[0]
    assert second.status is ReportStatus.COMPLETE
    assert second.value("down") == pytest.approx(2.0)
    assert list(second.results["down"].details["upstream"]) == ["up1", "up2"]


def test_same_layer_metrics_run_concurrently():
    barrier = threading.Barrier(2, timeout=2)

    @register_scorer("rendezvous")
    class RendezvousScorer:
        def __init__(self, definition):
            self.definition = definition

        def score(self, features, upstream):
            barrier.wait()
            return MetricResult.success(self.definition.name, 1.0, version=self.definition.version)

    config = {
        "engine": {"workers": {"records": 1, "scorers": 2}},
        "extraction": {"fields": [{"name": "x", "type": "numeric"}]},
        "metrics": [
            {"name": "left", "kind": "rendezvous", "inputs": ["x"]},
            {"name": "right", "kind": "rendezvous", "inputs": ["x"]},
        ],
    }
    orch = PipelineOrchestrator.from_config(config)
    report = orch.run([Record({"x": 1.0})]).reports[0]
    assert report.status is ReportStatus.COMPLETE
    assert not barrier.broken
