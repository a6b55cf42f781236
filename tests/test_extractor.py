import math

import pytest

from orchestrator.errors import ConfigurationError, ExtractionError
from docmetrics.features.extractor import TEXT_FEATURES, ExtractionConfig, FeatureExtractor
from docmetrics.models import Record, RecordSchema


@pytest.fixture
def extractor(schema):
    return FeatureExtractor(ExtractionConfig(schema=schema))


def test_extracts_numeric_text_and_categorical(extractor):
    record = Record({"body": "Good. Fast!", "rating": 4, "category": 7})
    features = extractor.extract(record)

    assert features.fingerprint == record.fingerprint
    assert features.get("rating") == 4.0
    assert features.get("category") == "7"
    assert features.get("body") == "Good. Fast!"
    assert features.get("body.word_count") == 2.0
    assert features.get("body.sentence_count") == 2.0
    for stat in TEXT_FEATURES:
        assert f"body.{stat}" in features


def test_extraction_is_deterministic(extractor):
    a = Record({"body": "Same text.", "rating": 1.5})
    b = Record({"rating": 1.5, "body": "Same text."})
    assert a.fingerprint == b.fingerprint
    assert extractor.extract(a) == extractor.extract(b)


def test_missing_required_field_raises_with_partial_vector(extractor):
    record = Record({"body": "Only text here."}, record_id="x")
    with pytest.raises(ExtractionError) as info:
        extractor.extract(record)

    err = info.value
    assert [(p[0], p[1]) for p in err.problems] == [("rating", "missing_field")]
    assert "body.word_count" in err.partial
    assert "rating" not in err.partial


def test_none_is_treated_as_missing(extractor):
    with pytest.raises(ExtractionError) as info:
        extractor.extract(Record({"body": "x", "rating": None}))
    assert info.value.problems[0][1] == "missing_field"


def test_optional_field_may_be_absent(extractor):
    features = extractor.extract(Record({"body": "Fine.", "rating": 2}))
    assert "category" not in features


@pytest.mark.parametrize("value", ["4", True, [1, 2]])
def test_numeric_field_rejects_non_numbers(extractor, value):
    with pytest.raises(ExtractionError) as info:
        extractor.extract(Record({"body": "ok", "rating": value}))
    assert info.value.problems[0][:2] == ("rating", "invalid_type")


def test_nan_is_passed_through_for_scorers_to_reject(extractor):
    features = extractor.extract(Record({"body": "ok", "rating": float("nan")}))
    assert math.isnan(features.get("rating"))


def test_text_statistics_can_be_disabled(schema):
    extractor = FeatureExtractor(ExtractionConfig(schema=schema, text_statistics=False))
    features = extractor.extract(Record({"body": "Some words.", "rating": 1}))
    assert "body.word_count" not in features
    assert extractor.feature_names() == ["body", "rating", "category"]


def test_extraction_config_from_mapping():
    config = ExtractionConfig.from_mapping({"fields": [{"name": "title", "type": "TEXT", "required": False}]})
    assert config.schema.field_names == ["title"]
    assert config.schema.fields[0].required is False


@pytest.mark.parametrize("fields", [
    [{"name": "a", "type": "blob"}],
    [{"name": "a"}, {"name": "a"}],
    [{"type": "text"}],
])
def test_invalid_schema_is_configuration_error(fields):
    with pytest.raises(ConfigurationError):
        RecordSchema.from_config(fields)
