"""Unit tests for the stats confidence gate."""

from datetime import datetime, timezone

import pytest

from propscout_core.domain.services.confidence_gate import (
    AUTO_CONFIRM_NOTE,
    REQUIRED_FIELDS,
    Confidence,
    build_auto_confirmed,
    evaluate_gate,
    resolve_confidence,
    validate_required_stats,
)
from tests.factories import build_stats_output, stats_payload


class TestConfidence:
    """Tests for the Confidence enum."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("high", Confidence.HIGH),
            ("  Medium ", Confidence.MEDIUM),
            ("LOW", Confidence.LOW),
            (Confidence.HIGH, Confidence.HIGH),
        ],
    )
    def test_parse_known_labels(self, raw, expected):
        assert Confidence.parse(raw) is expected

    @pytest.mark.parametrize("raw", [None, "", "very high", 0.9, 1, ["high"]])
    def test_parse_unknown_labels(self, raw):
        assert Confidence.parse(raw) is None

    def test_sufficient(self):
        assert Confidence.HIGH.sufficient
        assert Confidence.MEDIUM.sufficient
        assert not Confidence.LOW.sufficient


class TestResolveConfidence:
    """Tests for the per-field lookup chain."""

    def test_field_annotation_wins(self):
        fields = {"safety_score": {"value": 6, "confidence": "high"}}

        result = resolve_confidence("safety_score", fields, {"safety_score": "low"})

        assert result is Confidence.HIGH

    def test_falls_back_to_batch_map(self):
        fields = {"safety_score": {"value": 6}}

        result = resolve_confidence("safety_score", fields, {"safety_score": "medium"})

        assert result is Confidence.MEDIUM

    @pytest.mark.parametrize("label", ["certain", "lowish", "", 3])
    def test_unrecognised_annotation_is_low(self, label):
        fields = {"safety_score": {"value": 6, "confidence": label}}

        result = resolve_confidence("safety_score", fields, {"safety_score": "high"})

        assert result is Confidence.LOW

    def test_null_annotation_falls_back_to_batch_map(self):
        fields = {"safety_score": {"value": 6, "confidence": None}}

        result = resolve_confidence("safety_score", fields, {"safety_score": "high"})

        assert result is Confidence.HIGH

    def test_absent_everywhere_is_low(self):
        assert resolve_confidence("safety_score", {}, None) is Confidence.LOW

    def test_non_mapping_annotation_is_ignored(self):
        fields = {"safety_score": 6}

        assert resolve_confidence("safety_score", fields, {}) is Confidence.LOW


class TestEvaluateGate:
    """Tests for evaluate_gate."""

    def test_all_high_passes(self):
        output = build_stats_output(confidence="high")

        decision = evaluate_gate(output["fields"])

        assert decision.auto_confirm is True
        assert decision.insufficient_fields == []

    def test_mixed_medium_and_high_passes(self):
        output = build_stats_output(
            confidence="medium",
            overrides={"safety_score": {"value": 6, "confidence": "high"}},
        )

        assert evaluate_gate(output["fields"]).auto_confirm is True

    def test_one_low_field_fails(self):
        output = build_stats_output(
            confidence="high",
            overrides={"green_space_name": {"value": "London Fields", "confidence": "low"}},
        )

        decision = evaluate_gate(output["fields"])

        assert decision.auto_confirm is False
        assert decision.insufficient_fields == ["green_space_name"]

    def test_missing_field_fails(self):
        output = build_stats_output(confidence="high")
        del output["fields"]["commute_mode"]

        decision = evaluate_gate(output["fields"])

        assert decision.auto_confirm is False
        assert "commute_mode" in decision.insufficient_fields

    def test_batch_map_can_pass_without_field_labels(self):
        output = build_stats_output(confidence=None)
        required = {name: "medium" for name in REQUIRED_FIELDS}

        assert evaluate_gate(output["fields"], required).auto_confirm is True

    def test_unrecognised_field_label_fails_despite_batch_map(self):
        output = build_stats_output(
            confidence="high",
            overrides={"safety_score": {"value": 6, "confidence": "lowish"}},
        )
        required = {name: "high" for name in REQUIRED_FIELDS}

        decision = evaluate_gate(output["fields"], required)

        assert decision.auto_confirm is False
        assert decision.insufficient_fields == ["safety_score"]
        assert decision.confidences["safety_score"] is Confidence.LOW

    def test_no_labels_anywhere_fails(self):
        output = build_stats_output(confidence=None)

        decision = evaluate_gate(output["fields"])

        assert decision.auto_confirm is False
        assert set(decision.insufficient_fields) == set(REQUIRED_FIELDS)

    def test_optional_fields_do_not_matter(self):
        # gym_* are low in the default output
        output = build_stats_output(confidence="high")

        assert output["fields"]["gym_name"]["confidence"] == "low"
        assert evaluate_gate(output["fields"]).auto_confirm is True


class TestBuildAutoConfirmed:
    """Tests for build_auto_confirmed."""

    def test_copies_required_fields_only(self):
        raw = dict(stats_payload(), gym_name="PureGym", cleanliness_score=7)
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)

        record = build_auto_confirmed(raw, required_source={"safety_score": ["police.uk"]}, now=now)

        for name in REQUIRED_FIELDS:
            assert record[name] == raw[name]
        assert "gym_name" not in record
        assert "cleanliness_score" not in record
        assert record["notes"] == AUTO_CONFIRM_NOTE
        assert record["confirmed_by_user"] is False
        assert record["confirmed_at"] == now
        assert record["required_source"] == {"safety_score": ["police.uk"]}


class TestValidateRequiredStats:
    """Tests for validate_required_stats."""

    def test_complete_draft_is_valid(self):
        assert validate_required_stats(stats_payload()) == []

    def test_whole_floats_are_accepted(self):
        assert validate_required_stats(stats_payload(safety_score=6.0)) == []

    def test_missing_and_mistyped_fields_are_listed(self):
        draft = stats_payload(
            commute_total_minutes="35",
            safety_score=6.5,
            nearest_station_name="  ",
            commute_walk_minutes=True,
        )
        del draft["supermarket_name"]

        invalid = validate_required_stats(draft)

        assert set(invalid) == {
            "commute_total_minutes",
            "safety_score",
            "nearest_station_name",
            "commute_walk_minutes",
            "supermarket_name",
        }

    def test_non_mapping_draft_lists_everything(self):
        assert validate_required_stats(None) == list(REQUIRED_FIELDS)
