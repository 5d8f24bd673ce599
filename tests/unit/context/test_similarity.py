"""Similarity scoring, storage gate and record codec."""

from __future__ import annotations

import json

import pytest

from editguard.analysis.analyzer import GroundTruthAnalyzer
from editguard.config.scoring import SimilarityWeights, StorageThresholds
from editguard.context.codec import (
    attempt_from_dict,
    attempt_to_dict,
    ground_truth_from_dict,
    ground_truth_to_dict,
    record_from_dict,
    record_to_dict,
)
from editguard.context.policy import should_store
from editguard.context.similarity import similarity_score
from tests.fakes.records import make_attempt, make_record, make_specs


@pytest.mark.unit
class TestSimilarityScore:
    def test_identical_specs(self) -> None:
        assert similarity_score(make_specs(), make_specs()) == 100.0

    def test_transparency_mismatch_costs_its_weight(self) -> None:
        assert similarity_score(make_specs(), make_specs(has_transparency=True)) == 85.0

    def test_dimension_distance(self) -> None:
        closer = similarity_score(make_specs(), make_specs(width=120, height=120))
        farther = similarity_score(make_specs(), make_specs(width=400, height=400))
        assert 0 < farther < closer < 100

    def test_sparse_snapshot_normalized(self) -> None:
        sparse = make_specs(width=0, height=0, unique_color_count=0, aspect_ratio="")
        assert similarity_score(make_specs(), sparse) == 100.0

    def test_custom_weights(self) -> None:
        weights = SimilarityWeights(
            dimensions=0.0,
            aspect_ratio=0.0,
            transparency=1.0,
            color_count=0.0,
            sharpness=0.0,
            print_readiness=0.0,
        )
        assert similarity_score(make_specs(width=9000), make_specs(), weights) == 100.0
        assert similarity_score(make_specs(), make_specs(has_transparency=True), weights) == 0.0


@pytest.mark.unit
class TestShouldStore:
    def test_gate(self) -> None:
        t = StorageThresholds()
        assert should_store(make_record(confidence=70), t)
        assert not should_store(make_record(confidence=69), t)
        assert not should_store(make_record(confidence=100, success=False), t)


@pytest.mark.unit
class TestCodec:
    def test_record_survives_json(self) -> None:
        record = make_record(parameters={"colors": [{"hex": "#FF0000", "r": 255, "g": 0, "b": 0}]})
        assert record_from_dict(json.loads(json.dumps(record_to_dict(record)))) == record

    def test_attempt_survives_json(self) -> None:
        attempt = make_attempt(3)
        assert attempt_from_dict(json.loads(json.dumps(attempt_to_dict(attempt)))) == attempt

    def test_ground_truth_survives_json(self, analyzer: GroundTruthAnalyzer, design_png: bytes) -> None:
        gt = analyzer.analyze(design_png)
        assert ground_truth_from_dict(json.loads(json.dumps(ground_truth_to_dict(gt)))) == gt
