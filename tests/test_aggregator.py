"""Tests for tessera.memory.aggregator module."""

from __future__ import annotations

from datetime import timedelta

import pytest

from helpers import pattern_record, seed_projects, write_partition
from tessera.memory import ConsensusLevel, GlobalMemory, PatternAggregator, PersistentStore
from tessera.memory.aggregator import consensus_level_for, recency_weight
from tessera.memory.models import utc_now


def seed_patterns(store: PersistentStore, *records: dict) -> None:
    write_partition(store, "global/patterns", list(records))


class TestRecencyWeight:
    def test_fresh_pattern_full_weight(self):
        now = utc_now()
        assert recency_weight(now, now) == 1.0

    def test_linear_decay(self):
        now = utc_now()
        assert recency_weight(now - timedelta(days=15), now) == pytest.approx(0.75)

    def test_floor(self):
        now = utc_now()
        assert recency_weight(now - timedelta(days=300), now) == 0.5
        assert recency_weight(None, now) == 0.5


class TestConsensusLevel:
    @pytest.mark.parametrize(
        ("ratio", "expected"),
        [
            (1.0, ConsensusLevel.STRONG),
            (0.8, ConsensusLevel.STRONG),
            (0.79, ConsensusLevel.MODERATE),
            (0.5, ConsensusLevel.MODERATE),
            (0.25, ConsensusLevel.WEAK),
            (0.2, ConsensusLevel.NONE),
        ],
    )
    def test_thresholds(self, ratio: float, expected: ConsensusLevel):
        assert consensus_level_for(ratio) is expected


class TestAggregation:
    def test_cross_project_pattern(self, store: PersistentStore, aggregator: PatternAggregator):
        seed_projects(store, ["A", "B", "C", "D"])
        seed_patterns(
            store,
            pattern_record("naming", "camelCase", 0.6, ["A"], days_old=2),
            pattern_record("naming", "camelCase", 0.7, ["B"], days_old=2),
            pattern_record("naming", "camelCase", 0.8, ["C"], days_old=2),
        )

        aggregate = aggregator.get_aggregate("naming", "camelCase")

        assert aggregate.project_count == 3
        assert aggregate.project_ratio == pytest.approx(0.75)
        assert aggregate.consensus_level is ConsensusLevel.MODERATE
        assert aggregate.is_consensus is True
        assert aggregate.is_outlier is False
        assert aggregate.confidence == pytest.approx(0.9)
        assert aggregate.total_occurrences == 3

    def test_recorded_through_memory(self, memory: GlobalMemory, aggregator: PatternAggregator):
        for name in ["A", "B", "C", "D"]:
            memory.register_project(f"/work/{name}")
        for source in ["A", "B", "C"]:
            memory.record_pattern("naming", "camelCase", source=source)

        assert memory.find_pattern("naming", "camelCase").confidence == pytest.approx(0.7)
        aggregate = aggregator.get_aggregate("naming", "camelCase")
        assert aggregate.confidence == pytest.approx(0.9)
        assert aggregate.sources == ["A", "B", "C"]

    def test_strong_consensus_capped(self, store: PersistentStore, aggregator: PatternAggregator):
        names = ["A", "B", "C", "D", "E"]
        seed_projects(store, names)
        seed_patterns(store, pattern_record("async", "await", 0.5, names))

        aggregate = aggregator.get_aggregate("async", "await")
        assert aggregate.consensus_level is ConsensusLevel.STRONG
        assert aggregate.confidence == 0.99

    def test_older_instances_weigh_less(self, store: PersistentStore, aggregator: PatternAggregator):
        seed_projects(store, ["A"])
        seed_patterns(
            store,
            pattern_record("naming", "camelCase", 0.4, ["A"], days_old=0),
            pattern_record("naming", "camelCase", 0.8, ["A"], days_old=90),
        )

        aggregate = aggregator.get_aggregate("naming", "camelCase")
        assert aggregate.confidence == pytest.approx(0.8 / 1.5, abs=1e-3)

    def test_occurrences_weigh_more(self, store: PersistentStore, aggregator: PatternAggregator):
        seed_projects(store, ["A"])
        seed_patterns(
            store,
            pattern_record("naming", "camelCase", 0.9, ["A"], occurrences=3),
            pattern_record("naming", "camelCase", 0.5, ["A"], occurrences=1),
        )

        aggregate = aggregator.get_aggregate("naming", "camelCase")
        assert aggregate.confidence == pytest.approx(0.8, abs=1e-3)

    def test_no_projects_registered(self, store: PersistentStore, aggregator: PatternAggregator):
        seed_patterns(store, pattern_record("naming", "camelCase", 0.5, ["A"]))

        aggregate = aggregator.get_aggregate("naming", "camelCase")
        assert aggregate.project_ratio == 1.0
        assert aggregate.is_outlier is False

    def test_refresh_sees_new_patterns(self, memory: GlobalMemory, aggregator: PatternAggregator):
        assert aggregator.aggregated_patterns == []

        memory.record_pattern("naming", "camelCase", source="A")
        assert aggregator.aggregated_patterns == []

        aggregator.refresh()
        assert len(aggregator.aggregated_patterns) == 1


class TestConsensusQueries:
    @pytest.fixture(autouse=True)
    def seeded(self, store: PersistentStore):
        seed_projects(store, ["A", "B", "C", "D"])
        seed_patterns(
            store,
            pattern_record("naming", "camelCase", 0.8, ["A", "B", "C", "D"]),
            pattern_record("naming", "snake_case", 0.6, ["A", "B"]),
            pattern_record("structure", "flat", 0.9, ["C"]),
            pattern_record("testing", "pytest", 0.7, ["D"], created_days_ago=40),
        )

    def test_consensus_levels(self, aggregator: PatternAggregator):
        strong = aggregator.get_consensus_patterns(ConsensusLevel.STRONG)
        moderate = aggregator.get_consensus_patterns()

        assert [p.value for p in strong] == ["camelCase"]
        assert [p.value for p in moderate] == ["camelCase", "snake_case"]

    def test_unknown_level_uses_moderate(self, aggregator: PatternAggregator):
        assert len(aggregator.get_consensus_patterns("overwhelming")) == 2
        assert len(aggregator.get_consensus_patterns("weak")) == 4

    def test_outliers(self, aggregator: PatternAggregator):
        assert {p.value for p in aggregator.get_outlier_patterns()} == {"flat", "pytest"}

    def test_unique_patterns(self, aggregator: PatternAggregator):
        assert [p.value for p in aggregator.get_unique_patterns("C")] == ["flat"]
        assert [p.value for p in aggregator.get_unique_patterns("/work/C")] == ["flat"]
        assert aggregator.get_unique_patterns("unknown") == []

    def test_common_patterns(self, aggregator: PatternAggregator):
        assert [p.value for p in aggregator.get_common_patterns(["A", "B"])] == [
            "camelCase",
            "snake_case",
        ]
        assert aggregator.get_common_patterns(["A"]) == []
        assert aggregator.get_common_patterns(["A", "nowhere"]) == []

    def test_dominant_by_type(self, aggregator: PatternAggregator):
        assert aggregator.get_dominant_pattern("naming").value == "camelCase"
        assert aggregator.get_dominant_pattern("missing") is None

    def test_emerging(self, aggregator: PatternAggregator):
        emerging = aggregator.get_emerging_patterns()
        assert [p.value for p in emerging] == ["camelCase", "snake_case"]
        assert aggregator.get_emerging_patterns(min_projects=3)[0].value == "camelCase"

    def test_emerging_excludes_old_patterns(self, store: PersistentStore, aggregator: PatternAggregator):
        seed_patterns(store, pattern_record("naming", "camelCase", 0.8, ["A", "B"], created_days_ago=45))
        aggregator.refresh()
        assert aggregator.get_emerging_patterns() == []

    def test_diversity(self, aggregator: PatternAggregator):
        diversity = aggregator.analyze_pattern_diversity()

        assert diversity["total_pattern_types"] == 3
        assert diversity["types_with_consensus"] == 1
        naming = diversity["type_analysis"]["naming"]
        assert naming["variation_count"] == 2
        assert naming["dominant"] == "camelCase"
        assert naming["alternatives"][0]["pattern"] == "snake_case"

    def test_recommendations(self, aggregator: PatternAggregator):
        recommendations = aggregator.get_recommendations()

        assert set(recommendations) == {"naming", "structure", "testing"}
        naming = recommendations["naming"]
        assert naming.value == "camelCase"
        assert naming.adopted_by == 4
        assert naming.consensus_level is ConsensusLevel.STRONG

    def test_compare_projects(self, aggregator: PatternAggregator):
        comparison = aggregator.compare_projects("A", "C")

        assert comparison.similarity == pytest.approx(2 * 1 / (2 + 2))
        assert [p.value for p in comparison.common] == ["camelCase"]
        assert [p.value for p in comparison.only_in_first] == ["snake_case"]
        assert [p.value for p in comparison.only_in_second] == ["flat"]

    def test_compare_unknown_projects(self, aggregator: PatternAggregator):
        assert aggregator.compare_projects("x", "y").similarity == 0.0

    def test_stats(self, aggregator: PatternAggregator):
        stats = aggregator.get_stats()

        assert stats["total_aggregated_patterns"] == 4
        assert stats["consensus_patterns"] == 2
        assert stats["outlier_patterns"] == 2
        assert stats["strong_consensus"] == 1
        assert stats["moderate_consensus"] == 1
        assert stats["tracked_projects"] == 4


class TestLowConfidenceRecommendations:
    def test_below_threshold_not_recommended(self, store: PersistentStore, aggregator: PatternAggregator):
        seed_projects(store, ["A", "B", "C", "D", "E"])
        seed_patterns(store, pattern_record("naming", "kebab", 0.4, ["A"]))

        assert aggregator.get_recommendations() == {}
