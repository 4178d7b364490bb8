"""Tests for tessera.memory.team_sync module."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from helpers import iso_days_ago, pattern_record, seed_projects, write_partition
from tessera.core.config import SyncConfig
from tessera.core.errors import UnknownStrategyError
from tessera.memory import ConflictStrategy, GlobalMemory, PersistentStore, TeamSync
from tessera.memory.team_sync import resolve_strategy, validate_export


def team_export(*patterns: dict, **extra) -> dict:
    envelope = {
        "version": "1.0.0",
        "teamName": "platform",
        "exportedAt": iso_days_ago(0),
        "patterns": list(patterns),
    }
    envelope.update(extra)
    return envelope


def team_pattern(value: str, confidence: float, occurrences: int = 1, sources=None, pattern_type="naming"):
    return {
        "type": pattern_type,
        "pattern": value,
        "confidence": confidence,
        "occurrences": occurrences,
        "sources": list(sources or []),
    }


@pytest.fixture
def local_conflict(store: PersistentStore) -> None:
    write_partition(
        store,
        "global/patterns",
        [pattern_record("naming", "camelCase", 0.6, [], occurrences=10, days_old=10)],
    )


# ─── Export ────────────────────────────────────────────────────────────


class TestExport:
    def test_envelope(self, memory: GlobalMemory, team_sync: TeamSync):
        memory.record_pattern("naming", "camelCase", confidence=0.8, source="api")
        memory.record_pattern("naming", "kebab", confidence=0.2, source="web")
        memory.add_expertise("backend", 0.7)
        memory.set_preference("indent", 2)

        envelope = team_sync.export_for_team("platform")

        assert envelope["version"] == "1.0.0"
        assert envelope["teamName"] == "platform"
        assert envelope["patternCount"] == 1
        assert envelope["patterns"][0]["pattern"] == "camelCase"
        assert envelope["expertise"]["backend"]["level"] == pytest.approx(0.7)
        assert envelope["preferences"] == {"indent": 2}
        assert "projects" not in envelope
        assert envelope["stats"] == {
            "patternCount": 1,
            "uniquePatternTypes": 1,
            "totalSources": 1,
            "expertiseAreas": 1,
        }

    def test_options(self, memory: GlobalMemory, team_sync: TeamSync):
        memory.record_pattern("naming", "kebab", confidence=0.2)
        memory.register_project("/work/api", {"languages": ["python"]})

        envelope = team_sync.export_for_team(
            "platform",
            min_confidence=0.1,
            include_expertise=False,
            include_preferences=False,
            include_projects=True,
        )

        assert envelope["patternCount"] == 1
        assert "expertise" not in envelope
        assert "preferences" not in envelope
        assert envelope["projects"] == [{"name": "api", "path": "/work/api", "languages": ["python"]}]

    def test_export_validates(self, memory: GlobalMemory, team_sync: TeamSync):
        memory.record_pattern("naming", "camelCase", confidence=0.9)
        assert validate_export(team_sync.export_for_team("platform")).valid

    def test_export_to_file(self, memory: GlobalMemory, team_sync: TeamSync, tmp_path: Path):
        memory.record_pattern("naming", "camelCase", confidence=0.9)
        output = tmp_path / "out" / "team.json"

        assert team_sync.export_to_file(output, "platform") == 1
        assert json.loads(output.read_text())["teamName"] == "platform"

    def test_consensus_export(self, store: PersistentStore, team_sync: TeamSync):
        seed_projects(store, ["A", "B", "C"])
        write_partition(
            store,
            "global/patterns",
            [
                pattern_record("naming", "camelCase", 0.6, ["A", "B"]),
                pattern_record("naming", "kebab", 0.9, ["C"]),
            ],
        )

        export = team_sync.export_consensus_patterns("platform")

        assert export["type"] == "consensus"
        assert [p["pattern"] for p in export["patterns"]] == ["camelCase"]
        assert export["patterns"][0]["consensusLevel"] == "moderate"
        assert export["patterns"][0]["projectCount"] == 2


# ─── Import ────────────────────────────────────────────────────────────


class TestImport:
    def test_new_patterns_get_boost(self, memory: GlobalMemory, team_sync: TeamSync):
        result = team_sync.import_from_team(team_export(team_pattern("camelCase", 0.7)))

        assert result.success
        assert result.summary.patterns_imported == 1
        imported = memory.find_pattern("naming", "camelCase")
        assert imported.confidence == pytest.approx(0.8)
        assert imported.sources == ["platform"]

    def test_boost_capped(self, memory: GlobalMemory, team_sync: TeamSync):
        team_sync.import_from_team(team_export(team_pattern("camelCase", 0.95)), confidence_boost=0.2)
        assert memory.find_pattern("naming", "camelCase").confidence == 0.99

    def test_malformed_entries_skipped(self, memory: GlobalMemory, team_sync: TeamSync):
        result = team_sync.import_from_team(
            team_export({"type": "naming"}, "junk", team_pattern("camelCase", 0.5))
        )

        assert result.summary.patterns_imported == 1
        assert result.summary.patterns_skipped == 2

    @pytest.mark.parametrize("data", [None, [], {"version": "1.0.0"}, {"patterns": "nope"}])
    def test_invalid_data(self, team_sync: TeamSync, data):
        result = team_sync.import_from_team(data)
        assert result.success is False
        assert result.error == "Invalid team data"

    def test_unknown_strategy_raises(self, team_sync: TeamSync):
        with pytest.raises(UnknownStrategyError, match="Valid strategies"):
            team_sync.import_from_team(team_export(), strategy="coin_flip")

    def test_expertise_import(self, memory: GlobalMemory, team_sync: TeamSync):
        result = team_sync.import_from_team(
            team_export(expertise={"backend": {"level": 0.8}, "ops": 0.6, "junk": "high"})
        )

        assert result.summary.expertise_imported == 2
        assert memory.get_expertise("backend") == pytest.approx(0.8)
        assert memory.get_expertise("ops") == pytest.approx(0.6)

    def test_preferences_preserved_by_default(self, memory: GlobalMemory, team_sync: TeamSync):
        result = team_sync.import_from_team(team_export(preferences={"indent": 4}))

        assert result.summary.preferences_imported == 0
        assert memory.get_preference("indent") is None

    def test_preferences_fill_gaps_only(self, memory: GlobalMemory, team_sync: TeamSync):
        memory.set_preference("indent", 2)

        result = team_sync.import_from_team(
            team_export(preferences={"indent": 4, "quotes": "single"}),
            preserve_local=False,
        )

        assert result.summary.preferences_imported == 1
        assert memory.get_preference("indent") == 2
        assert memory.get_preference("quotes") == "single"

    def test_import_from_missing_file(self, team_sync: TeamSync, tmp_path: Path):
        result = team_sync.import_from_file(tmp_path / "missing.json")
        assert result.success is False
        assert "File not found" in result.error

    def test_import_from_corrupt_file(self, team_sync: TeamSync, tmp_path: Path):
        path = tmp_path / "bad.json"
        path.write_text("{oops", encoding="utf-8")

        result = team_sync.import_from_file(path)
        assert result.success is False
        assert "Failed to parse" in result.error

    def test_import_from_file(self, memory: GlobalMemory, team_sync: TeamSync, tmp_path: Path):
        path = tmp_path / "team.json"
        path.write_text(json.dumps(team_export(team_pattern("camelCase", 0.5))), encoding="utf-8")

        result = team_sync.import_from_file(path, confidence_boost=0.0)

        assert result.success
        assert memory.find_pattern("naming", "camelCase").confidence == pytest.approx(0.5)

    def test_configured_defaults(self, memory: GlobalMemory):
        sync = TeamSync(memory, config=SyncConfig(confidence_boost=0.0, default_strategy="merge_all"))
        sync.import_from_team(team_export(team_pattern("camelCase", 0.5)))
        sync.import_from_team(team_export(team_pattern("camelCase", 0.5)))

        merged = memory.find_pattern("naming", "camelCase")
        assert merged.confidence == pytest.approx(0.55)
        assert merged.occurrences == 2

    def test_wrong_typed_pattern_fields_skipped(self, memory: GlobalMemory, team_sync: TeamSync):
        result = team_sync.import_from_team(
            team_export(
                {"type": "naming", "pattern": "broken", "confidence": "high"},
                {"type": "naming", "pattern": "listy", "sources": "api"},
                team_pattern("camelCase", 0.5),
            )
        )

        assert result.success
        assert result.summary.patterns_imported == 1
        assert result.summary.patterns_skipped == 2
        assert memory.find_pattern("naming", "broken") is None

    @pytest.mark.parametrize("section", ["expertise", "preferences"])
    def test_non_object_section_rejected(
        self, memory: GlobalMemory, team_sync: TeamSync, section: str
    ):
        data = team_export(team_pattern("camelCase", 0.5), **{section: ["backend"]})

        result = team_sync.import_from_team(data, preserve_local=False)

        assert result.success is False
        assert result.error == f"Invalid {section} section: expected an object"
        assert memory.find_pattern("naming", "camelCase") is None


@pytest.mark.usefixtures("local_conflict")
class TestConflictStrategies:
    INCOMING = team_pattern("camelCase", 0.9, occurrences=1)

    def test_highest_confidence_takes_team(self, memory: GlobalMemory, team_sync: TeamSync):
        result = team_sync.import_from_team(team_export(self.INCOMING), strategy="highest_confidence")

        assert result.summary.conflicts_resolved == 1
        assert memory.find_pattern("naming", "camelCase").confidence == pytest.approx(0.9)

    def test_majority_keeps_local(self, memory: GlobalMemory, team_sync: TeamSync):
        result = team_sync.import_from_team(team_export(self.INCOMING), strategy=ConflictStrategy.MAJORITY)

        assert result.summary.patterns_skipped == 1
        assert result.summary.conflicts_resolved == 0
        local = memory.find_pattern("naming", "camelCase")
        assert local.confidence == pytest.approx(0.6)
        assert local.occurrences == 10

    def test_majority_takes_better_supported_team(self, memory: GlobalMemory, team_sync: TeamSync):
        incoming = team_pattern("camelCase", 0.3, occurrences=12, sources=["x", "y"])
        team_sync.import_from_team(team_export(incoming), strategy="majority")

        local = memory.find_pattern("naming", "camelCase")
        assert local.confidence == pytest.approx(0.3)
        assert local.sources == ["x", "y"]

    def test_newest_prefers_recent_export(self, memory: GlobalMemory, team_sync: TeamSync):
        team_sync.import_from_team(team_export(self.INCOMING), strategy="newest")
        assert memory.find_pattern("naming", "camelCase").confidence == pytest.approx(0.9)

    def test_newest_keeps_local_over_stale_export(self, memory: GlobalMemory, team_sync: TeamSync):
        stale = team_export(self.INCOMING, exportedAt=iso_days_ago(30))
        result = team_sync.import_from_team(stale, strategy="newest")

        assert result.summary.patterns_skipped == 1
        assert memory.find_pattern("naming", "camelCase").confidence == pytest.approx(0.6)

    def test_merge_all(self, memory: GlobalMemory, team_sync: TeamSync):
        incoming = team_pattern("camelCase", 0.9, occurrences=1, sources=["web"])
        team_sync.import_from_team(team_export(incoming), strategy="merge_all")

        local = memory.find_pattern("naming", "camelCase")
        assert local.confidence == pytest.approx(0.95)
        assert local.occurrences == 11
        assert local.sources == ["web"]

    def test_resolution_is_persisted(self, store: PersistentStore, team_sync: TeamSync):
        team_sync.import_from_team(team_export(self.INCOMING), strategy="highest_confidence")

        reloaded = GlobalMemory(store)
        assert reloaded.find_pattern("naming", "camelCase").confidence == pytest.approx(0.9)
        assert len(reloaded.patterns) == 1


class TestResolveStrategy:
    def test_names_and_enums(self):
        assert resolve_strategy("MERGE_ALL") is ConflictStrategy.MERGE_ALL
        assert resolve_strategy(ConflictStrategy.NEWEST) is ConflictStrategy.NEWEST

    def test_unknown(self):
        with pytest.raises(UnknownStrategyError):
            resolve_strategy("coin_flip")


# ─── Validation, merge, recommendations ───────────────────────────────


class TestValidateExport:
    def test_valid(self):
        validation = validate_export(team_export(team_pattern("camelCase", 0.5)))
        assert validation.valid
        assert validation.version == "1.0.0"
        assert validation.pattern_count == 1

    def test_collects_every_error(self):
        validation = validate_export({"patterns": [{"pattern": "x"}, {"type": "naming"}]})

        assert not validation.valid
        assert validation.errors == [
            "Missing version field",
            "Pattern 0 missing type",
            "Pattern 1 missing pattern value",
        ]

    def test_not_an_object(self):
        assert validate_export([1, 2]).errors == ["Export data is not an object"]

    def test_missing_patterns(self):
        assert "Missing or invalid patterns array" in validate_export({"version": "1"}).errors

    def test_field_types(self):
        validation = validate_export(
            team_export(
                {"type": "naming", "pattern": "a", "confidence": "high"},
                {"type": "naming", "pattern": "b", "occurrences": 1.5, "sources": "api"},
                expertise=["backend"],
            )
        )

        assert not validation.valid
        assert validation.errors == [
            "Pattern 0 confidence must be a number",
            "Pattern 1 occurrences must be an integer",
            "Pattern 1 sources must be a list",
            "Invalid expertise section: expected an object",
        ]


class TestMergeTeamExports:
    def test_merge(self, team_sync: TeamSync):
        web = team_export(
            team_pattern("camelCase", 0.6, occurrences=2),
            team_pattern("flat", 0.5, pattern_type="structure"),
            teamName="web",
            expertise={"frontend": {"level": 0.8}},
            preferences={"indent": 2},
        )
        api = team_export(
            team_pattern("camelCase", 0.9, occurrences=3),
            teamName="api",
            expertise={"frontend": 0.4},
            preferences={"indent": 4, "quotes": "double"},
        )

        result = team_sync.merge_team_exports([web, "garbage", api])

        assert result.success
        merged = result.data
        camel = next(p for p in merged["patterns"] if p["pattern"] == "camelCase")
        assert camel["confidence"] == 0.9
        assert camel["occurrences"] == 5
        assert camel["teamCount"] == 2
        assert merged["expertise"]["frontend"]["level"] == pytest.approx(0.6)
        assert merged["expertise"]["frontend"]["teamCount"] == 2
        assert merged["preferences"] == {"indent": 2, "quotes": "double"}
        assert merged["sourceTeams"] == ["web", "api"]
        assert merged["stats"] == {"teamsIncluded": 2, "totalPatterns": 2, "crossTeamPatterns": 1}
        assert validate_export(merged).valid

    def test_empty(self, team_sync: TeamSync):
        result = team_sync.merge_team_exports([])
        assert result.success is False
        assert result.data is None

    def test_malformed_sections_ignored(self, team_sync: TeamSync):
        result = team_sync.merge_team_exports(
            [
                team_export(
                    team_pattern("camelCase", 0.6),
                    {"type": "naming", "pattern": "broken", "confidence": "high"},
                    expertise=["backend"],
                    preferences="tabs",
                )
            ]
        )

        assert result.success
        assert [p["pattern"] for p in result.data["patterns"]] == ["camelCase"]
        assert result.data["expertise"] == {}
        assert result.data["preferences"] == {}


class TestTeamRecommendations:
    def test_per_type(self, team_sync: TeamSync):
        data = team_export(
            team_pattern("snake_case", 0.4),
            team_pattern("camelCase", 0.9, occurrences=4),
            team_pattern("kebab", 0.2),
            team_pattern("PascalCase", 0.3),
        )

        recommendations = team_sync.get_team_recommendations(data)

        naming = recommendations["naming"]
        assert naming.recommended == "camelCase"
        assert naming.alternatives == ["snake_case", "PascalCase"]
        assert naming.team_support == 4

    def test_invalid_input(self, team_sync: TeamSync):
        assert team_sync.get_team_recommendations({"patterns": None}) == {}


class TestRoundTrip:
    def test_export_then_import_into_empty_store(
        self, memory: GlobalMemory, team_sync: TeamSync, tmp_path: Path
    ):
        memory.record_pattern("naming", "camelCase", confidence=0.8, source="api")
        memory.record_pattern("structure", "flat", confidence=0.6, source="web")
        memory.record_pattern("naming", "snake_case", confidence=0.3, source="cli")
        envelope = team_sync.export_for_team("platform", min_confidence=0.5)

        fresh = GlobalMemory(PersistentStore(tmp_path / "fresh", debounce_ms=0))
        boost = 0.1
        result = TeamSync(fresh).import_from_team(
            envelope, strategy="merge_all", confidence_boost=boost
        )

        assert result.success
        exported = {(p["type"], p["pattern"]): p["confidence"] for p in envelope["patterns"]}
        imported = {p.key: p.confidence for p in fresh.patterns}
        assert set(imported) == set(exported) == {("naming", "camelCase"), ("structure", "flat")}
        for key, confidence in imported.items():
            assert exported[key] <= confidence <= exported[key] + boost + 1e-9
            assert confidence <= 0.99

    def test_repeated_import_only_resolves_conflicts(
        self, memory: GlobalMemory, team_sync: TeamSync, tmp_path: Path
    ):
        memory.record_pattern("naming", "camelCase", confidence=0.8, source="api")
        envelope = team_sync.export_for_team("platform", min_confidence=0.5)
        fresh_sync = TeamSync(GlobalMemory(PersistentStore(tmp_path / "fresh", debounce_ms=0)))

        fresh_sync.import_from_team(envelope, strategy="merge_all")
        second = fresh_sync.import_from_team(envelope, strategy="merge_all")

        assert second.summary.patterns_imported == 0
        assert second.summary.conflicts_resolved == 1
        assert [p.key for p in fresh_sync.memory.patterns] == [("naming", "camelCase")]


class TestStats:
    def test_local_counts(self, memory: GlobalMemory, team_sync: TeamSync):
        memory.record_pattern("naming", "camelCase")
        memory.register_project("/work/api")

        assert team_sync.get_stats() == {"local_patterns": 1, "local_expertise": 0, "local_projects": 1}
