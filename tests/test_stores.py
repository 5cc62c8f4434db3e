"""Tests for the JSON war stores."""

import json
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from payloads import END, OPPONENT_TAG, make_group, make_league_match, make_match
from warcollector.models import SCHEMA_VERSION
from warcollector.storage import LeagueStore, MatchStore, StorageError, UpsertOutcome
from warcollector.storage.league_store import dedupe_matches

CLOCK_NOW = datetime(2025, 12, 21, 12, 0, tzinfo=timezone.utc)


def fixed_clock():
    return CLOCK_NOW


@pytest.fixture
def match_store(tmp_path):
    return MatchStore(tmp_path / "data" / "wars.json", clock=fixed_clock)


@pytest.fixture
def league_store(tmp_path):
    return LeagueStore(tmp_path / "data" / "leaguewars.json", clock=fixed_clock)


# ---------------------------------------------------------------------------
# Standalone store
# ---------------------------------------------------------------------------

class TestMatchStoreWrites:

    def test_absent_file_reads_empty(self, match_store):
        assert match_store.list_matches() == []
        assert match_store.get_latest() is None
        assert match_store.stats().to_dict() == {"totalWars": 0, "lastUpdated": "Never"}

    def test_upsert_creates_file_and_parents(self, match_store):
        assert match_store.upsert(make_match("m1")) is UpsertOutcome.CREATED
        assert match_store.path.exists()

        data = json.loads(match_store.path.read_text())
        assert data["version"] == SCHEMA_VERSION
        assert data["lastUpdated"].startswith("2025-12-21T12:00:00")
        assert [w["id"] for w in data["wars"]] == ["m1"]

    def test_upsert_is_idempotent(self, match_store):
        match = make_match("m1")
        match_store.upsert(match)
        first = match_store.list_matches()
        assert match_store.upsert(match) is UpsertOutcome.UPDATED
        assert match_store.list_matches() == first
        assert match_store.stats().count == 1

    def test_upsert_replaces_whole_record(self, match_store):
        match_store.upsert(make_match("m1", state="inWar"))
        match_store.upsert(make_match("m1", state="warEnded"))
        stored = match_store.get_match("m1")
        assert stored.state == "warEnded"
        assert match_store.stats().count == 1

    def test_sorted_newest_end_first(self, match_store):
        match_store.upsert(make_match("old", end=END - timedelta(days=7)))
        match_store.upsert(make_match("new", end=END))
        match_store.upsert(make_match("mid", end=END - timedelta(days=3)))
        assert [m.id for m in match_store.list_matches()] == ["new", "mid", "old"]
        assert match_store.get_latest().id == "new"

    def test_no_temp_file_left_behind(self, match_store):
        match_store.upsert(make_match("m1"))
        assert [p.name for p in match_store.path.parent.iterdir()] == ["wars.json"]


class TestMatchStoreFailurePolicy:

    def test_corrupt_file_reads_empty_but_write_raises(self, match_store):
        match_store.path.parent.mkdir(parents=True)
        match_store.path.write_text("{not json")

        assert match_store.list_matches() == []
        with pytest.raises(StorageError):
            match_store.upsert(make_match("m1"))
        # the unreadable file is not clobbered
        assert match_store.path.read_text() == "{not json"

    def test_newer_version_refused(self, match_store):
        match_store.path.parent.mkdir(parents=True)
        match_store.path.write_text(json.dumps({"version": SCHEMA_VERSION + 1, "wars": []}))

        assert match_store.list_matches() == []
        with pytest.raises(StorageError):
            match_store.upsert(make_match("m1"))

    def test_missing_version_treated_as_current(self, match_store):
        match_store.upsert(make_match("m1"))
        data = json.loads(match_store.path.read_text())
        del data["version"]
        match_store.path.write_text(json.dumps(data))

        assert [m.id for m in match_store.list_matches()] == ["m1"]
        assert match_store.upsert(make_match("m2", end=END + timedelta(days=2))) is UpsertOutcome.CREATED


# ---------------------------------------------------------------------------
# League store
# ---------------------------------------------------------------------------

class TestLeagueStore:

    def test_new_season_sorted_by_round(self, league_store):
        group = make_group(matches=[make_league_match("#W3", 3), make_league_match("#W1", 1)])
        assert league_store.upsert_group(group) is UpsertOutcome.CREATED
        stored = league_store.get_season("2025-12")
        assert [m.round_number for m in stored.matches] == [1, 3]

    def test_merge_by_id_and_replace_metadata(self, league_store):
        league_store.upsert_group(make_group(matches=[make_league_match("#W1", 1)], state="inWar"))
        later = END + timedelta(days=1)
        group = make_group(
            matches=[
                make_league_match("#W1", 1, state="warEnded", collected_at=later),
                make_league_match("#W2", 2, collected_at=later),
            ],
            state="ended",
            collected_at=later,
        )
        assert league_store.upsert_group(group) is UpsertOutcome.UPDATED

        stored = league_store.get_season("2025-12")
        assert stored.state == "ended"
        assert stored.collected_at == later
        assert [m.id for m in stored.matches] == ["#W1", "#W2"]
        assert league_store.stats().count == 2

    def test_existing_rounds_kept_when_absent_from_update(self, league_store):
        league_store.upsert_group(make_group(matches=[make_league_match("#W1", 1)]))
        league_store.upsert_group(make_group(matches=[make_league_match("#W2", 2)]))
        assert [m.id for m in league_store.get_season("2025-12").matches] == ["#W1", "#W2"]

    def test_seasons_newest_first(self, league_store):
        league_store.upsert_group(make_group("2025-11", [make_league_match("#N1", 1, season="2025-11")]))
        league_store.upsert_group(make_group("2025-12", [make_league_match("#D1", 1)]))

        assert [s.season for s in league_store.list_seasons()] == ["2025-12", "2025-11"]
        assert league_store.get_latest_season().season == "2025-12"
        assert [m.id for m in league_store.list_league_matches()] == ["#D1", "#N1"]
        assert league_store.stats().to_dict()["totalSeasons"] == 2

    def test_summary(self, league_store):
        league_store.upsert_group(
            make_group(matches=[make_league_match("#W1", 1), make_league_match("#W4", 4)])
        )
        summary = league_store.list_seasons()[0]
        assert summary.match_count == 2
        assert summary.rounds == [1, 4]

    def test_unknown_season(self, league_store):
        assert league_store.get_season("1999-01") is None


class TestLeagueDedupe:

    def test_keeps_latest_collected(self):
        early = make_league_match("2025-12-round1-" + OPPONENT_TAG, 1, collected_at=END)
        late = make_league_match("#W1", 1, collected_at=END + timedelta(hours=1))
        assert dedupe_matches([late, early]) == [late]

    def test_tie_prefers_tagged_id(self):
        fallback = make_league_match("2025-12-round1-" + OPPONENT_TAG, 1)
        tagged = make_league_match("#W1", 1)
        assert dedupe_matches([tagged, fallback]) == [tagged]
        assert dedupe_matches([fallback, tagged]) == [tagged]

    def test_different_opponents_not_collapsed(self):
        a = make_league_match("#W1", 1, opponent_tag="#AAA")
        b = make_league_match("#W2", 1, opponent_tag="#BBB")
        assert len(dedupe_matches([a, b])) == 2

    def test_pre_and_post_tag_rows_collapse(self, league_store):
        """A round first stored under its fallback id, later under its war tag, ends up once."""
        fallback_id = f"2025-12-round1-{OPPONENT_TAG}"
        league_store.upsert_group(make_group(matches=[make_league_match(fallback_id, 1, collected_at=END)]))
        league_store.upsert_group(
            make_group(matches=[make_league_match("#W1", 1, collected_at=END + timedelta(hours=2))])
        )
        assert league_store.stats().count == 2

        report = league_store.dedupe()
        assert report.to_dict() == {"before": 2, "after": 1, "removed": 1}
        assert [m.id for m in league_store.get_season("2025-12").matches] == ["#W1"]

    def test_dedupe_is_idempotent(self, league_store):
        league_store.upsert_group(make_group(matches=[make_league_match("#W1", 1)]))
        before = league_store.path.read_text()

        report = league_store.dedupe()
        assert report.removed == 0
        assert league_store.path.read_text() == before

    def test_dedupe_empty_store(self, league_store):
        assert league_store.dedupe().to_dict() == {"before": 0, "after": 0, "removed": 0}
        assert not league_store.path.exists()


# ---------------------------------------------------------------------------
# Concurrent writers
# ---------------------------------------------------------------------------

class TestConcurrentWrites:
    """Upserts racing on one store instance must all land."""

    def test_parallel_match_upserts_lose_nothing(self, match_store):
        matches = [make_match(f"m{i}", end=END - timedelta(hours=i)) for i in range(24)]

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(match_store.upsert, matches))

        assert all(o is UpsertOutcome.CREATED for o in outcomes)
        assert match_store.stats().count == 24
        assert {m.id for m in match_store.list_matches()} == {f"m{i}" for i in range(24)}

    def test_parallel_round_upserts_lose_nothing(self, league_store):
        groups = [make_group(matches=[make_league_match(f"#W{n}", n)]) for n in range(1, 8)]

        with ThreadPoolExecutor(max_workers=7) as pool:
            outcomes = list(pool.map(league_store.upsert_group, groups))

        # exactly one writer created the season, the rest merged into it
        assert outcomes.count(UpsertOutcome.CREATED) == 1
        season = league_store.get_season("2025-12")
        assert [m.round_number for m in season.matches] == [1, 2, 3, 4, 5, 6, 7]
        assert league_store.stats().count == 7
