"""Tests for mapping raw war payloads to canonical records."""

from datetime import datetime, timezone

import pytest

from payloads import (
    CLAN_TAG,
    END,
    OPPONENT_TAG,
    attack,
    e2e_war_payload,
    league_group_payload,
    member,
    side,
    war_payload,
)
from warcollector.etl.base import TransformError
from warcollector.etl.timestamps import format_provider_timestamp
from warcollector.etl.transformer import (
    UNKNOWN_DEFENDER,
    RoundPayload,
    compute_match_id,
    league_match_id,
    should_collect_league,
    should_collect_match,
    transform_league_group,
    transform_league_match,
    transform_match,
)
from warcollector.models import Lifecycle

NOW = datetime(2025, 12, 20, 5, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------

class TestMatchId:

    def test_deterministic_and_32_hex(self):
        a = compute_match_id(END, CLAN_TAG, OPPONENT_TAG)
        assert a == compute_match_id(END, CLAN_TAG, OPPONENT_TAG)
        assert len(a) == 32
        int(a, 16)

    def test_side_order_independent(self):
        assert compute_match_id(END, CLAN_TAG, OPPONENT_TAG) == compute_match_id(END, OPPONENT_TAG, CLAN_TAG)

    def test_timestamp_format_independent(self):
        compact = format_provider_timestamp(END)
        assert compute_match_id(compact, CLAN_TAG, OPPONENT_TAG) == compute_match_id(
            END.isoformat(), CLAN_TAG, OPPONENT_TAG
        )

    def test_different_end_differs(self):
        other = datetime(2025, 12, 22, tzinfo=timezone.utc)
        assert compute_match_id(END, CLAN_TAG, OPPONENT_TAG) != compute_match_id(other, CLAN_TAG, OPPONENT_TAG)


class TestLeagueMatchId:

    def test_war_tag_used(self):
        assert league_match_id("2025-12", 3, OPPONENT_TAG, "#WARTAG") == "#WARTAG"

    def test_fallback_without_tag(self):
        assert league_match_id("2025-12", 3, OPPONENT_TAG, None) == f"2025-12-round3-{OPPONENT_TAG}"

    def test_placeholder_tag_falls_back(self):
        assert league_match_id("2025-12", 1, OPPONENT_TAG, "#0") == f"2025-12-round1-{OPPONENT_TAG}"


class TestCollectPredicates:

    def test_match_states(self):
        assert not should_collect_match("notInWar")
        assert not should_collect_match("preparation")
        assert should_collect_match("inWar")
        assert should_collect_match("warEnded")

    def test_league_states(self):
        assert not should_collect_league("notInWar")
        assert should_collect_league("preparation")
        assert should_collect_league("inWar")
        assert should_collect_league("ended")


# ---------------------------------------------------------------------------
# Standalone wars
# ---------------------------------------------------------------------------

class TestTransformMatch:

    def test_full_war_stats(self):
        """Ten-a-side ended war: 10 own attacks for 25 stars, 8 opponent attacks for 20."""
        match = transform_match(e2e_war_payload(), CLAN_TAG, now=NOW)

        assert match.lifecycle is Lifecycle.ENDED
        assert match.end_time == END
        assert match.collected_at == NOW
        assert match.clan_stats.attacks_used == 10
        assert match.clan_stats.attacks_available == 20
        assert match.clan_stats.total_stars == 25
        assert match.opponent_stats.attacks_used == 8
        assert match.opponent_stats.total_stars == 20
        assert len(match.members) == 20
        assert len(match.actions) == 18

    def test_average_destruction(self):
        match = transform_match(e2e_war_payload(), CLAN_TAG, now=NOW)
        # own destruction: 50.0..59.0
        assert match.clan_stats.destruction_percentage == pytest.approx(54.5)

    def test_actions_sorted_by_global_order(self):
        match = transform_match(e2e_war_payload(), CLAN_TAG, now=NOW)
        orders = [a.order for a in match.actions]
        assert orders == sorted(orders)
        assert match.actions[0].is_own_clan
        assert match.actions[1].is_own_clan is False
        assert all(a.match_id == match.id for a in match.actions)

    def test_defender_names_resolved(self):
        match = transform_match(e2e_war_payload(), CLAN_TAG, now=NOW)
        first = match.actions[0]
        assert first.attacker_name == "Own0"
        assert first.defender_name == "Opp0"

    def test_unknown_defender(self):
        clan = side(CLAN_TAG, "Us", [member("#A1", "Alice", 1, attacks=[attack("#A1", "#GHOST", 2, 70.0, 1)])])
        match = transform_match(war_payload(clan=clan), CLAN_TAG, now=NOW)
        assert match.actions[0].defender_name == UNKNOWN_DEFENDER

    def test_sides_resolved_by_tag(self):
        """The tracked clan listed as 'opponent' is still the own side, with the same id."""
        raw = war_payload()
        swapped = dict(raw, clan=raw["opponent"], opponent=raw["clan"])

        a = transform_match(raw, CLAN_TAG, now=NOW)
        b = transform_match(swapped, CLAN_TAG, now=NOW)

        assert b.clan_tag == CLAN_TAG
        assert b.opponent_tag == OPPONENT_TAG
        assert a.id == b.id
        assert [m.tag for m in b.own_members()] == ["#A1", "#A2"]

    def test_members_own_first_by_position(self):
        match = transform_match(war_payload(), CLAN_TAG, now=NOW)
        assert [(m.is_own_clan, m.map_position) for m in match.members] == [
            (True, 1),
            (True, 2),
            (False, 1),
            (False, 2),
        ]

    def test_attacks_per_member_default(self):
        match = transform_match(war_payload(attacks_per_member=None), CLAN_TAG, now=NOW)
        assert match.attacks_per_member == 2
        assert match.clan_stats.attacks_available == 4

    def test_missing_field_raises(self):
        raw = war_payload()
        del raw["endTime"]
        with pytest.raises(TransformError):
            transform_match(raw, CLAN_TAG)

    def test_bad_timestamp_raises(self):
        raw = war_payload()
        raw["endTime"] = "yesterday"
        with pytest.raises(TransformError):
            transform_match(raw, CLAN_TAG)

    def test_duplicate_attack_order_raises(self):
        clan = side(
            CLAN_TAG,
            "Our Clan",
            [
                member("#A1", "Alice", 1, attacks=[attack("#A1", "#B1", 3, 100.0, 1)]),
                member("#A2", "Bob", 2, attacks=[attack("#A2", "#B2", 2, 70.0, 1)]),
            ],
        )
        with pytest.raises(TransformError):
            transform_match(war_payload(clan=clan), CLAN_TAG, now=NOW)

    def test_serializes_with_aliases(self):
        data = transform_match(war_payload(), CLAN_TAG, now=NOW).model_dump(mode="json", by_alias=True)
        assert "clanTag" in data
        assert "attacks" in data
        assert "isOurClan" in data["members"][0]


# ---------------------------------------------------------------------------
# League wars
# ---------------------------------------------------------------------------

class TestTransformLeague:

    def test_league_match_defaults(self):
        raw = war_payload(attacks_per_member=None)
        match = transform_league_match(raw, "2025-12", 2, CLAN_TAG, war_tag="#W2", now=NOW)
        assert match.id == "#W2"
        assert match.war_tag == "#W2"
        assert match.season == "2025-12"
        assert match.round_number == 2
        assert match.attacks_per_member == 1

    def test_league_match_without_tag(self):
        match = transform_league_match(war_payload(), "2025-12", 4, CLAN_TAG, now=NOW)
        assert match.id == f"2025-12-round4-{OPPONENT_TAG}"
        assert match.war_tag is None

    def test_round_out_of_range(self):
        with pytest.raises(TransformError):
            transform_league_match(war_payload(), "2025-12", 8, CLAN_TAG)

    def test_group_sorted_by_round(self):
        rounds = [
            RoundPayload(3, "#W3", war_payload(attacks_per_member=None)),
            RoundPayload(1, "#W1", war_payload(attacks_per_member=None)),
        ]
        group = transform_league_group(league_group_payload(), rounds, CLAN_TAG, now=NOW)
        assert group.season == "2025-12"
        assert [m.round_number for m in group.matches] == [1, 3]
        assert len(group.participating_clans) == 2
        assert group.collected_at == NOW

    def test_group_missing_season(self):
        raw = league_group_payload()
        del raw["season"]
        with pytest.raises(TransformError):
            transform_league_group(raw, [], CLAN_TAG)

    def test_malformed_round_raises_by_default(self):
        broken = war_payload(attacks_per_member=None)
        del broken["endTime"]
        rounds = [RoundPayload(1, "#W1", broken), RoundPayload(2, "#W2", war_payload(attacks_per_member=None))]
        with pytest.raises(TransformError):
            transform_league_group(league_group_payload(), rounds, CLAN_TAG, now=NOW)

    def test_malformed_round_dropped_when_skipping(self):
        broken = war_payload(attacks_per_member=None)
        del broken["endTime"]
        rounds = [RoundPayload(1, "#W1", broken), RoundPayload(2, "#W2", war_payload(attacks_per_member=None))]
        group = transform_league_group(league_group_payload(), rounds, CLAN_TAG, now=NOW, skip_malformed=True)
        assert [m.id for m in group.matches] == ["#W2"]
