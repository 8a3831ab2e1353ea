"""Tests for the ranking aggregator (warmline/engine/ranking.py)."""

from datetime import timedelta

import pytest

from warmline.core.exceptions import RankingUnavailableError
from warmline.db.database import Database
from warmline.db.models import (
    ConnectionStrength,
    GoalCandidate,
    OpportunityStatus,
    User,
)
from warmline.engine.ranking import RankingAggregator, RankingCandidate, rank_candidates


class TestRankCandidates:
    """Ordering and tie-breaks."""

    def test_score_then_age_then_id(self, clock):
        """Higher score first; ties go to the older item, then type, then id."""
        now = clock.now()
        older = now - timedelta(days=2)
        candidates = [
            RankingCandidate("goal", "10", 80, "open", older),
            RankingCandidate("goal", "9", 80, "open", older),
            RankingCandidate("connection_request", "5", 80, "open", now),
            RankingCandidate("connector_opportunity", "1", 90, "open", now),
        ]
        ranked = rank_candidates(candidates, limit=10)
        assert [(c.item_type, c.item_id) for c in ranked] == [
            ("connector_opportunity", "1"),
            ("goal", "9"),
            ("goal", "10"),
            ("connection_request", "5"),
        ]

    def test_limit(self, clock):
        now = clock.now()
        candidates = [RankingCandidate("goal", str(n), n, "open", now) for n in range(20)]
        assert len(rank_candidates(candidates, limit=10)) == 10


class TestRankingAggregator:
    """Publishing the projection."""

    def test_refresh_ranks_and_persists_scores(
        self, memory_db: Database, user: User, make_connector, make_request
    ):
        """Items come back rank 1 first and their scores are stored."""
        low = memory_db.create_opportunity(
            make_connector(bounty_credits=0, connection_strength=ConnectionStrength.THIRD,
                           age_days=10)
        )
        high = memory_db.create_opportunity(make_request(vouch_count=3))

        result = RankingAggregator(memory_db).refresh("u-1")

        assert result.changed is True
        assert result.version == 1
        assert [e.item_id for e in result.entries] == [str(high), str(low)]
        assert [e.rank for e in result.entries] == [1, 2]
        assert memory_db.get_opportunity(high).value_score == 110
        assert [e.item_id for e in memory_db.get_priorities("u-1")] == [str(high), str(low)]

    def test_unchanged_ranking_keeps_version(self, memory_db: Database, user: User, make_request):
        """Refreshing twice with no change does not bump the version."""
        memory_db.create_opportunity(make_request())
        aggregator = RankingAggregator(memory_db)
        first = aggregator.refresh("u-1")
        second = aggregator.refresh("u-1")
        assert second.changed is False
        assert second.version == first.version

    def test_ineligible_statuses_excluded(
        self, memory_db: Database, user: User, make_connector
    ):
        """Dormant, paused and terminal items are never ranked."""
        keep = memory_db.create_opportunity(make_connector(prospect_id="p-1"))
        for status in (
            OpportunityStatus.DORMANT,
            OpportunityStatus.PAUSED,
            OpportunityStatus.ACCEPTED,
            OpportunityStatus.DECLINED,
        ):
            opp_id = memory_db.create_opportunity(make_connector(prospect_id=f"p-{status.value}"))
            memory_db.update_opportunity_status(opp_id, [OpportunityStatus.OPEN], status)

        result = RankingAggregator(memory_db).refresh("u-1")
        assert [e.item_id for e in result.entries] == [str(keep)]

    def test_goal_candidates_merged(self, memory_db: Database, user: User, make_request):
        """Pre-scored goals compete with opportunities on score."""
        memory_db.create_opportunity(make_request(vouch_count=0))  # 50
        goals = [GoalCandidate(item_id="g-1", value_score=75, description="Raise a seed round")]
        result = RankingAggregator(memory_db).refresh("u-1", goals)
        assert result.entries[0].item_type == "goal"
        assert result.entries[0].item_id == "g-1"

    def test_limit_applies(self, memory_db: Database, user: User, make_request):
        for _ in range(4):
            memory_db.create_opportunity(make_request())
        result = RankingAggregator(memory_db, limit=2).refresh("u-1")
        assert len(result.entries) == 2

    def test_timeout_raises(self, memory_db: Database, user: User, make_request):
        """A recompute over budget is reported, not published."""
        memory_db.create_opportunity(make_request())
        aggregator = RankingAggregator(memory_db, timeout_seconds=-1)
        with pytest.raises(RankingUnavailableError):
            aggregator.refresh("u-1")
        assert memory_db.get_priority_head("u-1") is None

    def test_empty_ranking(self, memory_db: Database, user: User):
        result = RankingAggregator(memory_db).refresh("u-1")
        assert result.entries == []
