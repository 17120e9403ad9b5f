"""
tests/test_score_aggregator.py — Score Aggregator Tests
========================================================
The aggregate must always equal the weighted sum of the target's active
votes, regardless of how many times or in what order it is recomputed.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.orm import Session

from huddle.database.models import PopularityVote, User, VoteCategory
from huddle.engine.scoring import CATEGORY_WEIGHTS, ScoreTally, tally_votes
from huddle.errors import NotFound, SelfVote, NotCompleted
from huddle.services import gathering_service, schedule_service, score_service, vote_service


def _run(coro):
    """Run an async coroutine synchronously (no pytest-asyncio needed)."""
    return asyncio.run(coro)


@pytest.fixture
def engine(db_engine):
    return db_engine


# ---------------------------------------------------------------------------
# Pure tally
# ---------------------------------------------------------------------------
class TestTally:
    def test_weights(self):
        assert CATEGORY_WEIGHTS[VoteCategory.THUMBS_DOWN] == -1
        assert all(
            w == 1 for c, w in CATEGORY_WEIGHTS.items() if c != VoteCategory.THUMBS_DOWN
        )
        assert set(CATEGORY_WEIGHTS) == set(VoteCategory)

    def test_tally_counts_and_total(self):
        tally = tally_votes(["kind", "friendly", "thumbs_down", "kind"])
        assert tally.total_score == 2
        assert tally.counts[VoteCategory.KIND] == 2
        assert tally.counts[VoteCategory.THUMBS_DOWN] == 1
        assert tally.counts[VoteCategory.PUNCTUAL] == 0

    def test_unknown_categories_are_skipped(self):
        assert tally_votes(["kind", "legacy_tag"]).total_score == 1

    def test_empty(self):
        assert tally_votes([]) == ScoreTally()

    def test_as_dict(self):
        payload = tally_votes(["thumbs_up"]).as_dict()
        assert payload["total_score"] == 1
        assert payload["categories"]["thumbs_up"] == 1
        assert set(payload["categories"]) == {c.value for c in VoteCategory}


# ---------------------------------------------------------------------------
# Evaluation scenario
# ---------------------------------------------------------------------------
class TestEvaluationScenario:
    def test_toggle_on_off_after_completed_schedule(self, engine, make_user):
        host, a, b = make_user("host"), make_user("a"), make_user("b")
        g = gathering_service.create_gathering(
            engine, creator_id=host, title="Run club", max_members=8
        )
        for uid in (a, b):
            gathering_service.request_join(engine, gathering_id=g.id, user_id=uid)
        s = schedule_service.create_schedule(
            engine, gathering_id=g.id, creator_id=host, title="5k", max_members=8
        )
        for uid in (a, b):
            schedule_service.join(engine, schedule_id=s.id, user_id=uid)

        with pytest.raises(NotCompleted):
            vote_service.toggle_vote(
                engine, voter_id=a, target_id=b, category="kind", active=True,
                schedule_id=s.id,
            )
        schedule_service.complete(engine, schedule_id=s.id, actor_id=host)

        for category in ("kind", "friendly"):
            result = vote_service.toggle_vote(
                engine, voter_id=a, target_id=b, category=category, active=True,
                schedule_id=s.id,
            )
            score_service.recompute(engine, result.trigger.user_ids)
        assert score_service.get_score(engine, b).total_score == 2

        result = vote_service.toggle_vote(
            engine, voter_id=a, target_id=b, category="kind", active=False, schedule_id=s.id
        )
        score_service.recompute(engine, result.trigger.user_ids)
        score = score_service.get_score(engine, b)
        assert score.total_score == 1
        assert score.counts[VoteCategory.KIND] == 0
        assert score.counts[VoteCategory.FRIENDLY] == 1

        with pytest.raises(SelfVote):
            vote_service.toggle_vote(
                engine, voter_id=a, target_id=a, category="kind", active=True,
                schedule_id=s.id,
            )


# ---------------------------------------------------------------------------
# Recompute semantics
# ---------------------------------------------------------------------------
class TestRecompute:
    def test_score_is_zero_before_first_recompute(self, engine, make_user):
        uid = make_user()
        assert score_service.get_score(engine, uid) == ScoreTally()

    def test_unknown_user(self, engine):
        with pytest.raises(NotFound):
            score_service.get_score(engine, 31337)

    def test_recompute_is_idempotent_and_history_independent(self, engine, make_user):
        target = make_user("target")
        voters = [make_user(f"v{i}", unlimited=True) for i in range(3)]

        # Noisy history: many toggles, ending with two ups and one down active.
        for _ in range(3):
            for voter in voters:
                vote_service.toggle_vote(
                    engine, voter_id=voter, target_id=target, category="thumbs_up", active=True
                )
                vote_service.toggle_vote(
                    engine, voter_id=voter, target_id=target, category="thumbs_up", active=False
                )
            score_service.recompute(engine, [target])
        for voter in voters[:2]:
            vote_service.toggle_vote(
                engine, voter_id=voter, target_id=target, category="thumbs_up", active=True
            )
        vote_service.toggle_vote(
            engine, voter_id=voters[2], target_id=target, category="thumbs_down", active=True
        )

        first = score_service.recompute(engine, [target])[target]
        second = score_service.recompute(engine, [target, target])[target]
        assert first == second
        assert first.total_score == 1
        assert score_service.get_score(engine, target) == first

    def test_matches_ledger_inserted_directly(self, engine, make_user):
        target, voter = make_user("target"), make_user("voter")
        with Session(engine) as session:
            session.add_all([
                PopularityVote(voter_id=voter, target_id=target, category="thumbs_up"),
                PopularityVote(voter_id=voter, target_id=target, category="kind"),
                PopularityVote(
                    voter_id=voter, target_id=target, category="thumbs_down", is_active=False
                ),
            ])
            session.commit()

        tally = score_service.recompute(engine, [target])[target]
        assert tally.total_score == 2
        assert tally.counts[VoteCategory.THUMBS_DOWN] == 0

    def test_missing_users_are_skipped(self, engine, make_user):
        uid = make_user()
        results = score_service.recompute(engine, [uid, 999999])
        assert list(results) == [uid]

    def test_recompute_recent_only_touches_changed_targets(self, engine, make_user):
        old_target, new_target = make_user("old"), make_user("new")
        voter = make_user("voter", unlimited=True)
        long_ago = datetime.now(UTC) - timedelta(days=30)
        vote_service.toggle_vote(
            engine, voter_id=voter, target_id=old_target, category="kind", active=True,
            now=long_ago,
        )
        vote_service.toggle_vote(
            engine, voter_id=voter, target_id=new_target, category="kind", active=True
        )

        results = score_service.recompute_recent(
            engine, datetime.now(UTC) - timedelta(hours=1)
        )
        assert set(results) == {new_target}
        assert score_service.get_score(engine, old_target).total_score == 0


class TestRecomputeAsync:
    def test_fans_out_across_users(self, file_engine):
        with Session(file_engine) as session:
            users = [User(nickname=f"u{i}") for i in range(4)]
            session.add_all(users)
            session.flush()
            ids = [u.id for u in users]
            session.add_all([
                PopularityVote(voter_id=ids[0], target_id=t, category="cheerful")
                for t in ids[1:]
            ])
            session.commit()

        results = _run(score_service.recompute_async(file_engine, ids))
        assert set(results) == set(ids)
        assert results[ids[0]].total_score == 0
        for t in ids[1:]:
            assert score_service.get_score(file_engine, t).total_score == 1

    def test_same_user_concurrent_recomputes_converge(self, file_engine):
        with Session(file_engine) as session:
            voter, target = User(nickname="voter"), User(nickname="target")
            session.add_all([voter, target])
            session.flush()
            session.add(PopularityVote(voter_id=voter.id, target_id=target.id, category="kind"))
            session.commit()
            target_id = target.id

        async def _burst():
            return await asyncio.gather(*(
                asyncio.to_thread(score_service.recompute_user, file_engine, target_id)
                for _ in range(5)
            ))

        tallies = _run(_burst())
        assert {t.total_score for t in tallies} == {1}
        assert score_service.get_score(file_engine, target_id).total_score == 1


class TestLocalLocks:
    def test_lock_table_stays_bounded(self, engine, make_user):
        ids = [make_user(f"u{i}") for i in range(5)]
        score_service.recompute(engine, ids + list(range(10_000, 10_200)))
        assert len(score_service._local_locks) == score_service._LOCK_STRIPES

    def test_same_user_always_maps_to_same_lock(self):
        with score_service._local_lock(7):
            assert score_service._local_locks[7 % score_service._LOCK_STRIPES].locked()
        assert not score_service._local_locks[7 % score_service._LOCK_STRIPES].locked()
