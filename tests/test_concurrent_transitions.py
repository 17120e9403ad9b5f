"""
tests/test_concurrent_transitions.py — Racing Transitions
===========================================================
Several threads hit the same rows at once on a file-backed SQLite engine
(one connection per thread).  Exactly one writer may win a compare-and-set,
counters must still equal the rows they summarize, and a voter's daily
quota must hold across simultaneous first votes.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

from sqlalchemy.orm import Session

from huddle.database.models import User
from huddle.errors import HuddleError
from huddle.services import gathering_service, vote_service


def _users(engine, *names: str) -> list[int]:
    with Session(engine) as session:
        users = [User(nickname=n) for n in names]
        session.add_all(users)
        session.commit()
        return [u.id for u in users]


def _race(*calls) -> list[str]:
    """Run every callable at once; return ``"ok"`` or the failure code for each."""
    barrier = threading.Barrier(len(calls))

    def _run(call):
        barrier.wait()
        try:
            call()
        except HuddleError as exc:
            return exc.code
        return "ok"

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        return list(pool.map(_run, calls))


def assert_counter_consistent(engine, gathering_id: int) -> None:
    gathering = gathering_service.get_gathering(engine, gathering_id)
    assert gathering.current_members == gathering_service.count_approved(engine, gathering_id)


class TestConcurrentMembership:
    def test_parallel_approves_of_one_row(self, file_engine):
        host, applicant = _users(file_engine, "host", "applicant")
        g = gathering_service.create_gathering(
            file_engine, creator_id=host, title="Chess", max_members=5, approval_required=True
        )
        row = gathering_service.request_join(file_engine, gathering_id=g.id, user_id=applicant)

        outcomes = _race(*[
            lambda: gathering_service.approve(file_engine, membership_id=row.id, actor_id=host)
            for _ in range(4)
        ])
        assert sorted(outcomes) == ["invalid_state"] * 3 + ["ok"]
        assert gathering_service.get_gathering(file_engine, g.id).current_members == 2
        assert_counter_consistent(file_engine, g.id)

    def test_approve_and_kick_on_different_rows(self, file_engine):
        host, pending, member = _users(file_engine, "host", "pending", "member")
        g = gathering_service.create_gathering(
            file_engine, creator_id=host, title="Chess", max_members=5, approval_required=True
        )
        to_approve = gathering_service.request_join(
            file_engine, gathering_id=g.id, user_id=pending
        )
        to_kick = gathering_service.request_join(file_engine, gathering_id=g.id, user_id=member)
        gathering_service.approve(file_engine, membership_id=to_kick.id, actor_id=host)

        outcomes = _race(
            lambda: gathering_service.approve(
                file_engine, membership_id=to_approve.id, actor_id=host
            ),
            lambda: gathering_service.kick(file_engine, membership_id=to_kick.id, actor_id=host),
        )
        assert outcomes == ["ok", "ok"]
        assert gathering_service.get_gathering(file_engine, g.id).current_members == 2
        assert_counter_consistent(file_engine, g.id)

    def test_parallel_joins_never_overfill(self, file_engine):
        host, *joiners = _users(file_engine, "host", "j1", "j2", "j3", "j4")
        g = gathering_service.create_gathering(
            file_engine, creator_id=host, title="Small table", max_members=2
        )

        outcomes = _race(*[
            (lambda uid=uid: gathering_service.request_join(
                file_engine, gathering_id=g.id, user_id=uid
            ))
            for uid in joiners
        ])
        assert sorted(outcomes) == ["full"] * 3 + ["ok"]
        assert gathering_service.get_gathering(file_engine, g.id).current_members == 2
        assert_counter_consistent(file_engine, g.id)


class TestConcurrentQuota:
    def test_simultaneous_first_votes_spend_quota_once(self, file_engine):
        voter, *targets = _users(file_engine, "voter", "t1", "t2", "t3")

        outcomes = _race(*[
            (lambda t=t: vote_service.toggle_vote(
                file_engine, voter_id=voter, target_id=t, category="thumbs_up", active=True
            ))
            for t in targets
        ])
        assert sorted(outcomes) == ["ok"] + ["rate_limited"] * 2
        cast = [vote_service.votes_cast(file_engine, voter, t) for t in targets]
        assert sum(1 for c in cast if c) == 1
