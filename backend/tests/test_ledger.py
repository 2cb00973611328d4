from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from conftest import ADMIN, RED_ADMIN, RecordingBroadcaster, voter

from housecup.core.errors import (
    AlreadyVoted,
    HouseMismatch,
    HouseRequired,
    InvalidRequest,
    NominationNotApproved,
    NotFound,
    Unauthorized,
    VotingClosed,
)
from housecup.db import utcnow
from housecup.db_models import APPROVED, PENDING, REJECTED, WINNER, Vote
from housecup.security import Identity
from housecup.services.ledger import VoteLedger
from housecup.services.nominations import NominationStore
from housecup.services.tally import ResultTally


@pytest.fixture
def ledger(db, broadcaster):
    return VoteLedger(db, broadcaster)


def test_cast_vote_accepts_and_counts(ledger, make_position, make_nomination, broadcaster):
    position = make_position()
    nomination = make_nomination(position, "cand-1")

    result = ledger.cast_vote(voter("u1"), position.id, nomination.id)

    assert result.accepted is True
    assert result.new_count == 1
    assert result.vote.house_id == "red"
    assert ledger.count(nomination.id) == 1
    event = broadcaster.events[-1]
    assert event.name == "nomination_vote_count_updated"
    assert (event.nomination_id, event.vote_count) == (nomination.id, 1)


def test_second_vote_same_position_is_already_voted(ledger, make_position, make_nomination, broadcaster):
    position = make_position()
    n1 = make_nomination(position, "cand-1")
    n2 = make_nomination(position, "cand-2")

    ledger.cast_vote(voter("u1"), position.id, n1.id)
    with pytest.raises(AlreadyVoted) as excinfo:
        ledger.cast_vote(voter("u1"), position.id, n2.id)

    assert excinfo.value.outcome == "already_applied"
    assert ledger.count(n1.id) == 1
    assert ledger.count(n2.id) == 0
    assert len(broadcaster.events) == 1


def test_voter_may_vote_once_per_position(ledger, make_position, make_nomination):
    captain = make_position("Captain")
    vice = make_position("Vice Captain")
    c = make_nomination(captain, "cand-1")
    v = make_nomination(vice, "cand-2")

    ledger.cast_vote(voter("u1"), captain.id, c.id)
    ledger.cast_vote(voter("u1"), vice.id, v.id)
    assert [vote.position_id for vote in ledger.my_votes("u1")] == [vice.id, captain.id]
    assert [vote.position_id for vote in ledger.my_votes("u1", captain.id)] == [captain.id]


@pytest.mark.parametrize("status", [PENDING, REJECTED, WINNER])
def test_vote_for_unapproved_nomination(ledger, make_position, make_nomination, status):
    position = make_position()
    nomination = make_nomination(position, "cand-1", status=status)
    with pytest.raises(NominationNotApproved):
        ledger.cast_vote(voter("u1"), position.id, nomination.id)
    assert ledger.count(nomination.id) == 0


def test_vote_unknown_targets(ledger, make_position, make_nomination):
    position = make_position()
    nomination = make_nomination(position, "cand-1")
    with pytest.raises(NotFound):
        ledger.cast_vote(voter("u1"), 999, nomination.id)
    with pytest.raises(NotFound):
        ledger.cast_vote(voter("u1"), position.id, 999)


def test_vote_nomination_of_other_position(ledger, make_position, make_nomination):
    captain = make_position("Captain")
    vice = make_position("Vice Captain")
    nomination = make_nomination(vice, "cand-1")
    with pytest.raises(InvalidRequest):
        ledger.cast_vote(voter("u1"), captain.id, nomination.id)


def test_vote_outside_window(ledger, make_position, make_nomination):
    now = utcnow()
    future = make_position("Future", voting_starts_at=now + timedelta(hours=1))
    past = make_position("Past", voting_ends_at=now - timedelta(hours=1))
    for position in (future, past):
        nomination = make_nomination(position, f"cand-{position.id}")
        with pytest.raises(VotingClosed):
            ledger.cast_vote(voter("u1"), position.id, nomination.id)


def test_vote_inside_window(ledger, make_position, make_nomination):
    now = utcnow()
    position = make_position(voting_starts_at=now - timedelta(hours=1), voting_ends_at=now + timedelta(hours=1))
    nomination = make_nomination(position, "cand-1")
    assert ledger.cast_vote(voter("u1"), position.id, nomination.id).accepted


def test_vote_house_rules(ledger, make_position, make_nomination):
    position = make_position()
    nomination = make_nomination(position, "cand-1", house_id="red")
    with pytest.raises(HouseMismatch):
        ledger.cast_vote(voter("u1", "blue"), position.id, nomination.id)
    with pytest.raises(HouseRequired):
        ledger.cast_vote(Identity(user_id="u2", role="voter"), position.id, nomination.id)


def test_concurrent_casts_same_voter_only_one_succeeds(session_factory, make_position, make_nomination):
    position = make_position()
    nominations = [make_nomination(position, f"cand-{i}") for i in range(4)]
    recorder = RecordingBroadcaster()

    def attempt(i):
        session = session_factory()
        try:
            VoteLedger(session, recorder).cast_vote(voter("u1"), position.id, nominations[i % 4].id)
            return "ok"
        except AlreadyVoted:
            return "already"
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(attempt, range(16)))

    assert outcomes.count("ok") == 1
    assert outcomes.count("already") == 15

    check = session_factory()
    try:
        rows = check.query(Vote).filter_by(voter_user_id="u1", position_id=position.id).all()
        assert len(rows) == 1
        ledger = VoteLedger(check, recorder)
        assert sum(ledger.count(n.id) for n in nominations) == 1
    finally:
        check.close()
    assert len(recorder.events) == 1


def test_concurrent_casts_different_voters_all_count(session_factory, make_position, make_nomination):
    position = make_position()
    nomination = make_nomination(position, "cand-1")
    recorder = RecordingBroadcaster()

    def attempt(i):
        session = session_factory()
        try:
            return VoteLedger(session, recorder).cast_vote(voter(f"u{i}"), position.id, nomination.id).new_count
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=8) as pool:
        counts = list(pool.map(attempt, range(20)))

    # Each caller sees at least its own vote.
    assert all(c >= 1 for c in counts)
    check = session_factory()
    try:
        assert VoteLedger(check, recorder).count(nomination.id) == 20
    finally:
        check.close()


def test_conservation_of_votes(ledger, make_position, make_nomination):
    position = make_position()
    nominations = [make_nomination(position, f"cand-{i}") for i in range(3)]
    for i in range(10):
        ledger.cast_vote(voter(f"u{i}"), position.id, nominations[i % 3].id)

    assert sum(ledger.count(n.id) for n in nominations) == ledger.count_for_position(position.id) == 10


def test_reset_deletes_votes_and_allows_revoting(ledger, make_position, make_nomination, broadcaster):
    position = make_position()
    n1 = make_nomination(position, "cand-1")
    n2 = make_nomination(position, "cand-2")
    ledger.cast_vote(voter("u1"), position.id, n1.id)
    ledger.cast_vote(voter("u2"), position.id, n2.id)

    assert ledger.reset(position.id, ADMIN) == 2
    assert ledger.count(n1.id) == ledger.count(n2.id) == 0
    assert broadcaster.events[-1].name == "results_reset"
    assert broadcaster.events[-1].deleted == 2

    assert ledger.cast_vote(voter("u1"), position.id, n2.id).new_count == 1


def test_reset_scoped_to_house(ledger, make_position, make_nomination):
    position = make_position()
    red = make_nomination(position, "cand-red", house_id="red")
    blue = make_nomination(position, "cand-blue", house_id="blue")
    ledger.cast_vote(voter("r1", "red"), position.id, red.id)
    ledger.cast_vote(voter("r2", "red"), position.id, red.id)
    ledger.cast_vote(voter("b1", "blue"), position.id, blue.id)

    assert ledger.reset(position.id, ADMIN, house_id="red") == 2
    assert ledger.count(red.id) == 0
    assert ledger.count(blue.id) == 1


def test_reset_demotes_winner_in_scope(ledger, db, make_position, make_nomination):
    position = make_position()
    red = make_nomination(position, "cand-red", house_id="red", status=WINNER)
    blue = make_nomination(position, "cand-blue", house_id="blue", status=WINNER)

    ledger.reset(position.id, ADMIN, house_id="red")
    db.refresh(red)
    db.refresh(blue)
    assert (red.status, blue.status) == (APPROVED, WINNER)


def test_reset_by_house_admin(ledger, make_position):
    position = make_position()
    with pytest.raises(Unauthorized):
        ledger.reset(position.id, RED_ADMIN)
    with pytest.raises(Unauthorized):
        ledger.reset(position.id, RED_ADMIN, house_id="blue")
    assert ledger.reset(position.id, RED_ADMIN, house_id="red") == 0


def test_reset_unknown_position(ledger):
    with pytest.raises(NotFound):
        ledger.reset(404, ADMIN)


def test_vote_survives_broadcast_failure(db, make_position, make_nomination):
    class Broken:
        calls = 0

        def publish(self, event):
            Broken.calls += 1
            raise ConnectionError("socket gone")

    position = make_position()
    nomination = make_nomination(position, "cand-1")
    ledger = VoteLedger(db, Broken())

    result = ledger.cast_vote(voter("u1"), position.id, nomination.id)
    assert result.accepted and result.new_count == 1
    assert Broken.calls == 3
    assert ledger.count(nomination.id) == 1


def test_nomination_approval_makes_it_votable(db, broadcaster, make_position):
    position = make_position()
    store = NominationStore(db, broadcaster)
    ledger = VoteLedger(db, broadcaster)
    nomination = store.submit(voter("cand-1"), position.id, "manifesto")

    with pytest.raises(NominationNotApproved):
        ledger.cast_vote(voter("u1"), position.id, nomination.id)
    store.moderate(nomination.id, "approve", ADMIN)
    assert ledger.cast_vote(voter("u1"), position.id, nomination.id).new_count == 1


def test_list_votes_for_audit(ledger, make_position, make_nomination):
    captain = make_position("Captain")
    vice = make_position("Vice Captain")
    red = make_nomination(captain, "cand-red", house_id="red")
    blue = make_nomination(captain, "cand-blue", house_id="blue")
    other = make_nomination(vice, "cand-vice", house_id="red")
    ledger.cast_vote(voter("r1", "red"), captain.id, red.id)
    ledger.cast_vote(voter("b1", "blue"), captain.id, blue.id)
    ledger.cast_vote(voter("r1", "red"), vice.id, other.id)

    assert len(ledger.list_votes()) == 3
    assert {v.voter_user_id for v in ledger.list_votes(position_id=captain.id)} == {"r1", "b1"}
    assert [(v.voter_user_id, v.position_id) for v in ledger.list_votes(captain.id, "red")] == [("r1", captain.id)]
    assert [v.position_id for v in ledger.list_votes(house_id="red")] == [vice.id, captain.id]


def test_declared_winner_stops_accepting_votes(db, broadcaster, make_position, make_nomination):
    position = make_position()
    nomination = make_nomination(position, "cand-1")
    ledger = VoteLedger(db, broadcaster)
    ledger.cast_vote(voter("u1"), position.id, nomination.id)
    ResultTally(db, broadcaster).declare_winner(position.id, ADMIN)

    with pytest.raises(NominationNotApproved):
        ledger.cast_vote(voter("u2"), position.id, nomination.id)
    assert ledger.count(nomination.id) == 1

    ledger.reset(position.id, ADMIN)
    assert ledger.cast_vote(voter("u2"), position.id, nomination.id).new_count == 1
