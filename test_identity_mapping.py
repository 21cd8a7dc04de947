"""
Test script for the identifier mapping layer.
Relational ids are resolved to chain ids through natural keys only.
"""

import threading
from datetime import timedelta

import pytest
from sqlalchemy import delete

from conftest import FlaskClientSession, SENATE_START
from campusvote.extensions import db, cache
from campusvote.exceptions import (
    ElectionNotDeployedError, IdentifierNotFoundError, VoteError, VoteErrorKind
)
from campusvote.models import Candidate, Election, ElectionCandidate, Ticket
from campusvote.time_helpers import to_unix_seconds
from campusvote.voting import ChoiceKind, IdentifierMapper, LedgerClient, ticket_natural_key


@pytest.fixture
def ledger(client, seeded):
    return LedgerClient('http://localhost/api', seeded.voter_credential, session=FlaskClientSession(client))


@pytest.fixture
def mapper(fake_chain, ledger):
    return IdentifierMapper(fake_chain, ledger, scan_limit=16)


# ==================== Elections ====================

def test_election_resolved_by_start_time(mapper, seeded):
    """Test election lookup through the start-time natural key."""
    print("\n" + "=" * 80)
    print("TEST: Election Resolution By Start Time")
    print("=" * 80)

    senate_chain_id = mapper.resolve_election_id(seeded.senate.id)
    presidential_chain_id = mapper.resolve_election_id(seeded.presidential.id)
    print(f"  - Senate -> {senate_chain_id}, Presidential -> {presidential_chain_id}")

    assert senate_chain_id == 1
    assert presidential_chain_id == 2
    print("[PASS] Elections matched on start time")


def test_explicit_blockchain_id_wins(mapper, seeded, fake_chain):
    seeded.senate.blockchain_id = 5
    db.session.commit()

    assert mapper.resolve_election_id(seeded.senate.id) == 5

    # The start time now maps to the recorded id as well
    assert mapper.resolve_election_by_start_time(to_unix_seconds(SENATE_START)) == 5


def test_undeployed_election_raises_not_deployed(mapper, seeded):
    with pytest.raises(ElectionNotDeployedError) as exc_info:
        mapper.resolve_election_id(seeded.upcoming.id)

    assert exc_info.value.kind is VoteErrorKind.NOT_DEPLOYED
    assert exc_info.value.context['election'] == seeded.upcoming.id


def test_start_time_used_as_chain_id(mapper, fake_chain, seeded):
    start = to_unix_seconds(seeded.upcoming.start_date)
    fake_chain.add_election(start, seeded.upcoming.start_date)

    assert mapper.resolve_election_id(seeded.upcoming.id) == start


def test_scan_stops_at_first_missing_id(mapper, fake_chain, seeded):
    # Ids are sequential on chain, so nothing past a gap is considered
    fake_chain.add_election(4, seeded.upcoming.start_date)

    with pytest.raises(ElectionNotDeployedError):
        mapper.resolve_election_id(seeded.upcoming.id)

    fake_chain.add_election(3, SENATE_START + timedelta(days=60))
    assert mapper.resolve_election_id(seeded.upcoming.id) == 4


def test_missing_election_row(mapper):
    with pytest.raises(VoteError) as exc_info:
        mapper.resolve_election_id(9999)
    assert exc_info.value.kind is VoteErrorKind.IDENTIFIER_NOT_FOUND


def test_election_mapping_survives_row_deletion(mapper, seeded):
    """Test that deleting a relational row does not change a resolved mapping."""
    start = to_unix_seconds(seeded.senate.start_date)
    before = mapper.resolve_election_id(seeded.senate.id)

    db.session.execute(delete(Election).where(Election.id == seeded.senate.id))
    db.session.commit()

    assert mapper.resolve_election_by_start_time(start) == before

    mapper.clear()
    assert mapper.resolve_election_by_start_time(start) == before


# ==================== Candidates ====================

def test_candidate_resolved_by_student_id(mapper, seeded):
    assert mapper.resolve_choice(seeded.senate.id, ChoiceKind.CANDIDATE, seeded.ada.id) == 11
    assert mapper.resolve_choice(seeded.senate.id, 'candidate', seeded.ben.id) == 12


def test_reused_relational_id_maps_to_new_candidate(mapper, fake_chain, seeded):
    """Test that a recycled surrogate key never returns the old chain id."""
    print("\n" + "=" * 80)
    print("TEST: Mapping Stability Under Deletion")
    print("=" * 80)

    old = Candidate(full_name='Old Candidate', student_id='C900001', faculty='Arts', position='Senator')
    db.session.add(old)
    db.session.commit()
    old_link = ElectionCandidate(election_id=seeded.senate.id, candidate_id=old.id)
    db.session.add(old_link)
    db.session.commit()
    old_id = old.id
    fake_chain.candidates['C900001'] = 41

    assert mapper.resolve_choice(seeded.senate.id, ChoiceKind.CANDIDATE, old_id) == 41

    db.session.delete(old_link)
    db.session.delete(old)
    db.session.commit()

    new = Candidate(full_name='New Candidate', student_id='C900002', faculty='Arts', position='Senator')
    db.session.add(new)
    db.session.commit()
    db.session.add(ElectionCandidate(election_id=seeded.senate.id, candidate_id=new.id))
    db.session.commit()
    fake_chain.candidates['C900002'] = 42
    print(f"  - Relational id {old_id} reused: {new.id == old_id}")

    assert new.id == old_id
    assert mapper.resolve_choice(seeded.senate.id, ChoiceKind.CANDIDATE, new.id) == 42
    assert mapper.resolve_candidate_id('C900001') == 41
    print("[PASS] Natural keys keep mappings apart")


def test_candidate_from_other_election_is_refused(mapper, fake_chain, seeded):
    # Registered on chain, but standing in the senate race only
    with pytest.raises(IdentifierNotFoundError) as exc_info:
        mapper.resolve_choice(seeded.presidential.id, ChoiceKind.CANDIDATE, seeded.ada.id)
    assert exc_info.value.kind is VoteErrorKind.IDENTIFIER_NOT_FOUND
    assert 'not standing' in str(exc_info.value)


def test_unknown_candidate_without_registration(mapper, fake_chain):
    with pytest.raises(IdentifierNotFoundError) as exc_info:
        mapper.resolve_candidate_id('C404404')

    assert exc_info.value.kind is VoteErrorKind.IDENTIFIER_NOT_FOUND
    assert fake_chain.registrations == []


def test_missing_candidate_registered_once(mapper, fake_chain):
    """Test registering a candidate that is not on chain yet."""
    print("\n" + "=" * 80)
    print("TEST: Candidate Registration")
    print("=" * 80)

    chain_id = mapper.resolve_candidate_id('2021-00123', register_if_missing=True)
    again = mapper.resolve_candidate_id('2021-00123', register_if_missing=True)
    print(f"  - Registered as {chain_id}, registrations: {fake_chain.registrations}")

    assert chain_id > 0
    assert again == chain_id
    assert fake_chain.registrations == ['2021-00123']
    print("[PASS] Registered once, same id afterwards")


def test_concurrent_registration_resolves_to_same_id(fake_chain, ledger):
    mapper = IdentifierMapper(fake_chain, ledger, register_missing=True)
    barrier = threading.Barrier(4)
    results = []
    errors = []

    def resolve():
        barrier.wait()
        try:
            results.append(mapper.resolve_candidate_id('2021-00123'))
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=resolve) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(set(results)) == 1
    assert results[0] > 0
    assert fake_chain.registrations == ['2021-00123']


def test_lost_registration_race_is_settled_by_requery(mapper, fake_chain):
    # Another registrar got there first; the contract reverts ours
    fake_chain.register_error = RuntimeError('execution reverted: Candidate already registered')

    chain_id = mapper.resolve_candidate_id('2021-00124', register_if_missing=True)

    assert chain_id == fake_chain.candidates['2021-00124']
    assert chain_id > 0


def test_failed_registration_raises_with_cause(mapper, fake_chain):
    failure = RuntimeError('insufficient funds for gas')

    def register_candidate(student_id):
        raise failure
    fake_chain.register_candidate = register_candidate

    with pytest.raises(IdentifierNotFoundError) as exc_info:
        mapper.resolve_candidate_id('2021-00125', register_if_missing=True)
    assert exc_info.value.cause is failure


# ==================== Tickets ====================

def test_ticket_resolved_by_student_pair(mapper, seeded):
    assert mapper.resolve_choice(seeded.presidential.id, ChoiceKind.TICKET, seeded.ticket.id) == 21
    assert mapper.resolve_ticket_id('C200001', 'C200002') == 21


def test_ticket_from_other_election_is_refused(mapper, seeded):
    stray = Ticket(election_id=seeded.senate.id, president_id=seeded.ada.id, vp_id=seeded.ben.id)
    db.session.add(stray)
    db.session.commit()

    with pytest.raises(IdentifierNotFoundError):
        mapper.resolve_choice(seeded.presidential.id, ChoiceKind.TICKET, stray.id)


def test_unknown_ticket_pair(mapper):
    with pytest.raises(IdentifierNotFoundError):
        mapper.resolve_ticket_id('C200002', 'C200001')


def test_ticket_natural_key_keeps_pairs_distinct():
    assert ticket_natural_key('A|B', 'C') != ticket_natural_key('A', 'B|C')
    assert ticket_natural_key('A\\', '|B') != ticket_natural_key('A\\|', 'B')
    assert ticket_natural_key('P1', 'V1') == 'P1|V1'


# ==================== Cache ====================

def test_cached_mapping_until_invalidated(mapper, fake_chain):
    assert mapper.resolve_candidate_id('C100001') == 11
    assert mapper.resolve_ticket_id('C200001', 'C200002') == 21

    # Redeployment moved both entries
    fake_chain.candidates['C100001'] = 51
    fake_chain.tickets[('C200001', 'C200002')] = 61

    assert mapper.resolve_candidate_id('C100001') == 11
    assert mapper.resolve_ticket_id('C200001', 'C200002') == 21

    mapper.invalidate('candidate', 'C100001')
    mapper.invalidate('ticket', ('C200001', 'C200002'))

    assert mapper.resolve_candidate_id('C100001') == 51
    assert mapper.resolve_ticket_id('C200001', 'C200002') == 61


def test_app_cache_backend(fake_chain, ledger, seeded):
    """Test the mapper against the Flask-Caching backend."""
    mapper = IdentifierMapper(fake_chain, ledger, cache=cache)
    mapper.clear()

    assert mapper.resolve_election_id(seeded.senate.id) == 1
    assert mapper.resolve_candidate_id('C100002') == 12

    del fake_chain.candidates['C100002']
    assert mapper.resolve_candidate_id('C100002') == 12

    mapper.clear()
    with pytest.raises(IdentifierNotFoundError):
        mapper.resolve_candidate_id('C100002')
