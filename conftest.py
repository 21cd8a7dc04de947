"""
Shared pytest fixtures: a Flask app on an in-memory database, seeded
elections, and in-memory stand-ins for the chain, the wallet and the HTTP
transport between the vote engine and the service.
"""

from datetime import datetime, timedelta
from types import SimpleNamespace
from urllib.parse import urlsplit

import pytest
from web3.exceptions import TimeExhausted

from campusvote import create_app
from campusvote.extensions import db
from campusvote.models import (
    Student, VoterCredential, Election, ElectionType, ElectionStatus,
    Candidate, ElectionCandidate, Ticket
)
from campusvote.blockchain import ElectionDetails, ChainElectionType, WalletRPCError
from campusvote.time_helpers import to_unix_seconds
from config import TestingConfig

VOTER_ADDRESS = '0x1111111111111111111111111111111111111111'
SENATE_START = datetime(2025, 3, 1, 9, 0, 0)
PRESIDENT_START = datetime(2025, 3, 1, 9, 30, 0)


# ==================== Flask app ====================

@pytest.fixture
def app():
    app = create_app(TestingConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def make_student(email, number, is_admin=False, wallet_address=None):
    student = Student(
        email=email, student_number=number, faculty='Engineering',
        is_admin=is_admin, wallet_address=wallet_address
    )
    db.session.add(student)
    db.session.flush()
    credential, raw = VoterCredential.create_token(student.id, 'test')
    db.session.add(credential)
    return student, raw


@pytest.fixture
def seeded(app):
    """Two active elections: a senate race with two candidates and a presidential ticket."""
    voter, voter_credential = make_student('voter@campus.test', 'S000001', wallet_address=VOTER_ADDRESS)
    other, other_credential = make_student('other@campus.test', 'S000002')
    admin, admin_credential = make_student('admin@campus.test', 'ADM0001', is_admin=True)

    senate = Election(
        name='Senate Election', position='Senator', election_type=ElectionType.SENATOR,
        status=ElectionStatus.ACTIVE, start_date=SENATE_START, end_date=SENATE_START + timedelta(days=2)
    )
    presidential = Election(
        name='Presidential Election', position='President/VP', election_type=ElectionType.PRESIDENT_VP,
        status=ElectionStatus.ACTIVE, start_date=PRESIDENT_START,
        end_date=PRESIDENT_START + timedelta(days=2)
    )
    upcoming = Election(
        name='Next Senate Election', position='Senator', election_type=ElectionType.SENATOR,
        status=ElectionStatus.UPCOMING, start_date=SENATE_START + timedelta(days=30),
        end_date=SENATE_START + timedelta(days=32)
    )
    db.session.add_all([senate, presidential, upcoming])

    ada = Candidate(full_name='Ada Senator', student_id='C100001', faculty='Science', position='Senator')
    ben = Candidate(full_name='Ben Senator', student_id='C100002', faculty='Arts', position='Senator')
    cleo = Candidate(full_name='Cleo President', student_id='C200001', faculty='Law', position='President')
    dev = Candidate(full_name='Dev Vice', student_id='C200002', faculty='Law', position='Vice President')
    db.session.add_all([ada, ben, cleo, dev])
    db.session.flush()

    db.session.add_all([
        ElectionCandidate(election_id=senate.id, candidate_id=ada.id),
        ElectionCandidate(election_id=senate.id, candidate_id=ben.id),
        ElectionCandidate(election_id=presidential.id, candidate_id=cleo.id, running_mate_id=dev.id),
    ])
    ticket = Ticket(election_id=presidential.id, president_id=cleo.id, vp_id=dev.id)
    db.session.add(ticket)
    db.session.commit()

    return SimpleNamespace(
        voter=voter, voter_credential=voter_credential,
        other=other, other_credential=other_credential,
        admin=admin, admin_credential=admin_credential,
        senate=senate, presidential=presidential, upcoming=upcoming,
        ada=ada, ben=ben, cleo=cleo, dev=dev, ticket=ticket,
    )


def auth(credential):
    return {'Authorization': f'Bearer {credential}'}


# ==================== HTTP transport ====================

class FakeResponse:
    def __init__(self, status_code, payload):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON body")
        return self._payload


class FlaskClientSession:
    """
    requests.Session stand-in that sends requests to a Flask test client.

    ``failures`` maps a path suffix to an exception raised instead of
    sending; ``responses`` maps a path suffix to a canned (status, body).
    """

    def __init__(self, test_client):
        self.client = test_client
        self.headers = {}
        self.failures = {}
        self.responses = {}
        self.calls = []

    def request(self, method, url, json=None, timeout=None):
        path = urlsplit(url).path
        self.calls.append((method, path, json))

        for suffix, exc in self.failures.items():
            if path.endswith(suffix):
                raise exc
        for suffix, (status, body) in self.responses.items():
            if path.endswith(suffix):
                return FakeResponse(status, body)

        response = self.client.open(path, method=method, json=json, headers=dict(self.headers))
        return FakeResponse(response.status_code, response.get_json(silent=True))

    def paths(self, method=None):
        return [path for m, path, _ in self.calls if method is None or m == method]


# ==================== Chain ====================

class FakeChain:
    """
    In-memory voting contract.

    ``mine_mode`` decides what happens to accepted vote transactions:
    'success' (receipt status 1), 'revert' (status 0), 'no-status' (receipt
    without a status field), 'pending' (never mined), 'included-only'
    (mined, but no receipt within the timeout).
    """

    def __init__(self):
        self.elections = {}
        self.candidates = {}
        self.tickets = {}
        self.vote_counts = {}
        self.voted = set()
        self.chain_nonce = 1

        self.mine_mode = 'success'
        self.count_increments = True
        self.register_error = None

        self.receipts = {}
        self.transactions = {}
        self.built = []
        self.accepted = []
        self.nonce_reads = 0
        self.registrations = []
        self.registered_voters = []
        self.status_updates = []
        self.disconnected = False

    # -- setup helpers --

    def add_election(self, chain_id, start, election_type=ChainElectionType.SENATOR):
        start_ts = to_unix_seconds(start)
        self.elections[chain_id] = ElectionDetails(
            id=chain_id, election_type=int(election_type), status=1,
            start_time=start_ts, end_time=start_ts + 172800,
            total_votes_cast=0, results_finalized=False,
        )

    # -- reads --

    def get_election_details(self, chain_election_id):
        return self.elections.get(chain_election_id)

    def get_candidate_id_by_student_id(self, student_id):
        return self.candidates.get(student_id, 0)

    def get_ticket_id_by_student_ids(self, president_student_id, vp_student_id):
        return self.tickets.get((president_student_id, vp_student_id), 0)

    def get_vote_count(self, election_type, chain_choice_id):
        return self.vote_counts.get((int(election_type), chain_choice_id), 0)

    def check_if_voted(self, chain_election_id, voter_address):
        return (chain_election_id, voter_address.lower()) in self.voted

    def get_next_nonce(self, voter_address):
        self.nonce_reads += 1
        return self.chain_nonce

    # -- writes --

    def register_candidate(self, student_id):
        self.registrations.append(student_id)
        if self.register_error is not None:
            # Somebody else won the race
            self.candidates.setdefault(student_id, len(self.candidates) + 1)
            raise self.register_error
        chain_id = len(self.candidates) + 1
        self.candidates[student_id] = chain_id
        return chain_id

    def register_voter(self, voter_address):
        self.registered_voters.append(voter_address)
        return {'status': 1, 'blockNumber': 101}

    def register_voters(self, voter_addresses):
        self.registered_voters.extend(voter_addresses)
        return {'status': 1, 'blockNumber': 102}

    def update_election_status(self, chain_election_id, status):
        self.status_updates.append((chain_election_id, int(status)))
        return {'status': 1, 'blockNumber': 103}

    def disconnect(self):
        self.disconnected = True

    def build_vote_transaction(self, election_type, chain_election_id, chain_choice_id,
                               vote_nonce, fees, sender):
        tx = {
            'electionType': int(election_type),
            'election': chain_election_id,
            'choice': chain_choice_id,
            'voteNonce': vote_nonce,
            'gas': fees.gas_limit,
            'maxPriorityFeePerGas': fees.max_priority_fee_gwei,
            'maxFeePerGas': fees.max_fee_gwei,
            'from': sender,
        }
        self.built.append(tx)
        return tx

    def accept(self, tx):
        """Take a broadcast transaction; returns its hash."""
        tx_hash = '0x' + f'{len(self.accepted) + 1:064x}'
        self.accepted.append((tx_hash, tx))

        if self.mine_mode in ('success', 'no-status', 'included-only'):
            self.chain_nonce += 1
            self.voted.add((tx['election'], tx['from'].lower()))
            if self.count_increments:
                key = (tx['electionType'], tx['choice'])
                self.vote_counts[key] = self.vote_counts.get(key, 0) + 1
            self.transactions[tx_hash] = {'hash': tx_hash, 'blockNumber': 100}
            if self.mine_mode == 'success':
                self.receipts[tx_hash] = {'status': 1, 'blockNumber': 100}
            elif self.mine_mode == 'no-status':
                self.receipts[tx_hash] = {'blockNumber': 100}
        elif self.mine_mode == 'revert':
            self.transactions[tx_hash] = {'hash': tx_hash, 'blockNumber': 100}
            self.receipts[tx_hash] = {'status': 0, 'blockNumber': 100}
        else:
            self.transactions[tx_hash] = {'hash': tx_hash, 'blockNumber': None}

        return tx_hash

    def wait_for_receipt(self, tx_hash, timeout=120, poll_latency=2.0):
        if tx_hash not in self.receipts:
            raise TimeExhausted(f"Transaction {tx_hash} is not in the chain after {timeout} seconds")
        return self.receipts[tx_hash]

    def get_transaction(self, tx_hash):
        return self.transactions.get(tx_hash)

    def get_transaction_receipt(self, tx_hash):
        return self.receipts.get(tx_hash)


class FakeWallet:
    """EIP-1193 style wallet double; ``send_errors`` are raised one per broadcast."""

    def __init__(self, chain, address=VOTER_ADDRESS, chain_id=80002):
        self.chain = chain
        self.address = address
        self.current_chain_id = chain_id
        self.known_chains = {chain_id}
        self.accounts = [address]

        self.reject_connect = False
        self.reject_switch = False
        self.reject_add = False
        self.send_errors = []

        self.sent = []
        self.switch_requests = []
        self.add_requests = []

    def request_accounts(self):
        if self.reject_connect:
            raise WalletRPCError(4001, 'User rejected the request.')
        return list(self.accounts)

    def chain_id(self):
        return self.current_chain_id

    def switch_chain(self, chain_id):
        self.switch_requests.append(chain_id)
        if self.reject_switch:
            raise WalletRPCError(4001, 'User rejected the request.')
        if chain_id not in self.known_chains:
            raise WalletRPCError(4902, f'Unrecognized chain ID "{hex(chain_id)}".')
        self.current_chain_id = chain_id

    def add_chain(self, chain):
        self.add_requests.append(chain)
        if self.reject_add:
            raise WalletRPCError(4001, 'User rejected the request.')
        self.known_chains.add(chain.chain_id)

    def send_transaction(self, transaction):
        self.sent.append(transaction)
        if self.send_errors:
            raise self.send_errors.pop(0)
        return self.chain.accept(transaction)


@pytest.fixture
def fake_chain(seeded):
    """Chain state matching the seeded elections."""
    chain = FakeChain()
    chain.add_election(1, SENATE_START)
    chain.add_election(2, PRESIDENT_START, ChainElectionType.PRESIDENT_VP)
    chain.candidates.update({'C100001': 11, 'C100002': 12})
    chain.tickets[('C200001', 'C200002')] = 21
    return chain


@pytest.fixture
def fake_wallet(fake_chain):
    return FakeWallet(fake_chain)
