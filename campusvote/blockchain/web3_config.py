"""
Web3 client for the StudentIdVoting contract (Polygon Amoy by default).

A ChainClient owns one Web3 handle and one contract instance. Nothing is
created at import time: callers construct the client, call ``connect()``
and ``disconnect()`` when done (or use it as a context manager).
"""
import json
import logging
from collections import namedtuple
from enum import IntEnum
from pathlib import Path

from web3 import Web3
from web3.exceptions import ContractLogicError, TransactionNotFound
from web3.logs import DISCARD

from campusvote.exceptions import VoteError, VoteErrorKind

logger = logging.getLogger(__name__)

CONTRACT_NAME = 'StudentIdVoting'


class ChainElectionType(IntEnum):
    SENATOR = 0
    PRESIDENT_VP = 1


class ChainElectionStatus(IntEnum):
    PENDING = 0
    ACTIVE = 1
    COMPLETED = 2
    CANCELLED = 3


ElectionDetails = namedtuple(
    'ElectionDetails',
    'id election_type status start_time end_time total_votes_cast results_finalized'
)


def load_contract_abi(contract_name):
    """Load contract ABI from JSON file"""
    abi_path = Path(__file__).parent / 'contracts' / f'{contract_name}.json'
    with open(abi_path, 'r') as f:
        return json.load(f)


def is_valid_address(address):
    """Check if an Ethereum address is valid"""
    if not address:
        return False
    return Web3.is_address(address)


def to_checksum_address(address):
    """Convert address to checksum format"""
    if not is_valid_address(address):
        return None
    return Web3.to_checksum_address(address)


class ChainClient:
    """Reads from and writes to the voting contract."""

    def __init__(self, rpc_url, contract_address, chain_id, abi=None,
                 request_timeout=30, admin_private_key=None):
        self.rpc_url = rpc_url
        self.contract_address = Web3.to_checksum_address(contract_address)
        self.chain_id = int(chain_id)
        self.abi = abi if abi is not None else load_contract_abi(CONTRACT_NAME)
        self.request_timeout = request_timeout
        self.admin_private_key = admin_private_key

        self._w3 = None
        self._contract = None

    @classmethod
    def from_config(cls, config):
        """Build a client from a Flask config mapping."""
        return cls(
            rpc_url=config['CHAIN_RPC_URL'],
            contract_address=config['VOTING_CONTRACT_ADDRESS'],
            chain_id=config['CHAIN_ID'],
            request_timeout=config.get('CHAIN_REQUEST_TIMEOUT', 30),
            admin_private_key=config.get('CHAIN_ADMIN_PRIVATE_KEY'),
        )

    # ==================== Connection ====================

    def connect(self, w3=None):
        """
        Open the RPC connection and bind the contract.

        Args:
            w3: An already built Web3 handle (e.g. one backed by the voter's
                wallet provider); a fresh HTTPProvider handle is made otherwise
        """
        if w3 is None:
            w3 = Web3(Web3.HTTPProvider(
                self.rpc_url, request_kwargs={'timeout': self.request_timeout}
            ))
            if not w3.is_connected():
                raise VoteError(
                    VoteErrorKind.TRANSIENT_BROADCAST_FAILURE,
                    f"Failed to connect to chain RPC at {self.rpc_url}"
                )

        self._w3 = w3
        self._contract = w3.eth.contract(address=self.contract_address, abi=self.abi)
        logger.info(f"Connected to chain {self.chain_id}, contract {self.contract_address}")
        return self

    def disconnect(self):
        self._w3 = None
        self._contract = None

    @property
    def is_connected(self):
        return self._w3 is not None

    @property
    def w3(self):
        if self._w3 is None:
            raise RuntimeError("ChainClient is not connected; call connect() first")
        return self._w3

    @property
    def contract(self):
        if self._contract is None:
            raise RuntimeError("ChainClient is not connected; call connect() first")
        return self._contract

    def __enter__(self):
        if not self.is_connected:
            self.connect()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.disconnect()
        return False

    # ==================== Reads ====================

    def get_election_details(self, chain_election_id):
        """
        Fetch an election from the contract.

        Returns:
            ElectionDetails, or None when no election exists under that id
        """
        try:
            raw = self.contract.functions.getElectionDetails(int(chain_election_id)).call()
        except ContractLogicError:
            return None

        details = ElectionDetails(
            id=int(raw[0]),
            election_type=int(raw[1]),
            status=int(raw[2]),
            start_time=int(raw[3]),
            end_time=int(raw[4]),
            total_votes_cast=int(raw[5]),
            results_finalized=bool(raw[6]),
        )
        if details.id == 0:
            return None
        return details

    def get_election_candidates(self, chain_election_id):
        return [int(c) for c in self.contract.functions.getElectionCandidates(int(chain_election_id)).call()]

    def get_election_tickets(self, chain_election_id):
        return [int(t) for t in self.contract.functions.getElectionTickets(int(chain_election_id)).call()]

    def get_candidate_id_by_student_id(self, student_id):
        """Chain candidate id for a student id; 0 when not registered."""
        try:
            return int(self.contract.functions.getCandidateIdByStudentId(str(student_id)).call())
        except ContractLogicError:
            return 0

    def get_ticket_id_by_student_ids(self, president_student_id, vp_student_id):
        """Chain ticket id for a president/VP pair; 0 when not created."""
        try:
            return int(self.contract.functions.getTicketIdByStudentIds(
                str(president_student_id), str(vp_student_id)
            ).call())
        except ContractLogicError:
            return 0

    def get_candidate_vote_count(self, chain_candidate_id):
        return int(self.contract.functions.getCandidateVoteCount(int(chain_candidate_id)).call())

    def get_ticket_vote_count(self, chain_ticket_id):
        return int(self.contract.functions.getTicketVoteCount(int(chain_ticket_id)).call())

    def get_vote_count(self, election_type, chain_choice_id):
        if ChainElectionType(election_type) == ChainElectionType.PRESIDENT_VP:
            return self.get_ticket_vote_count(chain_choice_id)
        return self.get_candidate_vote_count(chain_choice_id)

    def check_if_voted(self, chain_election_id, voter_address):
        return bool(self.contract.functions.checkIfVoted(
            int(chain_election_id), Web3.to_checksum_address(voter_address)
        ).call())

    def is_voter_registered(self, voter_address):
        return bool(self.contract.functions.registeredVoters(
            Web3.to_checksum_address(voter_address)
        ).call())

    def get_next_nonce(self, voter_address):
        """The contract's replay-protection nonce as seen from ``voter_address``."""
        return int(self.contract.functions.getNextNonce().call(
            {'from': Web3.to_checksum_address(voter_address)}
        ))

    # ==================== Vote transactions ====================

    def build_vote_transaction(self, election_type, chain_election_id, chain_choice_id,
                               vote_nonce, fees, sender):
        """
        Build an unsigned vote transaction.

        Args:
            election_type: ChainElectionType of the election
            chain_election_id: Election id on chain
            chain_choice_id: Candidate id (senator) or ticket id (president/VP)
            vote_nonce: Contract replay-protection nonce
            fees: FeeSchedule for this attempt
            sender: Voter's wallet address

        Returns:
            dict: Transaction fields ready for the wallet
        """
        if ChainElectionType(election_type) == ChainElectionType.PRESIDENT_VP:
            vote_function = self.contract.functions.voteForPresidentVP(
                int(chain_election_id), int(chain_choice_id), int(vote_nonce)
            )
        else:
            vote_function = self.contract.functions.voteForSenator(
                int(chain_election_id), int(chain_choice_id), int(vote_nonce)
            )

        # Gas and fees are explicit so build_transaction makes no RPC calls
        return vote_function.build_transaction({
            'chainId': self.chain_id,
            'from': Web3.to_checksum_address(sender),
            'gas': fees.gas_limit,
            'maxPriorityFeePerGas': Web3.to_wei(fees.max_priority_fee_gwei, 'gwei'),
            'maxFeePerGas': Web3.to_wei(fees.max_fee_gwei, 'gwei'),
            'value': 0,
        })

    def wait_for_receipt(self, tx_hash, timeout=120, poll_latency=2.0):
        return self.w3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=timeout, poll_latency=poll_latency
        )

    def get_transaction(self, tx_hash):
        """The transaction as the node sees it, or None if unknown."""
        try:
            return self.w3.eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return None

    def get_transaction_receipt(self, tx_hash):
        try:
            return self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None

    # ==================== Admin transactions ====================

    def _send_admin_transaction(self, contract_function, receipt_timeout=120):
        """
        Sign ``contract_function`` with the admin key and wait for the receipt.

        Raises:
            ValueError: no admin key configured
            VoteError: TRANSACTION_FAILED when the receipt reports failure
        """
        if not self.admin_private_key:
            raise ValueError("CHAIN_ADMIN_PRIVATE_KEY not configured")

        w3 = self.w3
        admin = w3.eth.account.from_key(self.admin_private_key)

        nonce = w3.eth.get_transaction_count(admin.address, 'pending')
        gas_estimate = contract_function.estimate_gas({'from': admin.address})

        transaction = contract_function.build_transaction({
            'chainId': self.chain_id,
            'gas': gas_estimate + 50000,  # Add buffer
            'gasPrice': w3.eth.gas_price,
            'nonce': nonce,
            'from': admin.address
        })

        signed_txn = w3.eth.account.sign_transaction(transaction, private_key=self.admin_private_key)
        tx_hash = w3.eth.send_raw_transaction(signed_txn.raw_transaction)
        logger.info(f"Admin transaction sent: {tx_hash.hex()}")

        tx_receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=receipt_timeout)
        if tx_receipt['status'] != 1:
            raise VoteError(
                VoteErrorKind.TRANSACTION_FAILED,
                f"Admin transaction {tx_hash.hex()} failed",
                context={'tx_hash': tx_hash.hex()}
            )
        return tx_receipt

    def register_candidate(self, student_id):
        """
        Register a candidate by student id.

        Returns:
            int: The chain candidate id
        """
        receipt = self._send_admin_transaction(
            self.contract.functions.registerCandidate(str(student_id))
        )

        events = self.contract.events.CandidateRegistered().process_receipt(receipt, errors=DISCARD)
        for event in events:
            if event['args']['studentId'] == str(student_id):
                return int(event['args']['candidateId'])

        # No event decoded; ask the registry instead
        return self.get_candidate_id_by_student_id(student_id)

    def register_voter(self, voter_address):
        return self._send_admin_transaction(
            self.contract.functions.registerVoter(Web3.to_checksum_address(voter_address))
        )

    def register_voters(self, voter_addresses):
        addresses = [Web3.to_checksum_address(a) for a in voter_addresses]
        return self._send_admin_transaction(
            self.contract.functions.registerVotersBatch(addresses)
        )

    def update_election_status(self, chain_election_id, status):
        return self._send_admin_transaction(
            self.contract.functions.updateElectionStatus(
                int(chain_election_id), int(ChainElectionStatus(status))
            )
        )
