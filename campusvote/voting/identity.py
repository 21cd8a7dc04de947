"""
Identifier mapping between the ledger-of-record and the chain.

Relational ids are surrogate keys and get reused after deletes, so chain ids
are always looked up through natural keys:

- election: start time in unix seconds (or the row's explicit blockchainId)
- candidate: student id
- ticket: president and VP student ids

Resolved mappings are cached; relational rows are fetched on every call.
"""

import enum
import logging
import threading
from collections import namedtuple

from cachelib import SimpleCache

from campusvote.exceptions import ElectionNotDeployedError, IdentifierNotFoundError
from campusvote.blockchain.web3_config import ChainElectionType
from campusvote.time_helpers import to_unix_seconds

logger = logging.getLogger(__name__)


class ChoiceKind(enum.Enum):
    CANDIDATE = 'candidate'
    TICKET = 'ticket'

    @property
    def election_type(self):
        if self is ChoiceKind.TICKET:
            return ChainElectionType.PRESIDENT_VP
        return ChainElectionType.SENATOR


IdentityMapping = namedtuple(
    'IdentityMapping', 'kind natural_key chain_id is_deployed relational_id'
)


def ticket_natural_key(president_student_id, vp_student_id):
    """Composite key of a ticket; escaping keeps distinct pairs distinct."""
    def escape(value):
        return str(value).replace('\\', '\\\\').replace('|', '\\|')
    return f"{escape(president_student_id)}|{escape(vp_student_id)}"


class IdentifierMapper:
    """
    Resolves relational ids to chain ids through natural keys.

    Args:
        chain: Connected ChainClient
        ledger: LedgerClient for relational rows
        cache: Any object with the cachelib get/set/delete/clear API
        scan_limit: Highest chain election id searched by start time
        register_missing: Register unknown candidates on chain by default
    """

    def __init__(self, chain, ledger, cache=None, scan_limit=256, register_missing=False):
        self.chain = chain
        self.ledger = ledger
        self.cache = cache if cache is not None else SimpleCache(threshold=2000, default_timeout=0)
        self.scan_limit = scan_limit
        self.register_missing = register_missing

        self._registration_locks = {}
        self._locks_guard = threading.Lock()

    # ==================== Cache ====================

    @staticmethod
    def _cache_key(kind, natural_key):
        return f"identity:{kind}:{natural_key}"

    def _cached(self, kind, natural_key):
        mapping = self.cache.get(self._cache_key(kind, natural_key))
        if mapping is not None:
            logger.debug(f"Identity cache hit for {kind} {natural_key!r}: {mapping.chain_id}")
        return mapping

    def _store(self, kind, natural_key, chain_id, relational_id=None):
        mapping = IdentityMapping(kind, natural_key, chain_id, True, relational_id)
        self.cache.set(self._cache_key(kind, natural_key), mapping)
        return mapping

    def invalidate(self, kind, natural_key):
        """Drop one mapping; the next lookup goes back to the chain."""
        if kind == 'ticket' and isinstance(natural_key, (tuple, list)):
            natural_key = ticket_natural_key(*natural_key)
        self.cache.delete(self._cache_key(kind, natural_key))
        logger.info(f"Invalidated identity mapping for {kind} {natural_key!r}")

    def clear(self):
        self.cache.clear()

    # ==================== Elections ====================

    def resolve_election_id(self, relational_election_id):
        """
        Chain id of a relational election.

        Raises:
            ElectionNotDeployedError: the election has no chain counterpart
            VoteError: IDENTIFIER_NOT_FOUND if the relational row is missing
        """
        election = self.ledger.get_election(relational_election_id)

        start_ts = election.get('startTimestamp')
        if start_ts is None and election.get('startDate'):
            start_ts = to_unix_seconds(election['startDate'])

        blockchain_id = election.get('blockchainId')
        if blockchain_id:
            chain_id = int(blockchain_id)
            if start_ts is not None:
                self._store('election', int(start_ts), chain_id, relational_election_id)
            return chain_id

        if start_ts is None:
            raise ElectionNotDeployedError(relational_election_id, "Election has no start time")

        return self.resolve_election_by_start_time(start_ts, relational_id=relational_election_id)

    def resolve_election_by_start_time(self, start_timestamp, relational_id=None):
        """
        Chain id of the election that starts at ``start_timestamp``.

        Raises:
            ElectionNotDeployedError: no chain election has that start time
        """
        start_timestamp = int(start_timestamp)

        cached = self._cached('election', start_timestamp)
        if cached is not None:
            return cached.chain_id

        chain_id = self._search_election(start_timestamp)
        if chain_id is None:
            raise ElectionNotDeployedError(
                relational_id if relational_id is not None else start_timestamp
            )

        self._store('election', start_timestamp, chain_id, relational_id)
        logger.info(f"Election starting at {start_timestamp} is chain election {chain_id}")
        return chain_id

    def _search_election(self, start_timestamp):
        # Some deployments used the start time itself as the election id
        details = self.chain.get_election_details(start_timestamp)
        if details is not None and details.start_time == start_timestamp:
            return details.id

        for chain_id in range(1, self.scan_limit + 1):
            details = self.chain.get_election_details(chain_id)
            if details is None:
                # Chain ids are sequential and never removed
                break
            if details.start_time == start_timestamp:
                return details.id

        return None

    # ==================== Candidates / Tickets ====================

    def _registration_lock(self, student_id):
        with self._locks_guard:
            return self._registration_locks.setdefault(student_id, threading.Lock())

    def resolve_candidate_id(self, student_id, register_if_missing=None):
        """
        Chain id of the candidate registered under ``student_id``.

        With registration enabled an unknown candidate is registered first.
        A failed registration (typically a lost race with another
        registration of the same student) is settled by asking the registry
        again.

        Raises:
            IdentifierNotFoundError: no chain candidate for ``student_id``
        """
        student_id = str(student_id)
        if register_if_missing is None:
            register_if_missing = self.register_missing

        cached = self._cached('candidate', student_id)
        if cached is not None:
            return cached.chain_id

        chain_id = self.chain.get_candidate_id_by_student_id(student_id)

        registration_error = None
        if not chain_id and register_if_missing:
            with self._registration_lock(student_id):
                chain_id = self.chain.get_candidate_id_by_student_id(student_id)
                if not chain_id:
                    try:
                        chain_id = self.chain.register_candidate(student_id)
                        logger.info(f"Registered candidate {student_id} on chain as {chain_id}")
                    except Exception as e:
                        registration_error = e
                        logger.warning(f"Registering candidate {student_id} failed, re-querying: {e}")
                        chain_id = self.chain.get_candidate_id_by_student_id(student_id)

        if not chain_id:
            error = IdentifierNotFoundError('candidate', student_id)
            error.cause = registration_error
            raise error

        self._store('candidate', student_id, int(chain_id))
        return int(chain_id)

    def resolve_ticket_id(self, president_student_id, vp_student_id):
        """
        Chain id of the ticket for a president/VP pair.

        Raises:
            IdentifierNotFoundError: the pair has no chain ticket
        """
        natural_key = ticket_natural_key(president_student_id, vp_student_id)

        cached = self._cached('ticket', natural_key)
        if cached is not None:
            return cached.chain_id

        chain_id = self.chain.get_ticket_id_by_student_ids(president_student_id, vp_student_id)
        if not chain_id:
            raise IdentifierNotFoundError('ticket', natural_key)

        self._store('ticket', natural_key, int(chain_id))
        return int(chain_id)

    def resolve_choice(self, relational_election_id, kind, relational_choice_id):
        """
        Chain id of a candidate or ticket, given its relational id.

        Raises:
            IdentifierNotFoundError: the row is missing, belongs to another
                election, or has no chain counterpart
        """
        kind = ChoiceKind(kind)

        if kind is ChoiceKind.TICKET:
            ticket = self.ledger.get_ticket(relational_choice_id)
            if ticket.get('electionId') not in (None, relational_election_id):
                raise IdentifierNotFoundError(
                    'ticket', relational_choice_id,
                    f"Ticket {relational_choice_id} is not part of election {relational_election_id}"
                )
            return self.resolve_ticket_id(ticket['presidentStudentId'], ticket['vpStudentId'])

        candidate = self.ledger.get_candidate(relational_choice_id)
        entries = self.ledger.get_election_candidates(relational_election_id)
        if relational_choice_id not in {entry.get('candidateId') for entry in entries}:
            raise IdentifierNotFoundError(
                'candidate', relational_choice_id,
                f"Candidate {relational_choice_id} is not standing in election {relational_election_id}"
            )
        return self.resolve_candidate_id(candidate['studentId'])
