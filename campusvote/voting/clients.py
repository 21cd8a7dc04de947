"""
HTTP clients the vote engine uses to reach the ledger-of-record service.

TokenServiceClient covers the voting-token protocol and the compensating
reset; LedgerClient reads elections, candidates and tickets. Both send the
voter's bearer credential and never touch the database directly.
"""

import logging

import requests

from campusvote.exceptions import VoteError, VoteErrorKind

logger = logging.getLogger(__name__)


class ApiClient:
    """Shared transport for the CampusVote JSON API."""

    def __init__(self, base_url, credential, timeout=10, session=None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'Authorization': f'Bearer {credential}',
            'Accept': 'application/json',
        })

    def _request(self, method, path, payload=None):
        """Send a request; transport failures become SERVER_ERROR."""
        url = f"{self.base_url}{path}"
        try:
            return self.session.request(method, url, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"{method} {path} failed: {e}")
            raise VoteError(VoteErrorKind.SERVER_ERROR, f"Request to {path} failed: {e}", cause=e)

    @staticmethod
    def _body(response):
        try:
            return response.json()
        except ValueError:
            return {}

    @classmethod
    def _data(cls, response):
        body = cls._body(response)
        if isinstance(body, dict) and 'data' in body:
            return body['data']
        return body

    @classmethod
    def _error(cls, response):
        """
        Read an error body.

        Accepts ``{"error": {"code", "message", "details"}}`` and the flat
        ``{"message": ...}`` shape.

        Returns:
            tuple: (reason or None, message)
        """
        body = cls._body(response)
        error = body.get('error') if isinstance(body, dict) else None
        if isinstance(error, dict):
            return error.get('details'), error.get('message') or f"HTTP {response.status_code}"
        if isinstance(body, dict) and body.get('message'):
            return body.get('reason'), body['message']
        return None, f"HTTP {response.status_code}"

    def _raise_for(self, response, path, not_found_kind=VoteErrorKind.SERVER_ERROR, **context):
        reason, message = self._error(response)
        kind = not_found_kind if response.status_code == 404 else VoteErrorKind.SERVER_ERROR
        logger.warning(f"{path} answered {response.status_code}: {message} ({reason})")
        raise VoteError(kind, message, context=dict(context, reason=reason))


class TokenServiceClient(ApiClient):
    """Client side of the one-time voting token protocol."""

    def request_token(self, election_id):
        """
        Ask the service for a voting token.

        Raises:
            VoteError: ALREADY_VOTED when the voter is already committed,
                SERVER_ERROR for any other refusal or transport failure
        """
        path = '/voting-tokens'
        response = self._request('POST', path, {'electionId': election_id})

        if response.status_code in (200, 201):
            token = self._data(response).get('token')
            if not token:
                raise VoteError(VoteErrorKind.SERVER_ERROR, "Token response did not contain a token")
            return token

        reason, message = self._error(response)
        if response.status_code == 409 and reason == 'already_voted':
            raise VoteError(VoteErrorKind.ALREADY_VOTED, message, context={'election_id': election_id})

        self._raise_for(response, path, election_id=election_id)

    def verify_token(self, token, election_id, choice_id):
        """
        True only when the service positively confirms the token.

        Raises:
            VoteError: SERVER_ERROR when the service cannot answer, so an
                outage is not reported as an invalid token
        """
        path = '/voting-tokens/verify'
        response = self._request('POST', path, {
            'token': token,
            'electionId': election_id,
            'candidateId': choice_id,
        })

        if response.status_code != 200:
            self._raise_for(response, path, election_id=election_id)
        data = self._data(response)
        return bool(isinstance(data, dict) and data.get('valid'))

    def consume_token(self, token, election_id, choice_id, tx_hash):
        """Mark the token used. Failures are logged and reported as False."""
        try:
            response = self._request('POST', '/voting-tokens/use', {
                'token': token,
                'electionId': election_id,
                'candidateId': choice_id,
                'txHash': tx_hash,
            })
        except VoteError as e:
            logger.warning(f"Could not mark voting token used for tx {tx_hash}: {e}")
            return False

        if response.status_code != 200:
            reason, message = self._error(response)
            logger.warning(f"Voting token not marked used for tx {tx_hash}: {message} ({reason})")
            return False
        return True

    def reset_user_vote(self, election_id):
        """
        Compensating reset of the voter's "has voted" flag.

        Raises:
            VoteError: SERVER_ERROR when the service refuses or is unreachable
        """
        path = '/test/reset-user-vote'
        response = self._request('POST', path, {'electionId': election_id})
        if response.status_code != 200:
            self._raise_for(response, path, election_id=election_id)
        return True

    def has_voted(self, election_id):
        path = f'/elections/{election_id}/voted'
        response = self._request('GET', path)
        if response.status_code != 200:
            self._raise_for(response, path, election_id=election_id)
        return bool(self._data(response).get('hasVoted'))


class LedgerClient(ApiClient):
    """Read access to elections, candidates and tickets."""

    def _get(self, path, **context):
        response = self._request('GET', path)
        if response.status_code != 200:
            self._raise_for(
                response, path, not_found_kind=VoteErrorKind.IDENTIFIER_NOT_FOUND, **context
            )
        return self._data(response)

    def get_election(self, election_id):
        return self._get(f'/elections/{election_id}', election_id=election_id)

    def get_election_candidates(self, election_id):
        return self._get(f'/elections/{election_id}/candidates', election_id=election_id)

    def get_election_tickets(self, election_id):
        return self._get(f'/elections/{election_id}/tickets', election_id=election_id)

    def get_candidate(self, candidate_id):
        return self._get(f'/candidates/{candidate_id}', candidate_id=candidate_id)

    def get_ticket(self, ticket_id):
        return self._get(f'/tickets/{ticket_id}', ticket_id=ticket_id)

    def set_election_blockchain_id(self, election_id, blockchain_id):
        path = f'/elections/{election_id}/blockchain-id'
        response = self._request('PATCH', path, {'blockchainId': blockchain_id})
        if response.status_code != 200:
            self._raise_for(response, path, election_id=election_id)
        return self._data(response)
