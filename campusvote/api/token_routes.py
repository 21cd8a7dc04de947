"""
Voting Token Routes

Issue, verify and consume one-time voting tokens, plus the compensating
reset the vote engine calls when the chain leg of a vote fails.
"""

from flask import current_app, g, request

from campusvote.api import bp
from campusvote.extensions import limiter
from campusvote.api_auth import credential_required, api_success, api_error
from campusvote.services import VotingTokenService
from campusvote.logging_config import log_security_event
from campusvote.time_helpers import isoformat


def _json_body():
    return request.get_json(silent=True) or {}


def _int_field(data, name, required=True):
    """Read an integer field from a JSON body; returns (value, error_response)."""
    value = data.get(name)
    if value is None:
        if required:
            return None, api_error(f"'{name}' is required", 400, 'invalid_request')
        return None, None
    try:
        return int(value), None
    except (TypeError, ValueError):
        return None, api_error(f"'{name}' must be an integer", 400, 'invalid_request')


@bp.route('/voting-tokens', methods=['POST'])
@credential_required
@limiter.limit(lambda: current_app.config.get("RATELIMIT_VOTING_TOKEN", "10 per minute"))
def issue_voting_token():
    """
    Issue a voting token for the authenticated voter.

    Body: {"electionId": int}
    Errors: 409 already_voted, 409 election_not_active, 404 not_found
    """
    election_id, error = _int_field(_json_body(), 'electionId')
    if error:
        return error

    token = VotingTokenService.issue_token(g.current_student.id, election_id)

    return api_success({
        'token': token.token,
        'expiresAt': isoformat(token.expires_at),
    }, status_code=201)


@bp.route('/voting-tokens/verify', methods=['POST'])
@credential_required
@limiter.limit(lambda: current_app.config.get("RATELIMIT_VOTING_TOKEN_VERIFY", "60 per minute"))
def verify_voting_token():
    """Body: {"token": str, "electionId": int, "candidateId": int?}"""
    data = _json_body()
    token_value = data.get('token')
    if not token_value:
        return api_error("'token' is required", 400, 'invalid_request')

    election_id, error = _int_field(data, 'electionId')
    if error:
        return error
    candidate_id, error = _int_field(data, 'candidateId', required=False)
    if error:
        return error

    valid = VotingTokenService.verify_token(
        token_value, election_id, candidate_id, voter_id=g.current_student.id
    )
    return api_success({'valid': valid})


@bp.route('/voting-tokens/use', methods=['POST'])
@credential_required
def use_voting_token():
    """Body: {"token": str, "electionId": int, "candidateId": int, "txHash": str}"""
    data = _json_body()
    token_value = data.get('token')
    tx_hash = data.get('txHash')
    if not token_value or not tx_hash:
        return api_error("'token' and 'txHash' are required", 400, 'invalid_request')

    election_id, error = _int_field(data, 'electionId')
    if error:
        return error
    candidate_id, error = _int_field(data, 'candidateId')
    if error:
        return error

    VotingTokenService.consume_token(
        token_value, election_id, candidate_id, tx_hash, voter_id=g.current_student.id
    )
    return api_success({'ok': True})


@bp.route('/test/reset-user-vote', methods=['POST'])
@credential_required
def reset_user_vote():
    """
    Clear the caller's "has voted" flag for an election.

    Called by the vote engine to undo a commitment whose chain vote failed.
    Refused with 409 vote_already_recorded once a token for the election
    was consumed.
    """
    election_id, error = _int_field(_json_body(), 'electionId')
    if error:
        return error

    student = g.current_student
    cleared = VotingTokenService.reset_vote(student.id, election_id)

    log_security_event(
        'VOTE_RESET',
        user_id=student.id,
        ip_address=request.remote_addr,
        description=f"election={election_id} cleared={cleared}"
    )
    return api_success({'ok': True, 'cleared': cleared})
