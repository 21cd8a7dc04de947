"""
API Routes

Read access to elections, candidates and tickets for the vote engine, and
the admin call that records an election's chain id after deployment.
"""

from flask import current_app, g, request
from sqlalchemy import select

from campusvote.api import bp
from campusvote.extensions import db, limiter
from campusvote.api_auth import credential_required, admin_required, api_success, api_error
from campusvote.models import Election, Candidate, ElectionCandidate, Ticket
from campusvote.services import VotingTokenService
from campusvote.logging_config import log_security_event


# ==================== Election Endpoints ====================

@bp.route('/elections/<int:election_id>', methods=['GET'])
@credential_required
def get_election(election_id):
    election = db.session.get(Election, election_id)
    if election is None:
        return api_error(f'Election {election_id} not found', 404, 'not_found')

    return api_success(election.to_dict())


@bp.route('/elections/<int:election_id>/candidates', methods=['GET'])
@credential_required
def get_election_candidates(election_id):
    """List the candidates (senator) or tickets (president/VP) of an election."""
    election = db.session.get(Election, election_id)
    if election is None:
        return api_error(f'Election {election_id} not found', 404, 'not_found')

    entries = db.session.scalars(
        select(ElectionCandidate)
        .where(ElectionCandidate.election_id == election_id)
        .order_by(ElectionCandidate.id)
    ).all()

    return api_success([entry.to_dict() for entry in entries])


@bp.route('/elections/<int:election_id>/tickets', methods=['GET'])
@credential_required
def get_election_tickets(election_id):
    election = db.session.get(Election, election_id)
    if election is None:
        return api_error(f'Election {election_id} not found', 404, 'not_found')

    tickets = db.session.scalars(
        select(Ticket).where(Ticket.election_id == election_id).order_by(Ticket.id)
    ).all()

    return api_success([ticket.to_dict() for ticket in tickets])


@bp.route('/elections/<int:election_id>/voted', methods=['GET'])
@credential_required
def get_vote_status(election_id):
    has_voted = VotingTokenService.has_voted(g.current_student.id, election_id)
    return api_success({'hasVoted': has_voted})


@bp.route('/elections/<int:election_id>/blockchain-id', methods=['PATCH'])
@credential_required
@admin_required
@limiter.limit(lambda: current_app.config.get("RATELIMIT_ADMIN_ACTION", "30 per minute"))
def set_election_blockchain_id(election_id):
    """
    Record the chain id an election was deployed under.

    Body: {"blockchainId": int}
    """
    election = db.session.get(Election, election_id)
    if election is None:
        return api_error(f'Election {election_id} not found', 404, 'not_found')

    data = request.get_json(silent=True) or {}
    try:
        blockchain_id = int(data.get('blockchainId'))
    except (TypeError, ValueError):
        return api_error("'blockchainId' must be an integer", 400, 'invalid_request')

    if blockchain_id <= 0:
        return api_error("'blockchainId' must be positive", 400, 'invalid_request')

    if election.blockchain_id is not None and election.blockchain_id != blockchain_id:
        return api_error(
            f'Election {election_id} is already deployed as {election.blockchain_id}',
            409, 'already_deployed'
        )

    election.blockchain_id = blockchain_id
    db.session.commit()

    log_security_event(
        'ELECTION_DEPLOYED',
        user_id=g.current_student.id,
        ip_address=request.remote_addr,
        description=f"election={election_id} blockchain_id={blockchain_id}"
    )
    current_app.logger.info(f"Election {election_id} recorded as chain election {blockchain_id}")

    return api_success(election.to_dict())


# ==================== Candidate / Ticket Endpoints ====================

@bp.route('/candidates/<int:candidate_id>', methods=['GET'])
@credential_required
def get_candidate(candidate_id):
    candidate = db.session.get(Candidate, candidate_id)
    if candidate is None:
        return api_error(f'Candidate {candidate_id} not found', 404, 'not_found')

    return api_success(candidate.to_dict())


@bp.route('/tickets/<int:ticket_id>', methods=['GET'])
@credential_required
def get_ticket(ticket_id):
    ticket = db.session.get(Ticket, ticket_id)
    if ticket is None:
        return api_error(f'Ticket {ticket_id} not found', 404, 'not_found')

    return api_success(ticket.to_dict())
