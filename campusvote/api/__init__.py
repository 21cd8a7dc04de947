"""
API Blueprint

JSON endpoints of the ledger-of-record: voting tokens, election, candidate
and ticket reads, and the compensating vote reset.
"""

from flask import Blueprint

bp = Blueprint('api', __name__, url_prefix='/api')

# Import routes after blueprint creation to avoid circular imports
from campusvote.api import routes, token_routes
