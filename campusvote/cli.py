# campusvote/cli.py
"""
Flask CLI commands for database setup, demo data and chain administration.
"""

from datetime import timedelta

import click
from sqlalchemy import select

from campusvote.extensions import db, cache
from campusvote.models import (
    Student, VoterCredential, Election, ElectionType, ElectionStatus,
    Candidate, ElectionCandidate, Ticket
)
from campusvote.time_helpers import utcnow


def _connect_chain(app):
    from campusvote.blockchain import ChainClient
    return ChainClient.from_config(app.config).connect()


def register_cli_commands(app):
    """Register CLI commands with the Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create all database tables."""
        db.create_all()
        click.echo('Database tables created.')

    @app.cli.command('seed-demo')
    @click.option('--voters', '-n', type=int, default=3, help='Number of voter accounts, default: 3')
    def seed_demo_command(voters):
        """Seed an admin, some voters and two active elections."""
        existing = db.session.scalar(select(Student).where(Student.email == 'admin@campus.test'))
        if existing:
            click.echo('Demo data already present, skipping...')
            return

        admin = Student(
            email='admin@campus.test', student_number='ADM0001',
            faculty='Administration', is_admin=True
        )
        db.session.add(admin)

        students = []
        for i in range(1, voters + 1):
            student = Student(
                email=f'voter{i}@campus.test', student_number=f'S{i:06d}', faculty='Engineering'
            )
            db.session.add(student)
            students.append(student)

        now = utcnow().replace(microsecond=0)

        senator_election = Election(
            name='Senate Election', position='Senator', election_type=ElectionType.SENATOR,
            status=ElectionStatus.ACTIVE, start_date=now, end_date=now + timedelta(days=2)
        )
        president_election = Election(
            name='Presidential Election', position='President/VP',
            election_type=ElectionType.PRESIDENT_VP, status=ElectionStatus.ACTIVE,
            start_date=now + timedelta(seconds=1), end_date=now + timedelta(days=2)
        )
        db.session.add_all([senator_election, president_election])

        senators = [
            Candidate(full_name='Ada Senator', student_id='C100001', faculty='Science', position='Senator'),
            Candidate(full_name='Ben Senator', student_id='C100002', faculty='Arts', position='Senator'),
        ]
        president = Candidate(full_name='Cleo President', student_id='C200001', faculty='Law', position='President')
        vice = Candidate(full_name='Dev Vice', student_id='C200002', faculty='Law', position='Vice President')
        db.session.add_all(senators + [president, vice])
        db.session.flush()

        for candidate in senators:
            db.session.add(ElectionCandidate(election_id=senator_election.id, candidate_id=candidate.id))
        db.session.add(ElectionCandidate(
            election_id=president_election.id, candidate_id=president.id, running_mate_id=vice.id
        ))
        db.session.add(Ticket(election_id=president_election.id, president_id=president.id, vp_id=vice.id))

        credentials = []
        for student in [admin] + students:
            credential, raw = VoterCredential.create_token(student.id, 'demo')
            db.session.add(credential)
            credentials.append((student, raw))

        db.session.commit()

        click.echo(f'Seeded elections {senator_election.id} (senator) and {president_election.id} (president/VP)')
        click.echo('-' * 60)
        for student, raw in credentials:
            click.echo(f'{student.email:<24} {raw}')

    @app.cli.command('issue-credential')
    @click.option('--email', '-e', required=True, help='Student email')
    @click.option('--name', default='cli', help='Credential name')
    @click.option('--expires-in-days', type=int, default=None, help='Lifetime in days (never expires if omitted)')
    def issue_credential_command(email, name, expires_in_days):
        """Issue a bearer credential for a student."""
        student = db.session.scalar(select(Student).where(Student.email == email))
        if not student:
            click.echo(f'Error: Student {email} not found!')
            return

        credential, raw = VoterCredential.create_token(student.id, name, expires_in_days)
        db.session.add(credential)
        db.session.commit()

        click.echo(f'Credential for {email} (shown once): {raw}')

    @app.cli.command('resolve-ids')
    @click.option('--credential', '-c', envvar='CAMPUSVOTE_CREDENTIAL', required=True, help='Bearer credential')
    @click.option('--election-id', '-e', type=int, required=True, help='Relational election id')
    @click.option('--candidate-id', type=int, default=None, help='Relational candidate id')
    @click.option('--ticket-id', type=int, default=None, help='Relational ticket id')
    def resolve_ids_command(credential, election_id, candidate_id, ticket_id):
        """Show the chain ids an election and choice map to."""
        from campusvote.exceptions import VoteError
        from campusvote.voting import EngineSettings, LedgerClient, IdentifierMapper, ChoiceKind

        settings = EngineSettings.from_mapping(app.config)
        chain = _connect_chain(app)
        try:
            ledger = LedgerClient(settings.api_url, credential, settings.api_timeout)
            mapper = IdentifierMapper(chain, ledger, cache=cache, scan_limit=settings.election_scan_limit)

            click.echo(f'Election {election_id} -> chain {mapper.resolve_election_id(election_id)}')
            if candidate_id is not None:
                chain_id = mapper.resolve_choice(election_id, ChoiceKind.CANDIDATE, candidate_id)
                click.echo(f'Candidate {candidate_id} -> chain {chain_id}')
            if ticket_id is not None:
                chain_id = mapper.resolve_choice(election_id, ChoiceKind.TICKET, ticket_id)
                click.echo(f'Ticket {ticket_id} -> chain {chain_id}')
        except VoteError as e:
            click.echo(f'[ERROR] {e.kind.value}: {e}')
        finally:
            chain.disconnect()

    @app.cli.command('submit-vote')
    @click.option('--credential', '-c', envvar='CAMPUSVOTE_CREDENTIAL', required=True, help='Bearer credential')
    @click.option('--private-key', envvar='VOTER_PRIVATE_KEY', required=True, help='Voter wallet private key')
    @click.option('--election-id', '-e', type=int, required=True, help='Relational election id')
    @click.option('--choice-id', type=int, required=True, help='Relational candidate or ticket id')
    @click.option('--kind', type=click.Choice(['candidate', 'ticket']), default='candidate')
    def submit_vote_command(credential, private_key, election_id, choice_id, kind):
        """Cast a vote through the submission engine using a local key."""
        from campusvote.blockchain import LocalAccountWallet
        from campusvote.voting import EngineSettings, VoteSubmissionEngine

        settings = EngineSettings.from_mapping(app.config)
        chain = _connect_chain(app)
        try:
            wallet = LocalAccountWallet(chain.w3, private_key)
            engine = VoteSubmissionEngine.from_settings(
                settings, credential, chain, wallet, cache=cache,
                on_progress=lambda state: click.echo(f'  ... {state.value}')
            )
            click.echo(f'Voting as {wallet.address} in election {election_id}')
            result = engine.submit_vote(election_id, choice_id, kind)
        finally:
            chain.disconnect()

        if result.success:
            click.echo(f'[OK] {result.message} tx={result.tx_hash} votes={result.vote_count}')
        else:
            click.echo(f'[ERROR] {result.error_kind.value}: {result.message}')

    @app.cli.command('register-voters')
    @click.argument('addresses', nargs=-1)
    @click.option('--from-db', is_flag=True, help='Register every student with a wallet address')
    def register_voters_command(addresses, from_db):
        """Register voter wallets on the voting contract."""
        from campusvote.blockchain import is_valid_address, to_checksum_address

        addresses = list(addresses)
        if from_db:
            addresses.extend(db.session.scalars(
                select(Student.wallet_address).where(Student.wallet_address.is_not(None))
            ).all())

        invalid = [a for a in addresses if not is_valid_address(a)]
        if invalid:
            click.echo(f'Error: invalid addresses: {", ".join(invalid)}')
            return
        if not addresses:
            click.echo('Nothing to register.')
            return

        checksummed = sorted({to_checksum_address(a) for a in addresses})
        chain = _connect_chain(app)
        try:
            if len(checksummed) == 1:
                receipt = chain.register_voter(checksummed[0])
            else:
                receipt = chain.register_voters(checksummed)
        finally:
            chain.disconnect()

        click.echo(f'Registered {len(checksummed)} voter(s) in block {receipt["blockNumber"]}')

    @app.cli.command('update-election-status')
    @click.option('--chain-election-id', type=int, required=True, help='Election id on chain')
    @click.option('--status', type=click.Choice(['pending', 'active', 'completed', 'cancelled']), required=True)
    def update_election_status_command(chain_election_id, status):
        """Set an election's status on the voting contract."""
        from campusvote.blockchain import ChainElectionStatus

        chain = _connect_chain(app)
        try:
            receipt = chain.update_election_status(chain_election_id, ChainElectionStatus[status.upper()])
        finally:
            chain.disconnect()

        click.echo(f'Chain election {chain_election_id} set to {status} in block {receipt["blockNumber"]}')
