"""Typed settings for the vote submission engine, read from Flask config."""

from dataclasses import dataclass

from campusvote.blockchain.wallet import ChainParams


@dataclass(frozen=True)
class EngineSettings:
    api_url: str
    api_timeout: float = 10

    chain: ChainParams = None
    contract_address: str = None

    max_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 5.0

    gas_limit_base: int = 500_000
    gas_limit_step: int = 50_000
    gas_limit_ceiling: int = 1_000_000
    priority_fee_base_gwei: int = 15
    priority_fee_step_gwei: int = 1
    priority_fee_ceiling_gwei: int = 50
    max_fee_base_gwei: int = 35
    max_fee_step_gwei: int = 2
    max_fee_ceiling_gwei: int = 120

    receipt_timeout: float = 120
    receipt_poll_latency: float = 2.0
    lenient_receipt_status: bool = True
    inclusion_check_attempts: int = 3
    inclusion_check_delay: float = 3.0
    vote_count_poll_attempts: int = 3
    vote_count_poll_delay: float = 2.0

    election_scan_limit: int = 256
    register_missing_candidates: bool = False

    @classmethod
    def from_mapping(cls, config):
        """Build settings from ``app.config`` (or any mapping with the same keys)."""
        return cls(
            api_url=config['CAMPUSVOTE_API_URL'].rstrip('/'),
            api_timeout=config.get('API_REQUEST_TIMEOUT', 10),
            chain=ChainParams(
                chain_id=int(config['CHAIN_ID']),
                chain_name=config.get('CHAIN_NAME', ''),
                rpc_url=config['CHAIN_RPC_URL'],
                currency_symbol=config.get('CHAIN_CURRENCY_SYMBOL', 'ETH'),
                explorer_url=config.get('CHAIN_EXPLORER_URL'),
            ),
            contract_address=config.get('VOTING_CONTRACT_ADDRESS'),
            max_attempts=int(config.get('VOTE_MAX_ATTEMPTS', 3)),
            retry_base_delay=float(config.get('VOTE_RETRY_BASE_DELAY', 1.0)),
            retry_max_delay=float(config.get('VOTE_RETRY_MAX_DELAY', 5.0)),
            gas_limit_base=int(config.get('VOTE_GAS_LIMIT_BASE', 500_000)),
            gas_limit_step=int(config.get('VOTE_GAS_LIMIT_STEP', 50_000)),
            gas_limit_ceiling=int(config.get('VOTE_GAS_LIMIT_CEILING', 1_000_000)),
            priority_fee_base_gwei=config.get('VOTE_PRIORITY_FEE_BASE_GWEI', 15),
            priority_fee_step_gwei=config.get('VOTE_PRIORITY_FEE_STEP_GWEI', 1),
            priority_fee_ceiling_gwei=config.get('VOTE_PRIORITY_FEE_CEILING_GWEI', 50),
            max_fee_base_gwei=config.get('VOTE_MAX_FEE_BASE_GWEI', 35),
            max_fee_step_gwei=config.get('VOTE_MAX_FEE_STEP_GWEI', 2),
            max_fee_ceiling_gwei=config.get('VOTE_MAX_FEE_CEILING_GWEI', 120),
            receipt_timeout=config.get('RECEIPT_TIMEOUT', 120),
            receipt_poll_latency=float(config.get('RECEIPT_POLL_LATENCY', 2.0)),
            lenient_receipt_status=bool(config.get('LENIENT_RECEIPT_STATUS', True)),
            inclusion_check_attempts=int(config.get('INCLUSION_CHECK_ATTEMPTS', 3)),
            inclusion_check_delay=float(config.get('INCLUSION_CHECK_DELAY', 3.0)),
            vote_count_poll_attempts=int(config.get('VOTE_COUNT_POLL_ATTEMPTS', 3)),
            vote_count_poll_delay=float(config.get('VOTE_COUNT_POLL_DELAY', 2.0)),
            election_scan_limit=int(config.get('ELECTION_SCAN_LIMIT', 256)),
            register_missing_candidates=bool(config.get('REGISTER_MISSING_CANDIDATES', False)),
        )
