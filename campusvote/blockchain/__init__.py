"""
Blockchain integration module for CampusVote
Handles interaction with the StudentIdVoting contract
"""
from .web3_config import (
    ChainClient,
    ChainElectionType,
    ChainElectionStatus,
    ElectionDetails,
    load_contract_abi,
    is_valid_address,
    to_checksum_address,
)
from .errors import WalletRPCError, classify_chain_error, to_vote_error
from .wallet import (
    ChainParams,
    InjectedWallet,
    LocalAccountWallet,
    chain_params_from_config,
    ensure_network,
)

__all__ = [
    'ChainClient',
    'ChainElectionType',
    'ChainElectionStatus',
    'ElectionDetails',
    'load_contract_abi',
    'is_valid_address',
    'to_checksum_address',
    'WalletRPCError',
    'classify_chain_error',
    'to_vote_error',
    'ChainParams',
    'InjectedWallet',
    'LocalAccountWallet',
    'chain_params_from_config',
    'ensure_network',
]
