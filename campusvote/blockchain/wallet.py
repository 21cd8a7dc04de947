"""
Wallet adapters used by the vote engine.

InjectedWallet speaks the EIP-1193 request methods to a provider that holds
the voter's keys (a browser wallet bridge, a node with unlocked accounts).
LocalAccountWallet signs with a private key through eth_account.
"""
import logging
from collections import namedtuple

from eth_account import Account
from web3 import Web3

from campusvote.exceptions import VoteError, VoteErrorKind
from .errors import (
    WalletRPCError, USER_REJECTED_REQUEST, UNRECOGNIZED_CHAIN, classify_chain_error
)

logger = logging.getLogger(__name__)

ChainParams = namedtuple('ChainParams', 'chain_id chain_name rpc_url currency_symbol explorer_url')

_HEX_FIELDS = ('gas', 'maxFeePerGas', 'maxPriorityFeePerGas', 'gasPrice', 'value', 'nonce', 'chainId')


def chain_params_from_config(config):
    return ChainParams(
        chain_id=int(config['CHAIN_ID']),
        chain_name=config.get('CHAIN_NAME', ''),
        rpc_url=config['CHAIN_RPC_URL'],
        currency_symbol=config.get('CHAIN_CURRENCY_SYMBOL', 'ETH'),
        explorer_url=config.get('CHAIN_EXPLORER_URL'),
    )


def add_chain_params(chain):
    """Parameters for ``wallet_addEthereumChain``."""
    params = {
        'chainId': hex(chain.chain_id),
        'chainName': chain.chain_name,
        'nativeCurrency': {
            'name': chain.currency_symbol,
            'symbol': chain.currency_symbol,
            'decimals': 18,
        },
        'rpcUrls': [chain.rpc_url],
    }
    if chain.explorer_url:
        params['blockExplorerUrls'] = [chain.explorer_url]
    return params


class InjectedWallet:
    """Wallet reached through EIP-1193 style ``request(method, params)`` calls."""

    def __init__(self, w3):
        self.w3 = w3
        self.address = None

    def _request(self, method, params=None):
        response = self.w3.provider.make_request(method, params or [])
        if response.get('error'):
            raise WalletRPCError.from_response(response['error'])
        return response.get('result')

    def request_accounts(self):
        accounts = self._request('eth_requestAccounts') or []
        if accounts:
            self.address = Web3.to_checksum_address(accounts[0])
        return [Web3.to_checksum_address(a) for a in accounts]

    def chain_id(self):
        return int(self._request('eth_chainId'), 16)

    def switch_chain(self, chain_id):
        self._request('wallet_switchEthereumChain', [{'chainId': hex(chain_id)}])

    def add_chain(self, chain):
        self._request('wallet_addEthereumChain', [add_chain_params(chain)])

    def send_transaction(self, transaction):
        """Hand the transaction to the wallet; returns the tx hash as hex."""
        tx_data = {}
        for key, value in transaction.items():
            if value is None:
                continue
            tx_data[key] = hex(value) if key in _HEX_FIELDS and isinstance(value, int) else value

        tx_hash = self._request('eth_sendTransaction', [tx_data])
        return tx_hash if isinstance(tx_hash, str) else Web3.to_hex(tx_hash)


class LocalAccountWallet:
    """Wallet backed by a private key held in-process."""

    def __init__(self, w3, private_key):
        self.w3 = w3
        self.account = Account.from_key(private_key)
        self.address = self.account.address

    def request_accounts(self):
        return [self.address]

    def chain_id(self):
        return int(self.w3.eth.chain_id)

    def switch_chain(self, chain_id):
        raise VoteError(
            VoteErrorKind.NETWORK_MISMATCH,
            f"Local signer is bound to its RPC endpoint and cannot switch to chain {chain_id}"
        )

    def add_chain(self, chain):
        raise VoteError(
            VoteErrorKind.NETWORK_MISMATCH,
            f"Local signer cannot add chain {chain.chain_id}"
        )

    def send_transaction(self, transaction):
        transaction = dict(transaction)
        # The account nonce, not the contract's replay-protection nonce
        transaction['nonce'] = self.w3.eth.get_transaction_count(self.address, 'pending')

        signed_txn = self.account.sign_transaction(transaction)
        tx_hash = self.w3.eth.send_raw_transaction(signed_txn.raw_transaction)
        return Web3.to_hex(tx_hash)


def ensure_network(wallet, chain):
    """
    Make sure ``wallet`` is on ``chain``, switching (and adding) it if needed.

    Raises:
        VoteError: USER_REJECTED if the voter declined, NETWORK_MISMATCH if
            the wallet is still on another chain afterwards
    """
    current = wallet.chain_id()
    if current == chain.chain_id:
        return

    logger.info(f"Wallet on chain {current}, requesting switch to {chain.chain_id}")
    try:
        wallet.switch_chain(chain.chain_id)
    except WalletRPCError as e:
        if e.code == USER_REJECTED_REQUEST:
            raise VoteError(VoteErrorKind.USER_REJECTED, e.message, cause=e)
        if e.code != UNRECOGNIZED_CHAIN:
            raise VoteError(VoteErrorKind.NETWORK_MISMATCH, e.message, cause=e)

        # Wallet does not know the chain yet: add it, then switch once more
        try:
            wallet.add_chain(chain)
            wallet.switch_chain(chain.chain_id)
        except WalletRPCError as add_error:
            kind = classify_chain_error(add_error)
            if kind is not VoteErrorKind.USER_REJECTED:
                kind = VoteErrorKind.NETWORK_MISMATCH
            raise VoteError(kind, add_error.message, cause=add_error)

    if wallet.chain_id() != chain.chain_id:
        raise VoteError(
            VoteErrorKind.NETWORK_MISMATCH,
            f"Wallet is still on chain {wallet.chain_id()}, expected {chain.chain_id}"
        )
