"""Deployer wallet.

- Create a local wallet from a private key

- Sign deployment and configuration transactions with a locally managed nonce

"""

import logging
from decimal import Decimal
from pprint import pformat
from typing import NamedTuple, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3
from web3.contract.contract import ContractFunction

from arca_deploy.gas import apply_gas, estimate_gas_price

logger = logging.getLogger(__name__)


class SignedTransactionWithNonce(NamedTuple):
    """A signed transaction with the nonce it was signed with.

    If broadcast fails, retain the source so we can debug the cause,
    like the original gas parameters.
    """

    raw_transaction: HexBytes

    hash: HexBytes

    #: What was the source nonce for this transaction
    nonce: int

    #: Whas was the source address for this trasaction
    address: str

    #: Unencoded transaction data as a dict.
    source: Optional[dict] = None

    def __repr__(self):
        return f"<SignedTransactionWithNonce hash:{self.hash.hex()} nonce:{self.nonce}>"


class HotWallet:
    """Hot wallet for signing deployment transactions.

    - Maintains a plain text private key in the process memory
      using :py:class:`eth_account.signers.local.LocalAccount` and a nonce counter.

    - Only one transaction is outstanding at a time, so the nonce is synced once
      at the start of the run and then allocated locally.

    Example:

    .. code-block:: python

        deployer = HotWallet.from_private_key(os.environ["PRIVATE_KEY"])
        deployer.sync_nonce(web3)
        tx_hash = deployer.transact_and_broadcast_with_contract(registry.functions.registerVault(*args))

    .. note ::

        This class is not thread safe.
    """

    def __init__(self, account: LocalAccount):
        self.account = account
        self.current_nonce: Optional[int] = None

    def __repr__(self):
        return f"<Hot wallet {self.account.address}>"

    @property
    def address(self) -> HexAddress:
        """Ethereum address of the wallet."""
        return self.account.address

    def sync_nonce(self, web3: Web3):
        """Initialise the current nonce from the on-chain data."""
        new_nonce = web3.eth.get_transaction_count(self.account.address)
        if self.current_nonce and new_nonce < self.current_nonce:
            logger.warning(
                "Nonce sync failed, read onchain nonce %d that is older than our current nonce: %d",
                new_nonce,
                self.current_nonce,
            )
            return
        self.current_nonce = new_nonce
        logger.info("Synced nonce for %s to %d", self.account.address, self.current_nonce)

    def allocate_nonce(self) -> int:
        """Get the next free available nonce to be used with a transaction."""
        assert self.current_nonce is not None, f"Nonce is not yet synced from the blockchain: {self}"
        nonce = self.current_nonce
        self.current_nonce += 1
        return nonce

    def sign_transaction_with_new_nonce(self, tx: dict) -> SignedTransactionWithNonce:
        """Signs a transaction and allocates a nonce for it.

        :param tx:
            Ethereum transaction data as a dict.
            This is modified in-place to include nonce.
        """
        assert type(tx) == dict
        assert "nonce" not in tx
        tx["nonce"] = self.allocate_nonce()
        signed = self.account.sign_transaction(tx)
        return SignedTransactionWithNonce(
            raw_transaction=HexBytes(signed.raw_transaction),
            hash=HexBytes(signed.hash),
            nonce=tx["nonce"],
            source=tx,
            address=self.address,
        )

    def get_native_currency_balance(self, web3: Web3) -> Decimal:
        """Get the balance of the native currency of the wallet.

        Useful to check if you have enough cryptocurrency for the gas fees.
        """
        balance = web3.eth.get_balance(self.address)
        return web3.from_wei(balance, "ether")

    def broadcast(self, web3: Web3, tx_data: dict) -> HexBytes:
        """Fill gas, sign with a new nonce and broadcast a built transaction.

        :return:
            Transaction hash
        """
        self.fill_in_gas_price(web3, tx_data)
        tx_data.pop("nonce", None)

        try:
            signed_tx = self.sign_transaction_with_new_nonce(tx_data)
        except Exception as e:
            # Probably mismatch between network expected gas parameter format and what we give
            raise RuntimeError(f"Could not sign:\n{pformat(tx_data)}") from e

        return web3.eth.send_raw_transaction(signed_tx.raw_transaction)

    def transact_and_broadcast_with_contract(
        self,
        func: ContractFunction,
        gas_limit: int = None,
    ) -> HexBytes:
        """Transacts with a contract, broadcasts transaction.

        - Build a contract function call transaction and signs it
        - Always use a correct manually managed nonce

        :return:
            Transaction hash
        """
        assert isinstance(func, ContractFunction), f"Got: {type(func)}"
        assert func.args is not None, f"Unbound contract function? {func}"
        web3 = func.w3

        tx_params = {"from": self.address, "chainId": web3.eth.chain_id}
        if gas_limit is not None:
            tx_params["gas"] = gas_limit

        tx_data = func.build_transaction(tx_params)
        return self.broadcast(web3, tx_data)

    @staticmethod
    def fill_in_gas_price(web3: Web3, tx: dict) -> dict:
        """Fills in the gas value fields for a transaction.

        .. note ::

            Mutates ``tx`` in place.
        """
        apply_gas(tx, estimate_gas_price(web3))
        return tx

    @staticmethod
    def from_private_key(key: str) -> "HotWallet":
        """Create a hot wallet from a private key that is passed in as a hex string.

        :param key: 0x prefixed hex string
        :return: Ready to go hot wallet account
        """
        assert type(key) == str, f"Expected private key as string, got {type(key)}"
        assert key.startswith("0x"), f"This system assumes private keys are prefixed with 0x, your key starts with {key[0:8]}... Please add 0x prefix to your private key hex string"
        account = Account.from_key(key)
        return HotWallet(account)
