"""Transaction success checks with human-readable failure explanations."""

import logging

from hexbytes import HexBytes
from web3 import Web3
from web3.types import TxReceipt

from arca_deploy.revert_reason import fetch_transaction_revert_reason

logger = logging.getLogger(__name__)


class TransactionAssertionError(AssertionError):
    """Exception thrown when a broadcasted transaction reverts.

    See :py:func:`assert_transaction_success_with_explanation`.
    """

    def __init__(
        self,
        message,
        tx_hash: HexBytes | None = None,
        revert_reason: str = "",
    ):
        super().__init__(message)
        self.tx_hash = tx_hash
        self.revert_reason = revert_reason


def assert_transaction_success_with_explanation(
    web3: Web3,
    tx_hash: HexBytes,
    timeout: float = 120.0,
) -> TxReceipt:
    """Checks if a transaction succeeds and give a verbose explanation why not.

    Blocks until the transaction is mined. If it's a failure, then
    the revert reason is extracted by replaying the transaction.

    Example usage:

    .. code-block:: python

        tx_hash = deployer.transact_and_broadcast_with_contract(queue_handler.functions.transferOwnership(vault.address))
        assert_transaction_success_with_explanation(web3, tx_hash)

    :param tx_hash:
        A transaction (mined/not mined) we want to make sure has succeeded.

    :raise TransactionAssertionError:
        Outputs a verbose AssertionError on what went wrong.

    :return:
        Transaction receipt if no error is raised
    """
    receipt = web3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
    if receipt["status"] == 0:
        revert_reason = fetch_transaction_revert_reason(web3, tx_hash)
        raise TransactionAssertionError(
            f"Transaction {HexBytes(tx_hash).hex()} failed.\nRevert reason: {revert_reason}",
            tx_hash=tx_hash,
            revert_reason=revert_reason,
        )

    return receipt
