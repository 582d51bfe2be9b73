"""Revert reason extraction.

Ethereum nodes do not store the transaction failure reason, so we replay
the failed transaction with ``eth_call`` against the current state.
"""

import logging
from typing import Union

from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import ContractLogicError

logger = logging.getLogger(__name__)


def fetch_transaction_revert_reason(
    web3: Web3,
    tx_hash: Union[HexBytes, str],
    unknown_error_message="<could not extract the revert reason>",
) -> str:
    """Gets a transaction revert reason.

    - Replay the transaction against the current state. No archive node is needed, but the revert reason might be wrong.

    - The transaction must have had ``gas`` set, or it would have reverted during the gas estimation
      before being broadcast.

    :param tx_hash:
        Transaction hash of which reason we extract by simulation.

    :param unknown_error_message:
        Return this message if the revert reason extraction fails.

    :return:
        The revert reason or the placeholder message if we could not extract the reason somehow.
    """
    tx = web3.eth.get_transaction(tx_hash)

    replay_tx = {
        "from": tx["from"],
        "value": tx["value"],
        "data": tx.get("input", tx.get("data")),
        "gas": tx["gas"],
    }

    # Contract deployments do not have a target
    if tx.get("to"):
        replay_tx["to"] = tx["to"]

    try:
        web3.eth.call(replay_tx)
    except ContractLogicError as e:
        return e.args[0]
    except ValueError as e:
        logger.debug("Revert exception result is: %s", e)
        data = e.args[0]
        if type(data) == str:
            return data
        return data.get("message", unknown_error_message)

    logger.error(
        "Queried revert reason for %s, but the replay succeeded. Maybe the chain tip is unstable or the state changed since.",
        HexBytes(tx_hash).hex(),
    )
    return unknown_error_message
