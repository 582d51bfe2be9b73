"""Failed transaction explanations."""

from unittest.mock import Mock

import pytest
from hexbytes import HexBytes
from web3.exceptions import ContractLogicError

from arca_deploy.trace import TransactionAssertionError, assert_transaction_success_with_explanation

TX_HASH = HexBytes("0x" + "ab" * 32)


@pytest.fixture()
def web3() -> Mock:
    web3 = Mock()
    web3.eth.get_transaction.return_value = {
        "from": "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266",
        "to": "0x70997970C51812dc3A010C7d01b50e0d17dc79C8",
        "value": 0,
        "input": "0x",
        "gas": 100_000,
    }
    return web3


def test_successful_transaction(web3):
    web3.eth.wait_for_transaction_receipt.return_value = {"status": 1, "transactionHash": TX_HASH}
    receipt = assert_transaction_success_with_explanation(web3, TX_HASH)
    assert receipt["status"] == 1
    web3.eth.call.assert_not_called()


def test_failed_transaction_revert_reason(web3):
    web3.eth.wait_for_transaction_receipt.return_value = {"status": 0, "transactionHash": TX_HASH}
    web3.eth.call.side_effect = ContractLogicError("execution reverted: Ownable: caller is not the owner")

    with pytest.raises(TransactionAssertionError) as exc_info:
        assert_transaction_success_with_explanation(web3, TX_HASH)

    assert exc_info.value.revert_reason == "execution reverted: Ownable: caller is not the owner"
    assert exc_info.value.tx_hash == TX_HASH
    replay = web3.eth.call.call_args.args[0]
    assert replay["to"] == "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"


def test_failed_transaction_replay_succeeds(web3):
    web3.eth.wait_for_transaction_receipt.return_value = {"status": 0, "transactionHash": TX_HASH}
    web3.eth.call.return_value = b""

    with pytest.raises(TransactionAssertionError, match="could not extract the revert reason"):
        assert_transaction_success_with_explanation(web3, TX_HASH)
