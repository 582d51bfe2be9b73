"""Deployer hot wallet signing and nonce management."""

from unittest.mock import Mock

import pytest
from eth_account import Account
from hexbytes import HexBytes

from arca_deploy.hotwallet import HotWallet

#: Anvil account #0, never use outside local chains
PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"


@pytest.fixture()
def web3() -> Mock:
    web3 = Mock()
    web3.eth.get_transaction_count.return_value = 7
    web3.eth.get_block.return_value = {"baseFeePerGas": 1_000_000_000}
    web3.eth.max_priority_fee = 1_000_000_000
    web3.eth.send_raw_transaction.side_effect = lambda raw: HexBytes(b"\x01" * 32)
    return web3


def test_from_private_key():
    wallet = HotWallet.from_private_key(PRIVATE_KEY)
    assert wallet.address == Account.from_key(PRIVATE_KEY).address

    with pytest.raises(AssertionError):
        HotWallet.from_private_key(PRIVATE_KEY[2:])


def test_nonce_allocation(web3):
    wallet = HotWallet.from_private_key(PRIVATE_KEY)

    with pytest.raises(AssertionError):
        wallet.allocate_nonce()

    wallet.sync_nonce(web3)
    assert wallet.allocate_nonce() == 7
    assert wallet.allocate_nonce() == 8


def test_broadcast(web3):
    wallet = HotWallet.from_private_key(PRIVATE_KEY)
    wallet.sync_nonce(web3)

    for expected_nonce in (7, 8):
        tx = {
            "to": "0x70997970C51812dc3A010C7d01b50e0d17dc79C8",
            "value": 0,
            "gas": 21_000,
            "chainId": 31337,
            "data": "0x",
            "nonce": 0,
        }
        tx_hash = wallet.broadcast(web3, tx)
        assert tx_hash == HexBytes(b"\x01" * 32)
        # Stale nonce from the transaction builder is replaced
        assert tx["nonce"] == expected_nonce
        assert tx["maxFeePerGas"] == 3_000_000_000

    assert web3.eth.send_raw_transaction.call_count == 2
