"""Token provisioning with mocked contract deployment."""

from unittest.mock import Mock, patch

import pytest

from arca_deploy.config import NetworkConfig
from arca_deploy.token import (
    MOCK_ERC20_ABI,
    TEST_ACCOUNT_NATIVE_FUNDING,
    TokenProvisioningFailed,
    collect_token_configs,
    provision_tokens,
)

from conftest import DEPLOYER, make_network_data, make_vault_data

USDC = "0x29219dd400f2Bf60E5a23d13Be72B486D4038894"


def _deployed(address: str) -> Mock:
    contract = Mock()
    contract.address = address
    return contract


@pytest.fixture()
def network_config() -> NetworkConfig:
    data = make_network_data(
        [
            make_vault_data("a-usdc", "A", "USDC", 25),
            make_vault_data("b-usdc", "B", "USDC", 10),
        ]
    )
    # Second vault points USDC to an existing token, first configuration wins
    data["vaults"][1]["tokens"]["tokenY"]["address"] = USDC
    return NetworkConfig.from_dict(data)


def test_collect_token_configs(network_config):
    tokens = collect_token_configs(network_config)
    assert list(tokens) == ["METRO", "A", "USDC", "B"]
    assert tokens["USDC"].address == "DEPLOY_MOCK"


def test_provision_deploys_placeholders(network_config):
    web3 = Mock()
    addresses = iter(f"0x{i:040x}" for i in range(1, 10))

    with patch("arca_deploy.token.deploy_contract", side_effect=lambda *args: _deployed(next(addresses))) as deploy:
        tokens = provision_tokens(web3, DEPLOYER, network_config)

    assert deploy.call_count == 4
    _, abi, deployer, name, symbol, decimals, holder = deploy.call_args_list[2].args
    assert (abi, deployer, name, symbol, decimals, holder) == (MOCK_ERC20_ABI, DEPLOYER, "Token USDC", "USDC", 6, DEPLOYER)

    assert all(t.is_new for t in tokens.values())
    assert tokens["METRO"].decimals == 18
    assert tokens["USDC"].convert_to_raw(5) == 5_000_000


def test_provision_reuses_ledger_addresses(network_config):
    existing = {
        "METRO": "0x0000000000000000000000000000000000000101",
        "A": "0x0000000000000000000000000000000000000102",
        "USDC": "0x0000000000000000000000000000000000000103",
    }

    erc20 = Mock()
    erc20.functions.decimals.return_value.call.return_value = 18

    def get_deployed_contract(web3, abi, address):
        erc20.address = address
        return erc20

    with (
        patch("arca_deploy.token.deploy_contract", return_value=_deployed("0x0000000000000000000000000000000000000104")) as deploy,
        patch("arca_deploy.token.get_deployed_contract", side_effect=get_deployed_contract),
    ):
        tokens = provision_tokens(Mock(), DEPLOYER, network_config, existing)

    # Only B was missing
    assert deploy.call_count == 1
    assert tokens["USDC"].address == existing["USDC"]
    assert not tokens["USDC"].is_new
    assert tokens["B"].is_new


def test_provision_wraps_existing_token():
    data = make_network_data([make_vault_data("a-usdc", "A", "USDC", 25)])
    data["vaults"][0]["tokens"]["tokenY"] = {"address": USDC, "symbol": "USDC", "name": "USD Coin", "decimals": 6}
    data["sharedContracts"]["metroToken"] = "0x71E99522EaD5E21CF57F1f542Dc4ad2E841F7321"
    config = NetworkConfig.from_dict(data)

    usdc = Mock()
    usdc.address = USDC
    usdc.functions.decimals.return_value.call.return_value = 6

    with (
        patch("arca_deploy.token.deploy_contract", return_value=_deployed("0x0000000000000000000000000000000000000201")),
        patch("arca_deploy.token.get_deployed_contract", return_value=usdc) as get_contract,
    ):
        tokens = provision_tokens(Mock(), DEPLOYER, config)

    assert list(tokens) == ["A", "USDC"]
    assert tokens["USDC"].decimals == 6
    assert get_contract.call_args.args[2] == USDC


def test_provision_failure(network_config):
    with patch("arca_deploy.token.deploy_contract", side_effect=ValueError("out of gas")):
        with pytest.raises(TokenProvisioningFailed) as exc_info:
            provision_tokens(Mock(), DEPLOYER, network_config)

    assert exc_info.value.symbol == "METRO"
    assert "out of gas" in str(exc_info.value)


#: Anvil accounts #2 - #4
TEST_ACCOUNTS = [
    "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC",
    "0x90F79bf6EB2c4f870365E785982E1f101E93b906",
    "0x15d34AAf54267DB7D7c367839AAf71A00a2C6A65",
]


def _funded_config(network: str = "localhost") -> NetworkConfig:
    data = make_network_data([make_vault_data("a-b", "A", "B", 25)], name=network)
    data["testAccounts"] = {"count": 2, "fundingAmount": "1000"}
    return NetworkConfig.from_dict(data)


def _node(accounts: list[str]) -> Mock:
    web3 = Mock()
    web3.eth.accounts = accounts
    return web3


def test_provision_funds_test_accounts():
    """Fresh placeholders are minted to the node accounts after the deployer."""
    addresses = iter(f"0x{i:040x}" for i in range(1, 10))
    deployed = []

    def deploy(*args):
        contract = _deployed(next(addresses))
        deployed.append(contract)
        return contract

    with (
        patch("arca_deploy.token.deploy_contract", side_effect=deploy),
        patch("arca_deploy.token.broadcast_and_confirm") as broadcast,
        patch("arca_deploy.token.send_native_currency") as send_native,
    ):
        tokens = provision_tokens(_node([DEPLOYER] + TEST_ACCOUNTS), DEPLOYER, _funded_config())

    # METRO, A and B to two accounts each
    assert len(deployed) == 3
    assert broadcast.call_count == 6

    token_b = deployed[2]
    assert tokens["B"].contract is token_b
    token_b.functions.mint.assert_any_call(TEST_ACCOUNTS[0], 1000 * 10**6)
    token_b.functions.mint.assert_any_call(TEST_ACCOUNTS[1], 1000 * 10**6)
    deployed[0].functions.mint.assert_any_call(TEST_ACCOUNTS[0], 1000 * 10**18)

    assert [c.args[2:] for c in send_native.call_args_list] == [
        (TEST_ACCOUNTS[0], TEST_ACCOUNT_NATIVE_FUNDING),
        (TEST_ACCOUNTS[1], TEST_ACCOUNT_NATIVE_FUNDING),
    ]


def test_provision_no_native_funding_on_live_network():
    with (
        patch("arca_deploy.token.deploy_contract", return_value=_deployed("0x0000000000000000000000000000000000000301")),
        patch("arca_deploy.token.broadcast_and_confirm") as broadcast,
        patch("arca_deploy.token.send_native_currency") as send_native,
    ):
        provision_tokens(_node([DEPLOYER] + TEST_ACCOUNTS), DEPLOYER, _funded_config("sonic-testnet"))

    assert broadcast.call_count == 6
    send_native.assert_not_called()


def test_provision_reused_tokens_not_funded():
    """Tokens from an earlier run are not minted again."""
    existing = {
        "METRO": "0x0000000000000000000000000000000000000101",
        "A": "0x0000000000000000000000000000000000000102",
        "B": "0x0000000000000000000000000000000000000103",
    }
    erc20 = Mock()
    erc20.functions.decimals.return_value.call.return_value = 18

    with (
        patch("arca_deploy.token.get_deployed_contract", return_value=erc20),
        patch("arca_deploy.token.broadcast_and_confirm") as broadcast,
        patch("arca_deploy.token.send_native_currency") as send_native,
    ):
        tokens = provision_tokens(_node([DEPLOYER] + TEST_ACCOUNTS), DEPLOYER, _funded_config(), existing)

    assert all(t.contract is None for t in tokens.values())
    broadcast.assert_not_called()
    send_native.assert_not_called()


def test_provision_without_node_accounts():
    with (
        patch("arca_deploy.token.deploy_contract", return_value=_deployed("0x0000000000000000000000000000000000000301")),
        patch("arca_deploy.token.broadcast_and_confirm") as broadcast,
    ):
        provision_tokens(_node([DEPLOYER]), DEPLOYER, _funded_config())

    broadcast.assert_not_called()


def test_provision_funding_failure():
    with (
        patch("arca_deploy.token.deploy_contract", return_value=_deployed("0x0000000000000000000000000000000000000301")),
        patch("arca_deploy.token.broadcast_and_confirm", side_effect=ValueError("execution reverted")),
    ):
        with pytest.raises(TokenProvisioningFailed, match="Could not fund test accounts with METRO") as exc_info:
            provision_tokens(_node([DEPLOYER] + TEST_ACCOUNTS), DEPLOYER, _funded_config())

    assert exc_info.value.symbol == "METRO"
