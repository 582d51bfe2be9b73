"""Network configuration loading and validation."""

import json

import pytest

from arca_deploy.config import (
    ConfigurationError,
    NetworkConfig,
    apply_fee_recipient_overrides,
    filter_requested_vaults,
    get_fee_recipient_overrides,
    load_network_config,
    validate_network_config,
)

from conftest import make_network_data, make_vault_data

#: Sonic testnet addresses used as "real" deployments
METRO = "0x71E99522EaD5E21CF57F1f542Dc4ad2E841F7321"
ROUTER = "0xe77DA7F5B6927fD5E0e825B2B27aca526341069B"
FACTORY = "0x90F28Fe6963cE929d4cBc3480Df1169b92DD22B7"


@pytest.fixture()
def live_network_data() -> dict:
    data = make_network_data([make_vault_data("ws-usdc", "wS", "USDC", 25)], name="sonic-testnet", chain_id=57054)
    data["sharedContracts"] = {"metroToken": METRO, "lbRouter": ROUTER, "lbFactory": FACTORY}
    return data


def test_load_network_config(tmp_path, two_vault_data):
    (tmp_path / "localhost.json").write_text(json.dumps(two_vault_data))

    config = load_network_config("localhost", tmp_path)

    assert config.chain_id == 31337
    assert config.ephemeral
    assert [v.id for v in config.vaults] == ["a-b", "c-d"]
    assert config.vaults[0].lb_pair.bin_step == 25
    assert config.vaults[1].token_y.decimals == 6
    assert config.find_vault("c-d").token_symbol_pair == "C-D"


def test_load_network_config_missing(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        load_network_config("sonic-testnet", tmp_path)


def test_load_network_config_name_mismatch(tmp_path, two_vault_data):
    (tmp_path / "sonic-testnet.json").write_text(json.dumps(two_vault_data))

    with pytest.raises(ConfigurationError) as exc_info:
        load_network_config("sonic-testnet", tmp_path)
    assert exc_info.value.field == "name"


def test_duplicate_vault_ids(two_vault_data):
    two_vault_data["vaults"][1]["id"] = "a-b"
    config = NetworkConfig.from_dict(two_vault_data)

    with pytest.raises(ConfigurationError, match="Duplicate vault ID: a-b"):
        validate_network_config(config)


def test_duplicate_id_of_disabled_vault(two_vault_data):
    two_vault_data["vaults"].append(make_vault_data("a-b", "X", "Y", 5, enabled=False))
    config = NetworkConfig.from_dict(two_vault_data)

    with pytest.raises(ConfigurationError, match="Duplicate vault ID"):
        validate_network_config(config)


def test_bin_step_out_of_range(two_vault_data):
    two_vault_data["vaults"][0]["lbPair"]["binStep"] = 251
    config = NetworkConfig.from_dict(two_vault_data)

    with pytest.raises(ConfigurationError) as exc_info:
        validate_network_config(config)
    assert exc_info.value.field == "vaults.a-b.lbPair.binStep"


def test_malformed_fee_recipient(two_vault_data):
    two_vault_data["vaults"][1]["deployment"]["feeRecipient"] = "0x1234"
    config = NetworkConfig.from_dict(two_vault_data)

    with pytest.raises(ConfigurationError) as exc_info:
        validate_network_config(config)
    assert exc_info.value.field == "vaults.c-d.deployment.feeRecipient"


def test_malformed_token_address(two_vault_data):
    two_vault_data["vaults"][0]["tokens"]["tokenX"]["address"] = "not-an-address"
    config = NetworkConfig.from_dict(two_vault_data)

    with pytest.raises(ConfigurationError, match="Invalid token address"):
        validate_network_config(config)


def test_bad_vault_id(two_vault_data):
    two_vault_data["vaults"][0]["id"] = "A_B"
    config = NetworkConfig.from_dict(two_vault_data)

    with pytest.raises(ConfigurationError, match="Invalid vault ID"):
        validate_network_config(config)


def test_disabled_vault_not_validated(two_vault_data):
    """Broken disabled vaults do not block deployment of the others."""
    broken = make_vault_data("e-f", "E", "F", 0, enabled=False)
    two_vault_data["vaults"].append(broken)
    validate_network_config(NetworkConfig.from_dict(two_vault_data))


def test_live_network_accepts_real_addresses(live_network_data):
    live_network_data["vaults"][0]["tokens"]["tokenX"] = {"address": METRO, "symbol": "METRO", "name": "Metropolis", "decimals": 18}
    validate_network_config(NetworkConfig.from_dict(live_network_data))


def test_live_network_rejects_shared_placeholder(live_network_data):
    live_network_data["sharedContracts"]["lbRouter"] = "DEPLOY_MOCK"

    with pytest.raises(ConfigurationError, match="placeholders not allowed"):
        validate_network_config(NetworkConfig.from_dict(live_network_data))


def test_live_network_rejects_unflagged_token_placeholder(live_network_data):
    live_network_data["vaults"][0]["tokens"]["tokenY"]["deployMock"] = False

    with pytest.raises(ConfigurationError) as exc_info:
        validate_network_config(NetworkConfig.from_dict(live_network_data))
    assert exc_info.value.field == "vaults.ws-usdc.tokens.tokenY.deployMock"


def test_fee_recipient_overrides(two_vault_config):
    new_recipient = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"
    environ = {
        "LOCALHOST_VAULT_C_D_FEE_RECIPIENT": new_recipient,
        "SONIC_TESTNET_VAULT_A_B_FEE_RECIPIENT": "0x0000000000000000000000000000000000000001",
        "PATH": "/usr/bin",
    }

    overrides = get_fee_recipient_overrides("localhost", environ)
    assert overrides == {"c-d": new_recipient}

    updated = apply_fee_recipient_overrides(two_vault_config, overrides)
    assert updated.find_vault("c-d").deployment.fee_recipient == new_recipient
    assert updated.find_vault("a-b").deployment.fee_recipient == two_vault_config.find_vault("a-b").deployment.fee_recipient

    # Original is left alone
    assert two_vault_config.find_vault("c-d").deployment.fee_recipient != new_recipient


def test_filter_requested_vaults(two_vault_config):
    assert [v.id for v in filter_requested_vaults(two_vault_config, None)] == ["a-b", "c-d"]
    assert [v.id for v in filter_requested_vaults(two_vault_config, ["c-d"])] == ["c-d"]

    with pytest.raises(ConfigurationError, match="Invalid vault IDs"):
        filter_requested_vaults(two_vault_config, ["c-d", "nope"])


def test_test_accounts(two_vault_data):
    two_vault_data["testAccounts"] = {"count": 3, "fundingAmount": "1000.5"}
    config = NetworkConfig.from_dict(two_vault_data)

    validate_network_config(config)
    assert config.test_accounts.count == 3
    assert config.test_accounts.funding_amount == "1000.5"
    assert NetworkConfig.from_dict(config.to_dict()).test_accounts == config.test_accounts

    two_vault_data.pop("testAccounts")
    assert NetworkConfig.from_dict(two_vault_data).test_accounts is None


@pytest.mark.parametrize(
    "test_accounts, field",
    [
        ({"count": -1, "fundingAmount": "10"}, "testAccounts.count"),
        ({"count": 2, "fundingAmount": "lots"}, "testAccounts.fundingAmount"),
        ({"count": 2, "fundingAmount": "-5"}, "testAccounts.fundingAmount"),
    ],
)
def test_invalid_test_accounts(two_vault_data, test_accounts, field):
    two_vault_data["testAccounts"] = test_accounts

    with pytest.raises(ConfigurationError) as exc_info:
        validate_network_config(NetworkConfig.from_dict(two_vault_data))
    assert exc_info.value.field == field
