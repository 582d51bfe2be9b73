"""Shared fixtures.

:py:class:`InMemoryChain` stands in for :py:class:`arca_deploy.orchestrator.ChainOperations`
and keeps just enough state to check ownership and registration.
"""

import collections
import copy

import pytest
from web3 import Web3

from arca_deploy.config import NetworkConfig
from arca_deploy.infrastructure import SharedInfrastructure
from arca_deploy.lb_pair import DeployedPair
from arca_deploy.progress import JSONFileProgressLedger
from arca_deploy.token import DeployedToken, collect_token_configs
from arca_deploy.vault import OwnershipTransferFailed, VaultAlreadyRegistered, VaultDeploymentAddresses

#: Anvil account #1
FEE_RECIPIENT = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"

#: Anvil account #0
DEPLOYER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"


def make_vault_data(vault_id: str, symbol_x: str, symbol_y: str, bin_step: int, enabled=True) -> dict:
    return {
        "id": vault_id,
        "enabled": enabled,
        "tokens": {
            "tokenX": {"address": "DEPLOY_MOCK", "symbol": symbol_x, "name": f"Token {symbol_x}", "decimals": 18, "deployMock": True},
            "tokenY": {"address": "DEPLOY_MOCK", "symbol": symbol_y, "name": f"Token {symbol_y}", "decimals": 6, "deployMock": True},
        },
        "lbPair": {"address": "DEPLOY_MOCK", "deployMock": True, "binStep": bin_step, "activeId": 8388608},
        "deployment": {
            "vaultName": f"Arca {symbol_x}-{symbol_y} Vault",
            "vaultSymbol": f"ARCA-{symbol_x}{symbol_y}",
            "amountXMin": "1000",
            "amountYMin": "1000",
            "idSlippage": "5",
            "feeRecipient": FEE_RECIPIENT,
        },
    }


def make_network_data(vaults: list[dict], name="localhost", chain_id=31337) -> dict:
    return {
        "name": name,
        "chainId": chain_id,
        "sharedContracts": {
            "metroToken": "DEPLOY_MOCK",
            "lbRouter": "DEPLOY_MOCK",
            "lbFactory": "DEPLOY_MOCK",
        },
        "vaults": vaults,
    }


@pytest.fixture()
def two_vault_data() -> dict:
    """Vaults a-b and c-d with different bin steps."""
    return make_network_data(
        [
            make_vault_data("a-b", "A", "B", 25),
            make_vault_data("c-d", "C", "D", 10),
        ]
    )


@pytest.fixture()
def two_vault_config(two_vault_data) -> NetworkConfig:
    return NetworkConfig.from_dict(copy.deepcopy(two_vault_data))


@pytest.fixture()
def three_vault_config() -> NetworkConfig:
    return NetworkConfig.from_dict(
        make_network_data(
            [
                make_vault_data("a-b", "A", "B", 25),
                make_vault_data("b-c", "B", "C", 20),
                make_vault_data("c-d", "C", "D", 10),
            ]
        )
    )


@pytest.fixture()
def ledger(tmp_path) -> JSONFileProgressLedger:
    return JSONFileProgressLedger(tmp_path / "deployments")


class InMemoryChain:
    """Simulated deployment steps.

    - Addresses are handed out from a counter
    - Satellite owners and registry entries are tracked
    - ``fail_instantiation`` and ``fail_ownership`` vault ids make the
      respective step raise
    """

    def __init__(self, network_config: NetworkConfig):
        self.network_config = network_config
        self.counter = 0
        self.calls = collections.Counter()
        self.instantiated: list[str] = []
        self.owners: dict[str, str] = {}
        self.registered: dict[str, int] = {}
        self.pairs: dict[tuple, str] = {}
        self.fail_instantiation: set[str] = set()
        self.fail_ownership: set[str] = set()
        self.fail_tokens = False

    def new_address(self) -> str:
        self.counter += 1
        return Web3.to_checksum_address(f"0x{self.counter:040x}")

    def deploy_shared_infrastructure(self) -> SharedInfrastructure:
        self.calls["deploy_shared_infrastructure"] += 1
        return SharedInfrastructure(
            registry=self.new_address(),
            queue_handler_beacon=self.new_address(),
            fee_manager_beacon=self.new_address(),
            lb_router=self.new_address(),
            lb_factory=self.new_address(),
        )

    def provision_tokens(self, existing: dict[str, str]) -> dict[str, DeployedToken]:
        self.calls["provision_tokens"] += 1
        if self.fail_tokens:
            raise RuntimeError("Token deployment reverted")

        tokens = {}
        for symbol, config in collect_token_configs(self.network_config).items():
            if symbol in existing:
                tokens[symbol] = DeployedToken(symbol, existing[symbol], config.decimals)
            else:
                tokens[symbol] = DeployedToken(symbol, self.new_address(), config.decimals, is_new=True)
        return tokens

    def resolve_pair(self, vault_config, shared, token_x, token_y) -> DeployedPair:
        self.calls["resolve_pair"] += 1
        key = (token_x.address, token_y.address, vault_config.lb_pair.bin_step)
        is_new = key not in self.pairs
        if is_new:
            self.pairs[key] = self.new_address()
        return DeployedPair(self.pairs[key], token_x.address, token_y.address, vault_config.lb_pair.bin_step, is_new)

    def seed_liquidity(self, vault_config, shared, pair, token_x, token_y) -> bool:
        self.calls["seed_liquidity"] += 1
        return pair.is_new

    def instantiate_vault(self, vault_config, shared, tokens, pair) -> VaultDeploymentAddresses:
        self.calls["instantiate_vault"] += 1
        self.instantiated.append(vault_config.id)

        if vault_config.id in self.fail_instantiation:
            raise RuntimeError(f"Vault {vault_config.id} initializer reverted")

        satellites = [self.new_address() for _ in range(3)]
        vault = self.new_address()

        if vault_config.id in self.fail_ownership:
            raise OwnershipTransferFailed(f"transferOwnership reverted for {vault_config.id}")

        for satellite in satellites:
            self.owners[satellite] = vault

        queue_handler, fee_manager, reward_claimer = satellites
        return VaultDeploymentAddresses(
            vault=vault,
            reward_claimer=reward_claimer,
            queue_handler=queue_handler,
            fee_manager=fee_manager,
            registry=shared.registry,
            queue_handler_beacon=shared.queue_handler_beacon,
            fee_manager_beacon=shared.fee_manager_beacon,
        )

    def register_vault(self, vault_config, addresses, token_x, token_y, deployment_id):
        self.calls["register_vault"] += 1
        if addresses.vault in self.registered:
            raise VaultAlreadyRegistered(addresses.vault)
        self.registered[addresses.vault] = deployment_id


@pytest.fixture()
def chain(two_vault_config) -> InMemoryChain:
    return InMemoryChain(two_vault_config)
