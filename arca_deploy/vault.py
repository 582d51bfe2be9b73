"""Deploy one vault's contract set.

A vault consists of

- ``ArcaQueueHandlerV1`` beacon proxy: deposit and withdraw queues
- ``ArcaFeeManagerV1`` beacon proxy: fee settings and the fee recipient
- ``ArcaRewardClaimerV1`` UUPS proxy: claims and compounds liquidity book hook rewards
- ``ArcaTestnetV1`` UUPS proxy: the vault itself

The three satellite contracts are owned by the vault after the deployment,
so that the vault is the only party that can operate them.
"""

import logging
from dataclasses import dataclass

from eth_typing import HexAddress
from web3 import Web3
from web3.contract import Contract

from arca_deploy.abi import ZERO_ADDRESS_STR, get_deployed_contract, is_zero_address
from arca_deploy.chain import is_ephemeral_network
from arca_deploy.config import REWARD_TOKEN_SYMBOL, NetworkConfig, VaultConfig, is_deploy_mock
from arca_deploy.deploy import Deployer, broadcast_and_confirm
from arca_deploy.infrastructure import FEE_MANAGER_ABI, QUEUE_HANDLER_ABI, REGISTRY_ABI, SharedInfrastructure
from arca_deploy.lb_pair import DeployedPair
from arca_deploy.proxy import deploy_beacon_proxy, deploy_uups_proxy
from arca_deploy.token import DeployedToken

logger = logging.getLogger(__name__)

REWARD_CLAIMER_ABI = "ArcaRewardClaimerV1"

VAULT_ABI = "ArcaTestnetV1"

LB_PAIR_ABI = "ILBPair"

LB_HOOKS_REWARDER_ABI = "ILBHooksBaseRewarder"


class OwnershipTransferFailed(Exception):
    """A satellite contract could not be handed over to the vault."""


class VaultAlreadyRegistered(Exception):
    """The registry already knows this vault."""


@dataclass(slots=True, frozen=True)
class VaultDeploymentAddresses:
    """Contracts of one vault plus references to the shared layer."""

    vault: HexAddress
    reward_claimer: HexAddress
    queue_handler: HexAddress
    fee_manager: HexAddress
    registry: HexAddress
    queue_handler_beacon: HexAddress
    fee_manager_beacon: HexAddress

    @property
    def satellites(self) -> dict[str, HexAddress]:
        """Contracts that must be owned by the vault."""
        return {
            "QueueHandler": self.queue_handler,
            "FeeManager": self.fee_manager,
            "RewardClaimer": self.reward_claimer,
        }

    def to_dict(self) -> dict:
        return {
            "vault": self.vault,
            "rewardClaimer": self.reward_claimer,
            "queueHandler": self.queue_handler,
            "feeManager": self.fee_manager,
            "registry": self.registry,
            "beacons": {
                "queueHandler": self.queue_handler_beacon,
                "feeManager": self.fee_manager_beacon,
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> "VaultDeploymentAddresses":
        beacons = data.get("beacons", {})
        return cls(
            vault=data["vault"],
            reward_claimer=data["rewardClaimer"],
            queue_handler=data["queueHandler"],
            fee_manager=data["feeManager"],
            registry=data["registry"],
            queue_handler_beacon=beacons.get("queueHandler"),
            fee_manager_beacon=beacons.get("feeManager"),
        )


@dataclass(slots=True, frozen=True)
class VaultDeployment:
    """A completed vault. Written once."""

    vault_id: str
    addresses: VaultDeploymentAddresses
    token_x: HexAddress
    token_y: HexAddress
    lb_pair: HexAddress

    def to_dict(self) -> dict:
        return {
            "vaultId": self.vault_id,
            "addresses": self.addresses.to_dict(),
            "tokenX": self.token_x,
            "tokenY": self.token_y,
            "lbPair": self.lb_pair,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "VaultDeployment":
        return cls(
            vault_id=data["vaultId"],
            addresses=VaultDeploymentAddresses.from_dict(data["addresses"]),
            token_x=data["tokenX"],
            token_y=data["tokenY"],
            lb_pair=data["lbPair"],
        )


def find_reward_hook(
    web3: Web3,
    lb_pair_address: HexAddress,
    network_name: str,
) -> HexAddress | None:
    """Find the reward distribution hook of a liquidity pair.

    The hook address is packed into the low 160 bits of ``getLBHooksParameters()``.
    The hook must answer ``getRewardToken()`` to be accepted as a rewarder.

    Never raises: a missing hook, a hook of some other kind or a failing read
    all mean "no rewards".

    :return:
        Hook address or ``None``
    """
    if is_ephemeral_network(network_name):
        return None

    try:
        pair = get_deployed_contract(web3, LB_PAIR_ABI, lb_pair_address)
        hooks_parameters = bytes(pair.functions.getLBHooksParameters().call())
    except Exception as e:
        logger.warning("Failed to get rewarder from LB pair %s: %s", lb_pair_address, e)
        return None

    hook_address = Web3.to_checksum_address(hooks_parameters[-20:])
    if is_zero_address(hook_address):
        logger.warning("No hooks/rewarder configured for LB pair %s", lb_pair_address)
        return None

    try:
        rewarder = get_deployed_contract(web3, LB_HOOKS_REWARDER_ABI, hook_address)
        rewarder.functions.getRewardToken().call()
    except Exception as e:
        logger.warning("Hooks address %s does not implement ILBHooksBaseRewarder: %s", hook_address, e)
        return None

    logger.info("Found hooks/rewarder at %s", hook_address)
    return hook_address


def resolve_reward_token(
    network_config: NetworkConfig,
    tokens: dict[str, DeployedToken],
) -> HexAddress:
    """Protocol reward token address the reward claimer swaps from.

    Placeholder configuration uses the ``METRO`` token deployed in this network,
    zero address if there is none.
    """
    configured = network_config.shared_contracts.reward_token
    if not is_deploy_mock(configured):
        return Web3.to_checksum_address(configured)

    token = tokens.get(REWARD_TOKEN_SYMBOL)
    if token is None:
        logger.warning("%s token not found, using zero address", REWARD_TOKEN_SYMBOL)
        return ZERO_ADDRESS_STR
    return token.address


def transfer_ownership_to_vault(
    web3: Web3,
    deployer: Deployer,
    vault_address: HexAddress,
    satellites: dict[str, Contract],
):
    """Hand over the satellites to the vault.

    Each transfer is confirmed and the new owner is read back.

    :raise OwnershipTransferFailed:
        Any single transfer failed
    """
    for name, contract in satellites.items():
        try:
            broadcast_and_confirm(web3, deployer, contract.functions.transferOwnership(vault_address))
            owner = contract.functions.owner().call()
        except Exception as e:
            raise OwnershipTransferFailed(f"Ownership transfer of {name} {contract.address} to vault {vault_address} failed: {e}") from e

        if owner != vault_address:
            raise OwnershipTransferFailed(f"{name} {contract.address} owner is {owner} after transfer, expected vault {vault_address}")

        logger.info("%s %s is now owned by vault %s", name, contract.address, vault_address)


def instantiate_vault(
    web3: Web3,
    deployer: Deployer,
    vault_config: VaultConfig,
    shared: SharedInfrastructure,
    token_x: DeployedToken,
    token_y: DeployedToken,
    pair: DeployedPair,
    reward_token: HexAddress,
    network_name: str,
) -> VaultDeploymentAddresses:
    """Deploy the full contract set of one vault.

    Steps, in this order:

    1. Queue handler from the shared beacon
    2. Fee manager from the shared beacon, with the fee recipient
    3. Reward hook discovery on the pair
    4. Reward claimer UUPS proxy
    5. Vault UUPS proxy wired to everything above
    6. Ownership of the three satellites to the vault

    Any failure aborts the whole vault. Contracts created before the failure
    are left orphaned.

    :param reward_token:
        See :py:func:`resolve_reward_token`
    """
    deployment = vault_config.deployment

    logger.info("Deploying vault contracts for %s", vault_config.id)

    queue_handler = deploy_beacon_proxy(
        web3,
        deployer,
        beacon_address=shared.queue_handler_beacon,
        implementation_contract_abi=QUEUE_HANDLER_ABI,
    )
    logger.info("QueueHandler deployed to %s", queue_handler.address)

    fee_manager = deploy_beacon_proxy(
        web3,
        deployer,
        beacon_address=shared.fee_manager_beacon,
        implementation_contract_abi=FEE_MANAGER_ABI,
        initializer_args=[Web3.to_checksum_address(deployment.fee_recipient)],
    )
    logger.info("FeeManager deployed to %s", fee_manager.address)

    rewarder = find_reward_hook(web3, pair.address, network_name)

    # The pair's token X serves as the native token and the pair itself
    # as the USD pricing pair
    reward_claimer = deploy_uups_proxy(
        web3,
        deployer,
        REWARD_CLAIMER_ABI,
        initializer_args=[
            rewarder or ZERO_ADDRESS_STR,
            reward_token,
            fee_manager.address,
            token_x.address,
            pair.address,
            shared.lb_factory,
            pair.address,
            shared.lb_router,
            int(deployment.id_slippage),
            token_x.address,
            token_y.address,
        ],
    )
    logger.info("RewardClaimer deployed to %s", reward_claimer.address)

    vault = deploy_uups_proxy(
        web3,
        deployer,
        VAULT_ABI,
        initializer_args=[
            token_x.address,
            token_y.address,
            vault_config.lb_pair.bin_step,
            int(deployment.amount_x_min),
            int(deployment.amount_y_min),
            shared.lb_router,
            shared.lb_factory,
            pair.address,
            reward_claimer.address,
            queue_handler.address,
            fee_manager.address,
        ],
    )
    logger.info("Vault deployed to %s", vault.address)

    transfer_ownership_to_vault(
        web3,
        deployer,
        vault.address,
        {
            "QueueHandler": queue_handler,
            "FeeManager": fee_manager,
            "RewardClaimer": reward_claimer,
        },
    )

    return VaultDeploymentAddresses(
        vault=vault.address,
        reward_claimer=reward_claimer.address,
        queue_handler=queue_handler.address,
        fee_manager=fee_manager.address,
        registry=shared.registry,
        queue_handler_beacon=shared.queue_handler_beacon,
        fee_manager_beacon=shared.fee_manager_beacon,
    )


def register_vault(
    web3: Web3,
    deployer: Deployer,
    addresses: VaultDeploymentAddresses,
    token_x: DeployedToken,
    token_y: DeployedToken,
    vault_config: VaultConfig,
    deployment_id: int,
):
    """Register a vault in the shared registry for discovery.

    :param deployment_id:
        Sequence number of the vault on this network

    :raise VaultAlreadyRegistered:
        The registry already lists the vault address
    """
    registry = get_deployed_contract(web3, REGISTRY_ABI, addresses.registry)

    if registry.functions.isRegisteredVault(addresses.vault).call():
        raise VaultAlreadyRegistered(f"Vault {vault_config.id} at {addresses.vault} is already registered in {addresses.registry}")

    logger.info("Registering vault %s as deployment #%d in registry %s", vault_config.id, deployment_id, addresses.registry)

    broadcast_and_confirm(
        web3,
        deployer,
        registry.functions.registerVault(
            addresses.vault,
            addresses.reward_claimer,
            addresses.queue_handler,
            addresses.fee_manager,
            token_x.address,
            token_y.address,
            vault_config.deployment.vault_name,
            vault_config.deployment.vault_symbol,
            deployment_id,
            True,  # isProxy
        ),
    )
