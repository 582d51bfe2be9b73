"""Shared infrastructure deployed once per network.

- ``ArcaVaultRegistry``: discovery directory for all vaults
- Upgrade beacons for ``ArcaQueueHandlerV1`` and ``ArcaFeeManagerV1``: every
  vault's queue handler and fee manager proxies point to these, so
  all vaults upgrade together
- Liquidity book router and factory: existing DEX contracts or mocks
"""

import logging
from dataclasses import dataclass

from eth_typing import HexAddress
from web3 import Web3

from arca_deploy.config import NetworkConfig, is_deploy_mock
from arca_deploy.deploy import Deployer, deploy_contract
from arca_deploy.lb_pair import deploy_mock_factory, deploy_mock_router
from arca_deploy.proxy import deploy_beacon

logger = logging.getLogger(__name__)

REGISTRY_ABI = "ArcaVaultRegistry"

QUEUE_HANDLER_ABI = "ArcaQueueHandlerV1"

FEE_MANAGER_ABI = "ArcaFeeManagerV1"


class SharedInfrastructureFailed(Exception):
    """Shared contracts could not be deployed.

    Fatal for the whole run.
    """


@dataclass(slots=True, frozen=True)
class SharedInfrastructure:
    """Addresses of the contracts all vaults share."""

    registry: HexAddress
    queue_handler_beacon: HexAddress
    fee_manager_beacon: HexAddress
    lb_router: HexAddress
    lb_factory: HexAddress

    def to_dict(self) -> dict:
        return {
            "registry": self.registry,
            "queueHandlerBeacon": self.queue_handler_beacon,
            "feeManagerBeacon": self.fee_manager_beacon,
            "lbRouter": self.lb_router,
            "lbFactory": self.lb_factory,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SharedInfrastructure":
        return cls(
            registry=data["registry"],
            queue_handler_beacon=data["queueHandlerBeacon"],
            fee_manager_beacon=data["feeManagerBeacon"],
            lb_router=data["lbRouter"],
            lb_factory=data["lbFactory"],
        )

    def get_labels(self) -> dict[str, str]:
        """Human readable labels for the summary output."""
        return {
            "Registry": self.registry,
            "QueueHandler beacon": self.queue_handler_beacon,
            "FeeManager beacon": self.fee_manager_beacon,
            "LB router": self.lb_router,
            "LB factory": self.lb_factory,
        }


def deploy_shared_infrastructure(
    web3: Web3,
    deployer: Deployer,
    network_config: NetworkConfig,
) -> SharedInfrastructure:
    """Deploy the contracts shared across all vaults.

    Strictly in order: registry, queue handler beacon, fee manager beacon,
    router, factory. Router and factory are taken from the configuration
    unless it uses the ``DEPLOY_MOCK`` placeholder.

    Must be called only once per network. The caller persists the result
    and reuses it on later runs.

    :raise SharedInfrastructureFailed:
        Any of the deployments failed
    """
    logger.info("Deploying shared infrastructure on %s", network_config.name)

    shared_contracts = network_config.shared_contracts

    try:
        registry = deploy_contract(web3, REGISTRY_ABI, deployer)
        logger.info("Registry deployed to %s", registry.address)

        queue_handler_beacon = deploy_beacon(web3, deployer, QUEUE_HANDLER_ABI)
        fee_manager_beacon = deploy_beacon(web3, deployer, FEE_MANAGER_ABI)

        if is_deploy_mock(shared_contracts.lb_router):
            lb_router = deploy_mock_router(web3, deployer)
        else:
            lb_router = Web3.to_checksum_address(shared_contracts.lb_router)
            logger.info("Using existing LB router at %s", lb_router)

        if is_deploy_mock(shared_contracts.lb_factory):
            lb_factory = deploy_mock_factory(web3, deployer)
        else:
            lb_factory = Web3.to_checksum_address(shared_contracts.lb_factory)
            logger.info("Using existing LB factory at %s", lb_factory)
    except Exception as e:
        raise SharedInfrastructureFailed(f"Shared infrastructure deployment failed on {network_config.name}: {e}") from e

    return SharedInfrastructure(
        registry=registry.address,
        queue_handler_beacon=queue_handler_beacon.address,
        fee_manager_beacon=fee_manager_beacon.address,
        lb_router=lb_router,
        lb_factory=lb_factory,
    )
