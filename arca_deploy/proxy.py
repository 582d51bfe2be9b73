"""OpenZeppelin upgradeable proxy deployments.

Mirrors what the ``@openzeppelin/hardhat-upgrades`` plugin does:

- ``deployBeacon()``: implementation + ``UpgradeableBeacon``
- ``deployBeaconProxy()``: ``BeaconProxy`` pointing to a beacon, with an initializer call
- ``deployProxy(kind="uups")``: implementation + ``ERC1967Proxy``, with an initializer call

The OpenZeppelin artifacts must be compiled in the Hardhat project,
see `OpenZeppelin upgrades <https://docs.openzeppelin.com/upgrades-plugins/>`__.
"""

import logging

from web3 import Web3
from web3.contract import Contract

from arca_deploy.abi import encode_initializer, get_deployed_contract
from arca_deploy.deploy import Deployer, deploy_contract, get_deployer_address

logger = logging.getLogger(__name__)

BEACON_ABI = "UpgradeableBeacon"

BEACON_PROXY_ABI = "BeaconProxy"

ERC1967_PROXY_ABI = "ERC1967Proxy"


def deploy_beacon(
    web3: Web3,
    deployer: Deployer,
    implementation_contract_abi: str,
    owner: str | None = None,
) -> Contract:
    """Deploy an implementation contract and a beacon pointing to it.

    Every proxy created from the beacon is upgraded together when the beacon
    owner calls ``upgradeTo()``.

    :param implementation_contract_abi:
        Contract name of the implementation

    :param owner:
        Beacon owner, defaults to the deployer.

    :return:
        The beacon contract
    """
    logger.info("Deploying beacon for %s", implementation_contract_abi)

    implementation = deploy_contract(web3, implementation_contract_abi, deployer)

    if owner is None:
        owner = get_deployer_address(deployer)

    beacon = deploy_contract(
        web3,
        BEACON_ABI,
        deployer,
        implementation.address,
        owner,
    )

    logger.info("Beacon for %s at %s, implementation %s", implementation_contract_abi, beacon.address, implementation.address)
    return beacon


def deploy_beacon_proxy(
    web3: Web3,
    deployer: Deployer,
    beacon_address: str,
    implementation_contract_abi: str,
    initializer_args: list | tuple = (),
    gas: int | None = None,
) -> Contract:
    """Deploy a new proxy contract from the beacon master contract.

    Example:

    .. code-block:: python

        fee_manager = deploy_beacon_proxy(
            web3,
            deployer=deployer,
            beacon_address=shared.fee_manager_beacon,
            implementation_contract_abi="ArcaFeeManagerV1",
            initializer_args=[fee_recipient],
        )

    :param beacon_address:
        The master copy beacon address

    :param implementation_contract_abi:
        The name of the implementation contract

    :param initializer_args:
        Arguments passed to ``initialize()`` in the proxy constructor

    :return:
        Proxied contract interface
    """
    assert isinstance(beacon_address, str)
    assert isinstance(implementation_contract_abi, str)

    logger.info(
        "Deploying beacon proxy for %s using beacon at %s",
        implementation_contract_abi,
        beacon_address,
    )

    payload = encode_initializer(web3, implementation_contract_abi, initializer_args)

    beacon_proxy = deploy_contract(
        web3,
        BEACON_PROXY_ABI,
        deployer,
        beacon_address,
        payload,
        gas=gas,
    )

    return get_deployed_contract(
        web3,
        implementation_contract_abi,
        beacon_proxy.address,
    )


def deploy_uups_proxy(
    web3: Web3,
    deployer: Deployer,
    implementation_contract_abi: str,
    initializer_args: list | tuple = (),
    gas: int | None = None,
) -> Contract:
    """Deploy a fresh implementation and an ERC-1967 UUPS proxy in front of it.

    :return:
        Proxied contract interface
    """
    logger.info("Deploying UUPS proxy for %s", implementation_contract_abi)

    implementation = deploy_contract(web3, implementation_contract_abi, deployer)
    payload = encode_initializer(web3, implementation_contract_abi, initializer_args)

    proxy = deploy_contract(
        web3,
        ERC1967_PROXY_ABI,
        deployer,
        implementation.address,
        payload,
        gas=gas,
    )

    return get_deployed_contract(
        web3,
        implementation_contract_abi,
        proxy.address,
    )
