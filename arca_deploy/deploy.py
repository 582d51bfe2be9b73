"""Deploy any compiled contract and broadcast contract calls.

Contracts are loaded from Hardhat artifacts, see :py:mod:`arca_deploy.abi`.
"""

import logging
from decimal import Decimal
from typing import Dict, TypeAlias, Union

from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3
from web3.contract import Contract
from web3.contract.contract import ContractFunction
from web3.types import TxReceipt

from arca_deploy.abi import get_contract
from arca_deploy.hotwallet import HotWallet
from arca_deploy.trace import assert_transaction_success_with_explanation

logger = logging.getLogger(__name__)

#: Manage internal registry of deployed contracts
#:
#: Lower case address -> Contract mapping.
ContractRegistry: TypeAlias = Dict[str, Contract]

#: Deployer is either our hot wallet or an unlocked node account (Hardhat, Anvil)
Deployer: TypeAlias = Union[HotWallet, str]


class ContractDeploymentFailed(Exception):
    """Did not get successful tx receipt from a deployment."""

    def __init__(self, tx_hash, msg):
        super().__init__(msg)
        self.tx_hash = tx_hash


def get_deployer_address(deployer: Deployer) -> HexAddress:
    """Resolve the address transactions are sent from."""
    if isinstance(deployer, HotWallet):
        return deployer.address
    assert isinstance(deployer, str), f"Unknown deployer: {deployer}"
    return Web3.to_checksum_address(deployer)


def deploy_contract(
    web3: Web3,
    contract: Union[str, Contract],
    deployer: Deployer,
    *constructor_args,
    register_for_tracing=True,
    gas: int = None,
) -> Contract:
    """Deploys a new contract from a Hardhat artifact.

    Example:

    .. code-block:: python

        token = deploy_contract(web3, "MockERC20", deployer, name, symbol, decimals, deployer.address)
        print(f"Deployed ERC-20 token at {token.address}")

    :param contract:
        Contract name as string or contract proxy class

    :param deployer:
        :py:class:`HotWallet` or an unlocked node account address.

    :param constructor_args:
        Other arguments to pass to the contract's constructor

    :param register_for_tracing:
        Make the symbolic contract information available on web3 instance.

    :param gas:
        Gas limit. If not set, estimated.

    :raise ContractDeploymentFailed:
        In the case we could not deploy the contract.

    :return:
        Contract proxy instance
    """
    if isinstance(contract, str):
        Contract = get_contract(web3, contract)
        contract_name = contract
    else:
        Contract = contract
        contract_name = None

    logger.info("Deploying %s with args %s", contract_name or Contract, constructor_args)

    tx_params = {"from": get_deployer_address(deployer)}
    if gas:
        tx_params["gas"] = gas

    if isinstance(deployer, HotWallet):
        tx_params["chainId"] = web3.eth.chain_id
        tx_data = Contract.constructor(*constructor_args).build_transaction(tx_params)
        tx_hash = deployer.broadcast(web3, tx_data)
    else:
        # Delegate signing to test RPC
        tx_hash = Contract.constructor(*constructor_args).transact(tx_params)

    tx_receipt = web3.eth.wait_for_transaction_receipt(tx_hash)
    if tx_receipt["status"] != 1:
        raise ContractDeploymentFailed(tx_hash, f"Contract {contract_name} deployment failed with args {constructor_args}, tx hash is {HexBytes(tx_hash).hex()}")

    instance = Contract(address=tx_receipt["contractAddress"])

    if register_for_tracing:
        instance.name = contract_name
        register_contract(web3, tx_receipt["contractAddress"], instance)

    return instance


def broadcast_and_confirm(
    web3: Web3,
    deployer: Deployer,
    bound_func: ContractFunction,
    gas: int | None = None,
) -> TxReceipt:
    """Send a contract call from the deployer and block until it is mined.

    - One transaction is outstanding at a time

    - Reverts are raised as :py:class:`arca_deploy.trace.TransactionAssertionError`

    :return:
        Successful transaction receipt
    """
    assert isinstance(bound_func, ContractFunction)
    assert bound_func.args is not None

    if isinstance(deployer, HotWallet):
        tx_hash = deployer.transact_and_broadcast_with_contract(bound_func, gas_limit=gas)
    else:
        tx_params = {"from": get_deployer_address(deployer)}
        if gas:
            tx_params["gas"] = gas
        tx_hash = bound_func.transact(tx_params)

    return assert_transaction_success_with_explanation(web3, tx_hash)


def send_native_currency(
    web3: Web3,
    deployer: Deployer,
    to: HexAddress,
    amount: Decimal,
) -> TxReceipt:
    """Send ETH (or the chain's native token) from the deployer.

    :param amount:
        In ether units
    """
    tx_params = {
        "from": get_deployer_address(deployer),
        "to": Web3.to_checksum_address(to),
        "value": Web3.to_wei(amount, "ether"),
        "gas": 21_000,
    }

    if isinstance(deployer, HotWallet):
        tx_params["chainId"] = web3.eth.chain_id
        tx_hash = deployer.broadcast(web3, tx_params)
    else:
        tx_hash = web3.eth.send_transaction(tx_params)

    return assert_transaction_success_with_explanation(web3, tx_hash)


def get_or_create_contract_registry(web3: Web3) -> ContractRegistry:
    """Get a contract registry associated with a Web3 connection.

    :return:
        Mapping of address -> deployed contract instance
    """
    if not hasattr(web3, "contract_registry"):
        web3.contract_registry = {}

    return web3.contract_registry


def register_contract(web3, address: HexAddress, instance: Contract):
    """Register a contract for symbolic lookups.

    See :py:func:`deploy_contract`.
    """
    assert type(address) == str, f"address is {type(address)}, expected str"
    registry = get_or_create_contract_registry(web3)
    registry[address.lower()] = instance


def get_registered_contract(web3, address: str) -> Contract:
    """Get a contract that was deployed with the registry.

    :return:
        The known Contract instance or `None` if the contract was not registered/deployed through registry mechanism.
    """
    assert type(address) == str
    registry = get_or_create_contract_registry(web3)
    return registry.get(address.lower())
