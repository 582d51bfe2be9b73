"""ERC-20 token provisioning for vault pairs.

- Reuse tokens recorded in the progress ledger
- Deploy ``MockERC20`` placeholders for ``DEPLOY_MOCK`` entries
- Wrap already existing tokens
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping

from eth_typing import HexAddress
from web3 import Web3
from web3.contract import Contract

from arca_deploy.abi import get_deployed_contract
from arca_deploy.config import DEPLOY_MOCK, REWARD_TOKEN_SYMBOL, NetworkConfig, TokenConfig, is_deploy_mock
from arca_deploy.deploy import Deployer, broadcast_and_confirm, deploy_contract, get_deployer_address, send_native_currency

logger = logging.getLogger(__name__)

#: Artifact of the placeholder token, ``constructor(name, symbol, decimals, initialHolder)``
MOCK_ERC20_ABI = "MockERC20"

#: Artifact used to talk to any existing token
ERC20_ABI = "IERC20Metadata"

#: Native currency sent to each test account on local nodes, in ether
TEST_ACCOUNT_NATIVE_FUNDING = Decimal(10)

#: How the shared reward token placeholder is deployed
REWARD_TOKEN_CONFIG = TokenConfig(
    address=DEPLOY_MOCK,
    symbol=REWARD_TOKEN_SYMBOL,
    name="Metropolis",
    decimals=18,
    deploy_mock=True,
)


class TokenProvisioningFailed(Exception):
    """A token needed by the vaults could not be deployed or resolved.

    Fatal for the whole run.
    """

    def __init__(self, symbol: str, msg: str):
        super().__init__(msg)
        self.symbol = symbol


@dataclass(slots=True)
class DeployedToken:
    """A token ready to be used by vaults."""

    symbol: str
    address: HexAddress
    decimals: int

    #: Contract handle with ``mint()``, only set for placeholders deployed in this run
    contract: Contract | None = None

    #: Deployed in this run
    is_new: bool = False

    def __repr__(self):
        return f"<Token {self.symbol} at {self.address}>"

    def convert_to_raw(self, amount: int) -> int:
        """Whole tokens to raw units."""
        return amount * 10**self.decimals


def create_token(
    web3: Web3,
    deployer: Deployer,
    config: TokenConfig,
) -> DeployedToken:
    """Deploy a placeholder token.

    The deployer receives the initial supply.
    """
    logger.info("Deploying %s token", config.symbol)
    contract = deploy_contract(
        web3,
        MOCK_ERC20_ABI,
        deployer,
        config.name,
        config.symbol,
        config.decimals,
        get_deployer_address(deployer),
    )
    logger.info("%s deployed at %s", config.symbol, contract.address)
    return DeployedToken(
        symbol=config.symbol,
        address=contract.address,
        decimals=config.decimals,
        contract=contract,
        is_new=True,
    )


def fetch_token(web3: Web3, symbol: str, address: str) -> DeployedToken:
    """Wrap an existing token, reading its decimals from the chain."""
    contract = get_deployed_contract(web3, ERC20_ABI, address)
    decimals = contract.functions.decimals().call()
    return DeployedToken(
        symbol=symbol,
        address=contract.address,
        decimals=decimals,
    )


def get_test_accounts(web3: Web3, deployer: Deployer, count: int) -> list[HexAddress]:
    """Unlocked node accounts to fund, skipping the deployer.

    Remote RPC nodes usually expose no accounts, in which case nothing is funded.
    """
    deployer_address = get_deployer_address(deployer)
    accounts = [a for a in web3.eth.accounts if a != deployer_address]
    return accounts[:count]


def fund_test_accounts(
    web3: Web3,
    deployer: Deployer,
    tokens: Mapping[str, DeployedToken],
    accounts: list[HexAddress],
    funding_amount: Decimal,
    native_amount: Decimal | None = None,
):
    """Mint placeholder tokens to test accounts.

    Only tokens deployed in this run have a mint handle, reused and
    existing tokens are left alone.

    :param funding_amount:
        Whole tokens per account and token

    :param native_amount:
        Also send this much native currency to each account
    """
    logger.info("Distributing tokens to %d test accounts", len(accounts))

    for token in tokens.values():
        if token.contract is None:
            continue

        raw_amount = int(funding_amount * 10**token.decimals)
        try:
            for account in accounts:
                broadcast_and_confirm(web3, deployer, token.contract.functions.mint(account, raw_amount))
        except Exception as e:
            raise TokenProvisioningFailed(token.symbol, f"Could not fund test accounts with {token.symbol}: {e}") from e
        logger.info("Minted %s %s to each of %d accounts", funding_amount, token.symbol, len(accounts))

    if native_amount:
        for account in accounts:
            send_native_currency(web3, deployer, account, native_amount)
        logger.info("Sent %s native currency to each of %d accounts", native_amount, len(accounts))


def collect_token_configs(network_config: NetworkConfig) -> dict[str, TokenConfig]:
    """All tokens referenced by enabled vaults, keyed by symbol.

    The shared reward token placeholder comes first, then vault tokens
    in the configuration order. The first configuration of a symbol wins.
    """
    tokens: dict[str, TokenConfig] = {}

    if is_deploy_mock(network_config.shared_contracts.reward_token):
        tokens[REWARD_TOKEN_SYMBOL] = REWARD_TOKEN_CONFIG

    for vault in network_config.get_enabled_vaults():
        for token in (vault.token_x, vault.token_y):
            tokens.setdefault(token.symbol, token)

    return tokens


def provision_tokens(
    web3: Web3,
    deployer: Deployer,
    network_config: NetworkConfig,
    existing: Mapping[str, str] | None = None,
) -> dict[str, DeployedToken]:
    """Resolve or deploy every token the enabled vaults need.

    For each symbol:

    - If ``existing`` records an address, reuse it
    - If the configured address is ``DEPLOY_MOCK``, deploy a fresh token
    - Otherwise wrap the configured address

    Afterwards the placeholders deployed in this run are minted to the
    test accounts of :py:attr:`NetworkConfig.test_accounts`, and on local
    nodes the accounts also receive native currency.

    :param existing:
        Symbol -> address from the progress ledger

    :raise TokenProvisioningFailed:
        Any token failed. Not retried.

    :return:
        Symbol -> token
    """
    existing = existing or {}
    result = {}

    for symbol, config in collect_token_configs(network_config).items():
        try:
            if symbol in existing:
                logger.info("Reusing %s at %s from the previous run", symbol, existing[symbol])
                result[symbol] = fetch_token(web3, symbol, existing[symbol])
            elif is_deploy_mock(config.address):
                result[symbol] = create_token(web3, deployer, config)
            else:
                logger.info("Using existing %s at %s", symbol, config.address)
                result[symbol] = fetch_token(web3, symbol, config.address)
        except Exception as e:
            raise TokenProvisioningFailed(symbol, f"Could not provision token {symbol}: {e}") from e

    funding = network_config.test_accounts
    deployed_now = any(token.contract is not None for token in result.values())
    if funding is not None and funding.count > 0 and deployed_now:
        accounts = get_test_accounts(web3, deployer, funding.count)
        if accounts:
            native_amount = TEST_ACCOUNT_NATIVE_FUNDING if network_config.ephemeral else None
            fund_test_accounts(web3, deployer, result, accounts, Decimal(funding.funding_amount), native_amount)
        else:
            logger.warning("No unlocked node accounts to fund on %s", network_config.name)

    return result
