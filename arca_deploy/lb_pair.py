"""Liquidity book pair resolution and bootstrap liquidity.

Each vault manages liquidity in a Metropolis/Trader Joe style liquidity book pair.
The pair for a token pair and bin step is looked up from the factory
and created when missing.

On ephemeral networks a ``MockLBPair`` is deployed instead and no liquidity is seeded.
"""

import datetime
import logging
from dataclasses import dataclass

from eth_typing import HexAddress
from web3 import Web3
from web3._utils.events import EventLogErrorFlags

from arca_deploy.abi import get_deployed_contract, is_zero_address
from arca_deploy.chain import is_ephemeral_network
from arca_deploy.config import MAX_BIN_STEP, MIN_BIN_STEP, VaultConfig
from arca_deploy.deploy import Deployer, broadcast_and_confirm, deploy_contract, get_deployer_address
from arca_deploy.token import ERC20_ABI, DeployedToken

logger = logging.getLogger(__name__)

LB_FACTORY_ABI = "ILBFactory"

LB_ROUTER_ABI = "ILBRouter"

MOCK_LB_PAIR_ABI = "MockLBPair"

MOCK_LB_ROUTER_ABI = "MockLBRouter"

#: Liquidity distributions are fixed point with 18 decimals, must sum to this
DISTRIBUTION_PRECISION = 10**18

#: How many bins bootstrap liquidity is spread over, centred at the active id
DEFAULT_SEED_BINS = 11

#: Whole tokens of each side added as bootstrap liquidity
DEFAULT_SEED_AMOUNT = 100_000

#: Router deadline for the bootstrap liquidity transaction
DEFAULT_SEED_DEADLINE = datetime.timedelta(hours=1)


class PairCreationFailed(Exception):
    """Factory did not give us a pair."""


class LiquiditySeedFailed(Exception):
    """Bootstrap liquidity could not be added."""


@dataclass(slots=True, frozen=True)
class DeployedPair:
    """A liquidity pair backing a vault."""

    address: HexAddress
    token_x: HexAddress
    token_y: HexAddress
    bin_step: int

    #: Created in this run, needs bootstrap liquidity
    is_new: bool


@dataclass(slots=True, frozen=True)
class LiquidityDistribution:
    """``addLiquidity()`` shape parameters."""

    delta_ids: list[int]
    distribution_x: list[int]
    distribution_y: list[int]


def deploy_mock_router(web3: Web3, deployer: Deployer) -> HexAddress:
    """Deploy a stand-in router for local testing."""
    router = deploy_contract(web3, MOCK_LB_ROUTER_ABI, deployer)
    logger.info("Mock LB router deployed at %s", router.address)
    return router.address


def deploy_mock_factory(web3: Web3, deployer: Deployer) -> HexAddress:
    """Deploy a stand-in factory for local testing.

    Pairs are never looked up from the factory on ephemeral networks,
    so a ``MockLBPair`` instance serves as the address holder.
    """
    factory = deploy_contract(web3, MOCK_LB_PAIR_ABI, deployer)
    logger.info("Using mock LB pair as factory at %s", factory.address)
    return factory.address


def deploy_mock_pair(
    web3: Web3,
    deployer: Deployer,
    vault_config: VaultConfig,
    token_x: HexAddress,
    token_y: HexAddress,
) -> DeployedPair:
    """Deploy a simulated pair for local testing."""
    pair = deploy_contract(web3, MOCK_LB_PAIR_ABI, deployer)
    logger.info("Mock LB pair for %s deployed at %s", vault_config.id, pair.address)
    return DeployedPair(
        address=pair.address,
        token_x=token_x,
        token_y=token_y,
        bin_step=vault_config.lb_pair.bin_step,
        is_new=True,
    )


def fetch_existing_pair(
    web3: Web3,
    factory_address: HexAddress,
    token_x: HexAddress,
    token_y: HexAddress,
    bin_step: int,
) -> HexAddress | None:
    """Ask the factory for an existing pair.

    Some factories revert instead of returning an empty result for unknown pairs,
    so any error is treated the same as "not found". This cannot tell
    a connectivity problem apart from a missing pair.

    :return:
        Pair address or ``None``
    """
    factory = get_deployed_contract(web3, LB_FACTORY_ABI, factory_address)
    try:
        info = factory.functions.getLBPairInformation(token_x, token_y, bin_step).call()
    except Exception as e:
        logger.warning("Pair lookup for %s/%s bin step %d failed, assuming no pair: %s", token_x, token_y, bin_step, e)
        return None

    # struct LBPairInformation {uint16 binStep; ILBPair LBPair; bool createdByOwner; bool ignoredForRouting;}
    pair_address = info[1]
    if is_zero_address(pair_address):
        return None
    return Web3.to_checksum_address(pair_address)


def create_pair(
    web3: Web3,
    deployer: Deployer,
    factory_address: HexAddress,
    token_x: HexAddress,
    token_y: HexAddress,
    active_id: int,
    bin_step: int,
) -> HexAddress:
    """Create a new pair through the factory.

    :return:
        Address of the created pair, from the ``LBPairCreated`` event

    :raise PairCreationFailed:
        Reverted or no creation event in the receipt
    """
    factory = get_deployed_contract(web3, LB_FACTORY_ABI, factory_address)

    logger.info("Creating new LB pair %s/%s with bin step %d, active id %d", token_x, token_y, bin_step, active_id)
    try:
        receipt = broadcast_and_confirm(
            web3,
            deployer,
            factory.functions.createLBPair(token_x, token_y, active_id, bin_step),
        )
    except Exception as e:
        message = str(e)
        if "LBFactory__LBPairAlreadyExists" in message:
            raise PairCreationFailed("LB pair already exists with these parameters, but the lookup did not find it") from e
        if "LBFactory__BinStepTooLow" in message:
            raise PairCreationFailed(f"Bin step {bin_step} is too low for this factory") from e
        if "LBFactory__BinStepHasNoPreset" in message:
            raise PairCreationFailed(f"Bin step {bin_step} has no preset in this factory") from e
        raise PairCreationFailed(f"Failed to create LB pair: {message}") from e

    events = factory.events.LBPairCreated().process_receipt(receipt, EventLogErrorFlags.Discard)
    if not events:
        raise PairCreationFailed(f"No LBPairCreated event in transaction {receipt['transactionHash'].hex()}")

    args = events[0]["args"]
    pair_address = args.get("LBPair") or args.get("lbPair")
    if is_zero_address(pair_address):
        raise PairCreationFailed("Invalid pair address returned from factory")

    logger.info("Created new LB pair at %s", pair_address)
    return Web3.to_checksum_address(pair_address)


def resolve_pair(
    web3: Web3,
    deployer: Deployer,
    vault_config: VaultConfig,
    token_x: HexAddress,
    token_y: HexAddress,
    factory_address: HexAddress,
    network_name: str,
) -> DeployedPair:
    """Find or create the liquidity pair for a vault.

    - Ephemeral network: always a fresh mock pair
    - Existing pair for (token x, token y, bin step): reuse, ``is_new=False``
    - Otherwise: create with the configured active id, ``is_new=True``

    :raise PairCreationFailed:
        Bad inputs or the factory could not create the pair
    """
    bin_step = vault_config.lb_pair.bin_step

    logger.info("Setting up LB pair for %s (%s)", vault_config.id, vault_config.token_symbol_pair)

    if not (Web3.is_address(token_x) and Web3.is_address(token_y)):
        raise PairCreationFailed(f"Invalid token addresses: tokenX={token_x}, tokenY={token_y}")

    if not MIN_BIN_STEP <= bin_step <= MAX_BIN_STEP:
        raise PairCreationFailed(f"Invalid bin step: {bin_step}. Must be between {MIN_BIN_STEP} and {MAX_BIN_STEP}")

    if is_ephemeral_network(network_name):
        return deploy_mock_pair(web3, deployer, vault_config, token_x, token_y)

    if not Web3.is_address(factory_address):
        raise PairCreationFailed(f"Invalid LB factory address: {factory_address}")

    existing = fetch_existing_pair(web3, factory_address, token_x, token_y, bin_step)
    if existing:
        logger.info("Found existing LB pair at %s", existing)
        return DeployedPair(
            address=existing,
            token_x=token_x,
            token_y=token_y,
            bin_step=bin_step,
            is_new=False,
        )

    pair_address = create_pair(
        web3,
        deployer,
        factory_address,
        token_x,
        token_y,
        vault_config.lb_pair.active_id,
        bin_step,
    )

    return DeployedPair(
        address=pair_address,
        token_x=token_x,
        token_y=token_y,
        bin_step=bin_step,
        is_new=True,
    )


def compute_liquidity_distribution(bins: int = DEFAULT_SEED_BINS) -> LiquidityDistribution:
    """Spread liquidity evenly over a window of bins around the active id.

    Integer division leftovers go to the centre bin so that each
    distribution sums exactly to :py:data:`DISTRIBUTION_PRECISION`.

    :param bins:
        Odd number of bins
    """
    assert bins > 0 and bins % 2 == 1, f"Need an odd number of bins, got {bins}"

    half = bins // 2
    delta_ids = list(range(-half, half + 1))

    per_bin = DISTRIBUTION_PRECISION // bins
    remainder = DISTRIBUTION_PRECISION - per_bin * bins

    distribution = [per_bin] * bins
    distribution[half] += remainder

    return LiquidityDistribution(
        delta_ids=delta_ids,
        distribution_x=list(distribution),
        distribution_y=list(distribution),
    )


def _translate_liquidity_error(e: Exception) -> LiquiditySeedFailed:
    message = str(e)
    lowered = message.lower()
    if "insufficient allowance" in lowered:
        return LiquiditySeedFailed("Token approval failed. Make sure the tokens are properly approved for the router.")
    if "insufficient balance" in lowered:
        return LiquiditySeedFailed("Insufficient token balance. Make sure the deployer has enough tokens.")
    if "deadline" in lowered:
        return LiquiditySeedFailed("Transaction deadline exceeded. Try again with a longer deadline.")
    return LiquiditySeedFailed(f"Failed to add liquidity: {message}")


def seed_liquidity(
    web3: Web3,
    deployer: Deployer,
    router_address: HexAddress,
    pair: DeployedPair,
    token_x: DeployedToken,
    token_y: DeployedToken,
    vault_config: VaultConfig,
    network_name: str,
    amount: int = DEFAULT_SEED_AMOUNT,
    deadline: datetime.timedelta = DEFAULT_SEED_DEADLINE,
    bins: int = DEFAULT_SEED_BINS,
) -> bool:
    """Add bootstrap liquidity to a freshly created pair.

    - Only for new pairs on non-ephemeral networks
    - The deployer both supplies and receives the liquidity, so
      no minimum output protection is used

    :param amount:
        Whole tokens of each side

    :raise LiquiditySeedFailed:
        Approval or liquidity addition failed. Not retried.

    :return:
        True if liquidity was added
    """
    if not pair.is_new or is_ephemeral_network(network_name):
        logger.info("Skipping liquidity addition for %s", vault_config.id)
        return False

    if not Web3.is_address(router_address):
        raise LiquiditySeedFailed(f"Invalid LB router address: {router_address}")

    logger.info("Adding initial liquidity to %s pair %s", vault_config.id, pair.address)

    router = get_deployed_contract(web3, LB_ROUTER_ABI, router_address)
    amount_x = token_x.convert_to_raw(amount)
    amount_y = token_y.convert_to_raw(amount)
    receiver = get_deployer_address(deployer)

    try:
        for token, raw_amount in ((token_x, amount_x), (token_y, amount_y)):
            erc20 = get_deployed_contract(web3, ERC20_ABI, token.address)
            broadcast_and_confirm(web3, deployer, erc20.functions.approve(router.address, raw_amount))
    except Exception as e:
        raise _translate_liquidity_error(e) from e

    distribution = compute_liquidity_distribution(bins)
    block_timestamp = web3.eth.get_block("latest")["timestamp"]

    # struct LiquidityParameters in ILBRouter
    liquidity_parameters = (
        token_x.address,
        token_y.address,
        pair.bin_step,
        amount_x,
        amount_y,
        0,  # amountXMin
        0,  # amountYMin
        vault_config.lb_pair.active_id,
        int(vault_config.deployment.id_slippage),
        distribution.delta_ids,
        distribution.distribution_x,
        distribution.distribution_y,
        receiver,  # to
        receiver,  # refundTo
        block_timestamp + int(deadline.total_seconds()),
    )

    try:
        broadcast_and_confirm(web3, deployer, router.functions.addLiquidity(liquidity_parameters))
    except Exception as e:
        raise _translate_liquidity_error(e) from e

    logger.info(
        "Added initial liquidity: %d %s + %d %s",
        amount,
        token_x.symbol,
        amount,
        token_y.symbol,
    )
    return True
