"""Multi-vault network configuration.

A network is described by a JSON document in ``config/networks/<network>.json``:

.. code-block:: json

    {
      "name": "sonic-testnet",
      "chainId": 57054,
      "sharedContracts": {
        "metroToken": "0x...",
        "lbRouter": "0x...",
        "lbFactory": "0x..."
      },
      "vaults": [
        {
          "id": "ws-usdc",
          "enabled": true,
          "tokens": {
            "tokenX": {"address": "DEPLOY_MOCK", "symbol": "wS", "name": "Wrapped Sonic", "decimals": 18, "deployMock": true},
            "tokenY": {"address": "0x...", "symbol": "USDC", "name": "USD Coin", "decimals": 6}
          },
          "lbPair": {"address": "DEPLOY_MOCK", "binStep": 25, "activeId": 8388608},
          "deployment": {
            "vaultName": "Arca wS-USDC Vault",
            "vaultSymbol": "ARCA-wS-USDC",
            "amountXMin": "1000000000000000",
            "amountYMin": "1000",
            "idSlippage": "5",
            "feeRecipient": "0x..."
          }
        }
      ]
    }

The configuration is read-only for the duration of a run.
"""

import dataclasses
import json
import logging
import os
import re
from decimal import Decimal, InvalidOperation
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Mapping

from arca_deploy.chain import is_ephemeral_network

logger = logging.getLogger(__name__)

#: Placeholder meaning "deploy a fresh instance here"
DEPLOY_MOCK = "DEPLOY_MOCK"

#: Shared reward token symbol deployed when ``metroToken`` is a placeholder
REWARD_TOKEN_SYMBOL = "METRO"

#: Liquidity book bin step limits
MIN_BIN_STEP = 1
MAX_BIN_STEP = 250

#: Liquidity book id for 1:1 price, 2**23
DEFAULT_ACTIVE_ID = 8_388_608

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")

_VAULT_ID_RE = re.compile(r"^[a-z0-9-]+$")


class ConfigurationError(Exception):
    """Network configuration is invalid.

    Raised before any transaction is sent.
    """

    def __init__(self, msg: str, field: str | None = None):
        super().__init__(msg)
        #: The offending configuration field, dotted path
        self.field = field


def is_deploy_mock(address: str) -> bool:
    """Is this a placeholder for a fresh deployment."""
    return address == DEPLOY_MOCK


def is_valid_address(address: str) -> bool:
    """Check 0x prefixed 20 bytes hex address format."""
    return isinstance(address, str) and _ADDRESS_RE.match(address) is not None


@dataclass(slots=True)
class TokenConfig:
    """ERC-20 token a vault trades."""

    #: Existing token address or :py:data:`DEPLOY_MOCK`
    address: str
    symbol: str
    name: str
    decimals: int = 18

    #: Must be set for a placeholder to be deployed
    deploy_mock: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "TokenConfig":
        return cls(
            address=data.get("address", ""),
            symbol=data.get("symbol", ""),
            name=data.get("name", ""),
            decimals=data.get("decimals", 18),
            deploy_mock=data.get("deployMock", False),
        )

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "symbol": self.symbol,
            "name": self.name,
            "decimals": self.decimals,
            "deployMock": self.deploy_mock,
        }


@dataclass(slots=True)
class LBPairConfig:
    """Liquidity book pair parameters."""

    #: Bin step, the price granularity of the pair in basis points
    bin_step: int

    #: Initial active bin id, the starting price marker
    active_id: int = DEFAULT_ACTIVE_ID

    address: str = DEPLOY_MOCK
    deploy_mock: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "LBPairConfig":
        return cls(
            bin_step=data.get("binStep", 0),
            active_id=data.get("activeId", DEFAULT_ACTIVE_ID),
            address=data.get("address", DEPLOY_MOCK),
            deploy_mock=data.get("deployMock", False),
        )

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "deployMock": self.deploy_mock,
            "binStep": self.bin_step,
            "activeId": self.active_id,
        }


@dataclass(slots=True)
class VaultDeploymentConfig:
    """Vault constructor parameters.

    Amounts are raw token units as strings, as they may not fit in JSON numbers.
    """

    vault_name: str
    vault_symbol: str
    amount_x_min: str
    amount_y_min: str
    id_slippage: str
    fee_recipient: str

    @classmethod
    def from_dict(cls, data: dict) -> "VaultDeploymentConfig":
        return cls(
            vault_name=data.get("vaultName", ""),
            vault_symbol=data.get("vaultSymbol", ""),
            amount_x_min=str(data.get("amountXMin", "0")),
            amount_y_min=str(data.get("amountYMin", "0")),
            id_slippage=str(data.get("idSlippage", "0")),
            fee_recipient=data.get("feeRecipient", ""),
        )

    def to_dict(self) -> dict:
        return {
            "vaultName": self.vault_name,
            "vaultSymbol": self.vault_symbol,
            "amountXMin": self.amount_x_min,
            "amountYMin": self.amount_y_min,
            "idSlippage": self.id_slippage,
            "feeRecipient": self.fee_recipient,
        }


@dataclass(slots=True)
class VaultConfig:
    """One vault to deploy."""

    #: Unique, lowercase alphanumeric with hyphens, e.g. ``ws-usdc``
    id: str
    enabled: bool
    token_x: TokenConfig
    token_y: TokenConfig
    lb_pair: LBPairConfig
    deployment: VaultDeploymentConfig

    @classmethod
    def from_dict(cls, data: dict) -> "VaultConfig":
        tokens = data.get("tokens", {})
        return cls(
            id=data.get("id", ""),
            enabled=data.get("enabled", True),
            token_x=TokenConfig.from_dict(tokens.get("tokenX", {})),
            token_y=TokenConfig.from_dict(tokens.get("tokenY", {})),
            lb_pair=LBPairConfig.from_dict(data.get("lbPair", {})),
            deployment=VaultDeploymentConfig.from_dict(data.get("deployment", {})),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "enabled": self.enabled,
            "tokens": {
                "tokenX": self.token_x.to_dict(),
                "tokenY": self.token_y.to_dict(),
            },
            "lbPair": self.lb_pair.to_dict(),
            "deployment": self.deployment.to_dict(),
        }

    @property
    def token_symbol_pair(self) -> str:
        return f"{self.token_x.symbol}-{self.token_y.symbol}"


@dataclass(slots=True)
class SharedContractsConfig:
    """Contracts shared by all vaults on a network.

    Each is an existing address or :py:data:`DEPLOY_MOCK`.
    """

    reward_token: str
    lb_router: str
    lb_factory: str

    @classmethod
    def from_dict(cls, data: dict) -> "SharedContractsConfig":
        return cls(
            reward_token=data.get("metroToken", ""),
            lb_router=data.get("lbRouter", ""),
            lb_factory=data.get("lbFactory", ""),
        )

    def to_dict(self) -> dict:
        return {
            "metroToken": self.reward_token,
            "lbRouter": self.lb_router,
            "lbFactory": self.lb_factory,
        }


@dataclass(slots=True)
class AccountFundingConfig:
    """Node accounts funded with placeholder tokens after they are deployed.

    The accounts are the node's unlocked accounts after the first one,
    so this only has an effect on local nodes.
    """

    #: How many accounts to fund
    count: int = 0

    #: Whole tokens of each placeholder token per account, as a decimal string
    funding_amount: str = "0"

    @classmethod
    def from_dict(cls, data: dict) -> "AccountFundingConfig":
        return cls(
            count=data.get("count", 0),
            funding_amount=str(data.get("fundingAmount", "0")),
        )

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "fundingAmount": self.funding_amount,
        }


@dataclass(slots=True)
class NetworkConfig:
    """Everything we deploy on one network."""

    name: str
    chain_id: int
    shared_contracts: SharedContractsConfig
    vaults: list[VaultConfig] = field(default_factory=list)
    rpc_url: str | None = None
    block_explorer: str | None = None
    test_accounts: AccountFundingConfig | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "NetworkConfig":
        return cls(
            name=data.get("name", ""),
            chain_id=data.get("chainId", 0),
            shared_contracts=SharedContractsConfig.from_dict(data.get("sharedContracts") or {}),
            vaults=[VaultConfig.from_dict(v) for v in data.get("vaults") or []],
            rpc_url=data.get("rpcUrl"),
            block_explorer=data.get("blockExplorer"),
            test_accounts=AccountFundingConfig.from_dict(data["testAccounts"]) if data.get("testAccounts") else None,
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "chainId": self.chain_id,
            "rpcUrl": self.rpc_url,
            "blockExplorer": self.block_explorer,
            "sharedContracts": self.shared_contracts.to_dict(),
            "vaults": [v.to_dict() for v in self.vaults],
            "testAccounts": self.test_accounts.to_dict() if self.test_accounts else None,
        }

    @property
    def ephemeral(self) -> bool:
        return is_ephemeral_network(self.name)

    def get_enabled_vaults(self) -> list[VaultConfig]:
        return [v for v in self.vaults if v.enabled]

    def find_vault(self, vault_id: str) -> VaultConfig | None:
        for v in self.vaults:
            if v.id == vault_id:
                return v
        return None


def load_network_config(network: str, config_dir: Path) -> NetworkConfig:
    """Load network configuration for multi-vault deployment.

    :param network:
        Network name, the file is ``<config_dir>/<network>.json``

    :raise ConfigurationError:
        File missing, bad JSON or the document is for some other network
    """
    config_path = Path(config_dir) / f"{network}.json"

    if not config_path.exists():
        raise ConfigurationError(f"Network configuration not found for {network} at {config_path}")

    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in network configuration {config_path}: {e}") from e

    if data.get("name") != network:
        raise ConfigurationError(f"Network name mismatch: expected {network}, got {data.get('name')}", field="name")

    if not data.get("chainId"):
        raise ConfigurationError("Missing chainId in configuration", field="chainId")

    if not data.get("sharedContracts"):
        raise ConfigurationError("Missing sharedContracts in configuration", field="sharedContracts")

    if not isinstance(data.get("vaults"), list):
        raise ConfigurationError("Missing or invalid vaults array in configuration", field="vaults")

    return NetworkConfig.from_dict(data)


def validate_token_config(token: TokenConfig, field_prefix: str):
    if not token.symbol or not token.name:
        raise ConfigurationError(f"Invalid token config {field_prefix}: missing symbol or name", field=field_prefix)

    if not 0 <= token.decimals <= 18:
        raise ConfigurationError(f"Invalid token decimals for {field_prefix}: {token.decimals}", field=f"{field_prefix}.decimals")

    if not is_deploy_mock(token.address) and not is_valid_address(token.address):
        raise ConfigurationError(f"Invalid token address for {field_prefix}: {token.address}", field=f"{field_prefix}.address")


def validate_vault_config(vault: VaultConfig):
    """Check a single enabled vault entry."""
    prefix = f"vaults.{vault.id}"

    if not _VAULT_ID_RE.match(vault.id):
        raise ConfigurationError(f"Invalid vault ID: {vault.id}. Must be lowercase alphanumeric with hyphens only.", field=f"{prefix}.id")

    validate_token_config(vault.token_x, f"{prefix}.tokens.tokenX")
    validate_token_config(vault.token_y, f"{prefix}.tokens.tokenY")

    if vault.token_x.symbol == vault.token_y.symbol:
        raise ConfigurationError(f"Vault {vault.id} pairs token {vault.token_x.symbol} with itself", field=f"{prefix}.tokens")

    if not MIN_BIN_STEP <= vault.lb_pair.bin_step <= MAX_BIN_STEP:
        raise ConfigurationError(
            f"Invalid bin step for vault {vault.id}: {vault.lb_pair.bin_step}. Must be between {MIN_BIN_STEP} and {MAX_BIN_STEP}",
            field=f"{prefix}.lbPair.binStep",
        )

    if not is_valid_address(vault.deployment.fee_recipient):
        raise ConfigurationError(f"Invalid fee recipient for vault {vault.id}: {vault.deployment.fee_recipient}", field=f"{prefix}.deployment.feeRecipient")

    for name in ("amount_x_min", "amount_y_min", "id_slippage"):
        value = getattr(vault.deployment, name)
        if not value.isdigit():
            raise ConfigurationError(f"Vault {vault.id}: {name} must be a non-negative integer string, got {value}", field=f"{prefix}.deployment.{name}")


def validate_account_funding(funding: AccountFundingConfig):
    if not isinstance(funding.count, int) or funding.count < 0:
        raise ConfigurationError(f"Invalid test account count: {funding.count}", field="testAccounts.count")

    try:
        amount = Decimal(funding.funding_amount)
    except InvalidOperation:
        amount = None

    if amount is None or not amount.is_finite() or amount < 0:
        raise ConfigurationError(f"Invalid test account funding amount: {funding.funding_amount}", field="testAccounts.fundingAmount")


def validate_network_config(config: NetworkConfig):
    """Validate the whole network configuration before deployment.

    - Vault ids must be unique across all vaults, enabled or not
    - Enabled vaults must be well formed
    - Placeholders are only allowed on ephemeral networks, or when
      explicitly flagged with ``deployMock``

    :raise ConfigurationError:
        On the first problem found
    """
    if not config.name or not config.chain_id:
        raise ConfigurationError("Invalid network config: missing name or chainId", field="name")

    shared = config.shared_contracts
    for field_name, value in (("metroToken", shared.reward_token), ("lbRouter", shared.lb_router), ("lbFactory", shared.lb_factory)):
        if not value:
            raise ConfigurationError(f"Invalid network config: missing shared contract {field_name}", field=f"sharedContracts.{field_name}")
        if not is_deploy_mock(value) and not is_valid_address(value):
            raise ConfigurationError(f"Invalid shared contract address {field_name}: {value}", field=f"sharedContracts.{field_name}")

    if config.test_accounts is not None:
        validate_account_funding(config.test_accounts)

    if not config.vaults:
        raise ConfigurationError("Invalid network config: no vaults defined", field="vaults")

    seen = set()
    for vault in config.vaults:
        if vault.id in seen:
            raise ConfigurationError(f"Duplicate vault ID: {vault.id}", field=f"vaults.{vault.id}.id")
        seen.add(vault.id)

    for vault in config.get_enabled_vaults():
        validate_vault_config(vault)

    if not config.ephemeral:
        if DEPLOY_MOCK in (shared.reward_token, shared.lb_router, shared.lb_factory):
            raise ConfigurationError(f"{DEPLOY_MOCK} placeholders not allowed in sharedContracts on {config.name}", field="sharedContracts")

        for vault in config.get_enabled_vaults():
            for token_field, token in (("tokenX", vault.token_x), ("tokenY", vault.token_y)):
                if is_deploy_mock(token.address) and not token.deploy_mock:
                    raise ConfigurationError(
                        f"Vault {vault.id}: {token_field} has {DEPLOY_MOCK} but deployMock is false",
                        field=f"vaults.{vault.id}.tokens.{token_field}.deployMock",
                    )

    disabled = [v.id for v in config.vaults if not v.enabled]
    if disabled:
        logger.warning("%d vault(s) are disabled: %s", len(disabled), ", ".join(disabled))


def get_fee_recipient_overrides(network: str, environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """Read per-vault fee recipient overrides from the environment.

    Variables look like ``SONIC_TESTNET_VAULT_WS_USDC_FEE_RECIPIENT=0x...``.

    :return:
        Vault id -> fee recipient address
    """
    if environ is None:
        environ = os.environ

    prefix = f"{network.upper().replace('-', '_')}_VAULT_"
    suffix = "_FEE_RECIPIENT"
    overrides = {}
    for key, value in environ.items():
        if key.startswith(prefix) and key.endswith(suffix) and value:
            vault_id = key[len(prefix) : -len(suffix)].lower().replace("_", "-")
            overrides[vault_id] = value
    return overrides


def apply_fee_recipient_overrides(config: NetworkConfig, overrides: dict[str, str]) -> NetworkConfig:
    """Return a copy of the configuration with fee recipients replaced.

    The passed configuration is not mutated.
    """
    if not overrides:
        return config

    updated = NetworkConfig.from_dict(config.to_dict())
    for vault in updated.vaults:
        override = overrides.get(vault.id)
        if override:
            logger.info("Fee recipient override for %s: %s", vault.id, override)
            vault.deployment = dataclasses.replace(vault.deployment, fee_recipient=override)
    return updated


def filter_requested_vaults(config: NetworkConfig, vault_ids: Iterable[str] | None) -> list[VaultConfig]:
    """Resolve the enabled vaults to work on.

    :param vault_ids:
        Explicit subset, or ``None`` for all enabled vaults

    :raise ConfigurationError:
        Unknown vault id requested
    """
    enabled = config.get_enabled_vaults()
    if not vault_ids:
        return enabled

    vault_ids = list(vault_ids)
    valid_ids = [v.id for v in config.vaults]
    invalid = [i for i in vault_ids if i not in valid_ids]
    if invalid:
        raise ConfigurationError(f"Invalid vault IDs: {', '.join(invalid)}. Valid options: {', '.join(valid_ids)}", field="vaultIds")

    return [v for v in enabled if v.id in vault_ids]
