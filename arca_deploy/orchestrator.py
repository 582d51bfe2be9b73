"""Deploy many vaults against one shared infrastructure.

The orchestrator walks the states

``init -> shared_infra_ready -> tokens_ready -> (per vault: pending -> deploying -> completed | failed) -> summarized``

and persists :py:class:`arca_deploy.progress.DeploymentProgress` after every milestone.

- Shared infrastructure and token failures abort the run
- Any failure inside a single vault's pipeline is recorded and the next vault is attempted
- A resumed run skips what is already done and retries failed vaults from the start

Chain access goes through :py:class:`DeploymentOperations`, so the
sequencing can be exercised without a chain.
"""

import datetime
import enum
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from pprint import pformat
from typing import Collection, Protocol

from web3 import Web3

from arca_deploy.config import ConfigurationError, NetworkConfig, VaultConfig, filter_requested_vaults, validate_network_config
from arca_deploy.deploy import Deployer
from arca_deploy.infrastructure import SharedInfrastructure, deploy_shared_infrastructure
from arca_deploy.lb_pair import DeployedPair, resolve_pair, seed_liquidity
from arca_deploy.progress import DeploymentProgress, ProgressLedger
from arca_deploy.token import DeployedToken, provision_tokens
from arca_deploy.vault import VaultDeployment, VaultDeploymentAddresses, instantiate_vault, register_vault, resolve_reward_token

logger = logging.getLogger(__name__)

#: Manifest that always points to the most recent run
LATEST_MANIFEST_NAME = "latest-multi-vault.json"


class DeploymentState(enum.Enum):
    """Where the whole run is."""

    init = "init"
    shared_infra_ready = "shared_infra_ready"
    tokens_ready = "tokens_ready"
    summarized = "summarized"


class VaultState(enum.Enum):
    """Where a single vault is within this run."""

    pending = "pending"
    deploying = "deploying"
    completed = "completed"
    failed = "failed"


class DeploymentOperations(Protocol):
    """Chain facing steps of a multi-vault deployment."""

    def deploy_shared_infrastructure(self) -> SharedInfrastructure:
        ...

    def provision_tokens(self, existing: dict[str, str]) -> dict[str, DeployedToken]:
        ...

    def resolve_pair(
        self,
        vault_config: VaultConfig,
        shared: SharedInfrastructure,
        token_x: DeployedToken,
        token_y: DeployedToken,
    ) -> DeployedPair:
        ...

    def seed_liquidity(
        self,
        vault_config: VaultConfig,
        shared: SharedInfrastructure,
        pair: DeployedPair,
        token_x: DeployedToken,
        token_y: DeployedToken,
    ) -> bool:
        ...

    def instantiate_vault(
        self,
        vault_config: VaultConfig,
        shared: SharedInfrastructure,
        tokens: dict[str, DeployedToken],
        pair: DeployedPair,
    ) -> VaultDeploymentAddresses:
        ...

    def register_vault(
        self,
        vault_config: VaultConfig,
        addresses: VaultDeploymentAddresses,
        token_x: DeployedToken,
        token_y: DeployedToken,
        deployment_id: int,
    ):
        ...


class ChainOperations:
    """Run the deployment steps against a live chain.

    All transactions are signed by a single deployer and confirmed one by one.
    """

    def __init__(self, web3: Web3, deployer: Deployer, network_config: NetworkConfig):
        self.web3 = web3
        self.deployer = deployer
        self.network_config = network_config

    def __repr__(self):
        return f"<ChainOperations {self.network_config.name}>"

    def deploy_shared_infrastructure(self) -> SharedInfrastructure:
        return deploy_shared_infrastructure(self.web3, self.deployer, self.network_config)

    def provision_tokens(self, existing: dict[str, str]) -> dict[str, DeployedToken]:
        return provision_tokens(self.web3, self.deployer, self.network_config, existing)

    def resolve_pair(self, vault_config, shared, token_x, token_y) -> DeployedPair:
        return resolve_pair(
            self.web3,
            self.deployer,
            vault_config,
            token_x.address,
            token_y.address,
            shared.lb_factory,
            self.network_config.name,
        )

    def seed_liquidity(self, vault_config, shared, pair, token_x, token_y) -> bool:
        return seed_liquidity(
            self.web3,
            self.deployer,
            shared.lb_router,
            pair,
            token_x,
            token_y,
            vault_config,
            self.network_config.name,
        )

    def instantiate_vault(self, vault_config, shared, tokens, pair) -> VaultDeploymentAddresses:
        return instantiate_vault(
            self.web3,
            self.deployer,
            vault_config,
            shared,
            tokens[vault_config.token_x.symbol],
            tokens[vault_config.token_y.symbol],
            pair,
            reward_token=resolve_reward_token(self.network_config, tokens),
            network_name=self.network_config.name,
        )

    def register_vault(self, vault_config, addresses, token_x, token_y, deployment_id):
        register_vault(
            self.web3,
            self.deployer,
            addresses,
            token_x,
            token_y,
            vault_config,
            deployment_id,
        )


@dataclass(slots=True)
class MultiVaultDeploymentResult:
    """Outcome of :py:func:`deploy_all_vaults`."""

    network: str

    state: DeploymentState

    #: Durable record after the run
    progress: DeploymentProgress

    #: Symbol -> token used in this run
    tokens: dict[str, DeployedToken] = field(default_factory=dict)

    #: Vault id -> pair resolved in this run
    pairs: dict[str, DeployedPair] = field(default_factory=dict)

    #: Vault id -> state of each vault attempted in this run
    vault_states: dict[str, VaultState] = field(default_factory=dict)

    #: Vault id -> exception of vaults that failed in this run
    errors: dict[str, Exception] = field(default_factory=dict)

    #: Where the manifest was written, if it was
    manifest_path: Path | None = None

    @property
    def shared_infrastructure(self) -> SharedInfrastructure | None:
        return self.progress.shared_infrastructure

    @property
    def completed_vaults(self) -> list[str]:
        return [vault_id for vault_id, state in self.vault_states.items() if state == VaultState.completed]

    @property
    def failed_vaults(self) -> list[str]:
        return [vault_id for vault_id, state in self.vault_states.items() if state == VaultState.failed]

    def get_summary_lines(self) -> list[str]:
        """Human readable summary of the run."""
        completed = self.completed_vaults
        failed = self.failed_vaults
        lines = [
            f"Multi-vault deployment on {self.network} finished",
            f"Vaults completed in this run: {len(completed)}",
            f"Vaults failed in this run: {len(failed)}",
            f"Vaults completed in total: {len(self.progress.deployed_vaults)}",
        ]

        if self.shared_infrastructure:
            for label, address in self.shared_infrastructure.get_labels().items():
                lines.append(f"  {label}: {address}")

        for vault_id in completed:
            deployment = self.progress.vault_deployments[vault_id]
            lines.append(f"  Vault {vault_id}: {deployment.addresses.vault}")

        if failed:
            lines.append(f"Failed vaults: {', '.join(failed)}")
            lines.append("Run again with DEPLOY_RESUME=true to retry the failed vaults only")

        return lines

    def get_manifest_data(self, network_config: NetworkConfig) -> dict:
        """Machine readable deployment manifest.

        Lists every vault the network has, including ones completed in earlier runs.
        """
        progress = self.progress
        vaults = []
        for vault_id in progress.deployed_vaults:
            deployment = progress.vault_deployments.get(vault_id)
            if deployment is None:
                logger.warning("Vault %s is completed but its addresses are not recorded", vault_id)
                continue

            data = deployment.to_dict()
            vault_config = network_config.find_vault(vault_id)
            if vault_config is not None:
                data["name"] = vault_config.deployment.vault_name
                data["symbol"] = vault_config.deployment.vault_symbol
                data["tokens"] = vault_config.token_symbol_pair
            vaults.append(data)

        return {
            "network": self.network,
            "chainId": network_config.chain_id,
            "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "sharedInfrastructure": progress.shared_infrastructure.to_dict() if progress.shared_infrastructure else None,
            "tokens": dict(progress.deployed_tokens),
            "lbPairs": dict(progress.deployed_lb_pairs),
            "vaults": vaults,
            "summary": {
                "totalVaults": len(vaults),
                "completedInThisRun": self.completed_vaults,
                "failedVaults": list(progress.failed_vaults),
            },
        }

    def pformat(self) -> str:
        return pformat({k: v.to_dict() for k, v in self.progress.vault_deployments.items()})


def write_manifest(root: Path, network: str, data: dict) -> Path:
    """Write a timestamped manifest and replace the latest one.

    :return:
        Path of the timestamped manifest
    """
    folder = Path(root) / network
    folder.mkdir(parents=True, exist_ok=True)

    stamp = datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
    payload = json.dumps(data, indent=2)

    path = folder / f"multi-vault-deployment-{stamp}.json"
    path.write_text(payload, encoding="utf-8")
    (folder / LATEST_MANIFEST_NAME).write_text(payload, encoding="utf-8")

    logger.info("Deployment manifest written to %s", path)
    return path


def _start_progress(
    network_config: NetworkConfig,
    ledger: ProgressLedger,
    resume: bool,
) -> DeploymentProgress:
    """Load or create the progress record of this run.

    A run without resume starts a new record, but keeps the shared infrastructure,
    tokens, pairs and completed vaults of a stored one. Only the failed list
    and the start time are reset.
    """
    network = network_config.name
    stored = ledger.load(network)

    if resume:
        if stored is None:
            logger.warning("No previous deployment progress found for %s, starting fresh", network)
            return DeploymentProgress.create(network)

        logger.info(
            "Resuming %s: %d vaults completed, %d failed",
            network,
            len(stored.deployed_vaults),
            len(stored.failed_vaults),
        )
        return stored

    progress = DeploymentProgress.create(network)
    if stored is not None and stored.shared_infrastructure is not None:
        # Everything already in the registry stays known, only failures are forgotten
        logger.warning(
            "Starting a new deployment on %s on top of the previous run: keeping the shared infrastructure, %d tokens and %d completed vaults",
            network,
            len(stored.deployed_tokens),
            len(stored.deployed_vaults),
        )
        progress.shared_infrastructure = stored.shared_infrastructure
        progress.deployed_tokens = dict(stored.deployed_tokens)
        progress.deployed_lb_pairs = dict(stored.deployed_lb_pairs)
        progress.deployed_vaults = list(stored.deployed_vaults)
        progress.vault_deployments = dict(stored.vault_deployments)
    return progress


def _deploy_single_vault(
    operations: DeploymentOperations,
    vault_config: VaultConfig,
    shared: SharedInfrastructure,
    tokens: dict[str, DeployedToken],
    progress: DeploymentProgress,
    ledger: ProgressLedger,
    result: MultiVaultDeploymentResult,
) -> VaultDeployment:
    """Pipeline of one vault. Stops at the first failing step."""
    vault_id = vault_config.id
    token_x = tokens[vault_config.token_x.symbol]
    token_y = tokens[vault_config.token_y.symbol]

    pair = operations.resolve_pair(vault_config, shared, token_x, token_y)
    result.pairs[vault_id] = pair
    progress.deployed_lb_pairs[vault_id] = pair.address
    ledger.save(progress.network, progress)

    operations.seed_liquidity(vault_config, shared, pair, token_x, token_y)

    addresses = operations.instantiate_vault(vault_config, shared, tokens, pair)

    deployment_id = len(progress.deployed_vaults) + 1
    operations.register_vault(vault_config, addresses, token_x, token_y, deployment_id)

    return VaultDeployment(
        vault_id=vault_id,
        addresses=addresses,
        token_x=token_x.address,
        token_y=token_y.address,
        lb_pair=pair.address,
    )


def deploy_all_vaults(
    operations: DeploymentOperations,
    network_config: NetworkConfig,
    ledger: ProgressLedger,
    vault_ids: Collection[str] | None = None,
    resume: bool = False,
    manifest_root: Path | None = None,
) -> MultiVaultDeploymentResult:
    """Deploy all enabled vaults of a network.

    :param operations:
        Chain access, usually :py:class:`ChainOperations`

    :param ledger:
        Where progress is read from and written to

    :param vault_ids:
        Deploy only these vaults. Must all exist in the configuration.

    :param resume:
        Continue from the stored progress record

    :param manifest_root:
        Write the deployment manifest under ``<manifest_root>/<network>/``

    :raise ConfigurationError:
        Configuration is invalid. Raised before any chain call.

    :raise arca_deploy.infrastructure.SharedInfrastructureFailed:
        Progress is saved before re-raising

    :raise arca_deploy.token.TokenProvisioningFailed:
        Progress is saved before re-raising
    """
    validate_network_config(network_config)

    vaults = network_config.get_enabled_vaults()
    if not vaults:
        raise ConfigurationError(f"No enabled vaults in network configuration {network_config.name}", field="vaults")

    if vault_ids:
        vaults = filter_requested_vaults(network_config, vault_ids)

    network = network_config.name
    progress = _start_progress(network_config, ledger, resume)
    result = MultiVaultDeploymentResult(
        network=network,
        state=DeploymentState.init,
        progress=progress,
    )

    try:
        if progress.shared_infrastructure is None:
            progress.shared_infrastructure = operations.deploy_shared_infrastructure()
        else:
            logger.info("Reusing shared infrastructure, registry at %s", progress.shared_infrastructure.registry)
        ledger.save(network, progress)
        result.state = DeploymentState.shared_infra_ready

        tokens = operations.provision_tokens(dict(progress.deployed_tokens))
        progress.deployed_tokens.update({symbol: token.address for symbol, token in tokens.items()})
        ledger.save(network, progress)
        result.tokens = tokens
        result.state = DeploymentState.tokens_ready
    except Exception:
        ledger.save(network, progress)
        raise

    shared = progress.shared_infrastructure

    work = [vault for vault in vaults if not progress.is_completed(vault.id)]
    skipped = len(vaults) - len(work)
    if skipped:
        logger.info("Skipping %d vaults already completed", skipped)

    for vault_config in work:
        result.vault_states[vault_config.id] = VaultState.pending

    for idx, vault_config in enumerate(work, start=1):
        vault_id = vault_config.id
        logger.info("Deploying vault %s (%d/%d): %s", vault_id, idx, len(work), vault_config.deployment.vault_name)
        result.vault_states[vault_id] = VaultState.deploying

        try:
            deployment = _deploy_single_vault(operations, vault_config, shared, tokens, progress, ledger, result)
        except Exception as e:
            logger.exception("Vault %s failed: %s", vault_id, e)
            progress.mark_failed(vault_id)
            result.vault_states[vault_id] = VaultState.failed
            result.errors[vault_id] = e
        else:
            progress.mark_completed(deployment)
            result.vault_states[vault_id] = VaultState.completed
            logger.info("Vault %s completed at %s", vault_id, deployment.addresses.vault)

        ledger.save(network, progress)

    for line in result.get_summary_lines():
        logger.info(line)

    if manifest_root is not None:
        result.manifest_path = write_manifest(manifest_root, network, result.get_manifest_data(network_config))

    result.state = DeploymentState.summarized
    return result
