"""Durable deployment progress.

The progress record is the only state carried between runs. It is rewritten
in full after every milestone, so a crash loses at most the in-flight step.

On disk the record is ``deployments/<network>/multi-vault-progress.json``:

.. code-block:: json

    {
      "network": "sonic-testnet",
      "timestamp": 1718000000000,
      "sharedInfrastructure": {"registry": "0x...", "queueHandlerBeacon": "0x...", ...},
      "deployedTokens": {"wS": "0x...", "USDC": "0x..."},
      "deployedLBPairs": {"ws-usdc": "0x..."},
      "deployedVaults": ["ws-usdc"],
      "failedVaults": [],
      "vaultDeployments": {"ws-usdc": {...}}
    }

``timestamp`` is when the record was started. It is not touched by saves,
a resumed run keeps it and a run without resume starts a new one.
"""

import abc
import datetime
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from arca_deploy.infrastructure import SharedInfrastructure
from arca_deploy.vault import VaultDeployment

logger = logging.getLogger(__name__)

#: Progress file name inside the per-network folder
PROGRESS_FILE_NAME = "multi-vault-progress.json"


class ProgressLedgerCorrupted(Exception):
    """The stored progress record cannot be read back."""


def _now_ms() -> int:
    return int(datetime.datetime.now(datetime.timezone.utc).timestamp() * 1000)


@dataclass(slots=True)
class DeploymentProgress:
    """What has been deployed on a network so far."""

    network: str

    #: UNIX milliseconds when this progress record was started, not refreshed on save
    timestamp: int

    #: Set once the shared layer exists, never redeployed afterwards
    shared_infrastructure: SharedInfrastructure | None = None

    #: Token symbol -> address
    deployed_tokens: dict[str, str] = field(default_factory=dict)

    #: Vault id -> liquidity pair address
    deployed_lb_pairs: dict[str, str] = field(default_factory=dict)

    #: Completed vault ids, in completion order
    deployed_vaults: list[str] = field(default_factory=list)

    #: Vault ids whose last attempt failed
    failed_vaults: list[str] = field(default_factory=list)

    #: Vault id -> full address set of completed vaults
    vault_deployments: dict[str, VaultDeployment] = field(default_factory=dict)

    @classmethod
    def create(cls, network: str) -> "DeploymentProgress":
        return cls(network=network, timestamp=_now_ms())

    def is_completed(self, vault_id: str) -> bool:
        return vault_id in self.deployed_vaults

    def mark_completed(self, deployment: VaultDeployment):
        """Record a fully deployed and registered vault."""
        vault_id = deployment.vault_id
        assert vault_id not in self.deployed_vaults, f"Vault {vault_id} already completed"
        self.deployed_vaults.append(vault_id)
        self.vault_deployments[vault_id] = deployment
        if vault_id in self.failed_vaults:
            self.failed_vaults.remove(vault_id)

    def mark_failed(self, vault_id: str):
        """Record a failed attempt. The vault is retried from scratch on resume."""
        assert vault_id not in self.deployed_vaults, f"Vault {vault_id} already completed"
        if vault_id not in self.failed_vaults:
            self.failed_vaults.append(vault_id)

    def to_dict(self) -> dict:
        return {
            "network": self.network,
            "timestamp": self.timestamp,
            "sharedInfrastructure": self.shared_infrastructure.to_dict() if self.shared_infrastructure else None,
            "deployedTokens": dict(self.deployed_tokens),
            "deployedLBPairs": dict(self.deployed_lb_pairs),
            "deployedVaults": list(self.deployed_vaults),
            "failedVaults": list(self.failed_vaults),
            "vaultDeployments": {k: v.to_dict() for k, v in self.vault_deployments.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DeploymentProgress":
        shared = data.get("sharedInfrastructure")
        return cls(
            network=data["network"],
            timestamp=data.get("timestamp", 0),
            shared_infrastructure=SharedInfrastructure.from_dict(shared) if shared else None,
            deployed_tokens=dict(data.get("deployedTokens", {})),
            deployed_lb_pairs=dict(data.get("deployedLBPairs", {})),
            deployed_vaults=list(data.get("deployedVaults", [])),
            failed_vaults=list(data.get("failedVaults", [])),
            vault_deployments={k: VaultDeployment.from_dict(v) for k, v in data.get("vaultDeployments", {}).items()},
        )


class ProgressLedger(abc.ABC):
    """Where the progress record is stored.

    A single orchestrator per network is assumed, there is no locking.
    """

    @abc.abstractmethod
    def load(self, network: str) -> DeploymentProgress | None:
        """Read the progress of a network.

        :return:
            ``None`` if nothing has been recorded yet
        """

    @abc.abstractmethod
    def save(self, network: str, progress: DeploymentProgress):
        """Overwrite the progress of a network.

        Must be durable when the call returns.
        """


class JSONFileProgressLedger(ProgressLedger):
    """Store progress as a JSON file per network.

    Writes go to a temporary file first and are then renamed over the old record,
    so a crash during the write leaves the previous record intact.
    """

    def __init__(self, root: Path | str):
        self.root = Path(root)

    def __repr__(self):
        return f"<JSONFileProgressLedger {self.root}>"

    def get_path(self, network: str) -> Path:
        return self.root / network / PROGRESS_FILE_NAME

    def load(self, network: str) -> DeploymentProgress | None:
        path = self.get_path(network)
        if not path.exists():
            return None

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            progress = DeploymentProgress.from_dict(data)
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise ProgressLedgerCorrupted(f"Cannot read deployment progress {path}: {e}") from e

        logger.info("Loaded progress from %s", path)
        return progress

    def save(self, network: str, progress: DeploymentProgress):
        path = self.get_path(network)
        path.parent.mkdir(parents=True, exist_ok=True)

        payload = json.dumps(progress.to_dict(), indent=2)

        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".progress-", suffix=".json")
        try:
            with os.fdopen(fd, "wt", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        logger.info("Progress saved to %s", path)
