"""Check a finished deployment against the chain.

Reads the deployment manifest and confirms that

- every recorded contract has code
- every satellite is owned by its vault
- every vault is known by the registry
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

from web3 import Web3

from arca_deploy.abi import get_deployed_contract
from arca_deploy.infrastructure import REGISTRY_ABI
from arca_deploy.orchestrator import LATEST_MANIFEST_NAME
from arca_deploy.vault import VaultDeployment

logger = logging.getLogger(__name__)

#: Any OpenZeppelin ``Ownable`` contract
OWNABLE_ABI = "OwnableUpgradeable"


@dataclass(slots=True)
class VaultVerification:
    """Verification outcome of a single vault."""

    vault_id: str

    #: Human readable problems, empty if the vault is healthy
    problems: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return len(self.problems) == 0


def load_manifest(root: Path, network: str) -> dict:
    """Read the latest manifest of a network."""
    path = Path(root) / network / LATEST_MANIFEST_NAME
    if not path.exists():
        raise FileNotFoundError(f"No deployment manifest at {path}")
    return json.loads(path.read_text(encoding="utf-8"))


def verify_vault(web3: Web3, deployment: VaultDeployment) -> VaultVerification:
    """Check one vault's contracts, ownership and registration."""
    result = VaultVerification(deployment.vault_id)
    addresses = deployment.addresses

    for label, address in {"Vault": addresses.vault, **addresses.satellites}.items():
        if len(web3.eth.get_code(address)) == 0:
            result.problems.append(f"{label} {address} has no code")

    for label, address in addresses.satellites.items():
        try:
            owner = get_deployed_contract(web3, OWNABLE_ABI, address).functions.owner().call()
        except Exception as e:
            result.problems.append(f"Could not read owner of {label} {address}: {e}")
            continue

        if owner != addresses.vault:
            result.problems.append(f"{label} {address} is owned by {owner}, not by vault {addresses.vault}")

    try:
        registry = get_deployed_contract(web3, REGISTRY_ABI, addresses.registry)
        registered = registry.functions.isRegisteredVault(addresses.vault).call()
    except Exception as e:
        result.problems.append(f"Could not query registry {addresses.registry}: {e}")
    else:
        if not registered:
            result.problems.append(f"Vault {addresses.vault} is not registered in {addresses.registry}")

    return result


def verify_deployment(web3: Web3, manifest: dict) -> list[VaultVerification]:
    """Verify all vaults listed in a manifest."""
    results = []
    for data in manifest.get("vaults", []):
        deployment = VaultDeployment.from_dict(data)
        verification = verify_vault(web3, deployment)
        if verification.ok:
            logger.info("Vault %s OK", deployment.vault_id)
        else:
            for problem in verification.problems:
                logger.error("Vault %s: %s", deployment.vault_id, problem)
        results.append(verification)
    return results
