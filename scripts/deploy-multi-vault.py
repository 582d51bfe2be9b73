"""Deploy all configured vaults of a network.

- Deploys the shared registry and beacons once, then every enabled vault
- Progress is stored under ``deployments/<network>/`` so a failed run can be resumed
- Writes a deployment manifest for the dashboard and the verification script

To run against a local Anvil or Hardhat node, using its first unlocked account:

.. code-block:: shell

    NETWORK=localhost python scripts/deploy-multi-vault.py

To deploy a subset of vaults on a live network and later retry the failures:

.. code-block:: shell

    export PRIVATE_KEY=...
    export JSON_RPC_URL=...
    NETWORK=sonic-testnet DEPLOY_VAULTS=ws-usdc python scripts/deploy-multi-vault.py
    NETWORK=sonic-testnet DEPLOY_RESUME=true python scripts/deploy-multi-vault.py
"""

import logging
import os
import sys
from decimal import Decimal
from pathlib import Path

from web3 import HTTPProvider, Web3

from arca_deploy.abi import set_artifacts_root
from arca_deploy.config import apply_fee_recipient_overrides, get_fee_recipient_overrides, load_network_config
from arca_deploy.hotwallet import HotWallet
from arca_deploy.orchestrator import ChainOperations, deploy_all_vaults
from arca_deploy.progress import JSONFileProgressLedger
from arca_deploy.utils import parse_env_flag, parse_vault_ids, setup_console_logging

logger = logging.getLogger(__name__)

#: Rough estimate of what a full multi-vault deployment costs
MIN_DEPLOYER_BALANCE = Decimal("0.5")


class InsufficientDeployerBalance(Exception):
    """Deployer cannot pay for the deployment."""


def main():
    NETWORK = os.environ.get("NETWORK", "localhost")
    JSON_RPC_URL = os.environ.get("JSON_RPC_URL")
    PRIVATE_KEY = os.environ.get("PRIVATE_KEY")
    DEPLOY_VAULTS = parse_vault_ids(os.environ.get("DEPLOY_VAULTS"))
    DEPLOY_RESUME = parse_env_flag(os.environ.get("DEPLOY_RESUME"))
    CONFIG_PATH = Path(os.environ.get("CONFIG_PATH", "config/networks"))
    DEPLOYMENTS_PATH = Path(os.environ.get("DEPLOYMENTS_PATH", "deployments"))
    ARTIFACTS_PATH = os.environ.get("ARTIFACTS_PATH")

    setup_console_logging(log_file=Path(f"logs/deploy-multi-vault-{NETWORK}.log"))

    if ARTIFACTS_PATH:
        set_artifacts_root(ARTIFACTS_PATH)

    config = load_network_config(NETWORK, CONFIG_PATH)
    config = apply_fee_recipient_overrides(config, get_fee_recipient_overrides(NETWORK))

    rpc_url = JSON_RPC_URL or config.rpc_url
    assert rpc_url, f"Set JSON_RPC_URL or rpcUrl in the {NETWORK} configuration"
    web3 = Web3(HTTPProvider(rpc_url))

    chain_id = web3.eth.chain_id
    assert chain_id == config.chain_id, f"Connected to chain {chain_id}, configuration {NETWORK} is for chain {config.chain_id}"

    if PRIVATE_KEY:
        deployer = HotWallet.from_private_key(PRIVATE_KEY)
        deployer.sync_nonce(web3)
        balance = deployer.get_native_currency_balance(web3)
    else:
        assert config.ephemeral, f"PRIVATE_KEY is needed to deploy on {NETWORK}"
        deployer = web3.eth.accounts[0]
        balance = web3.from_wei(web3.eth.get_balance(deployer), "ether")

    address = deployer.address if isinstance(deployer, HotWallet) else deployer
    logger.info("Deploying to %s (chain %d) with account %s, balance %s", NETWORK, chain_id, address, balance)

    if balance < MIN_DEPLOYER_BALANCE and not config.ephemeral:
        raise InsufficientDeployerBalance(f"Insufficient balance. Need at least {MIN_DEPLOYER_BALANCE} native token for deployment, have {balance}")

    if DEPLOY_VAULTS:
        logger.info("Deploying only vaults: %s", ", ".join(DEPLOY_VAULTS))

    result = deploy_all_vaults(
        ChainOperations(web3, deployer, config),
        config,
        JSONFileProgressLedger(DEPLOYMENTS_PATH),
        vault_ids=DEPLOY_VAULTS,
        resume=DEPLOY_RESUME,
        manifest_root=DEPLOYMENTS_PATH,
    )

    print(f"Vault deployments:\n{result.pformat()}")

    if result.failed_vaults:
        sys.exit(1)


if __name__ == "__main__":
    main()
