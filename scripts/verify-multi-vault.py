"""Verify a multi-vault deployment against the chain.

Reads ``deployments/<network>/latest-multi-vault.json`` and checks that every
vault is registered and owns its queue handler, fee manager and reward claimer.

.. code-block:: shell

    NETWORK=sonic-testnet JSON_RPC_URL=... python scripts/verify-multi-vault.py
"""

import os
import sys
from pathlib import Path

from web3 import HTTPProvider, Web3

from arca_deploy.abi import set_artifacts_root
from arca_deploy.utils import setup_console_logging
from arca_deploy.verify import load_manifest, verify_deployment


def main():
    NETWORK = os.environ.get("NETWORK", "localhost")
    JSON_RPC_URL = os.environ.get("JSON_RPC_URL", "http://127.0.0.1:8545")
    DEPLOYMENTS_PATH = Path(os.environ.get("DEPLOYMENTS_PATH", "deployments"))
    ARTIFACTS_PATH = os.environ.get("ARTIFACTS_PATH")

    setup_console_logging()

    if ARTIFACTS_PATH:
        set_artifacts_root(ARTIFACTS_PATH)

    web3 = Web3(HTTPProvider(JSON_RPC_URL))
    manifest = load_manifest(DEPLOYMENTS_PATH, NETWORK)

    assert manifest["chainId"] == web3.eth.chain_id, f"Manifest is for chain {manifest['chainId']}, connected to {web3.eth.chain_id}"

    results = verify_deployment(web3, manifest)
    failed = [r.vault_id for r in results if not r.ok]

    print(f"Verified {len(results)} vaults on {NETWORK}, {len(failed)} with problems")
    if failed:
        print(f"Vaults with problems: {', '.join(failed)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
