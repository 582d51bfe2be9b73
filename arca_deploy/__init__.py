"""arca_deploy package root.

Multi-vault deployment orchestration for Arca vaults on liquidity-book DEXes.

- Shared infrastructure: :py:mod:`arca_deploy.infrastructure`
- Per-vault contract sets: :py:mod:`arca_deploy.vault`
- Resumable batch runs: :py:mod:`arca_deploy.orchestrator`

"""

import sys


#: Minimum required Python version to run this package
MIN_PYTHON_VERSION = (3, 10)


def _check_python_version():
    """Try early abort if the Python version is too old."""
    if sys.version_info < MIN_PYTHON_VERSION:
        raise RuntimeError(f"arca-deploy needs Python {MIN_PYTHON_VERSION[0]}.{MIN_PYTHON_VERSION[1]} or later")


_check_python_version()
