"""ABI loading from Hardhat compilation artifacts.

Provides functions to load artifact files and construct :py:class:`web3.contract.Contract` types.
The results are cached for the speedup.

Artifacts are looked up by the contract name from the Hardhat ``artifacts/`` folder
of the Solidity project, e.g. ``artifacts/contracts/ArcaVaultRegistry.sol/ArcaVaultRegistry.json``.
The folder is set with :py:func:`set_artifacts_root` or ``ARTIFACTS_PATH`` environment variable.
"""

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Optional, Type, Union

from eth_typing import HexAddress
from hexbytes import HexBytes
from web3 import Web3
from web3.contract import Contract

# How big are our ABI and contract caches
_CACHE_SIZE = 512

#: Ethereum 0x0000000000000000000000000000000000000000 address as a string.
ZERO_ADDRESS_STR = "0x0000000000000000000000000000000000000000"

#: Ethereum 0x0000000000000000000000000000000000000000 address
ZERO_ADDRESS = ZERO_ADDRESS_STR

_artifacts_root: Path | None = None


class ArtifactNotFound(Exception):
    """We could not find a Hardhat compilation artifact for a contract."""


def set_artifacts_root(path: Path | str):
    """Point the artifact lookup to a Hardhat ``artifacts`` folder.

    Clears the cached artifacts.
    """
    global _artifacts_root
    _artifacts_root = Path(path).resolve()
    get_abi_by_filename.cache_clear()
    _find_artifact.cache_clear()


def get_artifacts_root() -> Path:
    """Get the folder where Hardhat artifacts are read.

    Defaults to ``ARTIFACTS_PATH`` environment variable or ``./artifacts``.
    """
    if _artifacts_root is not None:
        return _artifacts_root
    return Path(os.environ.get("ARTIFACTS_PATH", "artifacts")).resolve()


@lru_cache(maxsize=_CACHE_SIZE)
def _find_artifact(root: Path, fname: str) -> Path:
    candidate = root / fname
    if candidate.suffix == ".json" and candidate.exists():
        return candidate

    # Hardhat layout: <source file>.sol/<ContractName>.json
    contract_name = Path(fname).stem
    matches = sorted(p for p in root.rglob(f"{contract_name}.json") if not p.name.endswith(".dbg.json"))
    if not matches:
        raise ArtifactNotFound(f"No Hardhat artifact for {fname} under {root}")
    return matches[0]


@lru_cache(maxsize=_CACHE_SIZE)
def get_abi_by_filename(fname: str) -> dict:
    """Reads an artifact file and returns it.

    Example::

        artifact = get_abi_by_filename("ArcaVaultRegistry")

    You are most likely interested in the keys `abi` and `bytecode` of the JSON file.

    :param fname:
        Contract name, artifact path relative to the artifacts root or an absolute path.

    :return:
        Full contract interface, including `bytecode`.
    """
    path = Path(fname)
    if not path.is_absolute():
        path = _find_artifact(get_artifacts_root(), fname)

    with open(path, "rt", encoding="utf-8") as f:
        return json.load(f)


@lru_cache(maxsize=_CACHE_SIZE)
def get_contract(
    web3: Web3,
    fname: str | Path,
    bytecode: Optional[str] = None,
) -> Type[Contract]:
    """Get Contract proxy class from an artifact file.

    Any results are cached. Web3 connection is part of the cache key.

    Example:

    .. code-block:: python

        Registry = get_contract(web3, "ArcaVaultRegistry")

    :param web3:
        Web3 instance

    :param fname:
        Contract name or artifact path

    :param bytecode:
        Override bytecode payload for the contract

    :return:
        Contract proxy class
    """
    contract_interface = get_abi_by_filename(str(fname))

    if type(contract_interface) == list:
        # Plain ABI export, interfaces only
        abi = contract_interface
        bytecode = None
    else:
        abi = contract_interface["abi"]
        if bytecode is None:
            bytecode = contract_interface.get("bytecode")
        if type(bytecode) == dict:
            # Forge output
            bytecode = bytecode["object"]
        if bytecode in ("0x", ""):
            # Interfaces and abstract contracts
            bytecode = None

    return web3.eth.contract(abi=abi, bytecode=bytecode)


def get_deployed_contract(
    web3: Web3,
    fname: str | Path,
    address: Union[HexAddress, str],
    register_for_tracing: bool = True,
) -> Contract:
    """Get a Contract proxy object for a contract deployed at a specific address.

    :param web3:
        Web3 instance

    :param fname:
        Contract name or artifact path

    :param address:
        Ethereum address of the deployed contract

    :param register_for_tracing:
        Add the contract to the deployment registry if not already there.

    :return:
        `web3.contract.Contract` proxy
    """
    assert isinstance(web3, Web3), f"Got {type(web3)} instead of Web3"
    assert address, f"get_deployed_contract() address was None"

    address = Web3.to_checksum_address(address)

    Contract = get_contract(web3, fname)
    contract = Contract(address)

    if register_for_tracing:
        # Circular import
        from arca_deploy.deploy import get_registered_contract, register_contract

        if get_registered_contract(web3, address) is None:
            register_contract(web3, address, contract)

    return contract


def encode_initializer(
    web3: Web3,
    fname: str,
    args: list | tuple,
    function_name: str = "initialize",
) -> HexBytes:
    """Encode a proxy initializer call payload.

    Used as the ``data`` constructor argument for ``BeaconProxy`` and ``ERC1967Proxy``,
    the same way OpenZeppelin upgrades plugin does.

    Example:

    .. code-block:: python

        payload = encode_initializer(web3, "ArcaFeeManagerV1", [fee_recipient])

    :param fname:
        Implementation contract name

    :param args:
        Initializer arguments

    :return:
        Function selector + encoded arguments
    """
    Implementation = get_contract(web3, fname)
    return HexBytes(Implementation.encode_abi(function_name, args=list(args)))


def is_zero_address(address: str | None) -> bool:
    """Check for unset/zero address."""
    return address is None or int(address, 16) == 0
