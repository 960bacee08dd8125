"""Contract factory: turn a contract identifier and arguments into transaction data.

- :py:class:`ContractFactory` is what the orchestrator and the registrar use

- :py:class:`ArtifactContractFactory` reads precompiled Hardhat artifacts
  (``artifacts/contracts/Foo.sol/Foo.json``) and links Solidity libraries into the bytecode

Compilation is not done here. Run ``npx hardhat compile`` first.
"""

import json
import re
from abc import ABC, abstractmethod
from functools import lru_cache
from pathlib import Path
from typing import Any, Sequence

import eth_abi
from eth_typing import HexAddress
from eth_utils import function_abi_to_4byte_selector, to_canonical_address
from eth_utils.abi import collapse_if_tuple
from hexbytes import HexBytes

#: Ethereum 0x0000000000000000000000000000000000000000 address as a string.
ZERO_ADDRESS_STR = "0x0000000000000000000000000000000000000000"


class ArtifactNotFound(Exception):
    """No compiled artifact for a contract identifier."""


class LinkingFailed(Exception):
    """Bytecode refers to a library we were not given an address for."""


class ContractFactory(ABC):
    """Build deployable bytecode and call data for contracts."""

    @abstractmethod
    def build_deploy_data(self, contract_id: str, args: Sequence[Any], libraries: dict[str, HexAddress] | None = None) -> HexBytes:
        """Get contract creation transaction data.

        :param contract_id:
            Contract name like ``LensHub``

        :param args:
            Constructor arguments, all addresses already resolved

        :param libraries:
            Library name -> deployed library address

        :return:
            Bytecode followed by the ABI encoded constructor arguments
        """

    @abstractmethod
    def encode_call(self, contract_id: str, function: str, args: Sequence[Any]) -> HexBytes:
        """Get call data for a function of a contract."""


@lru_cache(maxsize=512)
def get_abi_by_filename(fname: Path) -> dict:
    """Reads a compiler artifact JSON file.

    You are most likely interested in the keys `abi`, `bytecode` and `linkReferences`.

    Any results are cached.
    """
    with open(fname, "rt", encoding="utf-8") as f:
        return json.load(f)


def find_artifact(artifacts_path: Path, contract_id: str) -> Path:
    """Locate a Hardhat artifact file.

    :param contract_id:
        Either a bare contract name ``LensHub``
        or a fully qualified name ``contracts/core/LensHub.sol:LensHub``

    :raise ArtifactNotFound:
        If there is no artifact or the bare name is ambiguous
    """
    if ":" in contract_id:
        source, name = contract_id.split(":", 1)
        path = artifacts_path / source / f"{name}.json"
        if not path.exists():
            raise ArtifactNotFound(f"No artifact for {contract_id} at {path}")
        return path

    candidates = [p for p in artifacts_path.rglob(f"{contract_id}.json") if not p.name.endswith(".dbg.json")]
    if not candidates:
        raise ArtifactNotFound(f"No artifact for {contract_id} under {artifacts_path}")
    if len(candidates) > 1:
        raise ArtifactNotFound(f"Several artifacts match {contract_id}, use a fully qualified name: {candidates}")
    return candidates[0]


def link_libraries_hardhat(bytecode: str, link_references: dict, libraries: dict[str, HexAddress]) -> bytes:
    """Link Solidity libraries into Hardhat compiled bytecode.

    :param bytecode:
        Raw bytecode of a Solidity contract.

        Bytecode must be a in string format, because placeholders are not parseable hex.

    :param link_references:
        Hardhat ``linkReferences``: source file -> library name -> byte positions

    :param libraries:
        Library name -> address.

        The name can be a bare library name or ``source file:library name``.

    :return:
        Linked bytecode
    """

    assert type(bytecode) == str, f"Got {type(bytecode)}"
    assert bytecode.startswith("0x")

    hex_blob = bytecode[2:]

    # Remove placeholders and replace them with zeroes,
    # so that we can convert the bytecode to binary
    zeroes = ZERO_ADDRESS_STR[2:]
    fixed_hex_blob = re.sub(r"__\$(.*?)\$__", zeroes, hex_blob, flags=re.DOTALL)

    data = bytearray.fromhex(fixed_hex_blob)

    for ref_file, ref_data in link_references.items():
        for library_name, ref_array in ref_data.items():
            address = libraries.get(f"{ref_file}:{library_name}") or libraries.get(library_name)
            if not address:
                raise LinkingFailed(f"Bytecode needs library {ref_file}:{library_name}, but no address was given. We have: {list(libraries.keys())}")
            byte_address = to_canonical_address(address)
            for ref in ref_array:
                start = ref["start"]
                length = ref["length"]
                data[start : start + length] = byte_address

    return bytes(data)


def get_abi_types(abi_inputs: list[dict]) -> list[str]:
    """Convert ABI inputs to eth_abi type strings, tuples included."""
    return [collapse_if_tuple(i) for i in abi_inputs]


def get_constructor_abi(abi: list[dict]) -> dict | None:
    for item in abi:
        if item.get("type") == "constructor":
            return item
    return None


def get_function_abi(abi: list[dict], function: str, arg_count: int) -> dict:
    """Find a function by name and argument count, to cope with overloads."""
    matches = [item for item in abi if item.get("type") == "function" and item["name"] == function and len(item.get("inputs", [])) == arg_count]
    assert len(matches) == 1, f"Expected one function {function} with {arg_count} arguments, found {len(matches)}"
    return matches[0]


def encode_function_call(fn_abi: dict, args: Sequence[Any]) -> HexBytes:
    """Selector followed by the ABI encoded arguments."""
    selector = function_abi_to_4byte_selector(fn_abi)
    encoded = eth_abi.encode(get_abi_types(fn_abi.get("inputs", [])), list(args))
    return HexBytes(selector + encoded)


class ArtifactContractFactory(ContractFactory):
    """Load contracts from Hardhat ``artifacts`` folder.

    Example:

    .. code-block:: python

        factory = ArtifactContractFactory(Path("artifacts"))
        data = factory.build_deploy_data("FollowNFT", [hub_proxy_address])
    """

    def __init__(self, artifacts_path: Path):
        assert isinstance(artifacts_path, Path), f"Expected Path, got {type(artifacts_path)}"
        assert artifacts_path.exists(), f"Artifacts folder does not exist: {artifacts_path}"
        self.artifacts_path = artifacts_path

    def __repr__(self):
        return f"<ArtifactContractFactory {self.artifacts_path}>"

    def get_artifact(self, contract_id: str) -> dict:
        return get_abi_by_filename(find_artifact(self.artifacts_path, contract_id))

    def build_deploy_data(self, contract_id: str, args: Sequence[Any], libraries: dict[str, HexAddress] | None = None) -> HexBytes:
        artifact = self.get_artifact(contract_id)

        bytecode = artifact["bytecode"]
        if type(bytecode) == dict:
            # Forge style
            bytecode = bytecode["object"]

        link_references = artifact.get("linkReferences") or {}
        if link_references:
            code = link_libraries_hardhat(bytecode, link_references, libraries or {})
        else:
            code = bytes.fromhex(bytecode[2:])

        constructor = get_constructor_abi(artifact["abi"])
        inputs = constructor.get("inputs", []) if constructor else []
        assert len(inputs) == len(args), f"{contract_id} constructor takes {len(inputs)} arguments, got {len(args)}: {args}"
        encoded_args = eth_abi.encode(get_abi_types(inputs), list(args)) if inputs else b""
        return HexBytes(code + encoded_args)

    def encode_call(self, contract_id: str, function: str, args: Sequence[Any]) -> HexBytes:
        artifact = self.get_artifact(contract_id)
        fn_abi = get_function_abi(artifact["abi"], function, len(args))
        return encode_function_call(fn_abi, args)
