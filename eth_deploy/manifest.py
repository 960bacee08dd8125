"""Address manifest of a deployment.

The manifest is the only artifact of a run other programs read.
It is a JSON object of human readable labels to lowercase hex addresses:

.. code-block:: json

    {
      "module globals": "0x5fbdb2315678afecb367f032d93f642f64180aa3",
      "lensHub proxy": "0xa513e6e4b8f2a923d98304ec87f64353c4d5c853"
    }

Keys follow the plan order, so identical plans produce identical files.
The manifest is written only after every creation step has been confirmed.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import TypeAlias

from eth_utils import is_address

from eth_deploy.orchestrator import DeployedContract
from eth_deploy.plan import DeploymentPlan

logger = logging.getLogger(__name__)


#: Label -> lowercase hex address, insertion ordered
Manifest: TypeAlias = dict[str, str]


def build_manifest(plan: DeploymentPlan, deployed: dict[str, DeployedContract]) -> Manifest:
    """Collect the addresses of all deployed contracts flagged for the manifest.

    :raise AssertionError:
        If some step of the plan has not been deployed
    """
    manifest = {}
    for step in plan.get_deployment_steps():
        if not step.in_manifest:
            continue
        contract = deployed.get(step.label)
        assert contract is not None, f"Cannot write a manifest for a partial deployment, {step.label} missing"
        manifest[step.label] = contract.address.lower()
    return manifest


def serialise_manifest(manifest: Manifest) -> str:
    """JSON text of the manifest, stable for the same input."""
    for label, address in manifest.items():
        assert is_address(address), f"Bad address for {label}: {address}"
        assert address == address.lower(), f"Manifest addresses must be lowercase: {label}: {address}"
    return json.dumps(manifest, indent=2, ensure_ascii=False) + "\n"


def write_manifest(path: Path, manifest: Manifest) -> Path:
    """Write the manifest file.

    The file is replaced atomically, readers never see a half written manifest.
    """
    assert isinstance(path, Path), f"Expected Path, got {type(path)}"
    text = serialise_manifest(manifest)

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wt", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise

    logger.info("Wrote %d addresses to %s", len(manifest), path)
    return path


def read_manifest(path: Path) -> Manifest:
    """Read a manifest file written by :py:func:`write_manifest`."""
    with open(path, "rt", encoding="utf-8") as f:
        return json.load(f)
