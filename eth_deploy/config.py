"""Deployment configuration from environment variables.

.. code-block:: shell

    export JSON_RPC_URL=http://localhost:8545
    export PRIVATE_KEY=0x...
    export GOVERNANCE_PRIVATE_KEY=0x...
    export ARTIFACTS_PATH=~/lens-protocol/artifacts
    python scripts/deploy-lens.py
"""

import datetime
import os
from dataclasses import dataclass
from pathlib import Path


def read_required_env(name: str) -> str:
    """Read an environment variable that must be set.

    :raises ValueError: If the environment variable is not set
    """
    value = os.environ.get(name)
    if not value:
        raise ValueError(f"Environment variable {name} is not set")
    return value


@dataclass(slots=True, frozen=True)
class DeploymentConfig:
    """Everything a deployment run needs to know about its environment."""

    #: Node endpoint
    json_rpc_url: str

    #: Deployer private key, 0x-prefixed
    private_key: str

    #: Governance private key, signs the whitelist transactions.
    #: Must differ from the deployer key, the deployer is the hub proxy admin.
    governance_private_key: str

    #: Treasury receiving protocol fees, governance address if not given
    treasury_address: str | None

    #: Hardhat artifacts folder
    artifacts_path: Path

    #: Output manifest
    manifest_path: Path

    #: How long we wait for a single transaction
    confirmation_timeout: datetime.timedelta

    #: Receipt poll interval
    poll_delay: datetime.timedelta

    @staticmethod
    def from_env() -> "DeploymentConfig":
        """Read the configuration from the environment.

        :raises ValueError: If a required variable is missing or governance uses the deployer key
        """
        private_key = read_required_env("PRIVATE_KEY")
        governance_private_key = read_required_env("GOVERNANCE_PRIVATE_KEY")
        if governance_private_key.lower() == private_key.lower():
            raise ValueError("GOVERNANCE_PRIVATE_KEY must be a different key than PRIVATE_KEY")
        return DeploymentConfig(
            json_rpc_url=read_required_env("JSON_RPC_URL"),
            private_key=private_key,
            governance_private_key=governance_private_key,
            treasury_address=os.environ.get("TREASURY_ADDRESS") or None,
            artifacts_path=Path(os.environ.get("ARTIFACTS_PATH", "artifacts")).expanduser(),
            manifest_path=Path(os.environ.get("MANIFEST_PATH", "addresses.json")).expanduser(),
            confirmation_timeout=datetime.timedelta(seconds=float(os.environ.get("CONFIRMATION_TIMEOUT", "300"))),
            poll_delay=datetime.timedelta(seconds=float(os.environ.get("POLL_DELAY", "1"))),
        )
