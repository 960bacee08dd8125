"""Deploy the full Lens protocol from Hardhat artifacts.

- Deploys all core contracts, modules and a test currency
- Whitelists the modules and the currency with the governance key
- Writes the contract addresses to ``addresses.json``

Compile the contracts first with ``npx hardhat compile``.

To run:

.. code-block:: shell

    export JSON_RPC_URL=http://localhost:8545
    export PRIVATE_KEY=...
    export GOVERNANCE_PRIVATE_KEY=...
    export ARTIFACTS_PATH=~/lens-protocol/artifacts
    python scripts/deploy-lens.py

Exit code is 0 on success, 1 if a contract could not be deployed
and 2 if some modules could not be whitelisted.
"""

import logging
import sys

from web3 import HTTPProvider, Web3

from eth_deploy.abi import ArtifactContractFactory
from eth_deploy.config import DeploymentConfig
from eth_deploy.hotwallet import HotWallet
from eth_deploy.lens.deployment import deploy_lens
from eth_deploy.utils import setup_console_logging

logger = logging.getLogger(__name__)


def main():
    setup_console_logging()

    config = DeploymentConfig.from_env()

    web3 = Web3(HTTPProvider(config.json_rpc_url))
    print(f"Connected to chain {web3.eth.chain_id}, block {web3.eth.block_number:,}")

    deployer = HotWallet.from_private_key(config.private_key)
    governance = HotWallet.from_private_key(config.governance_private_key)

    balance = web3.eth.get_balance(deployer.address)
    print(f"Deployer {deployer.address}, balance {balance / 10**18} ETH")
    print(f"Governance {governance.address}")

    factory = ArtifactContractFactory(config.artifacts_path)

    report = deploy_lens(
        web3,
        deployer,
        governance,
        factory,
        config.manifest_path,
        treasury=config.treasury_address,
        confirmation_timeout=config.confirmation_timeout,
        poll_delay=config.poll_delay,
    )

    print(report.pformat())
    sys.exit(report.exit_code)


if __name__ == "__main__":
    main()
