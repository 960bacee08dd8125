"""Environment configuration."""

import datetime
from pathlib import Path

import pytest

from eth_deploy.config import DeploymentConfig

KEY = "0x" + "11" * 32
GOVERNANCE_KEY = "0x" + "22" * 32


@pytest.fixture()
def env(monkeypatch):
    for name in ("TREASURY_ADDRESS", "ARTIFACTS_PATH", "MANIFEST_PATH", "CONFIRMATION_TIMEOUT", "POLL_DELAY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("JSON_RPC_URL", "http://localhost:8545")
    monkeypatch.setenv("PRIVATE_KEY", KEY)
    monkeypatch.setenv("GOVERNANCE_PRIVATE_KEY", GOVERNANCE_KEY)
    return monkeypatch


def test_config_defaults(env):
    config = DeploymentConfig.from_env()
    assert config.json_rpc_url == "http://localhost:8545"
    assert config.private_key == KEY
    assert config.governance_private_key == GOVERNANCE_KEY
    assert config.treasury_address is None
    assert config.artifacts_path == Path("artifacts")
    assert config.manifest_path == Path("addresses.json")
    assert config.confirmation_timeout == datetime.timedelta(minutes=5)
    assert config.poll_delay == datetime.timedelta(seconds=1)


def test_config_overrides(env):
    env.setenv("MANIFEST_PATH", "/tmp/out/addresses.json")
    env.setenv("CONFIRMATION_TIMEOUT", "30")

    config = DeploymentConfig.from_env()
    assert config.manifest_path == Path("/tmp/out/addresses.json")
    assert config.confirmation_timeout == datetime.timedelta(seconds=30)


def test_config_missing(env):
    env.delenv("PRIVATE_KEY")
    with pytest.raises(ValueError, match="PRIVATE_KEY"):
        DeploymentConfig.from_env()


def test_config_missing_governance(env):
    env.delenv("GOVERNANCE_PRIVATE_KEY")
    with pytest.raises(ValueError, match="GOVERNANCE_PRIVATE_KEY"):
        DeploymentConfig.from_env()


def test_config_governance_is_deployer(env):
    """The deployer is the proxy admin and cannot govern through the proxy."""
    env.setenv("GOVERNANCE_PRIVATE_KEY", KEY)
    with pytest.raises(ValueError, match="different key"):
        DeploymentConfig.from_env()
