"""Tests for settings."""

import pytest
from pydantic import ValidationError

from bestcrow.config import (
    DEFAULT_CHAIN_ID,
    DEFAULT_START_BLOCK,
    DeploymentSettings,
    Settings,
)
from bestcrow.errors import ConfigurationError
from bestcrow.retry import RetryConfig
from bestcrow.testing.fakes import CONTRACT, OTHER_CONTRACT


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ("BESTCROW_DB_PATH", "BESTCROW_CHAIN_ID", "BESTCROW_CONTRACT_ADDRESS", "BESTCROW_DEPLOYMENTS"):
        monkeypatch.delenv(key, raising=False)


class TestSettings:
    def test_defaults_target_holesky_deployment(self):
        settings = Settings(_env_file=None)
        assert settings.chain_id == DEFAULT_CHAIN_ID == 17000
        assert settings.contract_address == CONTRACT
        assert settings.start_block == DEFAULT_START_BLOCK
        assert settings.fee_bps == 50
        assert settings.collateral_bps == 5000

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("BESTCROW_CHAIN_ID", "1")
        monkeypatch.setenv("BESTCROW_CONTRACT_ADDRESS", OTHER_CONTRACT.upper().replace("0X", "0x"))
        settings = Settings(_env_file=None)
        assert settings.chain_id == 1
        assert settings.contract_address == OTHER_CONTRACT

    def test_invalid_contract_address(self):
        with pytest.raises(ValidationError):
            Settings(contract_address="0x1234", _env_file=None)

    def test_batch_size_must_be_positive(self):
        with pytest.raises(ValidationError):
            Settings(batch_size=0, _env_file=None)

    def test_retry_config_from_settings(self):
        settings = Settings(retry_max_attempts=4, retry_initial_delay=0.5, retry_max_delay=9, _env_file=None)
        config = RetryConfig.from_settings(settings)
        assert (config.max_attempts, config.initial_delay, config.max_delay) == (4, 0.5, 9)


class TestPipelineConfigs:
    def test_single_default_deployment(self):
        configs = Settings(_env_file=None).pipeline_configs()
        assert len(configs) == 1
        assert configs[0].scope.contract_address == CONTRACT

    def test_extra_deployments_inherit_rpc_url(self):
        settings = Settings(
            rpc_url="http://node:8545",
            deployments=[
                DeploymentSettings(chain_id=1, contract_address=OTHER_CONTRACT, start_block=5),
                DeploymentSettings(
                    chain_id=10, contract_address=OTHER_CONTRACT, rpc_url="http://op:8545"
                ),
            ],
            _env_file=None,
        )
        configs = settings.pipeline_configs()
        assert [(c.chain_id, c.rpc_url) for c in configs] == [
            (17000, "http://node:8545"),
            (1, "http://node:8545"),
            (10, "http://op:8545"),
        ]

    def test_deployments_from_env_json(self, monkeypatch):
        monkeypatch.setenv(
            "BESTCROW_DEPLOYMENTS", f'[{{"chain_id": 1, "contract_address": "{OTHER_CONTRACT}"}}]'
        )
        configs = Settings(_env_file=None).pipeline_configs()
        assert configs[1].chain_id == 1

    def test_duplicate_deployment_rejected(self):
        settings = Settings(
            deployments=[DeploymentSettings(chain_id=17000, contract_address=CONTRACT)],
            _env_file=None,
        )
        with pytest.raises(ConfigurationError):
            settings.pipeline_configs()
