# tests/unit/test_config_manager.py
"""
Unit tests for ConfigManager
"""
import pytest

from config.config_manager import ConfigManager, ConfigSource, ConfigType
from utils.errors import ConfigurationError

PREFIX = "ELIGIBILITY_TEST_"


@pytest.mark.unit
class TestConfigManager:
    """Test cases for layered configuration"""

    @pytest.fixture
    def write_config(self, tmp_path):
        def write(text):
            path = tmp_path / "engine.yaml"
            path.write_text(text)
            return str(path)
        return write

    @pytest.mark.asyncio
    async def test_defaults(self):
        manager = ConfigManager(env_prefix=PREFIX)
        await manager.initialize()

        gateway = manager.get_gateway_config()
        assert gateway.retry_attempts == 3
        assert gateway.rpc_timeout_ms == 30000
        assert 1 in gateway.enabled_chains
        assert manager.get_scoring_config().weight_diversity == 0.30
        assert manager.sources[ConfigType.GATEWAY] == ConfigSource.DEFAULT

    @pytest.mark.asyncio
    async def test_yaml_overrides(self, write_config):
        path = write_config(
            "gateway:\n"
            "  retry_attempts: 5\n"
            "  enabled_chains: [1, 8453]\n"
            "  rpc_endpoints:\n"
            "    1: http://localhost:8545\n"
            "scoring:\n"
            "  weight_mev: 0.5\n"
        )
        manager = ConfigManager(config_path=path, env_prefix=PREFIX)
        await manager.initialize()

        gateway = manager.get_gateway_config()
        assert gateway.retry_attempts == 5
        assert gateway.enabled_chains == [1, 8453]
        assert gateway.rpc_endpoints == {1: "http://localhost:8545"}
        assert manager.get_scoring_config().weight_mev == 0.5
        assert manager.sources[ConfigType.GATEWAY] == ConfigSource.FILE

    @pytest.mark.asyncio
    async def test_environment_overrides_file(self, write_config, monkeypatch):
        path = write_config("gateway:\n  retry_attempts: 5\n")
        monkeypatch.setenv(f"{PREFIX}RETRY_ATTEMPTS", "7")
        monkeypatch.setenv(f"{PREFIX}ENABLED_CHAINS", "1, 42161")
        monkeypatch.setenv(f"{PREFIX}LOG_LEVEL", "debug")

        manager = ConfigManager(config_path=path, env_prefix=PREFIX)
        await manager.initialize()

        assert manager.get_gateway_config().retry_attempts == 7
        assert manager.get_gateway_config().enabled_chains == [1, 42161]
        assert manager.get_logging_config().log_level == "DEBUG"
        assert manager.sources[ConfigType.GATEWAY] == ConfigSource.ENVIRONMENT

    @pytest.mark.asyncio
    async def test_invalid_value_rejected(self, write_config):
        manager = ConfigManager(config_path=write_config("gateway:\n  retry_attempts: 0\n"), env_prefix=PREFIX)

        with pytest.raises(ConfigurationError):
            await manager.initialize()

    @pytest.mark.asyncio
    async def test_unknown_chain_rejected(self, monkeypatch):
        monkeypatch.setenv(f"{PREFIX}ENABLED_CHAINS", "1,999")
        manager = ConfigManager(env_prefix=PREFIX)

        with pytest.raises(ConfigurationError):
            await manager.initialize()

    @pytest.mark.asyncio
    async def test_zero_weights_rejected(self, write_config):
        path = write_config(
            "scoring:\n"
            "  weight_diversity: 0\n"
            "  weight_activity: 0\n"
            "  weight_risk: 0\n"
            "  weight_mev: 0\n"
        )
        manager = ConfigManager(config_path=path, env_prefix=PREFIX)

        with pytest.raises(ConfigurationError):
            await manager.initialize()

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        manager = ConfigManager(config_path=str(tmp_path / "absent.yaml"), env_prefix=PREFIX)

        with pytest.raises(ConfigurationError):
            await manager.initialize()

    @pytest.mark.asyncio
    async def test_invalid_yaml(self, write_config):
        manager = ConfigManager(config_path=write_config("gateway: [unclosed\n"), env_prefix=PREFIX)

        with pytest.raises(ConfigurationError):
            await manager.initialize()

    @pytest.mark.asyncio
    async def test_engine_config_groups(self):
        manager = ConfigManager(env_prefix=PREFIX)
        await manager.initialize()

        engine_config = manager.as_engine_config()

        assert set(engine_config) == {t.value for t in ConfigType}
        assert engine_config["cache"]["cache_ttl"] == 60
        assert engine_config["engine"]["evaluation_deadline_seconds"] == 60.0

    @pytest.mark.asyncio
    async def test_logger_config(self):
        manager = ConfigManager(env_prefix=PREFIX)
        await manager.initialize()

        logger_config = manager.get_logging_config().to_logger_config()

        assert logger_config["outputs"] == ["console"]
        assert logger_config["format"] == "json"
