"""
Configuration Loader Test Suite
"""

import pytest

from privyballot.config import ClientConfig, load_config
from privyballot.constants import DEFAULT_CHAIN_ID, DEFAULT_GATEWAYS

CONTRACT = "0x5fbdb2315678afecb367f032d93f642f64180aa3"

SAMPLE_TOML = f"""
[ledger]
rpc_url = "http://node.local:8545"
chain_id = 11155111
contract_address = "{CONTRACT}"

[gate]
max_requests_per_minute = 10
min_interval = 0.5

[content_store]
backend = "pinata"
gateways = ["https://gw.example/ipfs/"]
api_key = "from-toml"

[overlay]
path = "state/overlay.db"

[reveal]
max_attempts = 4

[logging]
level = "debug"
"""


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "PRIVYBALLOT_CONFIG", "PRIVYBALLOT_RPC_URL", "PRIVYBALLOT_CHAIN_ID",
        "PRIVYBALLOT_CONTRACT_ADDRESS", "PRIVYBALLOT_MAX_REQUESTS_PER_MINUTE",
        "PRIVYBALLOT_OVERLAY_PATH", "PRIVYBALLOT_LOG_LEVEL",
        "PRIVYBALLOT_PINATA_API_KEY", "PRIVYBALLOT_PINATA_SECRET_KEY",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "privyballot.toml"
    path.write_text(SAMPLE_TOML)
    return path


class TestLoading:

    def test_defaults(self):
        config = ClientConfig()
        assert config.ledger.chain_id == DEFAULT_CHAIN_ID
        assert config.gate.max_requests_per_minute == 30
        assert config.gate.min_interval == 2.0
        assert config.content_store.backend == "memory"
        assert config.content_store.gateways == DEFAULT_GATEWAYS
        assert config.validate() is True

    def test_missing_file_uses_defaults(self, tmp_path):
        config = ClientConfig.from_file(str(tmp_path / "absent.toml"))
        assert config.ledger.rpc_url == "http://127.0.0.1:8545"

    def test_from_file(self, config_file):
        config = ClientConfig.from_file(str(config_file))
        assert config.ledger.chain_id == 11155111
        assert config.ledger.contract_address == CONTRACT
        assert config.gate.max_requests_per_minute == 10
        assert config.gate.min_interval == 0.5
        assert config.gate.max_consecutive_errors == 3
        assert config.content_store.gateways == ["https://gw.example/ipfs/"]
        assert config.overlay.path == "state/overlay.db"
        assert config.reveal.max_attempts == 4
        assert config.logging.level == "DEBUG"

    def test_credentials_never_read_from_toml(self, config_file):
        config = ClientConfig.from_file(str(config_file))
        assert config.content_store.api_key == ""
        assert not config.content_store.has_credentials

    def test_env_overrides(self, config_file, monkeypatch):
        monkeypatch.setenv("PRIVYBALLOT_CHAIN_ID", "31337")
        monkeypatch.setenv("PRIVYBALLOT_OVERLAY_PATH", "/tmp/other.db")
        monkeypatch.setenv("PRIVYBALLOT_PINATA_API_KEY", "key")
        monkeypatch.setenv("PRIVYBALLOT_PINATA_SECRET_KEY", "secret")

        config = ClientConfig.from_file(str(config_file))

        assert config.ledger.chain_id == 31337
        assert config.overlay.path == "/tmp/other.db"
        assert config.content_store.has_credentials

    def test_load_config_from_env_path(self, config_file, monkeypatch):
        monkeypatch.setenv("PRIVYBALLOT_CONFIG", str(config_file))
        assert load_config().ledger.chain_id == 11155111

    def test_explicit_path_wins(self, config_file, tmp_path, monkeypatch):
        monkeypatch.setenv("PRIVYBALLOT_CONFIG", str(tmp_path / "absent.toml"))
        assert load_config(str(config_file)).gate.max_requests_per_minute == 10


class TestValidation:

    @pytest.mark.parametrize("section,attr,value", [
        ("ledger", "chain_id", 0),
        ("ledger", "rpc_url", "ftp://node"),
        ("ledger", "contract_address", "0x1234"),
        ("gate", "max_requests_per_minute", 0),
        ("gate", "min_interval", -1),
        ("content_store", "backend", "s3"),
        ("sync", "max_concurrency", 0),
        ("reveal", "max_attempts", 0),
        ("logging", "level", "LOUD"),
    ])
    def test_invalid_values(self, section, attr, value):
        config = ClientConfig()
        setattr(getattr(config, section), attr, value)
        with pytest.raises(ValueError):
            config.validate()


class TestSerialisation:

    def test_secrets_omitted(self, monkeypatch):
        monkeypatch.setenv("PRIVYBALLOT_PINATA_API_KEY", "key-value")
        monkeypatch.setenv("PRIVYBALLOT_PINATA_SECRET_KEY", "secret-value")
        config = ClientConfig()
        config.apply_env()

        dumped = config.to_dict()

        assert dumped["content_store"]["credentials"] is True
        assert "secret-value" not in str(dumped)
        assert "secret-value" not in repr(config)
