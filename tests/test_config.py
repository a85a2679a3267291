"""Tests for application settings."""

from decimal import Decimal

from copytrader.config import Settings, get_settings


def make_settings(**kwargs) -> Settings:
    return Settings(_env_file=None, **kwargs)


class TestSettings:
    """Tests for settings parsing."""

    def test_execution_defaults(self):
        settings = make_settings()

        assert settings.swap_deadline_seconds == 600
        assert settings.gas_limit_multiplier == 1.2
        assert settings.confirmation_policy == "wait"
        assert settings.default_slippage == Decimal("1.0")
        assert settings.chain_names == ["base"]

    def test_environment_variables(self, monkeypatch):
        monkeypatch.setenv("ENABLED_CHAINS", "ethereum")
        monkeypatch.setenv("SWAP_DEADLINE_SECONDS", "120")

        settings = make_settings()

        assert settings.chain_names == ["ethereum"]
        assert settings.swap_deadline_seconds == 120

    def test_chain_names_are_normalized(self):
        settings = make_settings(enabled_chains=" Base, BSC ,,")
        assert settings.chain_names == ["base", "bsc"]

    def test_rpc_url_lookup(self):
        settings = make_settings(eth_rpc_url="http://eth.local")

        assert settings.get_rpc_url("ETHEREUM") == "http://eth.local"
        assert settings.get_rpc_url("solana") == ""

    def test_address_overrides(self):
        settings = make_settings(uniswap_base_router="0x" + "d" * 40)

        assert settings.get_address_overrides("base") == {"router_address": "0x" + "d" * 40}
        assert settings.get_address_overrides("bsc") == {}

    def test_wallet(self):
        assert not make_settings(private_key=None).has_wallet
        assert make_settings(private_key="0x01").has_wallet

    def test_production(self):
        assert make_settings(environment="Production").is_production
        assert not make_settings(environment="test").is_production

    def test_safe_dict_redacts_secrets(self):
        settings = make_settings(
            private_key="0x" + "1" * 64,
            database_url="postgresql+asyncpg://trader:hunter2@db:5432/ledger",
        )

        safe = settings.get_safe_dict()

        assert safe["private_key"] == "***"
        assert safe["database_url"] == "postgresql+asyncpg://trader:***@db:5432/ledger"
        assert "1" * 64 not in str(safe)

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()
