"""Tests for chain configuration and the registry."""

import pytest
from web3 import Web3

from copytrader.chains import PRESET_CHAINS, ChainConfig, ChainRegistry, build_registry, create_client
from copytrader.config import Settings
from copytrader.errors import AlreadyRegistered, ChainIdMismatch, InvalidAddress, UnknownChain
from copytrader.rpc import HttpJsonRpcClient, Web3ChainClient

from conftest import BASE, FakeChainClient


def make_settings(**kwargs) -> Settings:
    return Settings(_env_file=None, **kwargs)


class TestChainConfig:
    """Tests for chain parameters."""

    @pytest.mark.parametrize("name", sorted(PRESET_CHAINS))
    def test_preset_addresses_are_checksummed(self, name):
        config = PRESET_CHAINS[name]
        for address in (config.router_address, config.factory_address, config.wrapped_native_address):
            assert address == Web3.to_checksum_address(address)

    def test_preset_chain_ids(self):
        assert PRESET_CHAINS["base"].chain_id == 8453
        assert PRESET_CHAINS["ethereum"].chain_id == 1
        assert PRESET_CHAINS["bsc"].chain_id == 56
        assert PRESET_CHAINS["bsc"].native_symbol == "BNB"

    def test_name_and_addresses_are_normalized(self):
        config = ChainConfig(
            name="Local",
            chain_id=31337,
            rpc_url="http://localhost:8545",
            router_address="0x" + "d" * 40,
            factory_address=None,
            wrapped_native_address="0x" + "e" * 40,
        )

        assert config.name == "local"
        assert config.router_address == Web3.to_checksum_address("0x" + "d" * 40)
        assert config.factory_address is None

    def test_rejects_malformed_address(self):
        with pytest.raises(InvalidAddress):
            ChainConfig(
                name="local",
                chain_id=31337,
                rpc_url="http://localhost:8545",
                router_address="0x1234",
                factory_address=None,
                wrapped_native_address="0x" + "e" * 40,
            )


class TestChainRegistry:
    """Tests for registration and lookup."""

    def test_resolve_is_case_insensitive(self, registry):
        assert registry.resolve("BASE") is BASE
        assert "Base" in registry
        assert "ethereum" not in registry
        assert registry.names() == ["base"]

    def test_client_lookup(self, registry, fake_client):
        assert registry.client("base") is fake_client

    def test_unknown_chain(self, registry):
        with pytest.raises(UnknownChain):
            registry.resolve("ethereum")
        with pytest.raises(UnknownChain):
            registry.client("ethereum")

    def test_duplicate_registration(self, registry):
        with pytest.raises(AlreadyRegistered):
            registry.register(BASE, FakeChainClient())

    @pytest.mark.asyncio
    async def test_verify_matching_chain_id(self, registry):
        await registry.verify()

    @pytest.mark.asyncio
    async def test_verify_detects_mismatch(self):
        registry = ChainRegistry()
        registry.register(BASE, FakeChainClient(chain_id=1))

        with pytest.raises(ChainIdMismatch) as exc_info:
            await registry.verify()
        assert exc_info.value.context["chain"] == "base"

    @pytest.mark.asyncio
    async def test_close_closes_clients(self, registry, fake_client):
        await registry.close()
        assert fake_client.closed


class TestBuildRegistry:
    """Tests for building the registry from settings."""

    @pytest.mark.asyncio
    async def test_enabled_chains_with_overrides(self):
        router = "0x" + "d" * 40
        settings = make_settings(
            enabled_chains="Base, bsc",
            base_rpc_url="http://localhost:8545",
            uniswap_base_router=router,
        )

        registry = build_registry(settings)

        assert registry.names() == ["base", "bsc"]
        base = registry.resolve("base")
        assert base.rpc_url == "http://localhost:8545"
        assert base.router_address == Web3.to_checksum_address(router)
        assert base.wrapped_native_address == PRESET_CHAINS["base"].wrapped_native_address
        assert registry.resolve("bsc").router_address == PRESET_CHAINS["bsc"].router_address
        assert isinstance(registry.client("base"), HttpJsonRpcClient)
        await registry.close()

    def test_chain_without_preset(self):
        with pytest.raises(UnknownChain):
            build_registry(make_settings(enabled_chains="base,solana"))

    @pytest.mark.asyncio
    async def test_web3_transport(self):
        client = create_client("http://localhost:8545", make_settings(rpc_transport="web3"))
        assert isinstance(client, Web3ChainClient)
        await client.close()

    def test_unknown_transport(self):
        with pytest.raises(ValueError):
            create_client("http://localhost:8545", make_settings(rpc_transport="grpc"))
