"""Tests for signing backends."""

import pytest
from eth_account import Account
from eth_utils import keccak

from copytrader.config import Settings
from copytrader.errors import KeyParseFailure, SigningFailure, UnknownAccount
from copytrader.signing import DEFAULT_ACCOUNT, Keyring, LocalSigner

from conftest import ROUTER, TEST_ADDRESS, TEST_PRIVATE_KEY


def swap_tx(nonce: int = 0) -> dict:
    return {
        "nonce": nonce,
        "to": ROUTER,
        "value": 10**17,
        "gas": 180_000,
        "gasPrice": 1_000_000_000,
        "data": "0x7ff36ab5",
        "chainId": 8453,
    }


class TestLocalSigner:
    """Tests for the in-memory signer."""

    def test_address(self):
        assert LocalSigner(TEST_PRIVATE_KEY).address == TEST_ADDRESS

    @pytest.mark.parametrize("key", ["", "0xdeadbeef", "not-a-key"])
    def test_malformed_key(self, key):
        with pytest.raises(KeyParseFailure) as exc_info:
            LocalSigner(key)
        if key:
            assert key not in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_sign_transaction(self):
        signed = await LocalSigner(TEST_PRIVATE_KEY).sign_transaction(swap_tx(nonce=3))

        assert Account.recover_transaction(signed.raw_transaction) == TEST_ADDRESS
        assert signed.tx_hash == "0x" + keccak(signed.raw_transaction).hex()

    @pytest.mark.asyncio
    async def test_signing_is_deterministic(self):
        signer = LocalSigner(TEST_PRIVATE_KEY)

        first = await signer.sign_transaction(swap_tx())
        second = await signer.sign_transaction(swap_tx())

        assert first == second

    @pytest.mark.asyncio
    async def test_unsignable_transaction(self):
        tx = swap_tx()
        tx["gas"] = "lots"

        with pytest.raises(SigningFailure) as exc_info:
            await LocalSigner(TEST_PRIVATE_KEY).sign_transaction(tx)
        assert exc_info.value.context["nonce"] == 0

    def test_repr_hides_key(self):
        signer = LocalSigner(TEST_PRIVATE_KEY)
        assert TEST_PRIVATE_KEY[2:] not in repr(signer)


class TestKeyring:
    """Tests for account lookup."""

    def test_unknown_account(self, keyring):
        with pytest.raises(UnknownAccount):
            keyring.get("treasury")

    def test_lookup(self, keyring):
        assert keyring.get(DEFAULT_ACCOUNT).address == TEST_ADDRESS
        assert DEFAULT_ACCOUNT in keyring
        assert keyring.accounts() == [DEFAULT_ACCOUNT]

    def test_from_settings(self):
        keyring = Keyring.from_settings(Settings(_env_file=None, private_key=TEST_PRIVATE_KEY))
        assert keyring.get(DEFAULT_ACCOUNT).address == TEST_ADDRESS

    def test_from_settings_without_key(self):
        keyring = Keyring.from_settings(Settings(_env_file=None, private_key=""))
        assert keyring.accounts() == []
