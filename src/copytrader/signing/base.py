"""Base interfaces for transaction signing.

Signing flow:
1. Executor builds the unsigned transaction (nonce, gas, data, chainId)
2. Signer for the account reference signs it
3. Signed payload and hash are returned (raw private key never leaves the signer)
4. Executor broadcasts the payload
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignedTransaction:
    """Signed transaction ready for broadcast.

    Attributes:
        raw_transaction: RLP-encoded signed payload
        tx_hash: Transaction hash as 0x-prefixed hex
    """
    raw_transaction: bytes
    tx_hash: str


class TransactionSigner(ABC):
    """Abstract base class for account signers.

    Implementations should NEVER expose raw private keys.
    """

    @property
    @abstractmethod
    def address(self) -> str:
        """Checksummed address of the signing account."""
        pass

    @abstractmethod
    async def sign_transaction(self, tx: dict) -> SignedTransaction:
        """Sign a legacy (EIP-155) transaction dict.

        Args:
            tx: Transaction with nonce, to, value, gas, gasPrice, data, chainId

        Returns:
            SignedTransaction with payload and hash

        Raises:
            SigningFailure: If the transaction cannot be signed
        """
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(address={self.address})"
