"""
Transaction builder for managed-account calls.

The owner never calls a dApp's target directly: every request is wrapped in
``executeTransaction(address,uint256,bytes)`` on the managed account.
"""

import secrets

from eth_utils import function_signature_to_4byte_selector, to_checksum_address

from .models import PreparedTransaction


def _selector(signature: str) -> str:
    return "0x" + function_signature_to_4byte_selector(signature).hex()


# Managed account
EXECUTE_TRANSACTION_SELECTOR = _selector("executeTransaction(address,uint256,bytes)")
OWNER_SELECTOR = _selector("owner()")

# Global namespace
ACCOUNT_OF_SELECTOR = _selector("accountOf(string)")
USERNAME_OF_SELECTOR = _selector("usernameOf(address)")

ZERO_ADDRESS = "0x" + "0" * 40
MAX_UINT256 = 2**256 - 1


def _strip_hex(value: str) -> str:
    return value[2:] if value.startswith(("0x", "0X")) else value


def _encode_uint256(value: int) -> str:
    """Encode a uint256 as a 32-byte hex string (without 0x prefix)."""
    if value < 0 or value > MAX_UINT256:
        raise ValueError(f"uint256 out of range: {value}")
    return format(value, "064x")


def _encode_address(address: str) -> str:
    """Encode an address as a 32-byte hex string (without 0x prefix)."""
    # Remove 0x prefix and pad to 32 bytes
    addr = _strip_hex(address).lower()
    return addr.zfill(64)


def _encode_bytes(data: bytes) -> str:
    """Encode the tail of a dynamic ``bytes``/``string``: length word plus padded data."""
    padded_len = (len(data) + 31) // 32 * 32
    return _encode_uint256(len(data)) + data.hex().ljust(padded_len * 2, "0")


def _words(result: str) -> bytes:
    raw = _strip_hex(result or "")
    return bytes.fromhex(raw) if raw else b""


def decode_address(result: str) -> str:
    """Decode an ``address`` return value into a checksummed address."""
    raw = _words(result)
    if len(raw) < 32:
        raise ValueError(f"Cannot decode address from {result!r}")
    return to_checksum_address("0x" + raw[12:32].hex())


def decode_string(result: str) -> str:
    """Decode a single dynamic ``string`` return value. Empty output decodes to ''."""
    raw = _words(result)
    if not raw:
        return ""
    offset = int.from_bytes(raw[0:32], "big")
    length = int.from_bytes(raw[offset:offset + 32], "big")
    start = offset + 32
    if start + length > len(raw):
        raise ValueError("String return value is truncated")
    return raw[start:start + length].decode("utf-8")


def parse_hex_data(data: str) -> bytes:
    """Parse ``0x``-prefixed calldata. Raises ValueError on anything else."""
    if not isinstance(data, str) or not data.startswith(("0x", "0X")):
        raise ValueError(f"Calldata must be 0x-prefixed hex, got {data!r}")
    body = data[2:]
    if len(body) % 2:
        raise ValueError("Calldata has an odd number of hex digits")
    return bytes.fromhex(body)


class TransactionBuilder:
    """
    Builds calls against the managed account and the global namespace.

    Handles:
    - executeTransaction wrapping of dApp requests
    - owner() reads
    - accountOf / usernameOf lookups
    """

    @staticmethod
    def generate_tx_id() -> str:
        """Generate a unique transaction ID."""
        return f"tx_{secrets.token_hex(16)}"

    @staticmethod
    def encode_execute_transaction(target: str, value: int, data: bytes) -> str:
        """Calldata for ``executeTransaction(target, value, data)``."""
        # Head: address, uint256, offset of the bytes tail (3 words = 0x60)
        return (
            EXECUTE_TRANSACTION_SELECTOR +
            _encode_address(target) +
            _encode_uint256(value) +
            _encode_uint256(32 * 3) +
            _encode_bytes(data)
        )

    @staticmethod
    def build_execute_transaction(
        chain_id: int,
        owner_address: str,
        account_address: str,
        target: str,
        value: int,
        data: bytes,
        description: str = "",
    ) -> PreparedTransaction:
        """
        Build the owner's call into the managed account.

        Args:
            chain_id: The chain ID
            owner_address: The owner key that signs
            account_address: The managed account contract
            target: The dApp's requested ``to``
            value: The dApp's requested ``value`` in wei
            data: The dApp's requested calldata
            description: Human-readable description

        Returns:
            PreparedTransaction ready to be signed
        """
        return PreparedTransaction(
            tx_id=TransactionBuilder.generate_tx_id(),
            chain_id=chain_id,
            from_address=owner_address,
            to_address=account_address,
            data=TransactionBuilder.encode_execute_transaction(target, value, data),
            value=0,
            description=description or f"Execute call to {target[:10]}... via {account_address[:10]}...",
        )

    @staticmethod
    def encode_owner() -> str:
        return OWNER_SELECTOR

    @staticmethod
    def encode_account_of(username: str) -> str:
        # Single dynamic argument: offset is one word
        return (
            ACCOUNT_OF_SELECTOR +
            _encode_uint256(32) +
            _encode_bytes(username.encode("utf-8"))
        )

    @staticmethod
    def encode_username_of(address: str) -> str:
        return USERNAME_OF_SELECTOR + _encode_address(address)
