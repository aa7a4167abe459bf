"""Shared address helpers and type aliases.

These are used across the RPC and HTTP helpers.
"""

from eth_utils import to_checksum_address

# Block identifier accepted by web3 calls ("latest", "pending", a number, ...)
BlockIdentifier = int | str

# Storage overrides passed as the third `eth_call` parameter:
# {address: {"stateDiff": {slot: value}}}
StateOverrides = dict[str, dict[str, dict[str, str]]]


def normalize_address(address: str, *, validate: bool = False) -> str:
    """Normalize an Ethereum address to lowercase.

    Args:
        address: An Ethereum address (with or without 0x prefix)
        validate: If True, raises ValueError for invalid addresses.

    Returns:
        Lowercase address with 0x prefix

    Raises:
        ValueError: If validate=True and address is not a valid Ethereum address
    """
    addr = address.lower()
    if not addr.startswith("0x"):
        addr = "0x" + addr

    if validate and not is_valid_address(addr):
        raise ValueError(f"Invalid address: {address}")

    return addr


def checksum(address: str) -> str:
    """Return the EIP-55 checksummed form of an address."""
    return to_checksum_address(normalize_address(address, validate=True))


def is_valid_address(address: str) -> bool:
    """Check if a string is a valid Ethereum address."""
    if not isinstance(address, str):
        return False
    if not address.startswith("0x"):
        return False
    if len(address) != 42:
        return False
    try:
        int(address, 16)
        return True
    except ValueError:
        return False


def to_block_identifier(block_number: int | None) -> BlockIdentifier:
    """Hexlify an optional block number, defaulting to "latest"."""
    if block_number is None:
        return "latest"
    return hex(block_number)


__all__ = [
    "BlockIdentifier",
    "StateOverrides",
    "normalize_address",
    "checksum",
    "is_valid_address",
    "to_block_identifier",
]
