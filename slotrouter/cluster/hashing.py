"""
Key Hashing Module

Computes the hash slot that owns a key.

Slot Assignment:
- 16384 slots in total
- slot = CRC16(hash_input) mod 16384
- CRC16 is CRC16-CCITT (XModem): polynomial 0x1021, initial value 0

Hash Tags:
    If a key contains "{...}" with a non-empty body, only the body is hashed,
    so "{user1}.name" and "{user1}.age" always land in the same slot.
    "{}" (empty tag) hashes the whole key.
"""

from binascii import crc_hqx
from typing import Union

from ..config.settings import settings

KeyT = Union[bytes, bytearray, memoryview, str]

HASH_SLOTS = settings.HASH_SLOTS


class MalformedKeyError(ValueError):
    """Raised when a key cannot be turned into a hash input."""


class CrossSlotKeysError(Exception):
    """Raised when keys that must share a slot do not."""


def crc16(data: bytes) -> int:
    """CRC16-CCITT (XModem) checksum of data."""
    return crc_hqx(data, 0)


def to_bytes(key: KeyT) -> bytes:
    """
    Normalise a key to raw bytes.

    Args:
        key: bytes, bytearray, memoryview or str (encoded as UTF-8)

    Returns:
        The key as bytes

    Raises:
        MalformedKeyError: For any other type, or a str that cannot be encoded
    """
    if isinstance(key, bytes):
        return key
    if isinstance(key, (bytearray, memoryview)):
        return bytes(key)
    if isinstance(key, str):
        try:
            return key.encode('utf-8')
        except UnicodeEncodeError as e:
            raise MalformedKeyError(f"key {key!r} is not valid UTF-8: {e}") from e
    raise MalformedKeyError(f"unsupported key type: {type(key).__name__}")


def hash_input(key: KeyT) -> bytes:
    """
    Return the part of a key that is hashed.

    Args:
        key: The key to inspect

    Returns:
        The hash tag between the first '{' and the next '}' when it is
        non-empty, otherwise the whole key.
    """
    k = to_bytes(key)
    start = k.find(b"{")
    if start > -1:
        end = k.find(b"}", start + 1)
        if end > -1 and end != start + 1:
            return k[start + 1:end]
    return k


def slot_for_hash_input(data: bytes) -> int:
    """Slot for an already extracted hash input."""
    return crc16(data) % HASH_SLOTS


def key_slot(key: KeyT) -> int:
    """
    Calculate which slot owns a given key.

    The same key always maps to the same slot, on every client and server
    of the cluster.

    Args:
        key: The key to hash

    Returns:
        Slot in the range [0, 16384)
    """
    return slot_for_hash_input(hash_input(key))


def determine_slot(first_key: KeyT, *keys: KeyT) -> int:
    """Slot shared by all keys, for commands that must stay on one slot."""
    slot = key_slot(first_key)
    for k in keys:
        if slot != key_slot(k):
            raise CrossSlotKeysError("all keys must map to the same key slot")
    return slot
