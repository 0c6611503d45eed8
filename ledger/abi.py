"""
Asset Provenance Registry - Contract ABI Encoding

This module provides the subset of the contract ABI needed by the registry:
Keccak-256 hashing, EIP-55 address checksums, function selectors, event topics,
and head/tail encoding and decoding of static and dynamic argument types.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Tuple, Union

from Crypto.Hash import keccak


WORD_SIZE = 32
ADDRESS_PATTERN = re.compile(r'^0x[a-fA-F0-9]{40}$')
ZERO_ADDRESS = "0x" + "0" * 40

# A type is either an elementary type name or a tuple of types.
ABIType = Union[str, tuple]


class ABIError(Exception):
    """Raised when a value cannot be encoded or decoded."""
    pass


def keccak256(data: bytes) -> bytes:
    """Keccak-256 digest (the pre-standard SHA-3 variant used by the ledger)."""
    return keccak.new(digest_bits=256, data=data).digest()


def is_address(value: Any) -> bool:
    """Check that a value is a 0x-prefixed 20-byte hex address."""
    return isinstance(value, str) and bool(ADDRESS_PATTERN.match(value))


def to_checksum_address(address: str) -> str:
    """Return the EIP-55 mixed-case form of an address."""
    if not is_address(address):
        raise ABIError(f"Invalid address: {address}")

    lower = address[2:].lower()
    hashed = keccak256(lower.encode('ascii')).hex()
    return "0x" + "".join(
        char.upper() if char.isalpha() and int(hashed[i], 16) >= 8 else char
        for i, char in enumerate(lower)
    )


def same_address(left: str, right: str) -> bool:
    """Case-insensitive address comparison."""
    if not left or not right:
        return False
    return left.lower() == right.lower()


def hex_to_bytes(value: Union[str, bytes]) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if value.startswith(('0x', '0X')):
        value = value[2:]
    if len(value) % 2:
        value = '0' + value
    try:
        return bytes.fromhex(value)
    except ValueError as e:
        raise ABIError(f"Invalid hex data: {e}")


def bytes_to_hex(data: bytes) -> str:
    return "0x" + data.hex()


def hex_to_int(value: Union[str, int, None]) -> int:
    """Parse a JSON-RPC quantity."""
    if value is None:
        raise ABIError("Missing quantity")
    if isinstance(value, int):
        return value
    if value in ('0x', '0X', ''):
        return 0
    try:
        return int(value, 16)
    except ValueError:
        raise ABIError(f"Invalid quantity: {value}")


def int_to_hex(value: int) -> str:
    """Format an integer as a JSON-RPC quantity."""
    return hex(int(value))


def address_topic(address: str) -> str:
    """Left-pad an address to a 32-byte log topic."""
    if not is_address(address):
        raise ABIError(f"Invalid address: {address}")
    return "0x" + "0" * 24 + address[2:].lower()


def uint_topic(value: int) -> str:
    return "0x" + int(value).to_bytes(WORD_SIZE, 'big').hex()


def canonical_type(typ: ABIType) -> str:
    if isinstance(typ, tuple):
        return "(" + ",".join(canonical_type(t) for t in typ) + ")"
    return typ


def signature_of(name: str, types: Sequence[ABIType]) -> str:
    return f"{name}({','.join(canonical_type(t) for t in types)})"


def selector_of(signature: str) -> bytes:
    return keccak256(signature.encode('ascii'))[:4]


def topic_of(signature: str) -> str:
    return bytes_to_hex(keccak256(signature.encode('ascii')))


def _is_dynamic(typ: ABIType) -> bool:
    if isinstance(typ, tuple):
        return any(_is_dynamic(t) for t in typ)
    return typ in ('string', 'bytes')


def _head_size(typ: ABIType) -> int:
    if isinstance(typ, tuple) and not _is_dynamic(typ):
        return sum(_head_size(t) for t in typ)
    return WORD_SIZE


def _as_bytes(value: Union[str, bytes]) -> bytes:
    if isinstance(value, str):
        return hex_to_bytes(value)
    return bytes(value)


def _encode_value(typ: ABIType, value: Any) -> bytes:
    if isinstance(typ, tuple):
        return encode_abi(typ, value)

    if typ in ('string', 'bytes'):
        raw = value.encode('utf-8') if typ == 'string' else _as_bytes(value)
        padded = (len(raw) + WORD_SIZE - 1) // WORD_SIZE * WORD_SIZE
        return len(raw).to_bytes(WORD_SIZE, 'big') + raw.ljust(padded, b'\x00')

    if typ == 'address':
        if not is_address(value):
            raise ABIError(f"Invalid address: {value}")
        return hex_to_bytes(value).rjust(WORD_SIZE, b'\x00')

    if typ == 'bool':
        return (1 if value else 0).to_bytes(WORD_SIZE, 'big')

    if typ.startswith('uint'):
        number = int(value)
        if number < 0 or number >= 2 ** 256:
            raise ABIError(f"Value out of range for {typ}: {value}")
        return number.to_bytes(WORD_SIZE, 'big')

    if typ.startswith('int'):
        return int(value).to_bytes(WORD_SIZE, 'big', signed=True)

    if typ.startswith('bytes'):
        size = int(typ[5:])
        raw = _as_bytes(value)
        if len(raw) > size:
            raise ABIError(f"{typ} value is {len(raw)} bytes")
        return raw.ljust(WORD_SIZE, b'\x00')

    raise ABIError(f"Unsupported type: {typ}")


def encode_abi(types: Sequence[ABIType], values: Sequence[Any]) -> bytes:
    """
    Encode values with the standard head/tail layout.

    Dynamic values are written after the heads; each head holds the byte
    offset of its tail relative to the start of this encoding.
    """
    if len(types) != len(values):
        raise ABIError(f"Expected {len(types)} values, got {len(values)}")

    head_length = sum(WORD_SIZE if _is_dynamic(t) else _head_size(t) for t in types)
    heads = []
    tails = []
    tail_offset = head_length

    for typ, value in zip(types, values):
        encoded = _encode_value(typ, value)
        if _is_dynamic(typ):
            heads.append(tail_offset.to_bytes(WORD_SIZE, 'big'))
            tails.append(encoded)
            tail_offset += len(encoded)
        else:
            heads.append(encoded)

    return b''.join(heads) + b''.join(tails)


def _read_word(data: bytes, offset: int) -> bytes:
    if offset < 0 or offset + WORD_SIZE > len(data):
        raise ABIError(f"Data too short: need {offset + WORD_SIZE} bytes, have {len(data)}")
    return data[offset:offset + WORD_SIZE]


def _decode_value(typ: ABIType, data: bytes, offset: int) -> Any:
    if isinstance(typ, tuple):
        return _decode_tuple(typ, data, offset)

    if typ in ('string', 'bytes'):
        length = int.from_bytes(_read_word(data, offset), 'big')
        start = offset + WORD_SIZE
        if start + length > len(data):
            raise ABIError(f"{typ} length {length} exceeds data")
        raw = data[start:start + length]
        return raw.decode('utf-8', errors='replace') if typ == 'string' else raw

    word = _read_word(data, offset)
    if typ == 'address':
        return to_checksum_address(bytes_to_hex(word[12:]))
    if typ == 'bool':
        return int.from_bytes(word, 'big') != 0
    if typ.startswith('uint'):
        return int.from_bytes(word, 'big')
    if typ.startswith('int'):
        return int.from_bytes(word, 'big', signed=True)
    if typ.startswith('bytes'):
        return bytes_to_hex(word[:int(typ[5:])])

    raise ABIError(f"Unsupported type: {typ}")


def _decode_tuple(types: Sequence[ABIType], data: bytes, base: int) -> tuple:
    values = []
    position = base
    for typ in types:
        if _is_dynamic(typ):
            pointer = int.from_bytes(_read_word(data, position), 'big')
            values.append(_decode_value(typ, data, base + pointer))
            position += WORD_SIZE
        else:
            values.append(_decode_value(typ, data, position))
            position += _head_size(typ)
    return tuple(values)


def decode_abi(types: Sequence[ABIType], data: Union[str, bytes]) -> tuple:
    """Decode an encoded value sequence. Addresses come back checksummed."""
    return _decode_tuple(tuple(types), hex_to_bytes(data), 0)


@dataclass(frozen=True)
class ContractFunction:
    """A callable contract function with its input and output types."""
    name: str
    inputs: Tuple[ABIType, ...] = ()
    outputs: Tuple[ABIType, ...] = ()

    @property
    def signature(self) -> str:
        return signature_of(self.name, self.inputs)

    @property
    def selector(self) -> bytes:
        return selector_of(self.signature)

    def encode_call(self, *args: Any) -> str:
        """Build hex calldata for this function."""
        return bytes_to_hex(self.selector + encode_abi(self.inputs, args))

    def decode_output(self, data: Union[str, bytes]) -> Any:
        """Decode return data; single outputs are unwrapped."""
        raw = hex_to_bytes(data)
        if self.outputs and not raw:
            raise ABIError(f"{self.name} returned no data")
        values = decode_abi(self.outputs, raw)
        return values[0] if len(values) == 1 else values


@dataclass(frozen=True)
class EventParam:
    name: str
    type: str
    indexed: bool = False


@dataclass(frozen=True)
class ContractEvent:
    """An event definition able to build filter topics and decode logs."""
    name: str
    params: Tuple[EventParam, ...]

    @property
    def signature(self) -> str:
        return signature_of(self.name, [p.type for p in self.params])

    @property
    def topic(self) -> str:
        return topic_of(self.signature)

    def matches(self, topics: List[str]) -> bool:
        return bool(topics) and topics[0].lower() == self.topic

    def decode_log(self, topics: List[str], data: Union[str, bytes]) -> Dict[str, Any]:
        """
        Decode a log emitted by this event.

        Args:
            topics: Log topics, the first being the event topic
            data: ABI-encoded non-indexed arguments

        Returns:
            Mapping of parameter name to decoded value
        """
        if not self.matches(topics):
            raise ABIError(f"Log is not a {self.name} event")

        indexed = [p for p in self.params if p.indexed]
        if len(topics) - 1 != len(indexed):
            raise ABIError(
                f"{self.name} expects {len(indexed)} indexed topics, got {len(topics) - 1}"
            )

        values = {}
        for param, topic in zip(indexed, topics[1:]):
            values[param.name] = _decode_value(param.type, hex_to_bytes(topic), 0)

        non_indexed = [p for p in self.params if not p.indexed]
        decoded = decode_abi([p.type for p in non_indexed], data)
        for param, value in zip(non_indexed, decoded):
            values[param.name] = value

        return values
