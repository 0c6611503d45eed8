"""
Asset Provenance Registry - Revert Decoding

Decodes revert payloads returned by the ledger into a named error with its
arguments and a human-readable translation.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from .abi import ABIError, ABIType, bytes_to_hex, decode_abi, hex_to_bytes, selector_of, signature_of


@dataclass(frozen=True)
class ErrorDefinition:
    """A custom contract error."""
    name: str
    inputs: Tuple[ABIType, ...] = ()
    meaning: str = ""
    transient: bool = False

    @property
    def signature(self) -> str:
        return signature_of(self.name, self.inputs)

    @property
    def selector(self) -> str:
        return bytes_to_hex(selector_of(self.signature))


@dataclass
class DecodedRevert:
    """Result of decoding a revert payload."""
    selector: Optional[str]
    name: str
    args: Tuple[Any, ...] = ()
    meaning: str = ""
    transient: bool = False
    raw_data: Optional[str] = None

    def describe(self) -> str:
        """Verbatim error plus translation, e.g. 'MetadataNotAccessible(ipfs://..): ...'."""
        rendered_args = ", ".join(str(a) for a in self.args)
        text = f"{self.name}({rendered_args})" if self.args else self.name
        if self.meaning:
            text += f": {self.meaning}"
        return text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selector": self.selector,
            "name": self.name,
            "args": [str(a) for a in self.args],
            "meaning": self.meaning,
            "transient": self.transient,
        }


REVERT_STRING = ErrorDefinition("Error", ('string',), "Generic revert with message")
PANIC = ErrorDefinition("Panic", ('uint256',), "Contract panic")

KNOWN_ERRORS = [
    ErrorDefinition(
        "MetadataHashMismatch", ('bytes32', 'bytes32'),
        "Metadata hash does not match the published content",
    ),
    ErrorDefinition(
        "MetadataNotAccessible", ('string',),
        "Metadata is not yet accessible through the content gateway",
        transient=True,
    ),
    ErrorDefinition(
        "InvalidSPGContract", ('address',),
        "Token contract is not a registered SPG collection",
    ),
    ErrorDefinition(
        "InvalidRecipient", ('address',),
        "Recipient address was rejected by the registration contract",
    ),
    ErrorDefinition(
        "InsufficientFunds", (),
        "Sender cannot pay for the registration",
    ),
    REVERT_STRING,
    PANIC,
]

ERRORS_BY_SELECTOR: Dict[str, ErrorDefinition] = {e.selector: e for e in KNOWN_ERRORS}

# Selectors seen in the wild whose argument layout is not known.
SIGNATURE_MEANINGS: Dict[str, Tuple[str, str]] = {
    "0x3bdad64c": (
        "TransactionFailed",
        "Contract validation error. Check metadata accessibility and hash values.",
    ),
    "0x08c379a0": ("Error", "Generic revert with message"),
    "0x4e487b71": ("Panic", "Contract panic"),
}

PANIC_CODES = {
    0x01: "assertion failed",
    0x11: "arithmetic overflow or underflow",
    0x12: "division by zero",
    0x21: "invalid enum value",
    0x31: "pop on empty array",
    0x32: "array index out of bounds",
    0x41: "out of memory",
    0x51: "call to uninitialized function",
}


def extract_revert_data(error_data: Any) -> Optional[str]:
    """
    Pull the hex revert payload out of a JSON-RPC error `data` field.

    Nodes disagree on the shape: some return the hex string directly, others
    nest it under `data` or `originalError`.
    """
    if isinstance(error_data, str):
        return error_data if error_data.startswith('0x') else None
    if isinstance(error_data, dict):
        for key in ('data', 'originalError', 'result'):
            found = extract_revert_data(error_data.get(key))
            if found:
                return found
    return None


def decode_revert(data: Optional[str], message: Optional[str] = None) -> DecodedRevert:
    """
    Decode a revert payload.

    Args:
        data: Hex revert data (selector followed by encoded arguments)
        message: Node-supplied error message, used when no data is present

    Returns:
        DecodedRevert, never raising for unknown or malformed payloads
    """
    try:
        raw = hex_to_bytes(data) if data else b''
    except ABIError:
        raw = b''

    if len(raw) < 4:
        return DecodedRevert(
            selector=None,
            name="Revert",
            meaning=message or "Execution reverted without reason",
            raw_data=data,
        )
    selector = bytes_to_hex(raw[:4])
    definition = ERRORS_BY_SELECTOR.get(selector)

    if definition is not None:
        try:
            args = decode_abi(definition.inputs, raw[4:])
        except ABIError:
            args = ()

        meaning = definition.meaning
        if definition is REVERT_STRING and args:
            meaning = str(args[0])
        elif definition is PANIC and args:
            meaning = f"Contract panic: {PANIC_CODES.get(args[0], hex(args[0]))}"

        return DecodedRevert(
            selector=selector,
            name=definition.name,
            args=args,
            meaning=meaning,
            transient=definition.transient,
            raw_data=data,
        )

    if selector in SIGNATURE_MEANINGS:
        name, meaning = SIGNATURE_MEANINGS[selector]
        return DecodedRevert(selector=selector, name=name, meaning=meaning, raw_data=data)

    return DecodedRevert(
        selector=selector,
        name="UnknownError",
        meaning=f"Unrecognized error signature {selector}",
        raw_data=data,
    )
