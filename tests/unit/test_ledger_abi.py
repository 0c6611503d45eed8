"""
Tests for contract ABI encoding, checksums, selectors and event decoding.
"""

import pytest

from ledger.abi import (
    ABIError,
    ContractFunction,
    address_topic,
    bytes_to_hex,
    decode_abi,
    encode_abi,
    is_address,
    keccak256,
    same_address,
    selector_of,
    to_checksum_address,
    uint_topic,
)
from ledger.contracts import BALANCE_OF, IP_REGISTERED, MINT_AND_REGISTER_IP, OWNER_OF, TOTAL_SUPPLY, TRANSFER


class TestHashingAndAddresses:
    """Test Keccak hashing and address handling."""

    def test_keccak_of_empty_input(self):
        assert keccak256(b"").hex() == "c5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"

    @pytest.mark.parametrize("address", [
        "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed",
        "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359",
        "0xdbF03B407c01E7cD3CBea99509d93f8DDDC8C6FB",
        "0xD1220A0cf47c7B9Be7A2E6BA89F429762e7b9aDb",
    ])
    def test_checksum_addresses(self, address):
        assert to_checksum_address(address.lower()) == address

    def test_invalid_addresses(self):
        assert not is_address("0x1234")
        assert not is_address("5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed")
        assert not is_address(None)
        with pytest.raises(ABIError):
            to_checksum_address("not-an-address")

    def test_same_address_ignores_case(self):
        assert same_address("0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed",
                            "0x5aaeb6053f3e94c9b9a09f33669435e7ef1beaed")
        assert not same_address("0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed", None)

    def test_topics_are_left_padded(self):
        topic = address_topic("0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed")
        assert topic == "0x0000000000000000000000005aaeb6053f3e94c9b9a09f33669435e7ef1beaed"
        assert uint_topic(1) == "0x" + "0" * 63 + "1"


class TestSelectors:
    """Test function selectors and event topics."""

    def test_well_known_selectors(self):
        assert selector_of("transfer(address,uint256)").hex() == "a9059cbb"
        assert BALANCE_OF.selector.hex() == "70a08231"
        assert OWNER_OF.selector.hex() == "6352211e"
        assert TOTAL_SUPPLY.selector.hex() == "18160ddd"

    def test_transfer_topic(self):
        assert TRANSFER.topic == "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"

    def test_registration_signatures(self):
        assert MINT_AND_REGISTER_IP.signature == \
            "mintAndRegisterIp(address,address,(string,bytes32,string,bytes32),bool)"
        assert IP_REGISTERED.signature == "IPRegistered(address,address,address,uint256,string)"


class TestEncoding:
    """Test head/tail encoding of static and dynamic values."""

    def test_static_values(self):
        encoded = encode_abi(('uint256', 'bool'), [5, True])
        assert len(encoded) == 64
        assert encoded[31] == 5
        assert encoded[63] == 1

    def test_string_layout(self):
        encoded = encode_abi(('string',), ["abc"])
        # offset, length, padded data
        assert int.from_bytes(encoded[:32], 'big') == 32
        assert int.from_bytes(encoded[32:64], 'big') == 3
        assert encoded[64:67] == b"abc"
        assert len(encoded) == 96

    def test_dynamic_tuple_decodes(self):
        digest = "0x" + "ab" * 32
        values = (
            "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed",
            ("https://ipfs.io/ipfs/QmA", digest, "https://ipfs.io/ipfs/QmB", digest),
            False,
        )
        types = ('address', ('string', 'bytes32', 'string', 'bytes32'), 'bool')
        assert decode_abi(types, encode_abi(types, values)) == values

    def test_calldata_starts_with_selector(self):
        calldata = OWNER_OF.encode_call(7)
        assert calldata.startswith("0x6352211e")
        assert calldata.endswith("07")

    def test_uint_out_of_range(self):
        with pytest.raises(ABIError):
            encode_abi(('uint256',), [-1])

    def test_truncated_data_raises(self):
        with pytest.raises(ABIError):
            decode_abi(('uint256', 'uint256'), b"\x00" * 40)

    def test_empty_output_raises(self):
        with pytest.raises(ABIError):
            OWNER_OF.decode_output("0x")

    def test_multiple_outputs_returned_as_tuple(self):
        function = ContractFunction("pair", outputs=('uint256', 'bool'))
        assert function.decode_output(encode_abi(('uint256', 'bool'), [3, True])) == (3, True)


class TestEventDecoding:
    """Test decoding of indexed and non-indexed event parameters."""

    def test_transfer_log(self):
        topics = [
            TRANSFER.topic,
            address_topic("0x" + "0" * 40),
            address_topic("0x" + "1" * 40),
            uint_topic(42),
        ]
        values = TRANSFER.decode_log(topics, "0x")
        assert values == {"from": "0x" + "0" * 40, "to": "0x" + "1" * 40, "tokenId": 42}

    def test_registration_log(self):
        asset_id = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
        topics = [
            IP_REGISTERED.topic,
            address_topic("0x" + "1" * 40),
            address_topic(asset_id),
            address_topic("0x" + "2" * 40),
        ]
        data = bytes_to_hex(encode_abi(('uint256', 'string'), [9, "https://ipfs.io/ipfs/QmA"]))
        values = IP_REGISTERED.decode_log(topics, data)
        assert values["ipId"] == asset_id
        assert values["tokenId"] == 9
        assert values["ipMetadataURI"] == "https://ipfs.io/ipfs/QmA"

    def test_wrong_event_rejected(self):
        with pytest.raises(ABIError):
            IP_REGISTERED.decode_log([TRANSFER.topic], "0x")

    def test_wrong_topic_count_rejected(self):
        with pytest.raises(ABIError):
            TRANSFER.decode_log([TRANSFER.topic, address_topic("0x" + "1" * 40)], "0x")
