"""
Transaction Parsing Tests

Raw transactions, BEEF v1/v2 and Atomic BEEF envelopes, and rejection of
truncated or inconsistent input.
"""

import pytest

from helloworld.lib.errors import DecodeError
from helloworld.lib.hash import double_sha256, hash_to_hex_str
from helloworld.lib.tx import (
    ATOMIC_BEEF, BEEF_V2, Deserializer, deserialize_transaction,
)
from helloworld.lib.util import pack_le_uint32, pack_varint


class TestRawTransaction:

    def test_roundtrip_outputs(self, make_tx):
        tx = make_tx(b'\x51', b'\x52\x53')
        parsed = deserialize_transaction(tx.serialize())

        assert parsed.version == 1
        assert len(parsed.inputs) == 1
        assert [o.pk_script for o in parsed.outputs] == [b'\x51', b'\x52\x53']
        assert parsed.outputs[0].value == 1000
        assert parsed.locktime == 0

    def test_txid_is_display_order(self, make_tx):
        tx = make_tx(b'\x51')
        assert tx.txid() == hash_to_hex_str(double_sha256(tx.serialize()))

    def test_read_tx_and_hash(self, make_tx):
        raw = make_tx(b'\x51').serialize()
        tx, tx_hash = Deserializer(raw).read_tx_and_hash()
        assert tx_hash == double_sha256(raw)

    def test_truncated(self, make_tx):
        raw = make_tx(b'\x51').serialize()
        with pytest.raises(DecodeError):
            deserialize_transaction(raw[:-3])

    def test_trailing_bytes(self, make_tx):
        raw = make_tx(b'\x51').serialize()
        with pytest.raises(DecodeError):
            deserialize_transaction(raw + b'\x00')

    def test_garbage(self):
        with pytest.raises(DecodeError):
            deserialize_transaction(bytes([1, 2, 3]))

    def test_not_bytes(self):
        with pytest.raises(DecodeError):
            deserialize_transaction([1, 2, 3])

    def test_huge_varint_count(self):
        raw = pack_le_uint32(1) + b'\xff' + b'\xff' * 8
        with pytest.raises(DecodeError):
            deserialize_transaction(raw)


class TestBeef:

    def test_subject_is_last_transaction(self, make_tx, make_beef):
        parent = make_tx(b'\x51')
        child = make_tx(b'\x52', b'\x53')
        parsed = deserialize_transaction(make_beef(parent, child))
        assert parsed == child

    def test_atomic_beef(self, make_tx, make_atomic_beef):
        tx = make_tx(b'\x51')
        assert deserialize_transaction(make_atomic_beef(tx)) == tx

    def test_atomic_beef_subject_mismatch(self, make_tx, make_beef):
        beef = make_beef(make_tx(b'\x51'))
        data = pack_le_uint32(ATOMIC_BEEF) + b'\x00' * 32 + beef
        with pytest.raises(DecodeError):
            deserialize_transaction(data)

    def test_beef_with_merkle_path(self, make_tx):
        tx = make_tx(b'\x51')
        bump = (pack_varint(800000)        # block height
                + bytes([1])               # tree height
                + pack_varint(2)           # leaves at level 0
                + pack_varint(0) + bytes([2]) + b'\xaa' * 32
                + pack_varint(1) + bytes([1]))  # duplicate, no hash
        data = (pack_le_uint32(4022206465) + pack_varint(1) + bump
                + pack_varint(1) + tx.serialize() + b'\x01' + pack_varint(0))
        assert deserialize_transaction(data) == tx

    def test_beef_v2_txid_only_entries(self, make_tx):
        tx = make_tx(b'\x51')
        data = (pack_le_uint32(BEEF_V2) + pack_varint(0) + pack_varint(2)
                + b'\x02' + b'\xbb' * 32
                + b'\x00' + tx.serialize())
        assert deserialize_transaction(data) == tx

    def test_empty_beef(self):
        data = pack_le_uint32(4022206465) + pack_varint(0) + pack_varint(0)
        with pytest.raises(DecodeError):
            deserialize_transaction(data)


class TestDeserializer:

    def test_accepts_bytearray(self, make_tx):
        tx = make_tx(b'\x51')
        assert Deserializer(bytearray(tx.serialize())).read_tx() == tx

    def test_overrun_is_decode_error(self):
        with pytest.raises(DecodeError):
            Deserializer(b'\x01\x00').read_tx()
