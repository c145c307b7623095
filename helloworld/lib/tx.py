"""
Transaction-related classes and functions.

Reads plain serialized transactions as well as the BEEF (BRC-62) and
Atomic BEEF (BRC-95) envelopes that overlay hosts submit. Merkle paths
carried by BEEF are parsed to advance the cursor but are not validated;
proof checking belongs to the chain tracker.
"""

from collections import namedtuple

from helloworld.lib.errors import DecodeError
from helloworld.lib.hash import double_sha256, hash_to_hex_str
from helloworld.lib.util import (
    pack_le_int32, pack_le_uint32, pack_le_uint64, pack_varbytes, pack_varint,
    unpack_le_int32_from, unpack_le_uint16_from, unpack_le_uint32_from,
    unpack_le_uint64_from,
)


BEEF_V1 = 4022206465      # 0100BEEF read as a little-endian uint32
BEEF_V2 = 4022206466      # 0200BEEF
ATOMIC_BEEF = 0x01010101


class Tx(namedtuple("Tx", "version inputs outputs locktime")):
    """Class representing a transaction."""

    def serialize(self):
        return b''.join((
            pack_le_int32(self.version),
            pack_varint(len(self.inputs)),
            b''.join(tx_in.serialize() for tx_in in self.inputs),
            pack_varint(len(self.outputs)),
            b''.join(tx_out.serialize() for tx_out in self.outputs),
            pack_le_uint32(self.locktime)
        ))

    def txid(self):
        """Display-order transaction id as hex."""
        return hash_to_hex_str(double_sha256(self.serialize()))


class TxInput(namedtuple("TxInput", "prev_hash prev_idx script sequence")):
    """Class representing a transaction input."""

    def __str__(self):
        script = self.script.hex()
        prev_hash = hash_to_hex_str(self.prev_hash)
        return (f"Input({prev_hash}, {self.prev_idx:d}, script={script}, "
                f"sequence={self.sequence:d})")

    def serialize(self):
        return b''.join((
            self.prev_hash,
            pack_le_uint32(self.prev_idx),
            pack_varbytes(self.script),
            pack_le_uint32(self.sequence),
        ))


class TxOutput(namedtuple("TxOutput", "value pk_script")):

    def serialize(self):
        return b''.join((
            pack_le_uint64(self.value),
            pack_varbytes(self.pk_script),
        ))


class Deserializer:
    """Deserializes transactions.

    Every read is bounds-checked; running off the end of the buffer raises
    DecodeError.
    """

    def __init__(self, binary, start=0):
        self.binary = binary
        self.binary_length = len(binary)
        self.cursor = start

    def read_tx(self):
        """Return a deserialized transaction."""
        return Tx(
            self._read_le_int32(),  # version
            self._read_inputs(),    # inputs
            self._read_outputs(),   # outputs
            self._read_le_uint32()  # locktime
        )

    def read_tx_and_hash(self):
        """Return a (deserialized TX, tx_hash) pair."""
        start = self.cursor
        tx = self.read_tx()
        return tx, double_sha256(self.binary[start:self.cursor])

    def at_end(self):
        return self.cursor == self.binary_length

    def _read_inputs(self):
        read_input = self._read_input
        return [read_input() for i in range(self._read_varint())]

    def _read_input(self):
        return TxInput(
            self._read_nbytes(32),   # prev_hash
            self._read_le_uint32(),  # prev_idx
            self._read_varbytes(),   # script
            self._read_le_uint32()   # sequence
        )

    def _read_outputs(self):
        read_output = self._read_output
        return [read_output() for i in range(self._read_varint())]

    def _read_output(self):
        return TxOutput(
            self._read_le_int64(),  # value
            self._read_varbytes(),  # pk_script
        )

    def _need(self, n):
        if self.cursor + n > self.binary_length:
            raise DecodeError(f'read of {n} bytes at offset {self.cursor} '
                              f'exceeds {self.binary_length}-byte buffer')

    def _read_byte(self):
        self._need(1)
        cursor = self.cursor
        self.cursor += 1
        return self.binary[cursor]

    def _read_nbytes(self, n):
        self._need(n)
        cursor = self.cursor
        self.cursor = end = cursor + n
        return self.binary[cursor:end]

    def _read_varbytes(self):
        return self._read_nbytes(self._read_varint())

    def _read_varint(self):
        n = self._read_byte()
        if n < 253:
            return n
        if n == 253:
            return self._read_le_uint16()
        if n == 254:
            return self._read_le_uint32()
        return self._read_le_uint64()

    def _read_le_int32(self):
        self._need(4)
        result, = unpack_le_int32_from(self.binary, self.cursor)
        self.cursor += 4
        return result

    def _read_le_int64(self):
        return self._read_le_uint64()

    def _read_le_uint16(self):
        self._need(2)
        result, = unpack_le_uint16_from(self.binary, self.cursor)
        self.cursor += 2
        return result

    def _read_le_uint32(self):
        self._need(4)
        result, = unpack_le_uint32_from(self.binary, self.cursor)
        self.cursor += 4
        return result

    def _read_le_uint64(self):
        self._need(8)
        result, = unpack_le_uint64_from(self.binary, self.cursor)
        self.cursor += 8
        return result


class BeefDeserializer(Deserializer):
    """Reads BEEF envelopes; the subject transaction is the last one."""

    def read_beef(self):
        """Return the list of transactions carried by a BEEF envelope."""
        version = self._read_le_uint32()
        if version not in (BEEF_V1, BEEF_V2):
            raise DecodeError(f'unsupported BEEF version 0x{version:08x}')

        for _ in range(self._read_varint()):
            self._skip_merkle_path()

        txs = []
        for _ in range(self._read_varint()):
            if version == BEEF_V2:
                fmt = self._read_byte()
                if fmt == 2:
                    # txid-only entry, nothing to parse
                    self._read_nbytes(32)
                    continue
                txs.append(self.read_tx())
                if fmt == 1:
                    self._read_varint()
                elif fmt != 0:
                    raise DecodeError(f'unknown BEEF v2 tx format {fmt}')
            else:
                txs.append(self.read_tx())
                if self._read_byte():
                    self._read_varint()
        return txs

    def _skip_merkle_path(self):
        self._read_varint()  # block height
        tree_height = self._read_byte()
        for _level in range(tree_height):
            for _leaf in range(self._read_varint()):
                self._read_varint()  # offset
                flags = self._read_byte()
                if not flags & 1:
                    self._read_nbytes(32)


def deserialize_transaction(binary: bytes) -> Tx:
    """Parse a raw transaction, BEEF or Atomic BEEF into the subject Tx.

    Raises DecodeError on anything malformed, including trailing bytes.
    """
    if not isinstance(binary, (bytes, bytearray)):
        raise DecodeError(f'transaction must be bytes, not {type(binary).__name__}')
    binary = bytes(binary)
    if len(binary) < 4:
        raise DecodeError('transaction too short')

    prefix, = unpack_le_uint32_from(binary, 0)
    if prefix == ATOMIC_BEEF:
        deser = BeefDeserializer(binary, 4)
        subject = deser._read_nbytes(32)
        txs = deser.read_beef()
        if not txs:
            raise DecodeError('Atomic BEEF carries no transactions')
        tx = txs[-1]
        if double_sha256(tx.serialize()) != subject:
            raise DecodeError('Atomic BEEF subject txid does not match last transaction')
    elif prefix in (BEEF_V1, BEEF_V2):
        deser = BeefDeserializer(binary)
        txs = deser.read_beef()
        if not txs:
            raise DecodeError('BEEF carries no transactions')
        tx = txs[-1]
    else:
        deser = Deserializer(binary)
        tx = deser.read_tx()

    if not deser.at_end():
        raise DecodeError(f'{deser.binary_length - deser.cursor} trailing bytes after transaction')
    return tx
