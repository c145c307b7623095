"""
Pay-to-Push-Drop (BRC-48) Token Support

This module decodes and encodes the single-owner spendable commitment
scripts that carry HelloWorld messages, and verifies the signature that
binds the pushed fields to the locking key.

Two layouts are recognised, matching the two lock positions a wallet may
choose when it builds the token:

  lock before:  <pubkey> OP_CHECKSIG <field>... <sig> OP_2DROP... [OP_DROP]
  lock after:   <field>... <sig> OP_2DROP... [OP_DROP] <pubkey> OP_CHECKSIG

The signature is always the last pushed item. Every item before it is a
field, and the drop opcodes must remove exactly the pushed items.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec

from helloworld.lib.errors import DecodeError, VerificationError
from helloworld.lib.util import pack_le_uint16, pack_le_uint32


class OpCodes:
    OP_0 = 0x00
    OP_PUSHDATA1 = 0x4c
    OP_PUSHDATA2 = 0x4d
    OP_PUSHDATA4 = 0x4e
    OP_1NEGATE = 0x4f
    OP_1 = 0x51
    OP_16 = 0x60
    OP_2DROP = 0x6d
    OP_DROP = 0x75
    OP_CHECKSIG = 0xac


class LockPosition:
    BEFORE = 'before'
    AFTER = 'after'


COMPRESSED_KEY_LEN = 33
UNCOMPRESSED_KEY_LEN = 65


@dataclass(frozen=True)
class PushDropToken:
    """A decoded PushDrop token."""
    fields: Tuple[bytes, ...]
    locking_public_key: bytes
    signature: bytes
    lock_position: str = LockPosition.BEFORE

    def signed_payload(self) -> bytes:
        """All fields concatenated; this is what the signature covers."""
        return b''.join(self.fields)


# ------------------------------------------------------------------
# Script chunk helpers
# ------------------------------------------------------------------

def _parse_script_chunks(script: bytes) -> List[Tuple[int, Optional[bytes]]]:
    """Split a script into (opcode, push data) chunks.

    Data is None for opcodes that push nothing. Truncated pushes raise
    DecodeError instead of being silently dropped.
    """
    chunks = []
    pos = 0
    length = len(script)
    while pos < length:
        op = script[pos]
        pos += 1

        if 1 <= op <= 75:
            dlen = op
        elif op == OpCodes.OP_PUSHDATA1:
            if pos + 1 > length:
                raise DecodeError('truncated OP_PUSHDATA1 length')
            dlen = script[pos]
            pos += 1
        elif op == OpCodes.OP_PUSHDATA2:
            if pos + 2 > length:
                raise DecodeError('truncated OP_PUSHDATA2 length')
            dlen = script[pos] | (script[pos + 1] << 8)
            pos += 2
        elif op == OpCodes.OP_PUSHDATA4:
            if pos + 4 > length:
                raise DecodeError('truncated OP_PUSHDATA4 length')
            dlen = (script[pos] | (script[pos + 1] << 8)
                    | (script[pos + 2] << 16) | (script[pos + 3] << 24))
            pos += 4
        else:
            chunks.append((op, None))
            continue

        end = pos + dlen
        if end > length:
            raise DecodeError(f'push of {dlen} bytes runs past end of script')
        chunks.append((op, script[pos:end]))
        pos = end

    return chunks


def _push_value(op: int, data: Optional[bytes]) -> Optional[bytes]:
    """Return the value a chunk pushes, or None if it is not a push."""
    if data is not None:
        return data
    if op == OpCodes.OP_0:
        return b'\x00'
    if op == OpCodes.OP_1NEGATE:
        return b'\x81'
    if OpCodes.OP_1 <= op <= OpCodes.OP_16:
        return bytes([op - OpCodes.OP_1 + 1])
    return None


def _is_public_key(data: Optional[bytes]) -> bool:
    if not data:
        return False
    if len(data) == COMPRESSED_KEY_LEN:
        return data[0] in (0x02, 0x03)
    if len(data) == UNCOMPRESSED_KEY_LEN:
        return data[0] == 0x04
    return False


def _split_pushes_and_drops(chunks) -> List[bytes]:
    """Return the pushed items of a push...drop sequence.

    Raises DecodeError unless the drops consume exactly the pushes.
    """
    pushes = []
    idx = 0
    while idx < len(chunks):
        value = _push_value(*chunks[idx])
        if value is None:
            break
        pushes.append(value)
        idx += 1

    dropped = 0
    for op, _data in chunks[idx:]:
        if op == OpCodes.OP_2DROP:
            dropped += 2
        elif op == OpCodes.OP_DROP:
            dropped += 1
        else:
            raise DecodeError(f'unexpected opcode 0x{op:02x} in drop sequence')

    if dropped != len(pushes):
        raise DecodeError(f'{len(pushes)} pushed items but {dropped} dropped')
    return pushes


# ------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------

def decode(script: bytes) -> PushDropToken:
    """Decode a PushDrop locking script.

    Raises DecodeError for anything that is not a well-formed token with at
    least one field and a signature.
    """
    if not isinstance(script, (bytes, bytearray)):
        raise DecodeError(f'locking script must be bytes, not {type(script).__name__}')

    chunks = _parse_script_chunks(bytes(script))
    if len(chunks) < 3:
        raise DecodeError('script too short for a PushDrop token')

    if chunks[1][0] == OpCodes.OP_CHECKSIG and _is_public_key(chunks[0][1]):
        public_key = chunks[0][1]
        body = chunks[2:]
        position = LockPosition.BEFORE
    elif chunks[-1][0] == OpCodes.OP_CHECKSIG and _is_public_key(chunks[-2][1]):
        public_key = chunks[-2][1]
        body = chunks[:-2]
        position = LockPosition.AFTER
    else:
        raise DecodeError('no <pubkey> OP_CHECKSIG lock found')

    pushes = _split_pushes_and_drops(body)
    if len(pushes) < 2:
        raise DecodeError('PushDrop token needs at least one field and a signature')

    return PushDropToken(
        fields=tuple(pushes[:-1]),
        locking_public_key=public_key,
        signature=pushes[-1],
        lock_position=position,
    )


def minimal_push(data: bytes) -> bytes:
    """Encode data as a minimally-encoded script push."""
    n = len(data)
    if n == 0 or (n == 1 and data[0] == 0):
        return bytes([OpCodes.OP_0])
    if n == 1 and 1 <= data[0] <= 16:
        return bytes([OpCodes.OP_1 + data[0] - 1])
    if n == 1 and data[0] == 0x81:
        return bytes([OpCodes.OP_1NEGATE])
    if n <= 75:
        return bytes([n]) + data
    if n <= 0xff:
        return bytes([OpCodes.OP_PUSHDATA1, n]) + data
    if n <= 0xffff:
        return bytes([OpCodes.OP_PUSHDATA2]) + pack_le_uint16(n) + data
    return bytes([OpCodes.OP_PUSHDATA4]) + pack_le_uint32(n) + data


def encode(fields, public_key: bytes, signature: bytes,
           lock_position: str = LockPosition.BEFORE) -> bytes:
    """Build a PushDrop locking script from its parts."""
    if not _is_public_key(public_key):
        raise ValueError('public_key must be a SEC-encoded secp256k1 point')
    if lock_position not in (LockPosition.BEFORE, LockPosition.AFTER):
        raise ValueError(f'unknown lock position {lock_position!r}')

    items = list(fields) + [signature]
    body = b''.join(minimal_push(item) for item in items)
    remaining = len(items)
    while remaining > 1:
        body += bytes([OpCodes.OP_2DROP])
        remaining -= 2
    if remaining:
        body += bytes([OpCodes.OP_DROP])

    lock = bytes([len(public_key)]) + public_key + bytes([OpCodes.OP_CHECKSIG])
    if lock_position == LockPosition.BEFORE:
        return lock + body
    return body + lock


def verify_signature(public_key: bytes, data: bytes, signature: bytes) -> bool:
    """Check a DER ECDSA secp256k1 signature over SHA-256(data).

    Unparseable keys and signatures verify as False.
    """
    try:
        key = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), bytes(public_key))
        key.verify(bytes(signature), bytes(data), ec.ECDSA(hashes.SHA256()))
    except (InvalidSignature, ValueError, TypeError):
        return False
    return True


def verify_token(token: PushDropToken):
    """Raise VerificationError unless the token's signature is valid."""
    if not verify_signature(token.locking_public_key, token.signed_payload(),
                            token.signature):
        raise VerificationError('signature does not verify against the locking key')
