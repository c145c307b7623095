"""
Pytest configuration for HelloWorld overlay tests.

Puts the project root on sys.path and provides builders for signed
PushDrop scripts and transactions carrying them.
"""

import os
import sys

import pytest

# Add the project root directory to Python path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from cryptography.hazmat.primitives import hashes, serialization  # noqa: E402
from cryptography.hazmat.primitives.asymmetric import ec  # noqa: E402

from helloworld.lib import pushdrop  # noqa: E402
from helloworld.lib.hash import double_sha256  # noqa: E402
from helloworld.lib.tx import ATOMIC_BEEF, BEEF_V1, Tx, TxInput, TxOutput  # noqa: E402
from helloworld.lib.util import pack_le_uint32, pack_varint  # noqa: E402


class Signer:
    """A throwaway secp256k1 key that signs PushDrop fields."""

    def __init__(self):
        self.private_key = ec.generate_private_key(ec.SECP256K1())
        self.public_key = self.private_key.public_key().public_bytes(
            serialization.Encoding.X962, serialization.PublicFormat.CompressedPoint)

    def sign(self, data: bytes) -> bytes:
        return self.private_key.sign(data, ec.ECDSA(hashes.SHA256()))

    def token_script(self, *fields, lock_position=pushdrop.LockPosition.BEFORE,
                     signature=None):
        """Build a PushDrop script whose signature covers all fields."""
        fields = [f.encode() if isinstance(f, str) else f for f in fields]
        if signature is None:
            signature = self.sign(b''.join(fields))
        return pushdrop.encode(fields, self.public_key, signature, lock_position)


def build_tx(*scripts, value=1000) -> Tx:
    """Build a one-input transaction with one output per script."""
    inputs = [TxInput(b'\x11' * 32, 0, b'\x00', 0xffffffff)]
    outputs = [TxOutput(value, script) for script in scripts]
    return Tx(1, inputs, outputs, 0)


def to_beef(*txs) -> bytes:
    """Wrap transactions in a BEEF v1 envelope without merkle paths."""
    body = pack_le_uint32(BEEF_V1) + pack_varint(0) + pack_varint(len(txs))
    for tx in txs:
        body += tx.serialize() + b'\x00'
    return body


def to_atomic_beef(*txs) -> bytes:
    subject = double_sha256(txs[-1].serialize())
    return pack_le_uint32(ATOMIC_BEEF) + subject + to_beef(*txs)


@pytest.fixture
def signer():
    return Signer()


@pytest.fixture
def other_signer():
    return Signer()


@pytest.fixture
def make_tx():
    return build_tx


@pytest.fixture
def make_beef():
    return to_beef


@pytest.fixture
def make_atomic_beef():
    return to_atomic_beef
