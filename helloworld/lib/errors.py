"""
Error taxonomy for the HelloWorld overlay.

Decode and verification failures are always recovered where they occur
(the output is simply not admitted or not indexed). Validation and storage
failures on the query path reach the caller with a readable message.
"""


class HelloWorldError(Exception):
    """Base class for all HelloWorld overlay errors."""


class DecodeError(HelloWorldError):
    """A locking script or transaction could not be decoded."""


class VerificationError(HelloWorldError):
    """A token signature did not verify against its locking key."""


class ValidationError(HelloWorldError):
    """A lookup question or query payload is structurally invalid."""


class StorageError(HelloWorldError):
    """The record store could not complete a read or write."""
