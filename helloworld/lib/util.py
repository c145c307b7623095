"""Miscellaneous helpers shared by the library and server modules."""

import inspect
import logging
import struct
import sys
from datetime import datetime, timedelta, timezone


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def class_logger(path, classname):
    """Return a hierarchical logger for a class."""
    return logging.getLogger(path).getChild(classname)


def subclasses(base_class, strict=True):
    """Return a list of subclasses of base_class in its module."""
    def select(obj):
        return (inspect.isclass(obj) and issubclass(obj, base_class) and
                (not strict or obj != base_class))

    pairs = inspect.getmembers(sys.modules[base_class.__module__], select)
    return [pair[1] for pair in pairs]


struct_le_I = struct.Struct('<I')
struct_le_i = struct.Struct('<i')
struct_le_H = struct.Struct('<H')
struct_le_Q = struct.Struct('<Q')
struct_be_Q = struct.Struct('>Q')

unpack_le_uint16_from = struct_le_H.unpack_from
unpack_le_uint32_from = struct_le_I.unpack_from
unpack_le_int32_from = struct_le_i.unpack_from
unpack_le_uint64_from = struct_le_Q.unpack_from
unpack_be_uint64 = struct_be_Q.unpack

pack_le_uint16 = struct_le_H.pack
pack_le_uint32 = struct_le_I.pack
pack_le_int32 = struct_le_i.pack
pack_le_uint64 = struct_le_Q.pack
pack_be_uint64 = struct_be_Q.pack


def pack_varint(n):
    """Encode a Bitcoin CompactSize integer."""
    if n < 253:
        return bytes([n])
    if n < 65536:
        return b'\xfd' + pack_le_uint16(n)
    if n < 4294967296:
        return b'\xfe' + pack_le_uint32(n)
    return b'\xff' + pack_le_uint64(n)


def pack_varbytes(data):
    return pack_varint(len(data)) + data


def datetime_to_micros(dt: datetime) -> int:
    """Microseconds since the Unix epoch. Naive datetimes are taken as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    delta = dt - EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds


def micros_to_datetime(micros: int) -> datetime:
    return EPOCH + timedelta(microseconds=micros)
