"""
Message Record Store for the HelloWorld overlay

Persists admitted HelloWorld messages in a key/value database and answers
filtered, paginated, time-ordered queries over them.

Database layout:
- HR + varbytes(txid) + vout(le u32)           -> CBOR record
- HT + created_at(be u64 µs) + seq(be u64)     -> record key (time index)
- HS                                           -> last insertion sequence

The insertion sequence breaks ties between records created in the same
microsecond, so pagination is stable across calls.
"""

import asyncio
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable, Dict, List, Optional

import cbor2

from helloworld.lib import util
from helloworld.lib.errors import StorageError
from helloworld.lib.util import (
    datetime_to_micros, micros_to_datetime, pack_be_uint64, pack_le_uint32,
    pack_varbytes, unpack_be_uint64,
)


class HelloWorldDBKeys:
    """Database key prefixes for the message index."""
    RECORD = b'HR'     # HR + txid + vout -> record
    BY_TIME = b'HT'    # HT + created_at + seq -> record key
    SEQUENCE = b'HS'   # HS -> last sequence number


BY_TIME_END = b'HU'
MAX_U64 = (1 << 64) - 1


class SortOrder:
    ASC = 'asc'
    DESC = 'desc'


def pack_record_key(txid: str, output_index: int) -> bytes:
    """Pack a record key."""
    return HelloWorldDBKeys.RECORD + pack_varbytes(txid.encode('utf-8')) + pack_le_uint32(output_index)


def pack_time_key(created_micros: int, seq: int) -> bytes:
    """Pack a time index key."""
    return HelloWorldDBKeys.BY_TIME + pack_be_uint64(created_micros) + pack_be_uint64(seq)


def _time_bound(dt: datetime) -> int:
    return min(max(datetime_to_micros(dt), 0), MAX_U64)


@dataclass(frozen=True)
class MessageRecord:
    """An indexed HelloWorld message."""
    txid: str
    output_index: int
    message: str
    created_at: datetime
    seq: int = 0

    @property
    def key(self) -> bytes:
        return pack_record_key(self.txid, self.output_index)

    @property
    def time_key(self) -> bytes:
        return pack_time_key(datetime_to_micros(self.created_at), self.seq)

    def to_bytes(self) -> bytes:
        """Serialize the record to CBOR bytes."""
        return cbor2.dumps({
            't': self.txid,
            'o': self.output_index,
            'm': self.message,
            'c': datetime_to_micros(self.created_at),
            's': self.seq,
        })

    @classmethod
    def from_bytes(cls, data: bytes) -> 'MessageRecord':
        """Deserialize a record from CBOR bytes."""
        d = cbor2.loads(data)
        return cls(
            txid=d['t'],
            output_index=d['o'],
            message=d['m'],
            created_at=micros_to_datetime(d['c']),
            seq=d.get('s', 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the external answer shape."""
        return {
            'transactionId': self.txid,
            'outputIndex': self.output_index,
            'message': self.message,
            'createdAt': self.created_at.isoformat(),
        }


class RecordStore:
    """
    Keyed storage of HelloWorld message records.

    Blocking engine calls run in the default executor and are bounded by
    `timeout` seconds; failures and timeouts raise StorageError. Writes are
    serialized by a store-level lock and committed as atomic batches.
    """

    def __init__(self, db, timeout: float = 10.0,
                 clock: Optional[Callable[[], datetime]] = None):
        self.logger = util.class_logger(__name__, self.__class__.__name__)
        self.db = db
        self.timeout = timeout
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()

        raw = self.db.get(HelloWorldDBKeys.SEQUENCE)
        self._seq = unpack_be_uint64(raw)[0] if raw else 0

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, partial(func, *args)), self.timeout)
        except asyncio.TimeoutError:
            raise StorageError(f'storage call timed out after {self.timeout}s') from None
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f'storage failure: {e}') from e

    # ========================================================================
    # Writes
    # ========================================================================

    async def store_record(self, txid: str, output_index: int, message: str) -> MessageRecord:
        """Insert a record, replacing any existing record for the key."""
        return await self._run(self._store_record, txid, output_index, message)

    def _store_record(self, txid, output_index, message):
        key = pack_record_key(txid, output_index)
        with self._lock:
            prev = self.db.get(key)
            seq = self._seq + 1
            record = MessageRecord(txid, output_index, message, self.clock(), seq)
            with self.db.write_batch() as batch:
                if prev:
                    batch.delete(MessageRecord.from_bytes(prev).time_key)
                batch.put(key, record.to_bytes())
                batch.put(record.time_key, key)
                batch.put(HelloWorldDBKeys.SEQUENCE, pack_be_uint64(seq))
            self._seq = seq
        if prev:
            self.logger.debug(f'replaced record {txid}.{output_index}')
        return record

    async def delete_record(self, txid: str, output_index: int) -> bool:
        """Delete the record for a key. Returns False if there was none."""
        return await self._run(self._delete_record, txid, output_index)

    def _delete_record(self, txid, output_index):
        key = pack_record_key(txid, output_index)
        with self._lock:
            raw = self.db.get(key)
            if not raw:
                return False
            with self.db.write_batch() as batch:
                batch.delete(MessageRecord.from_bytes(raw).time_key)
                batch.delete(key)
        return True

    # ========================================================================
    # Queries
    # ========================================================================

    async def find_by_message(self, message: str, limit: int = 50, skip: int = 0,
                              sort_order: str = SortOrder.DESC) -> List[MessageRecord]:
        """Records whose message contains `message`, ignoring case."""
        needle = message.casefold()
        return await self._run(self._scan, limit, skip, None, None, sort_order,
                               lambda record: needle in record.message.casefold())

    async def find_all(self, limit: int = 50, skip: int = 0,
                       start_date: Optional[datetime] = None,
                       end_date: Optional[datetime] = None,
                       sort_order: str = SortOrder.DESC) -> List[MessageRecord]:
        """Records created within [start_date, end_date]; either bound optional."""
        return await self._run(self._scan, limit, skip, start_date, end_date,
                               sort_order, None)

    async def count(self) -> int:
        """Number of live records."""
        return await self._run(self._count)

    def _count(self):
        return sum(1 for _ in self.db.iterator(prefix=HelloWorldDBKeys.RECORD,
                                               include_value=False))

    def _scan(self, limit, skip, start_date, end_date, sort_order, predicate):
        if limit <= 0:
            return []

        start = HelloWorldDBKeys.BY_TIME
        stop = BY_TIME_END
        if start_date is not None:
            start = HelloWorldDBKeys.BY_TIME + pack_be_uint64(_time_bound(start_date))
        if end_date is not None:
            end = datetime_to_micros(end_date)
            if end < 0:
                return []
            if end < MAX_U64:
                stop = HelloWorldDBKeys.BY_TIME + pack_be_uint64(end + 1)
        if start >= stop:
            return []

        results = []
        matched = 0
        reverse = sort_order != SortOrder.ASC
        for time_key, record_key in self.db.iterator(start=start, stop=stop, reverse=reverse):
            raw = self.db.get(record_key)
            if not raw:
                continue
            record = MessageRecord.from_bytes(raw)
            # A concurrent replace can leave the index briefly ahead of the record
            if record.time_key != time_key:
                continue
            if predicate is not None and not predicate(record):
                continue
            matched += 1
            if matched <= skip:
                continue
            results.append(record)
            if len(results) >= limit:
                break
        return results

    def close(self):
        self.db.close()
