"""Backend database abstraction."""

import bisect
import os
import threading
from contextlib import contextmanager
from functools import partial

from helloworld.lib import util


def db_class(name):
    """Returns a DB engine class."""
    for db_class in util.subclasses(Storage):
        if db_class.__name__.lower() == name.lower():
            db_class.import_module()
            return db_class
    raise RuntimeError(f'unrecognised DB engine "{name}"')


class Storage:
    """Abstract base class of the DB backend abstraction."""

    def __init__(self, name, create):
        self.is_new = not os.path.exists(name)
        self.open(name, create=self.is_new and create)

    @classmethod
    def import_module(cls):
        """Import the DB engine module."""
        raise NotImplementedError

    def open(self, name, create):
        """Open an existing database or create a new one."""
        raise NotImplementedError

    def close(self):
        """Close an existing database."""
        raise NotImplementedError

    def get(self, key):
        raise NotImplementedError

    def put(self, key, value):
        raise NotImplementedError

    def write_batch(self):
        """Return a context manager that provides `put` and `delete`.

        Changes should only be committed when the context manager
        closes without an exception.
        """
        raise NotImplementedError

    def iterator(self, prefix=None, start=None, stop=None, reverse=False,
                 include_value=True):
        """Return an iterator that yields (key, value) pairs from the
        database sorted by key.

        Either `prefix` or a half-open [`start`, `stop`) range may be
        given, not both. If `reverse` is True the items are returned in
        reverse order. With `include_value` False only keys are yielded.
        """
        raise NotImplementedError


class LevelDB(Storage):
    """LevelDB database engine."""

    @classmethod
    def import_module(cls):
        import plyvel
        cls.module = plyvel

    def open(self, name, create):
        self.db = self.module.DB(name, create_if_missing=create,
                                 max_open_files=128, compression=None)
        self.close = self.db.close
        self.get = self.db.get
        self.put = self.db.put
        self.iterator = self.db.iterator
        self.write_batch = partial(self.db.write_batch, transaction=True,
                                   sync=True)


class Memory(Storage):
    """Ordered in-process map, for tests and throwaway deployments.

    Nothing touches the filesystem; `name` only labels the instance.
    """

    @classmethod
    def import_module(cls):
        pass

    def __init__(self, name, create=True):
        self.is_new = True
        self.open(name, create)

    def open(self, name, create):
        self.name = name
        self._data = {}
        self._keys = []
        self._lock = threading.RLock()

    def close(self):
        with self._lock:
            self._data.clear()
            self._keys.clear()

    def get(self, key):
        with self._lock:
            return self._data.get(key)

    def put(self, key, value):
        with self._lock:
            self._put(key, value)

    def _put(self, key, value):
        if key not in self._data:
            bisect.insort(self._keys, key)
        self._data[key] = value

    def _delete(self, key):
        if self._data.pop(key, None) is not None:
            del self._keys[bisect.bisect_left(self._keys, key)]

    @contextmanager
    def write_batch(self):
        batch = _MemoryBatch()
        yield batch
        with self._lock:
            for op, key, value in batch.ops:
                if op == 'put':
                    self._put(key, value)
                else:
                    self._delete(key)

    def iterator(self, prefix=None, start=None, stop=None, reverse=False,
                 include_value=True):
        if prefix is not None and (start is not None or stop is not None):
            raise TypeError('prefix cannot be combined with start or stop')
        with self._lock:
            if prefix is not None:
                lo = bisect.bisect_left(self._keys, prefix)
                hi = lo
                while hi < len(self._keys) and self._keys[hi].startswith(prefix):
                    hi += 1
            else:
                lo = 0 if start is None else bisect.bisect_left(self._keys, start)
                hi = (len(self._keys) if stop is None
                      else bisect.bisect_left(self._keys, stop))
            keys = self._keys[lo:hi]
            if reverse:
                keys.reverse()
            items = [(key, self._data[key]) for key in keys]

        if include_value:
            return iter(items)
        return iter([key for key, _value in items])


class _MemoryBatch:

    def __init__(self):
        self.ops = []

    def put(self, key, value):
        self.ops.append(('put', key, value))

    def delete(self, key):
        self.ops.append(('delete', key, None))
