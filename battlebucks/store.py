# battlebucks/store.py - Document store backends.
#
# Every read and write in the app goes through one of these two classes:
#   FirestoreStore - production, backed by firebase_admin.firestore
#   InMemoryStore  - local development and tests, same optimistic transaction rules
#
# Documents are plain dicts. Query results carry the document id under 'id',
# the same way the routes have always returned them to the web client.

import copy
import itertools
import threading
import uuid
from datetime import datetime, timezone

from firebase_admin import firestore
from google.api_core.exceptions import GoogleAPICallError

from .errors import TransactionAborted


class _ServerTimestamp:
    def __repr__(self):
        return 'SERVER_TIMESTAMP'


# Field value replaced by the commit time of the write.
SERVER_TIMESTAMP = _ServerTimestamp()


class Increment:
    """Field value that adds `amount` to the stored number at commit time."""

    def __init__(self, amount):
        self.amount = amount

    def __eq__(self, other):
        return isinstance(other, Increment) and other.amount == self.amount

    def __repr__(self):
        return f"Increment({self.amount})"


_OPERATORS = {
    '==': lambda a, b: a == b,
    '!=': lambda a, b: a != b,
    '<': lambda a, b: a is not None and a < b,
    '<=': lambda a, b: a is not None and a <= b,
    '>': lambda a, b: a is not None and a > b,
    '>=': lambda a, b: a is not None and a >= b,
    'in': lambda a, b: a in b,
}


# =====================================================================
# FIRESTORE BACKEND
# =====================================================================

def _to_firestore_value(value):
    if value is SERVER_TIMESTAMP:
        return firestore.SERVER_TIMESTAMP
    if isinstance(value, Increment):
        return firestore.Increment(value.amount)
    return value


def _to_firestore_fields(fields):
    return {key: _to_firestore_value(value) for key, value in fields.items()}


class _FirestoreTransaction:
    def __init__(self, client, transaction):
        self._client = client
        self._transaction = transaction

    def get(self, collection, doc_id):
        doc_ref = self._client.collection(collection).document(doc_id)
        snapshot = doc_ref.get(transaction=self._transaction)
        return snapshot.to_dict() if snapshot.exists else None

    def update(self, collection, doc_id, fields):
        doc_ref = self._client.collection(collection).document(doc_id)
        self._transaction.update(doc_ref, _to_firestore_fields(fields))

    def set(self, collection, doc_id, data):
        doc_ref = self._client.collection(collection).document(doc_id)
        self._transaction.set(doc_ref, _to_firestore_fields(data))


class _FunctionFailed(Exception):
    """Carries an exception raised by the transaction function past firestore's own error handling."""

    def __init__(self, error):
        super().__init__(error)
        self.error = error


class FirestoreStore:
    def __init__(self, client, max_attempts=5):
        self.client = client
        self.max_attempts = max_attempts

    def run_transaction(self, fn):
        """
        Runs `fn(txn)` inside a Firestore transaction.

        Firestore re-runs the whole function when a document read inside it
        changes before commit, up to `max_attempts` times. Errors raised by
        `fn` abort the transaction without writing anything and reach the
        caller unchanged, except failed reads which become TransactionAborted.
        """
        @firestore.transactional
        def in_transaction(transaction):
            try:
                return fn(_FirestoreTransaction(self.client, transaction))
            except Exception as e:
                raise _FunctionFailed(e) from e

        try:
            return in_transaction(self.client.transaction(max_attempts=self.max_attempts))
        except _FunctionFailed as wrapped:
            error = wrapped.error
            if isinstance(error, GoogleAPICallError):
                raise TransactionAborted(error.message or str(error)) from error
            raise error from None
        except GoogleAPICallError as e:
            raise TransactionAborted(e.message or str(e))
        except ValueError as e:
            # firestore reports exhausted commit retries as a ValueError
            raise TransactionAborted(str(e))

    def get(self, collection, doc_id):
        doc = self.client.collection(collection).document(doc_id).get()
        return doc.to_dict() if doc.exists else None

    def add(self, collection, data):
        # .add() returns tuple (timestamp, DocumentReference)
        _, doc_ref = self.client.collection(collection).add(_to_firestore_fields(data))
        return doc_ref.id

    def set(self, collection, doc_id, data, merge=False):
        self.client.collection(collection).document(doc_id).set(_to_firestore_fields(data), merge=merge)

    def update(self, collection, doc_id, fields):
        self.client.collection(collection).document(doc_id).update(_to_firestore_fields(fields))

    def delete(self, collection, doc_id):
        self.client.collection(collection).document(doc_id).delete()

    def query(self, collection, filters=(), order_by=None, descending=False, limit=None):
        query = self.client.collection(collection)
        for field_path, op, value in filters:
            query = query.where(field_path, op, value)
        if order_by:
            direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
            query = query.order_by(order_by, direction=direction)
        if limit:
            query = query.limit(limit)

        results = []
        for doc in query.stream():
            data = doc.to_dict()
            data['id'] = doc.id
            results.append(data)
        return results


# =====================================================================
# IN-MEMORY BACKEND
# =====================================================================

class _WriteConflict(Exception):
    pass


class _MemoryTransaction:
    def __init__(self, store):
        self._store = store
        self.reads = {}
        self.writes = []

    def get(self, collection, doc_id):
        version, data = self._store._read(collection, doc_id)
        self.reads.setdefault((collection, doc_id), version)
        return data

    def update(self, collection, doc_id, fields):
        self.writes.append(('update', collection, doc_id, dict(fields)))

    def set(self, collection, doc_id, data):
        self.writes.append(('set', collection, doc_id, dict(data)))


class InMemoryStore:
    """
    Process-local document store with Firestore's transaction semantics:
    reads inside a transaction are versioned, commit fails if any of them
    changed, and the transaction function is re-run up to `max_attempts` times.
    """

    def __init__(self, max_attempts=5):
        self.max_attempts = max_attempts
        self._lock = threading.RLock()
        self._collections = {}
        self._versions = itertools.count(1)

    def _docs(self, collection):
        return self._collections.setdefault(collection, {})

    def _read(self, collection, doc_id):
        with self._lock:
            entry = self._docs(collection).get(doc_id)
            if entry is None:
                return 0, None
            version, data = entry
            return version, copy.deepcopy(data)

    def _resolve(self, current, fields, now):
        resolved = dict(current or {})
        for key, value in fields.items():
            if value is SERVER_TIMESTAMP:
                resolved[key] = now
            elif isinstance(value, Increment):
                resolved[key] = resolved.get(key, 0) + value.amount
            else:
                resolved[key] = copy.deepcopy(value)
        return resolved

    def _apply(self, kind, collection, doc_id, fields, now):
        docs = self._docs(collection)
        entry = docs.get(doc_id)
        if kind == 'update':
            if entry is None:
                raise TransactionAborted(f"No document to update: {collection}/{doc_id}")
            data = self._resolve(entry[1], fields, now)
        else:
            data = self._resolve(None, fields, now)
        docs[doc_id] = (next(self._versions), data)

    def _commit(self, txn):
        with self._lock:
            for (collection, doc_id), version in txn.reads.items():
                entry = self._docs(collection).get(doc_id)
                current = entry[0] if entry else 0
                if current != version:
                    raise _WriteConflict(f"{collection}/{doc_id}")

            # Check every write first so a failing one leaves nothing applied.
            for kind, collection, doc_id, _ in txn.writes:
                if kind == 'update' and doc_id not in self._docs(collection):
                    raise TransactionAborted(f"No document to update: {collection}/{doc_id}")

            now = datetime.now(timezone.utc)
            for kind, collection, doc_id, fields in txn.writes:
                self._apply(kind, collection, doc_id, fields, now)

    def run_transaction(self, fn):
        for _ in range(self.max_attempts):
            txn = _MemoryTransaction(self)
            result = fn(txn)
            try:
                self._commit(txn)
            except _WriteConflict:
                continue
            return result
        raise TransactionAborted(f"Failed to commit transaction in {self.max_attempts} attempts.")

    def get(self, collection, doc_id):
        return self._read(collection, doc_id)[1]

    def add(self, collection, data):
        doc_id = uuid.uuid4().hex[:20]
        self.set(collection, doc_id, data)
        return doc_id

    def set(self, collection, doc_id, data, merge=False):
        with self._lock:
            now = datetime.now(timezone.utc)
            current = self._docs(collection).get(doc_id)
            if merge and current is not None:
                self._docs(collection)[doc_id] = (next(self._versions), self._resolve(current[1], data, now))
            else:
                self._apply('set', collection, doc_id, data, now)

    def update(self, collection, doc_id, fields):
        with self._lock:
            self._apply('update', collection, doc_id, fields, datetime.now(timezone.utc))

    def delete(self, collection, doc_id):
        with self._lock:
            self._docs(collection).pop(doc_id, None)

    def query(self, collection, filters=(), order_by=None, descending=False, limit=None):
        with self._lock:
            docs = [(doc_id, copy.deepcopy(data)) for doc_id, (_, data) in self._docs(collection).items()]

        results = []
        for doc_id, data in docs:
            if all(_OPERATORS[op](data.get(field_path), value) for field_path, op, value in filters):
                data['id'] = doc_id
                results.append(data)

        if order_by:
            # Like Firestore, documents without the ordering field are left out.
            results = [data for data in results if data.get(order_by) is not None]
            results.sort(key=lambda data: data[order_by], reverse=descending)
        if limit:
            results = results[:limit]
        return results
