"""Key-addressed document collections on top of a SQLAlchemy session.

Each collection is backed by one table; documents are handed out as plain
dicts of column values so callers never hold live ORM state.
"""

from __future__ import annotations

import copy
import logging
import queue
import threading
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Mapping, Optional

from sqlalchemy import Select, select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from models import Budget, Expense, Income

logger = logging.getLogger(__name__)

COLLECTIONS: dict[str, type] = {
    "expenses": Expense,
    "income": Income,
    "budgets": Budget,
}

Document = dict[str, Any]


class DocumentNotFound(ValueError):
    pass


class ConstraintViolation(ValueError):
    pass


class StoreUnavailable(RuntimeError):
    pass


class SubscriptionClosed(RuntimeError):
    pass


class ChangeFeed:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: dict[str, list[Callable[[], None]]] = {}

    def listen(self, collection: str, callback: Callable[[], None]) -> Callable[[], None]:
        with self._lock:
            self._listeners.setdefault(collection, []).append(callback)

        def unlisten() -> None:
            with self._lock:
                listeners = self._listeners.get(collection, [])
                if callback in listeners:
                    listeners.remove(callback)

        return unlisten

    def publish(self, collection: str) -> None:
        with self._lock:
            listeners = list(self._listeners.get(collection, ()))
        for callback in listeners:
            callback()

    def listener_count(self, collection: str) -> int:
        with self._lock:
            return len(self._listeners.get(collection, ()))


change_feed = ChangeFeed()

_CHANGED = object()
_CLOSED = object()


class Subscription:
    """Push stream of the full matching set, re-delivered after every change.

    The first delivery is the current state. Pending change markers are
    coalesced, since each delivery already carries the whole set.
    """

    def __init__(
        self,
        store: "DocumentStore",
        collection: str,
        filters: Mapping[str, Any],
        order_by: Optional[str],
    ) -> None:
        self._store = store
        self.collection = collection
        self.filters = dict(filters)
        self.order_by = order_by
        self.closed = False
        self._events: queue.Queue[object] = queue.Queue()
        self._events.put(_CHANGED)
        self._unlisten = store.feed.listen(collection, self._notify)

    def _notify(self) -> None:
        self._events.put(_CHANGED)

    def get(self, timeout: Optional[float] = None) -> Optional[list[Document]]:
        if self.closed:
            raise SubscriptionClosed("Subscription is closed")
        try:
            event = self._events.get(timeout=timeout)
        except queue.Empty:
            return None
        if event is _CLOSED:
            raise SubscriptionClosed("Subscription is closed")
        while True:
            try:
                pending = self._events.get_nowait()
            except queue.Empty:
                break
            if pending is _CLOSED:
                self._events.put(_CLOSED)
                break
        self._store.end_read()
        return self._store.find_many(self.collection, self.filters, self.order_by)

    def __iter__(self) -> Iterator[list[Document]]:
        while not self.closed:
            try:
                yield self.get()
            except SubscriptionClosed:
                return

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._unlisten()
        self._events.put(_CLOSED)


class DocumentStore:
    def __init__(self, session: Session, feed: Optional[ChangeFeed] = None) -> None:
        self.session = session
        self.feed = feed or change_feed
        self._depth = 0
        self._pending: set[str] = set()

    @staticmethod
    def _model(collection: str) -> type:
        try:
            return COLLECTIONS[collection]
        except KeyError as exc:
            raise ValueError(f"Unknown collection: {collection}") from exc

    @staticmethod
    def _column(model: type, field: str):
        if field not in model.__table__.columns:
            raise ValueError(f"Unknown field: {model.__tablename__}.{field}")
        return getattr(model, field)

    @staticmethod
    def _to_document(row: object) -> Document:
        return {
            column.key: copy.deepcopy(getattr(row, column.key))
            for column in row.__table__.columns
        }

    def _select(
        self,
        collection: str,
        filters: Mapping[str, Any],
        order_by: Optional[str],
    ) -> Select:
        model = self._model(collection)
        stmt = select(model).execution_options(populate_existing=True)
        for field, value in filters.items():
            column = self._column(model, field)
            stmt = stmt.where(column.is_(None) if value is None else column == value)
        if order_by:
            column = self._column(model, order_by.lstrip("-"))
            stmt = stmt.order_by(
                column.desc() if order_by.startswith("-") else column.asc()
            )
        else:
            stmt = stmt.order_by(model.created_at.asc())
        return stmt.order_by(model.id.asc())

    @contextmanager
    def _guard(self, action: str) -> Iterator[None]:
        try:
            yield
        except IntegrityError as exc:
            self._rollback()
            raise ConstraintViolation(f"{action} rejected by the store") from exc
        except DBAPIError as exc:
            self._rollback()
            logger.warning(
                f"store_unavailable: action={action} error={exc.__class__.__name__}"
            )
            raise StoreUnavailable(f"Document store unavailable during {action}") from exc

    def _rollback(self) -> None:
        self.session.rollback()
        self._pending.clear()

    def _written(self, collection: str) -> None:
        self._pending.add(collection)
        if self._depth:
            self.session.flush()
            return
        self.session.commit()
        self._publish()

    def _publish(self) -> None:
        pending, self._pending = self._pending, set()
        for collection in sorted(pending):
            self.feed.publish(collection)

    def end_read(self) -> None:
        """Close the current read transaction so the next query sees fresh commits."""
        if not self._depth:
            with self._guard("end_read"):
                self.session.commit()

    def find_one(
        self,
        collection: str,
        filters: Mapping[str, Any],
        order_by: Optional[str] = None,
    ) -> Optional[Document]:
        stmt = self._select(collection, filters, order_by).limit(1)
        with self._guard(f"find_one {collection}"):
            row = self.session.scalars(stmt).first()
        return self._to_document(row) if row is not None else None

    def find_many(
        self,
        collection: str,
        filters: Mapping[str, Any],
        order_by: Optional[str] = None,
    ) -> list[Document]:
        stmt = self._select(collection, filters, order_by)
        with self._guard(f"find_many {collection}"):
            rows = self.session.scalars(stmt).all()
        return [self._to_document(row) for row in rows]

    def get(self, collection: str, doc_id: str) -> Document:
        doc = self.find_one(collection, {"id": doc_id})
        if doc is None:
            raise DocumentNotFound(f"{collection}/{doc_id} not found")
        return doc

    def insert(self, collection: str, fields: Mapping[str, Any]) -> str:
        model = self._model(collection)
        for field in fields:
            self._column(model, field)
        with self._guard(f"insert {collection}"):
            row = model(**copy.deepcopy(dict(fields)))
            self.session.add(row)
            self.session.flush()
            doc_id = row.id
            self._written(collection)
        return doc_id

    def update_fields(
        self, collection: str, doc_id: str, fields: Mapping[str, Any]
    ) -> None:
        model = self._model(collection)
        for field in fields:
            if field == "id":
                raise ValueError("Document id cannot be changed")
            self._column(model, field)
        with self._guard(f"update {collection}"):
            row = self.session.get(model, doc_id, populate_existing=True)
            if row is None:
                raise DocumentNotFound(f"{collection}/{doc_id} not found")
            for field, value in fields.items():
                setattr(row, field, copy.deepcopy(value))
            self._written(collection)

    def delete(self, collection: str, doc_id: str) -> None:
        model = self._model(collection)
        with self._guard(f"delete {collection}"):
            row = self.session.get(model, doc_id)
            if row is None:
                raise DocumentNotFound(f"{collection}/{doc_id} not found")
            self.session.delete(row)
            self._written(collection)

    @contextmanager
    def subscribe(
        self,
        collection: str,
        filters: Mapping[str, Any],
        order_by: Optional[str] = None,
    ) -> Iterator[Subscription]:
        self._model(collection)
        subscription = Subscription(self, collection, filters, order_by)
        try:
            yield subscription
        finally:
            subscription.close()

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Group writes into one transaction; notifications go out after commit."""
        self._depth += 1
        try:
            yield
        except Exception:
            self._depth -= 1
            if not self._depth:
                self._rollback()
            raise
        self._depth -= 1
        if not self._depth:
            with self._guard("commit"):
                self.session.commit()
            self._publish()
