"""Firestore record store for orders and prior authorizations.

Create, update, read, list and subscribe. Subscriptions push the full
current result set on every change; there is no delta stream and no
conflict resolution against local edits.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any, Callable, TypeVar

import firebase_admin
from firebase_admin import credentials, firestore
from google.cloud.firestore_v1 import FieldFilter

from authdesk.config import Settings
from authdesk.models import Order, OrderStatus, PriorAuthorization, Record, document_fields

logger = logging.getLogger(__name__)

ORDERS = "orders"
PRIOR_AUTHORIZATIONS = "prior_authorizations"

R = TypeVar("R", bound=Record)

_db = None
_settings: Settings | None = None


class RecordNotFoundError(LookupError):
    pass


def configure(settings: Settings) -> None:
    """Remember the settings used to initialise Firebase on first access."""
    global _settings
    _settings = settings


def set_client(db: Any) -> None:
    """Install an already-built Firestore client (or None to reset)."""
    global _db
    _db = db


def _get_db():
    """Lazy-initialize Firebase Admin SDK and return Firestore client.

    Uses a key file when one exists locally, otherwise Application Default
    Credentials.
    """
    global _db
    if _db is not None:
        return _db

    settings = _settings or Settings.from_env()
    options = {"projectId": settings.firebase_project_id} if settings.firebase_project_id else None
    if not firebase_admin._apps:
        key_path = settings.firebase_credentials_path
        if key_path and os.path.exists(key_path):
            cred = credentials.Certificate(key_path)
            firebase_admin.initialize_app(cred, options)
        else:
            firebase_admin.initialize_app(options=options)

    _db = firestore.client()
    return _db


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _query(collection: str, field: str | None = None, value: Any = None):
    query = _get_db().collection(collection)
    if field and value is not None:
        query = query.where(filter=FieldFilter(field, "==", value))
    return query


def _newest_first(records: list[R]) -> list[R]:
    oldest = datetime.min.replace(tzinfo=timezone.utc)
    return sorted(records, key=lambda r: r.created_at or oldest, reverse=True)


def _create(collection: str, record: R) -> R:
    data = record.to_document()
    now = _now_utc()
    data["createdAt"] = now
    data["updatedAt"] = now
    _, doc_ref = _get_db().collection(collection).add(data)
    logger.info("Created %s/%s", collection, doc_ref.id)
    return type(record).from_document(doc_ref.id, data)


def _get(collection: str, model_cls: type[R], record_id: str) -> R | None:
    doc = _get_db().collection(collection).document(record_id).get()
    if not doc.exists:
        return None
    return model_cls.from_document(doc.id, doc.to_dict())


def _update(collection: str, model_cls: type[R], record_id: str, changes: dict[str, Any]) -> R:
    ref = _get_db().collection(collection).document(record_id)
    current = ref.get()
    if not current.exists:
        raise RecordNotFoundError(f"{model_cls.__name__} {record_id} not found")
    data = document_fields(model_cls, changes)
    data["updatedAt"] = _now_utc()
    # The merged document must still read back as a record before it is written.
    model_cls.from_document(record_id, {**current.to_dict(), **data})
    ref.update(data)
    updated = _get(collection, model_cls, record_id)
    if updated is None:
        raise RecordNotFoundError(f"{model_cls.__name__} {record_id} not found")
    return updated


def _read_all(collection: str, model_cls: type[R], docs) -> list[R]:
    records = []
    for doc in docs:
        try:
            records.append(model_cls.from_document(doc.id, doc.to_dict()))
        except ValueError:
            logger.exception("Skipping unreadable %s/%s", collection, doc.id)
    return _newest_first(records)


def _list(collection: str, model_cls: type[R], field: str | None, value: Any) -> list[R]:
    return _read_all(collection, model_cls, _query(collection, field, value).get())


class Subscription:
    def __init__(self, watch: Any):
        self._watch = watch

    def unsubscribe(self) -> None:
        self._watch.unsubscribe()


def _subscribe(
    collection: str,
    model_cls: type[R],
    callback: Callable[[list[R]], None],
    field: str | None,
    value: Any,
) -> Subscription:
    def on_snapshot(docs, changes, read_time):
        callback(_read_all(collection, model_cls, docs))

    return Subscription(_query(collection, field, value).on_snapshot(on_snapshot))


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

def create_order(order: Order) -> Order:
    """Store a new order; stored orders always start PENDING."""
    return _create(ORDERS, order.model_copy(update={"status": OrderStatus.PENDING}))


def get_order(order_id: str) -> Order | None:
    return _get(ORDERS, Order, order_id)


def update_order(order_id: str, changes: dict[str, Any]) -> Order:
    return _update(ORDERS, Order, order_id, changes)


def update_order_status(order_id: str, status: OrderStatus | str) -> Order:
    return update_order(order_id, {"status": status})


def list_orders(customer_id: str | None = None) -> list[Order]:
    return _list(ORDERS, Order, "customerId", customer_id)


def subscribe_orders(callback: Callable[[list[Order]], None], customer_id: str | None = None) -> Subscription:
    return _subscribe(ORDERS, Order, callback, "customerId", customer_id)


# ---------------------------------------------------------------------------
# Prior authorizations
# ---------------------------------------------------------------------------

def create_prior_authorization(auth: PriorAuthorization) -> PriorAuthorization:
    return _create(PRIOR_AUTHORIZATIONS, auth)


def get_prior_authorization(auth_id: str) -> PriorAuthorization | None:
    return _get(PRIOR_AUTHORIZATIONS, PriorAuthorization, auth_id)


def update_prior_authorization(auth_id: str, changes: dict[str, Any]) -> PriorAuthorization:
    return _update(PRIOR_AUTHORIZATIONS, PriorAuthorization, auth_id, changes)


def list_prior_authorizations(employee_id: str | None = None) -> list[PriorAuthorization]:
    return _list(PRIOR_AUTHORIZATIONS, PriorAuthorization, "employeeId", employee_id)


def subscribe_prior_authorizations(
    callback: Callable[[list[PriorAuthorization]], None],
    employee_id: str | None = None,
) -> Subscription:
    return _subscribe(PRIOR_AUTHORIZATIONS, PriorAuthorization, callback, "employeeId", employee_id)
