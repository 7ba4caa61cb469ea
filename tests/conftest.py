"""Shared fixtures: settings, an in-memory Firestore double, HTTP doubles."""

from __future__ import annotations

import copy
import json
from itertools import count
from typing import Any
from unittest.mock import MagicMock

import pytest

from authdesk import firestore_client as fdb
from authdesk.completion_client import CompletionClient
from authdesk.config import Settings
from authdesk.retrieval_client import RetrievalClient


# ---------------------------------------------------------------------------
# Firestore double
# ---------------------------------------------------------------------------

class FakeSnapshot:
    def __init__(self, doc_id: str, data: dict[str, Any] | None):
        self.id = doc_id
        self._data = data

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> dict[str, Any] | None:
        return copy.deepcopy(self._data)


class FakeDocumentRef:
    def __init__(self, collection: "FakeCollection", doc_id: str):
        self._collection = collection
        self.id = doc_id

    def get(self) -> FakeSnapshot:
        return FakeSnapshot(self.id, self._collection.docs.get(self.id))

    def update(self, data: dict[str, Any]) -> None:
        if self.id not in self._collection.docs:
            raise KeyError(self.id)
        self._collection.docs[self.id].update(copy.deepcopy(data))
        self._collection.notify()


class FakeWatch:
    def __init__(self, query: "FakeQuery", callback):
        self.query = query
        self.callback = callback
        self.active = True

    def fire(self) -> None:
        if self.active:
            self.callback(self.query.get(), [], None)

    def unsubscribe(self) -> None:
        self.active = False


class FakeQuery:
    def __init__(self, collection: "FakeCollection", filters: list[Any]):
        self._collection = collection
        self._filters = filters

    def where(self, filter):  # noqa: A002
        return FakeQuery(self._collection, self._filters + [filter])

    def _matches(self, data: dict[str, Any]) -> bool:
        return all(data.get(f.field_path) == f.value for f in self._filters)

    def get(self) -> list[FakeSnapshot]:
        return [
            FakeSnapshot(doc_id, data)
            for doc_id, data in self._collection.docs.items()
            if self._matches(data)
        ]

    def on_snapshot(self, callback) -> FakeWatch:
        watch = FakeWatch(self, callback)
        self._collection.watches.append(watch)
        watch.fire()
        return watch


class FakeCollection(FakeQuery):
    def __init__(self, name: str):
        self.name = name
        self.docs: dict[str, dict[str, Any]] = {}
        self.watches: list[FakeWatch] = []
        self._ids = count(1)
        super().__init__(self, [])

    def add(self, data: dict[str, Any]):
        doc_id = f"{self.name}-{next(self._ids)}"
        self.docs[doc_id] = copy.deepcopy(data)
        self.notify()
        return None, FakeDocumentRef(self, doc_id)

    def document(self, doc_id: str) -> FakeDocumentRef:
        return FakeDocumentRef(self, doc_id)

    def notify(self) -> None:
        for watch in list(self.watches):
            watch.fire()


class FakeFirestore:
    def __init__(self):
        self.collections: dict[str, FakeCollection] = {}

    def collection(self, name: str) -> FakeCollection:
        return self.collections.setdefault(name, FakeCollection(name))


# ---------------------------------------------------------------------------
# HTTP doubles
# ---------------------------------------------------------------------------

def http_response(payload: Any, status_code: int = 200) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    response.text = json.dumps(payload) if not isinstance(payload, str) else payload
    return response


def completion_response(content: str, status_code: int = 200) -> MagicMock:
    return http_response({"choices": [{"message": {"role": "assistant", "content": content}}]}, status_code)


def retrieval_response(texts: list[str], status_code: int = 200) -> MagicMock:
    chunks = [{"text": text, "score": 1.0 - i / 10} for i, text in enumerate(texts)]
    return http_response({"scored_chunks": chunks}, status_code)


def make_pdf(text: str) -> bytes:
    """A one-page PDF with a single line of Helvetica text."""
    stream = f"BT /F1 12 Tf 72 720 Td ({text}) Tj ET".encode("latin-1")
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] /Contents 4 0 R "
        b"/Resources << /Font << /F1 5 0 R >> >> >>",
        b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % number + body + b"\nendobj\n"
    xref_at = len(out)
    out += b"xref\n0 %d\n" % (len(objects) + 1)
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (len(objects) + 1, xref_at)
    return bytes(out)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def settings() -> Settings:
    return Settings(
        openai_api_key="sk-test",
        openai_api_base="https://completions.test/v1",
        ragie_api_key="ragie-test",
        ragie_api_base="https://retrieval.test",
        firebase_project_id="authdesk-test",
        http_timeout_seconds=5.0,
    )


@pytest.fixture
def fake_db():
    db = FakeFirestore()
    fdb.set_client(db)
    yield db
    fdb.set_client(None)


@pytest.fixture
def completion_session() -> MagicMock:
    return MagicMock()


@pytest.fixture
def retrieval_session() -> MagicMock:
    return MagicMock()


@pytest.fixture
def completion(settings, completion_session) -> CompletionClient:
    return CompletionClient(settings, session=completion_session)


@pytest.fixture
def retrieval(settings, retrieval_session) -> RetrievalClient:
    return RetrievalClient(settings, session=retrieval_session)


@pytest.fixture
def visit_note_fields() -> dict[str, Any]:
    return {
        "patient_name": "John Cena",
        "patient_dob": "04/28/1997",
        "medical_plan": "Order MRI of the Right Knee Without Contrast",
        "diagnostic_impressions": "Osteoarthritis of right knee (M17.11)",
        "icd_codes": ["M17.11"],
    }
