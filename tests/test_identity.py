from __future__ import annotations

import pytest

from brokerage.engine.identity import (
    document_title,
    document_type_name,
    has_file,
    resolve_document_id,
    resolve_document_url,
    status_badge,
)
from brokerage.models import ContractDocument, FileReference


@pytest.mark.parametrize(
    "doc, expected",
    [
        ({"documentId": " d-1 ", "id": "x"}, "d-1"),
        ({"documentId": "   ", "id": " x "}, "x"),
        ({"documentId": 42, "id": "x"}, "x"),
        ({"id": ""}, None),
        ({}, None),
        (None, None),
        (ContractDocument(id="a"), "a"),
        (ContractDocument(id="a", document_id="b"), "b"),
    ],
)
def test_resolve_document_id_precedence(doc, expected):
    assert resolve_document_id(doc) == expected


def test_has_file_from_any_file_reference():
    assert has_file({"multimediaId": "m-1"})
    assert has_file({"multimedia": {"id": "m-1"}})
    assert has_file({"multimedia": {"url": "https://cdn.test/a.pdf"}})
    assert has_file({"fileUrl": "/uploads/a.pdf"})
    assert has_file(ContractDocument(multimedia=FileReference(id="m-2")))


def test_has_file_ignores_status():
    assert not has_file({"status": "UPLOADED", "uploaded": True})
    assert not has_file({"multimediaId": "  ", "url": ""})
    assert has_file({"status": "REJECTED", "multimediaId": "m-1"})


def test_resolve_document_url():
    base = "http://backend.test/"
    assert resolve_document_url({"url": "https://cdn.test/a.pdf"}, base) == "https://cdn.test/a.pdf"
    assert resolve_document_url({"fileUrl": "uploads/a.pdf"}, base) == "http://backend.test/uploads/a.pdf"
    assert resolve_document_url({"multimedia": {"url": "/b.pdf"}}, base) == "http://backend.test/b.pdf"
    assert resolve_document_url({"title": "no file"}, base) is None


def test_document_names_fall_back():
    assert document_type_name({"documentTypeName": "Deed"}) == "Deed"
    assert document_type_name({"documentType": {"name": "Lease"}}) == "Lease"
    assert document_type_name({}) == "Associated document"
    assert document_title({"title": " Signed deed "}) == "Signed deed"
    assert document_title({"documentType": {"name": "Lease"}}) == "Lease"
    assert document_title({}, 2) == "Document 3"


@pytest.mark.parametrize(
    "doc, expected",
    [
        ({"status": "RECIBIDO"}, "RECIBIDO"),
        ({"status": "REJECTED", "uploaded": True}, "REJECTED"),
        ({"status": "weird", "uploaded": True}, "UPLOADED"),
        ({"uploaded": False}, "PENDING"),
        (None, "PENDING"),
    ],
)
def test_status_badge(doc, expected):
    assert status_badge(doc) == expected
