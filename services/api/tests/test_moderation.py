"""
Tests for the moderation worklist.

Run with: pytest tests/test_moderation.py -v
"""
import pytest

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from adapters.json import JsonAdapter
from core.errors import NotFoundError, ValidationFailure
from core.identity import Actor
from core.moderation import ModerationQueryService


def _v(v, status):
    return {"v": v, "status": status, "file_url": f"http://files/{v}.pdf", "title": f"v{v}"}


@pytest.fixture
def populated(make_document):
    """Three documents with mixed version states; returns their ids oldest first."""
    a = make_document(title="Alpha", version=[_v(1, "approved"), _v(2, "pending")], current_version=2)
    b = make_document(title="Beta", version=[_v(1, "rejected"), _v(2, "approved"), _v(3, "pending")], current_version=2)
    c = make_document(title="Gamma", attach_file="http://files/legacy.pdf")
    return a, b, c


class TestFetchWorklist:
    @pytest.mark.parametrize("status_filter", ["pending", "approved", "rejected"])
    def test_filter_correctness(self, moderation, populated, status_filter):
        """Every item matches the filter, highest v first."""
        worklist = moderation.fetch_worklist(status_filter)
        assert worklist.items
        assert all(item.version.status == status_filter for item in worklist.items)
        numbers = [item.version.v for item in worklist.items]
        assert numbers == sorted(numbers, reverse=True)

    def test_all_returns_everything(self, moderation, populated):
        worklist = moderation.fetch_worklist("all")
        # 2 + 3 + 1 seeded legacy version
        assert len(worklist.items) == 6
        numbers = [item.version.v for item in worklist.items]
        assert numbers == sorted(numbers, reverse=True)
        assert worklist.errors == []

    def test_ties_list_newer_document_first(self, moderation, populated):
        a, b, c = populated
        v2_docs = [item.document_id for item in moderation.fetch_worklist("all").items if item.version.v == 2]
        assert v2_docs == [b, a]

    def test_item_context(self, moderation, populated):
        a, b, _ = populated
        items = [i for i in moderation.fetch_worklist("all").items if i.document_id == b]
        assert {i.document_title for i in items} == {"Beta"}
        assert {i.owner_id for i in items} == {"owner-1"}
        assert [i.version.v for i in items if i.is_current] == [2]

    def test_legacy_document_is_seeded(self, moderation, populated, storage):
        _, _, c = populated
        items = [i for i in moderation.fetch_worklist("pending").items if i.document_id == c]
        assert len(items) == 1
        assert items[0].version.file_url == "http://files/legacy.pdf"
        assert storage.get_document(c)["version"]  # persisted

    def test_legacy_payload_without_file_matches_fetched_versions(self, moderation, engine, make_document):
        doc_id = make_document(version={"note": "old"}, attach_file="")
        listed = [i.version.v for i in moderation.fetch_worklist("all").items if i.document_id == doc_id]
        assert listed == [v.v for v in engine.fetch_versions(doc_id)] == [1]

    def test_document_created_without_file_is_listed(self, moderation, repository):
        owner = Actor(user_id="owner-1", email="owner@x.com")
        doc = repository.create_document({"title": "Plan"}, actor=owner)
        items = [i for i in moderation.fetch_worklist("pending").items if i.document_id == doc.id]
        assert [(i.version.v, i.is_current) for i in items] == [(1, True)]

    def test_invalid_filter(self, moderation):
        with pytest.raises(ValidationFailure):
            moderation.fetch_worklist("archived")

    def test_empty_store(self, moderation):
        worklist = moderation.fetch_worklist("all")
        assert worklist.items == []
        assert worklist.errors == []


class TestWorklistFailures:
    """One bad document never hides the rest."""

    def test_bad_row_recorded(self, tmp_path, engine):
        class OneBadRow(JsonAdapter):
            def list_documents(self, user_id=None, status=None):
                rows = super().list_documents(user_id, status)
                return rows + [{"id": "not-a-number", "title": "broken"}]

        store = OneBadRow(str(tmp_path / "bad"))
        store.create_document({"user_id": "u", "title": "Fine", "version": [_v(1, "pending")], "current_version": 1})
        worklist = ModerationQueryService(store, engine).fetch_worklist("all")
        assert len(worklist.items) == 1
        assert len(worklist.errors) == 1
        assert "not-a-number" in worklist.errors[0]

    def test_global_load_failure(self, tmp_path, engine):
        class Down(JsonAdapter):
            def list_documents(self, user_id=None, status=None):
                raise RuntimeError("connection reset")

        worklist = ModerationQueryService(Down(str(tmp_path / "down")), engine).fetch_worklist("all")
        assert worklist.items == []
        assert "connection reset" in worklist.errors[0]


class TestModerationActions:
    def test_approve_returns_refreshed_worklist(self, moderation, populated):
        a, _, _ = populated
        worklist = moderation.approve_version(a, 2, "pending")
        assert all(i.version.status == "pending" for i in worklist.items)
        assert a not in {i.document_id for i in worklist.items if i.version.v == 2}

    def test_reject_returns_refreshed_worklist(self, moderation, populated, engine):
        _, b, _ = populated
        worklist = moderation.reject_version(b, 2, "rejected")
        assert (b, 2) in {(i.document_id, i.version.v) for i in worklist.items}
        # no approved version left on b; v3 is pending
        assert engine.load_document(b).status == "pending"

    def test_mutation_errors_propagate(self, moderation, populated):
        a, _, _ = populated
        with pytest.raises(NotFoundError):
            moderation.approve_version(a, 99)
