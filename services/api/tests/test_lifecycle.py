"""
Tests for the version lifecycle engine.

Run with: pytest tests/test_lifecycle.py -v
"""
import pytest

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from adapters.json import JsonAdapter
from core.errors import ConflictError, InvalidStateError, NotFoundError, UpstreamFailure, ValidationFailure
from core.identity import Actor
from core.lifecycle import (
    UploadedFile,
    VersionLifecycleEngine,
    VersionOverride,
    derive_aggregate,
    next_version_number,
)
from models import Document, Version
from models.converters import document_to_api
from models.version_history import normalize_versions


def _v(v, status, **extra):
    data = {"v": v, "status": status, "file_url": f"http://files/v{v}.pdf", "title": f"Title v{v}"}
    data.update(extra)
    return data


def _aggregate(doc):
    return (doc.status, doc.current_version, doc.attach_file, doc.title)


class TestCreateNewVersion:
    """Appending versions."""

    def test_monotonic_numbers(self, engine, make_document):
        """N creates on a fresh document yield exactly 1..N in order."""
        doc_id = make_document()
        for _ in range(5):
            engine.create_new_version(doc_id)
        versions = engine.fetch_versions(doc_id)
        assert [v.v for v in versions] == [1, 2, 3, 4, 5]
        assert engine.load_document(doc_id).current_version == 5

    def test_numbers_never_reused_after_pointer_moves_back(self, engine, make_document):
        """current_version moved back to 1 must not make the next version collide with 2."""
        doc_id = make_document(
            version=[_v(1, "approved"), _v(2, "pending")],
            current_version=1,
        )
        doc = engine.create_new_version(doc_id)
        assert doc.current_version == 3
        assert [v.v for v in engine.fetch_versions(doc_id)] == [1, 2, 3]

    def test_next_version_number_uses_highest(self):
        doc = Document(id=1, current_version=2)
        assert next_version_number(doc, [Version(1), Version(5)]) == 6
        assert next_version_number(Document(id=1), []) == 1

    def test_new_version_is_pending_and_current(self, engine, make_document):
        doc_id = make_document(version=[_v(1, "approved")], current_version=1, status="approved")
        doc = engine.create_new_version(doc_id, override=VersionOverride(title="Second draft"))
        assert doc.status == "pending"
        assert doc.current_version == 2
        assert doc.title == "Second draft"
        new = normalize_versions(doc).versions[-1]
        assert new.status == "pending"
        assert new.created_at

    def test_unspecified_fields_copied_from_current(self, engine, make_document):
        doc_id = make_document(
            version=[_v(1, "approved", contents="body", tags=["a"])],
            current_version=1,
        )
        doc = engine.create_new_version(doc_id, override=VersionOverride(notes="typo fix"))
        new = normalize_versions(doc).versions[-1]
        assert new.file_url == "http://files/v1.pdf"
        assert new.title == "Title v1"
        assert new.contents == "body"
        assert new.tags == ["a"]
        assert new.notes == "typo fix"

    def test_earlier_versions_untouched(self, engine, make_document):
        """Version content is immutable once persisted."""
        doc_id = make_document(version=[_v(1, "approved", contents="original")], current_version=1)
        engine.create_new_version(doc_id, override=VersionOverride(contents="changed"))
        first = engine.fetch_versions(doc_id)[0]
        assert first.contents == "original"
        assert first.status == "approved"

    def test_file_upload(self, engine, make_document, blobs):
        doc_id = make_document()
        doc = engine.create_new_version(doc_id, file=UploadedFile("scan.PDF", b"%PDF-1.4"))
        assert doc.attach_file.startswith("http://testserver/files/")
        assert doc.attach_file.endswith(".pdf")
        name = doc.attach_file.rsplit("/", 1)[-1]
        assert (blobs.root / name).read_bytes() == b"%PDF-1.4"

    def test_stamps_actor(self, engine, make_document):
        doc_id = make_document()
        actor = Actor(user_id="u2", email="editor@x.com")
        doc = engine.create_new_version(doc_id, actor=actor)
        assert doc.last_edited_by == "editor@x.com"
        assert normalize_versions(doc).versions[-1].created_by == "editor@x.com"

    def test_legacy_document_keeps_initial_version(self, engine, make_document):
        """A legacy file is imported as v1 before the new version is appended."""
        doc_id = make_document(attach_file="http://files/legacy.pdf", title="Legacy")
        doc = engine.create_new_version(doc_id, override=VersionOverride(title="New"))
        versions = normalize_versions(doc).versions
        assert [v.v for v in versions] == [1, 2]
        assert versions[0].file_url == "http://files/legacy.pdf"
        assert versions[1].file_url == "http://files/legacy.pdf"

    def test_missing_document(self, engine):
        with pytest.raises(NotFoundError):
            engine.create_new_version(999)

    def test_failed_write_removes_upload(self, tmp_path, blobs, make_document, storage):
        """An uploaded blob is not left behind when the record write fails."""

        class BrokenWrites(JsonAdapter):
            def update_document(self, document_id, updates, expected_rev=None):
                raise UpstreamFailure("store down")

        broken = BrokenWrites(str(tmp_path / "data"))
        engine = VersionLifecycleEngine(broken, blobs)
        doc_id = make_document()
        with pytest.raises(UpstreamFailure):
            engine.create_new_version(doc_id, file=UploadedFile("a.pdf", b"x"))
        assert list(blobs.root.iterdir()) == []


class TestDeriveAggregate:
    """The pure recompute policy."""

    def test_highest_approved_wins(self):
        doc = Document(id=1, status="pending", current_version=3, title="old")
        versions = [
            Version(1, status="approved", file_url="f1", title="one"),
            Version(2, status="approved", file_url="f2", title="two"),
            Version(3, status="pending", file_url="f3"),
        ]
        assert derive_aggregate(doc, versions) == {
            "status": "approved",
            "current_version": 2,
            "attach_file": "f2",
            "title": "two",
        }

    def test_pending_leaves_pointer(self):
        doc = Document(id=1, status="approved", current_version=1)
        versions = [Version(1, status="rejected"), Version(2, status="pending")]
        assert derive_aggregate(doc, versions) == {"status": "pending"}

    def test_all_rejected(self):
        doc = Document(id=1, status="approved", current_version=2)
        versions = [Version(1, status="rejected"), Version(2, status="rejected")]
        assert derive_aggregate(doc, versions) == {"status": "rejected"}

    def test_stale_pointer_repaired(self):
        doc = Document(id=1, status="pending", current_version=9)
        versions = [Version(1, status="pending", file_url="f1")]
        assert derive_aggregate(doc, versions) == {"current_version": 1, "attach_file": "f1"}

    def test_no_versions(self):
        assert derive_aggregate(Document(id=1), []) == {}

    def test_consistent_document_needs_nothing(self):
        doc = Document(id=1, status="approved", current_version=1, attach_file="f1", title="t")
        assert derive_aggregate(doc, [Version(1, status="approved", file_url="f1", title="t")]) == {}


class TestRecompute:
    def test_idempotent(self, engine, make_document, storage):
        """Two consecutive recomputes give identical aggregates; the second writes nothing."""
        doc_id = make_document(
            version=[_v(1, "approved"), _v(2, "approved"), _v(3, "pending")],
            current_version=3,
        )
        first = engine.recompute_document(doc_id)
        rev = storage.get_document(doc_id)["row_rev"]
        second = engine.recompute_document(doc_id)
        assert _aggregate(first) == _aggregate(second)
        assert _aggregate(first) == ("approved", 2, "http://files/v2.pdf", "Title v2")
        assert storage.get_document(doc_id)["row_rev"] == rev

    def test_all_rejected_terminal(self, engine, make_document):
        doc_id = make_document(
            version=[_v(1, "rejected"), _v(2, "rejected")],
            current_version=2,
            status="pending",
        )
        assert engine.recompute_document(doc_id).status == "rejected"

    def test_missing_document(self, engine):
        with pytest.raises(NotFoundError):
            engine.recompute_document(42)


class TestModerateVersion:
    def test_approval_promotion(self, engine, make_document):
        doc_id = make_document(
            version=[_v(1, "approved"), _v(2, "pending")],
            current_version=1,
            status="approved",
            attach_file="http://files/v1.pdf",
        )
        doc = engine.approve_version(doc_id, 2)
        assert doc.current_version == 2
        assert doc.status == "approved"
        assert doc.attach_file == "http://files/v2.pdf"
        assert doc.title == "Title v2"

    def test_approving_older_version_promotes_it(self, engine, make_document):
        """Approval always promotes, even below a newer approved version."""
        doc_id = make_document(version=[_v(1, "rejected"), _v(2, "approved")], current_version=2)
        doc = engine.approve_version(doc_id, 1)
        assert doc.current_version == 1
        assert doc.attach_file == "http://files/v1.pdf"

    def test_rejection_fallback(self, engine, make_document):
        """Rejecting the active approved version falls back to the other approved one."""
        doc_id = make_document(
            version=[_v(1, "approved"), _v(2, "approved")],
            current_version=2,
            status="approved",
            attach_file="http://files/v2.pdf",
        )
        engine.reject_version(doc_id, 2)
        doc = engine.recompute_document(doc_id)
        assert doc.current_version == 1
        assert doc.status == "approved"
        assert doc.attach_file == "http://files/v1.pdf"

    def test_rejection_recomputes_in_same_write(self, engine, make_document, storage):
        doc_id = make_document(version=[_v(1, "approved"), _v(2, "approved")], current_version=2)
        rev = storage.get_document(doc_id)["row_rev"]
        doc = engine.reject_version(doc_id, 2)
        assert doc.current_version == 1
        assert storage.get_document(doc_id)["row_rev"] == rev + 1

    def test_reject_only_pending_version(self, engine, make_document):
        doc_id = make_document(version=[_v(1, "pending")], current_version=1)
        assert engine.reject_version(doc_id, 1).status == "rejected"

    def test_remoderation_is_idempotent(self, engine, make_document):
        doc_id = make_document(version=[_v(1, "pending")], current_version=1)
        first = engine.approve_version(doc_id, 1)
        second = engine.approve_version(doc_id, 1)
        assert _aggregate(first) == _aggregate(second)
        engine.reject_version(doc_id, 1)
        assert engine.approve_version(doc_id, 1).status == "approved"

    def test_unknown_version(self, engine, make_document):
        doc_id = make_document(version=[_v(1, "pending")], current_version=1)
        with pytest.raises(NotFoundError) as exc:
            engine.approve_version(doc_id, 7)
        assert exc.value.code == "VERSION_NOT_FOUND"
        with pytest.raises(NotFoundError):
            engine.reject_version(doc_id, 7)

    def test_document_without_versions(self, engine, make_document):
        doc_id = make_document()
        with pytest.raises(InvalidStateError):
            engine.approve_version(doc_id, 1)

    def test_only_status_changes(self, engine, make_document):
        doc_id = make_document(version=[_v(1, "pending", contents="body", notes="n")], current_version=1)
        engine.approve_version(doc_id, 1)
        ver = engine.fetch_versions(doc_id)[0]
        assert (ver.contents, ver.notes, ver.file_url) == ("body", "n", "http://files/v1.pdf")


class TestModerateDocument:
    def test_approve_document(self, engine, make_document):
        doc_id = make_document(version=[_v(1, "approved"), _v(2, "pending")], current_version=2)
        doc = engine.approve_document(doc_id)
        assert doc.status == "approved"
        assert [v.status for v in normalize_versions(doc).versions] == ["approved", "approved"]

    def test_reject_document(self, engine, make_document):
        doc_id = make_document(version=[_v(1, "pending")], current_version=1)
        doc = engine.reject_document(doc_id)
        assert doc.status == "rejected"
        assert normalize_versions(doc).versions[0].status == "rejected"

    def test_document_without_versions(self, engine, make_document):
        doc_id = make_document()
        assert engine.approve_document(doc_id).status == "approved"


class TestSetCurrentVersionStatus:
    def test_sets_current(self, engine, make_document):
        doc_id = make_document(version=[_v(1, "pending"), _v(2, "pending")], current_version=1)
        engine.set_current_version_status(doc_id, "approved")
        assert [v.status for v in engine.fetch_versions(doc_id)] == ["approved", "pending"]

    def test_stale_pointer_uses_highest(self, engine, make_document):
        doc_id = make_document(version=[_v(1, "pending"), _v(2, "pending")], current_version=5)
        engine.set_current_version_status(doc_id, "rejected")
        assert [v.status for v in engine.fetch_versions(doc_id)] == ["pending", "rejected"]

    def test_no_versions_is_silent(self, engine, make_document, storage):
        doc_id = make_document()
        rev = storage.get_document(doc_id)["row_rev"]
        engine.set_current_version_status(doc_id, "approved")
        assert storage.get_document(doc_id)["row_rev"] == rev

    def test_invalid_status(self, engine, make_document):
        doc_id = make_document(version=[_v(1, "pending")], current_version=1)
        with pytest.raises(ValidationFailure):
            engine.set_current_version_status(doc_id, "all")


class TestSeedInitialVersion:
    def test_idempotent(self, engine, make_document, storage):
        """Seeding twice yields the same single version and writes once."""
        doc_id = make_document(attach_file="http://files/legacy.pdf", status="approved")
        first = engine.seed_initial_version(doc_id)
        rev = storage.get_document(doc_id)["row_rev"]
        second = engine.seed_initial_version(doc_id)
        assert len(first) == 1
        assert first == second
        assert first[0].status == "approved"
        assert storage.get_document(doc_id)["row_rev"] == rev
        assert engine.load_document(doc_id).current_version == 1

    def test_legacy_scalar_field(self, engine, make_document):
        doc_id = make_document(attach_file="http://files/a.pdf", version={"title": "old"}, current_version=2)
        seeded = engine.seed_initial_version(doc_id)
        assert [v.v for v in seeded] == [2]

    def test_no_file_no_write(self, engine, make_document, storage):
        doc_id = make_document()
        rev = storage.get_document(doc_id)["row_rev"]
        assert engine.seed_initial_version(doc_id) == []
        assert storage.get_document(doc_id)["row_rev"] == rev

    def test_legacy_scalar_without_file_is_seeded(self, engine, make_document, storage):
        """A legacy payload alone is enough to import version 1."""
        doc_id = make_document(version={"note": "old"}, attach_file="")
        seeded = engine.seed_initial_version(doc_id)
        assert [v.v for v in seeded] == [1]
        stored = storage.get_document(doc_id)
        assert [v["v"] for v in stored["version"]] == [1]
        assert stored["current_version"] == 1

    def test_api_view_matches_fetched_versions(self, engine, make_document):
        doc_id = make_document(version={"note": "old"}, attach_file="")
        api_versions = document_to_api(engine.load_document(doc_id))["versions"]
        fetched = engine.fetch_versions(doc_id)
        assert [v["v"] for v in api_versions] == [v.v for v in fetched]

    def test_existing_history_returned(self, engine, make_document):
        doc_id = make_document(version=[_v(2, "pending"), _v(1, "approved")], current_version=2)
        assert [v.v for v in engine.seed_initial_version(doc_id)] == [1, 2]


class TestConcurrency:
    """Optimistic concurrency on stores with conditional writes."""

    def test_lost_race_is_retried(self, tmp_path, blobs):
        """A concurrent write between read and write forces one retry; both changes survive."""

        class RacingStore(JsonAdapter):
            raced = False

            def update_document(self, document_id, updates, expected_rev=None):
                if not self.raced:
                    self.raced = True
                    super().update_document(document_id, {"contents": "edited meanwhile"})
                return super().update_document(document_id, updates, expected_rev)

        store = RacingStore(str(tmp_path / "race"))
        doc_id = store.create_document({"user_id": "u", "title": "T"})["id"]
        engine = VersionLifecycleEngine(store, blobs, write_attempts=3)

        engine.create_new_version(doc_id)
        doc = engine.load_document(doc_id)
        assert doc.contents == "edited meanwhile"
        assert doc.current_version == 1

    def test_concurrent_versions_do_not_collide(self, tmp_path, blobs):
        """Interleaved version creation never reuses a number."""

        class InterleavingStore(JsonAdapter):
            engine = None
            interleaved = False

            def update_document(self, document_id, updates, expected_rev=None):
                # Another caller slips in one version write after our read.
                if not self.interleaved and "version" in updates:
                    self.interleaved = True
                    self.engine.create_new_version(document_id)
                return super().update_document(document_id, updates, expected_rev)

        store = InterleavingStore(str(tmp_path / "interleave"))
        doc_id = store.create_document({"user_id": "u", "title": "T"})["id"]
        engine = VersionLifecycleEngine(store, blobs, write_attempts=3)
        store.engine = engine

        engine.create_new_version(doc_id)
        assert [v.v for v in engine.fetch_versions(doc_id)] == [1, 2]

    def test_retries_exhausted(self, tmp_path, blobs):
        class AlwaysConflicting(JsonAdapter):
            calls = 0

            def update_document(self, document_id, updates, expected_rev=None):
                self.calls += 1
                raise ConflictError("busy")

        store = AlwaysConflicting(str(tmp_path / "busy"))
        doc_id = store.create_document({"user_id": "u", "title": "T"})["id"]
        engine = VersionLifecycleEngine(store, blobs, write_attempts=2)
        with pytest.raises(ConflictError):
            engine.create_new_version(doc_id)
        assert store.calls == 2

    def test_last_writer_wins_store_gets_no_expected_rev(self, tmp_path, blobs):
        class NoCasStore(JsonAdapter):
            supports_conditional_writes = False
            seen = None

            def update_document(self, document_id, updates, expected_rev=None):
                self.seen = expected_rev
                return super().update_document(document_id, updates, expected_rev)

        store = NoCasStore(str(tmp_path / "lww"))
        doc_id = store.create_document({"user_id": "u", "title": "T"})["id"]
        VersionLifecycleEngine(store, blobs).create_new_version(doc_id)
        assert store.seen is None
