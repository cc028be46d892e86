"""
Shared fixtures: a JSON-file store and a local blob store on tmp_path, and
the services built on them.
"""
import os
import sys
import tempfile

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# main.py reads settings at import time; keep its side effects out of the repo.
_SCRATCH = tempfile.mkdtemp(prefix="docmod-tests-")
os.environ.setdefault("STORAGE_BACKEND", "json")
os.environ.setdefault("DATA_DIR", os.path.join(_SCRATCH, "data"))
os.environ.setdefault("BLOB_BACKEND", "local")
os.environ.setdefault("BLOB_DIR", os.path.join(_SCRATCH, "blobs"))
os.environ.setdefault("GROQ_API_KEY", "")

from adapters.json import JsonAdapter
from core.blob_storage import LocalBlobStorage
from core.lifecycle import VersionLifecycleEngine
from core.moderation import ModerationQueryService
from core.repository import DocumentRepository

BLOB_BASE_URL = "http://testserver/files"


@pytest.fixture
def storage(tmp_path):
    return JsonAdapter(str(tmp_path / "data"))


@pytest.fixture
def blobs(tmp_path):
    return LocalBlobStorage(str(tmp_path / "blobs"), BLOB_BASE_URL)


@pytest.fixture
def engine(storage, blobs):
    return VersionLifecycleEngine(storage, blobs, write_attempts=3)


@pytest.fixture
def moderation(storage, engine):
    return ModerationQueryService(storage, engine)


@pytest.fixture
def repository(storage, engine):
    return DocumentRepository(storage, engine)


@pytest.fixture
def make_document(storage):
    """Insert a raw document row (bypassing validation) and return its id."""

    def _make(**fields):
        data = {"user_id": "owner-1", "status": "pending", "title": "Doc"}
        data.update(fields)
        return storage.create_document(data)["id"]

    return _make
