# conftest.py
import pytest
import httpx

from bakeledger.db import make_engine, make_session_factory
from bakeledger.services.docstore import DocumentStore
from bakeledger.services.identity import Identity, IdentityContext
from bakeledger.services.mirror import LocalMirrorStore
from bakeledger.services.workspace import Workspace


@pytest.fixture
def db_urls(tmp_path):
    return f"sqlite:///{tmp_path / 'remote.sqlite3'}", f"sqlite:///{tmp_path / 'mirror.sqlite3'}"

@pytest.fixture
def docstore(db_urls):
    engine = make_engine(db_urls[0])
    yield DocumentStore(make_session_factory(engine))
    engine.dispose()

@pytest.fixture
def mirror_store(db_urls):
    engine = make_engine(db_urls[1])
    yield LocalMirrorStore(make_session_factory(engine))
    engine.dispose()

@pytest.fixture
def baker():
    return Identity(id="u-baker", display_name="Ana Baker", email="ana@example.com")

@pytest.fixture
def rate_history():
    """Day (YYYY-MM-DD) -> rate the fake rate service publishes; edit per test."""
    return {}

@pytest.fixture
def rate_calls():
    return []

@pytest.fixture
def rate_transport(rate_history, rate_calls):
    def handler(request: httpx.Request) -> httpx.Response:
        q = request.url.params["start_date"]
        d, m, y = q.split("-")
        day = f"{y}-{m}-{d}"
        rate_calls.append(day)
        if day not in rate_history:
            return httpx.Response(200, json={"history": []})
        return httpx.Response(200, json={"history": [
            {"price": rate_history[day], "last_update": f"{d}/{m}/{y}, 12:00 AM"},
        ]})
    return httpx.MockTransport(handler)

@pytest.fixture
def http(rate_transport):
    return httpx.AsyncClient(transport=rate_transport)

def _workspace(user, docstore, mirror_store, http):
    identity = IdentityContext()
    identity.resolve(user)
    return Workspace(identity, docstore, mirror_store, http)

@pytest.fixture
def local_ws(docstore, mirror_store, http):
    return _workspace(None, docstore, mirror_store, http)

@pytest.fixture
def remote_ws(docstore, mirror_store, http, baker):
    return _workspace(baker, docstore, mirror_store, http)

@pytest.fixture
def fail_commits(monkeypatch):
    """Make every document-store batch commit raise."""
    from bakeledger.services import docstore as ds

    def boom(self):
        raise RuntimeError("write rejected")
    def arm():
        monkeypatch.setattr(ds.WriteBatch, "commit", boom)
    return arm
