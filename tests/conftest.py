import asyncio
from datetime import datetime

import keyring
import pytest
from keyring.backend import KeyringBackend
from keyring.errors import PasswordDeleteError

from feedline import config, db_repo
from feedline.data_models import ActionResult, Author, Post
from feedline.db_models import Base, create_db, get_session, init_engine


@pytest.fixture
def engine():
    engine = init_engine("sqlite://")
    create_db()
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = get_session()
    yield session
    session.close()


@pytest.fixture
def users(db):
    return {h: db_repo.sync_user(db, h) for h in ("alice", "bob", "carol")}


class MemoryKeyring(KeyringBackend):
    priority = 1

    def __init__(self):
        super().__init__()
        self.store = {}

    def get_password(self, service, username):
        return self.store.get((service, username))

    def set_password(self, service, username, password):
        self.store[(service, username)] = password

    def delete_password(self, service, username):
        try:
            del self.store[(service, username)]
        except KeyError:
            raise PasswordDeleteError(username)


@pytest.fixture
def memory_keyring(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "FALLBACK_TOKEN_FILE", tmp_path / "tokens.json")
    previous = keyring.get_keyring()
    backend = MemoryKeyring()
    keyring.set_keyring(backend)
    yield backend
    keyring.set_keyring(previous)


def make_post(
    post_id="p1",
    author_id="author",
    content="hello world",
    like_user_ids=(),
    like_count=None,
    bookmark_user_ids=(),
):
    like_user_ids = list(like_user_ids)
    return Post(
        id=post_id,
        author=Author(id=author_id, username=author_id),
        created_at=datetime(2024, 1, 1, 12, 0),
        content=content,
        like_user_ids=like_user_ids,
        bookmark_user_ids=list(bookmark_user_ids),
        like_count=len(like_user_ids) if like_count is None else like_count,
    )


class FakeMutations:
    """Records calls; outcomes are set per call name, optionally held behind a gate."""

    def __init__(self):
        self.calls = []
        self.results = {}
        self.gate = None

    async def _run(self, name, *args):
        self.calls.append((name,) + args)
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.results.get(name)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome if outcome is not None else ActionResult.ok()

    def hold(self):
        self.gate = asyncio.Event()
        return self.gate

    async def toggle_like(self, post_id):
        return await self._run("toggle_like", post_id)

    async def toggle_bookmark(self, post_id):
        return await self._run("toggle_bookmark", post_id)

    async def create_comment(self, post_id, text):
        return await self._run("create_comment", post_id, text)

    async def update_post(self, post_id, content):
        return await self._run("update_post", post_id, content)

    async def delete_post(self, post_id):
        return await self._run("delete_post", post_id)


@pytest.fixture
def mutations():
    return FakeMutations()


@pytest.fixture
def notes():
    return []
