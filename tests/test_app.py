from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from feedline import db_repo
from feedline.api_interface import LocalAPI, RealAPI
from feedline.db_models import Base, Like, create_db, get_session, init_engine
from feedline.interactions import Interaction, Phase
from feedline.main import FeedlineApp, FeedPanel, format_time_ago


@pytest.fixture
def app_db(tmp_path):
    # file-backed so worker threads get their own connections
    engine = init_engine(f"sqlite:///{tmp_path / 'app.db'}")
    create_db()
    with get_session() as db:
        alice = db_repo.sync_user(db, "alice")
        bob = db_repo.sync_user(db, "bob")
        db_repo.create_post(db, bob.id, "hello from bob")
        db_repo.create_post(db, alice.id, "alice was here")
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


async def wait_until(pilot, predicate, attempts=100):
    for _ in range(attempts):
        if predicate():
            return
        await pilot.pause(0.05)
    raise AssertionError("condition not reached")


def home_cards(app):
    feeds = app.query("#home-feed")
    return feeds.first(FeedPanel).cards() if feeds else []


def like_count():
    with get_session() as db:
        return db.query(Like).count()


def test_format_time_ago():
    now = datetime(2024, 1, 2, 12, 0)
    assert format_time_ago(now - timedelta(seconds=10), now) == "just now"
    assert format_time_ago(now - timedelta(minutes=5), now) == "5m ago"
    assert format_time_ago(now - timedelta(hours=3), now) == "3h ago"
    assert format_time_ago(now - timedelta(days=2), now) == "2d ago"
    assert format_time_ago(now + timedelta(minutes=1), now) == "just now"


async def test_like_key_toggles_the_selected_post(app_db):
    app = FeedlineApp(api=LocalAPI(handle="alice"))
    async with app.run_test() as pilot:
        await wait_until(pilot, lambda: len(home_cards(app)) == 2)
        app.query_one("#home-feed", FeedPanel).focus()
        card = home_cards(app)[0]

        await pilot.press("l")
        await wait_until(pilot, lambda: card.interactions.phases[Interaction.LIKE] is Phase.COMMITTED)
        assert card.interactions.liked
        assert card.interactions.like_count == 1
        assert card.has_class("liked")
    assert like_count() == 1


async def test_signed_out_viewer_cannot_like(app_db):
    app = FeedlineApp(api=LocalAPI())
    async with app.run_test() as pilot:
        await wait_until(pilot, lambda: len(home_cards(app)) == 2)
        app.query_one("#home-feed", FeedPanel).focus()
        card = home_cards(app)[0]
        assert not card.query(".comment-input")

        await pilot.press("l")
        await pilot.pause()
        assert not card.interactions.liked
    assert like_count() == 0


async def test_comments_toggle_with_c(app_db):
    app = FeedlineApp(api=LocalAPI(handle="alice"))
    async with app.run_test() as pilot:
        await wait_until(pilot, lambda: len(home_cards(app)) == 2)
        app.query_one("#home-feed", FeedPanel).focus()
        card = home_cards(app)[0]
        assert card.query_one(".post-comments").display is False

        await pilot.press("c")
        await pilot.pause()
        assert card.interactions.comments_visible
        assert card.query_one(".post-comments").display is True


async def test_unknown_profile_shows_not_found(app_db):
    app = FeedlineApp(api=LocalAPI(handle="alice"))
    async with app.run_test() as pilot:
        await app.run_command("u @ghost")
        await wait_until(pilot, lambda: bool(app.query(".profile-missing")))
        assert app.sub_title == "User not found"


async def test_profile_sets_title_and_description(app_db):
    app = FeedlineApp(api=LocalAPI(handle="alice"))
    async with app.run_test() as pilot:
        await app.run_command("u bob")
        await wait_until(pilot, lambda: bool(app.query("#profile-body")))
        assert app.title == "bob"
        assert app.sub_title == "Check out bob's profile."


async def test_sign_out_drops_the_backend_token(memory_keyring):
    api = RealAPI("https://api.example.com", token="secret", handle="alice")
    backend = {"/me": {"id": "u1"}, "/posts": [], "/users/suggestions": []}

    def fake_request(method, url, **kwargs):
        resp = MagicMock(status_code=200)
        resp.json.return_value = backend[url.replace(api.base_url, "")]
        return resp

    api.session.request = MagicMock(side_effect=fake_request)
    app = FeedlineApp(api=api)
    async with app.run_test() as pilot:
        await wait_until(pilot, lambda: app.viewer_id == "u1")
        await app.run_command("logout")
        await pilot.pause()
        assert app.viewer_id is None
        assert api.handle is None
        assert "Authorization" not in api.session.headers
