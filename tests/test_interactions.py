import asyncio

import pytest

from conftest import make_post

from feedline.data_models import ActionResult
from feedline.interactions import (
    ApiMutations,
    Interaction,
    Phase,
    PostActionError,
    PostInteractions,
)

VIEWER = "viewer"


def controller(post, mutations, notes, viewer_id=VIEWER, changes=None):
    return PostInteractions(
        post,
        viewer_id,
        mutations,
        notify=lambda message, severity: notes.append((message, severity)),
        on_change=(lambda: changes.append(1)) if changes is not None else None,
    )


# --- construction ---
def test_initial_state_mirrors_post(mutations, notes):
    post = make_post(like_user_ids=["someone", VIEWER], like_count=7, bookmark_user_ids=[VIEWER])
    c = controller(post, mutations, notes)
    assert c.liked is True
    assert c.like_count == 7
    assert c.bookmarked is True
    assert c.edit_draft == "hello world"
    assert c.comment_draft == ""
    assert c.comments_visible is False
    assert c.in_flight == (False, False, False, False, False)


def test_initial_state_for_other_viewer(mutations, notes):
    c = controller(make_post(like_user_ids=["someone"]), mutations, notes)
    assert c.liked is False
    assert c.like_count == 1
    assert c.bookmarked is False


def test_edit_draft_is_empty_for_image_only_post(mutations, notes):
    c = controller(make_post(content=None), mutations, notes)
    assert c.edit_draft == ""


# --- likes ---
async def test_like_applies_before_request_and_rolls_back_on_rejection(mutations, notes):
    c = controller(make_post(like_user_ids=["a", "b", "c"]), mutations, notes)
    gate = mutations.hold()

    task = asyncio.create_task(c.toggle_like())
    await asyncio.sleep(0)
    assert c.liked is True
    assert c.like_count == 4
    assert c.in_flight.liking
    assert mutations.calls == [("toggle_like", "p1")]

    mutations.results["toggle_like"] = ConnectionError("network down")
    gate.set()
    assert await task is False

    assert c.liked is False
    assert c.like_count == 3
    assert notes == [(PostInteractions.GENERIC_LIKE_ERROR, "error")]
    assert c.phases[Interaction.LIKE] is Phase.ROLLED_BACK
    assert not c.in_flight.liking


async def test_unlike_decrements(mutations, notes):
    c = controller(make_post(like_user_ids=[VIEWER, "x"]), mutations, notes)
    assert await c.toggle_like() is True
    assert c.liked is False
    assert c.like_count == 1
    assert c.phases[Interaction.LIKE] is Phase.COMMITTED
    assert notes == []


async def test_like_while_in_flight_is_ignored(mutations, notes):
    changes = []
    c = controller(make_post(), mutations, notes, changes=changes)
    gate = mutations.hold()

    first = asyncio.create_task(c.toggle_like())
    await asyncio.sleep(0)
    state = (c.liked, c.like_count, len(changes))

    assert await c.toggle_like() is False
    assert (c.liked, c.like_count, len(changes)) == state
    assert len(mutations.calls) == 1

    gate.set()
    assert await first is True


async def test_negative_like_result_counts_as_failure(mutations, notes):
    mutations.results["toggle_like"] = ActionResult.fail("Post not found")
    c = controller(make_post(like_count=2, like_user_ids=["a", "b"]), mutations, notes)
    assert await c.toggle_like() is False
    assert (c.liked, c.like_count) == (False, 2)
    assert len(notes) == 1


async def test_like_failure_resets_to_last_confirmed_state(mutations, notes):
    c = controller(make_post(like_user_ids=["a"]), mutations, notes)
    assert await c.toggle_like() is True  # liked, 2

    mutations.results["toggle_like"] = RuntimeError("boom")
    assert await c.toggle_like() is False
    assert (c.liked, c.like_count) == (True, 2)


async def test_sequential_likes_each_issue_a_call(mutations, notes):
    c = controller(make_post(), mutations, notes)
    await c.toggle_like()
    await c.toggle_like()
    assert (c.liked, c.like_count) == (False, 0)
    assert len(mutations.calls) == 2


async def test_signed_out_viewer_cannot_like(mutations, notes):
    c = controller(make_post(), mutations, notes, viewer_id=None)
    assert await c.toggle_like() is False
    assert await c.toggle_bookmark() is False
    assert await c.submit_comment("hi") is False
    assert mutations.calls == []
    assert notes == []


# --- bookmarks ---
async def test_bookmark_failure_restores_and_notifies_once(mutations, notes):
    mutations.results["toggle_bookmark"] = ConnectionError("nope")
    c = controller(make_post(bookmark_user_ids=[VIEWER]), mutations, notes)
    assert await c.toggle_bookmark() is False
    assert c.bookmarked is True
    assert notes == [(PostInteractions.GENERIC_BOOKMARK_ERROR, "error")]
    assert not c.in_flight.bookmarking


async def test_two_sequential_bookmarks_end_where_they_started(mutations, notes):
    c = controller(make_post(), mutations, notes)
    assert await c.toggle_bookmark() is True
    assert c.bookmarked is True
    assert await c.toggle_bookmark() is True
    assert c.bookmarked is False
    assert mutations.calls == [("toggle_bookmark", "p1"), ("toggle_bookmark", "p1")]


async def test_like_and_bookmark_can_be_in_flight_together(mutations, notes):
    c = controller(make_post(), mutations, notes)
    gate = mutations.hold()
    like = asyncio.create_task(c.toggle_like())
    bookmark = asyncio.create_task(c.toggle_bookmark())
    await asyncio.sleep(0)
    assert c.in_flight.liking and c.in_flight.bookmarking
    gate.set()
    assert await like and await bookmark


# --- comments ---
async def test_whitespace_comment_is_a_noop(mutations, notes):
    c = controller(make_post(), mutations, notes)
    c.comment_draft = "  "
    assert await c.submit_comment() is False
    assert mutations.calls == []
    assert c.comment_draft == "  "
    assert c.in_flight.commenting is False
    assert c.phases[Interaction.COMMENT] is Phase.IDLE


async def test_comment_success_clears_draft_and_sends_trimmed_text(mutations, notes):
    c = controller(make_post(), mutations, notes)
    c.comment_draft = "something else entirely"
    assert await c.submit_comment("  nice post  ") is True
    assert mutations.calls == [("create_comment", "p1", "nice post")]
    assert c.comment_draft == ""
    assert notes == [("Comment posted successfully", "information")]
    # not appended locally; the next read brings it in
    assert c.post.comments == []


async def test_comment_uses_draft_by_default(mutations, notes):
    c = controller(make_post(), mutations, notes)
    c.comment_draft = "from the draft"
    await c.submit_comment()
    assert mutations.calls == [("create_comment", "p1", "from the draft")]


async def test_comment_negative_result_keeps_draft(mutations, notes):
    mutations.results["create_comment"] = ActionResult.fail("Post not found")
    c = controller(make_post(), mutations, notes)
    c.comment_draft = "hello"
    assert await c.submit_comment() is False
    assert c.comment_draft == "hello"
    assert notes == [("Post not found", "error")]
    assert c.in_flight.commenting is False


async def test_comment_transport_failure_is_generic(mutations, notes):
    mutations.results["create_comment"] = TimeoutError()
    c = controller(make_post(), mutations, notes)
    assert await c.submit_comment("hello") is False
    assert notes == [(PostInteractions.GENERIC_COMMENT_ERROR, "error")]
    assert c.in_flight.commenting is False


# --- edits ---
async def test_edit_requires_text_and_ownership(mutations, notes):
    owner = controller(make_post(author_id=VIEWER), mutations, notes)
    assert await owner.submit_edit("") is False

    stranger = controller(make_post(author_id="someone-else"), mutations, notes)
    assert stranger.can_manage is False
    assert await stranger.submit_edit("new text") is False
    assert mutations.calls == []


async def test_edit_success(mutations, notes):
    c = controller(make_post(author_id=VIEWER), mutations, notes)
    c.edit_draft = "updated"
    assert await c.submit_edit() is True
    assert mutations.calls == [("update_post", "p1", "updated")]
    assert notes == [("Post updated successfully", "information")]
    assert c.in_flight.editing is False


@pytest.mark.parametrize(
    "outcome, message",
    [
        (ActionResult.fail("Unauthorized - no edit permission"), "Unauthorized - no edit permission"),
        (ActionResult.fail(None), PostInteractions.GENERIC_EDIT_ERROR),
        (ConnectionError("down"), PostInteractions.UNEXPECTED_ERROR),
    ],
)
async def test_edit_failures(mutations, notes, outcome, message):
    mutations.results["update_post"] = outcome
    c = controller(make_post(author_id=VIEWER), mutations, notes)
    assert await c.submit_edit("text") is False
    assert notes == [(message, "error")]
    assert c.in_flight.editing is False


# --- deletes ---
async def test_delete_success(mutations, notes):
    c = controller(make_post(author_id=VIEWER), mutations, notes)
    assert await c.submit_delete() is True
    assert notes == [("Post deleted successfully", "information")]
    assert c.phases[Interaction.DELETE] is Phase.COMMITTED


async def test_delete_failure_carries_server_reason(mutations, notes):
    mutations.results["delete_post"] = ActionResult.fail("Unauthorized - no delete permission")
    c = controller(make_post(author_id=VIEWER), mutations, notes)
    with pytest.raises(PostActionError) as err:
        await c.submit_delete()
    assert err.value.reason == "Unauthorized - no delete permission"
    assert c.in_flight.deleting is False


async def test_delete_failure_without_reason_is_generic(mutations, notes):
    mutations.results["delete_post"] = ActionResult.fail(None)
    c = controller(make_post(author_id=VIEWER), mutations, notes)
    with pytest.raises(PostActionError) as err:
        await c.submit_delete()
    assert err.value.reason == PostInteractions.GENERIC_DELETE_ERROR


async def test_delete_transport_failure_is_surfaced(mutations, notes):
    mutations.results["delete_post"] = ConnectionError("down")
    c = controller(make_post(author_id=VIEWER), mutations, notes)
    with pytest.raises(PostActionError) as err:
        await c.submit_delete()
    assert isinstance(err.value.__cause__, ConnectionError)
    assert c.in_flight.deleting is False
    # still usable afterwards
    mutations.results.clear()
    assert await c.submit_delete() is True


# --- one outstanding mutation per kind ---
def state_of(c):
    return (c.liked, c.like_count, c.bookmarked, c.comment_draft, c.edit_draft, c.in_flight)


@pytest.mark.parametrize(
    "start",
    [
        lambda c: c.toggle_bookmark(),
        lambda c: c.submit_comment("first"),
        lambda c: c.submit_edit("first"),
        lambda c: c.submit_delete(),
    ],
    ids=["bookmark", "comment", "edit", "delete"],
)
async def test_second_request_of_a_pending_kind_is_ignored(mutations, notes, start):
    changes = []
    c = controller(make_post(author_id=VIEWER), mutations, notes, changes=changes)
    c.comment_draft = "draft"
    gate = mutations.hold()

    first = asyncio.create_task(start(c))
    await asyncio.sleep(0)
    assert len(mutations.calls) == 1
    before = (state_of(c), len(changes))

    assert await start(c) is False
    assert (state_of(c), len(changes)) == before
    assert len(mutations.calls) == 1
    assert notes == []

    gate.set()
    assert await first is True


# --- local toggles / lifetime ---
def test_toggle_comments_visible(mutations, notes):
    changes = []
    c = controller(make_post(), mutations, notes, changes=changes)
    assert c.toggle_comments_visible() is True
    assert c.toggle_comments_visible() is False
    assert len(changes) == 2
    assert mutations.calls == []


async def test_disposed_controller_drops_late_results(mutations, notes):
    changes = []
    c = controller(make_post(), mutations, notes, changes=changes)
    gate = mutations.hold()
    task = asyncio.create_task(c.toggle_like())
    await asyncio.sleep(0)
    seen = len(changes)

    c.dispose()
    mutations.results["toggle_like"] = ConnectionError("late")
    gate.set()
    assert await task is False
    assert notes == []
    assert len(changes) == seen
    # nothing new starts once disposed
    assert await c.toggle_bookmark() is False


async def test_api_mutations_run_blocking_calls_off_loop():
    class BlockingApi:
        def __init__(self):
            self.calls = []

        def toggle_like(self, post_id):
            self.calls.append(post_id)
            return ActionResult.ok()

    api = BlockingApi()
    result = await ApiMutations(api).toggle_like("p9")
    assert result.success
    assert api.calls == ["p9"]
