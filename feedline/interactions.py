"""Optimistic interaction handling for a single rendered post.

A PostInteractions instance owns the viewer-local copy of one post's social
state (like flag and count, bookmark flag, comment and edit drafts) and
reconciles it with the outcome of the asynchronous server mutations.

Each kind of interaction runs its own small state machine::

    IDLE -> PENDING -> COMMITTED | ROLLED_BACK

A kind that is PENDING ignores further requests of the same kind; different
kinds never block each other. Once dispose() is called, mutations that
resolve afterwards have no effect on state and emit no notifications.
"""
import asyncio
import enum
import logging
from typing import Awaitable, Callable, NamedTuple, Optional, Protocol

from .data_models import ActionResult, Post

logger = logging.getLogger("feedline.interactions")

Notifier = Callable[[str, str], None]  # (message, severity)


class Interaction(enum.Enum):
    LIKE = "liking"
    BOOKMARK = "bookmarking"
    COMMENT = "commenting"
    EDIT = "editing"
    DELETE = "deleting"


class Phase(enum.Enum):
    IDLE = "idle"
    PENDING = "pending"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class InFlight(NamedTuple):
    liking: bool
    bookmarking: bool
    commenting: bool
    editing: bool
    deleting: bool


class PostActionError(Exception):
    """A mutation the caller has to react to (currently: delete) did not go through."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class Mutations(Protocol):
    def toggle_like(self, post_id: str) -> Awaitable[Optional[ActionResult]]: ...
    def toggle_bookmark(self, post_id: str) -> Awaitable[Optional[ActionResult]]: ...
    def create_comment(self, post_id: str, text: str) -> Awaitable[ActionResult]: ...
    def update_post(self, post_id: str, content: str) -> Awaitable[ActionResult]: ...
    def delete_post(self, post_id: str) -> Awaitable[ActionResult]: ...


class ApiMutations:
    """Adapts a blocking APIInterface to awaitable mutations.

    Calls run in a worker thread so the event loop keeps drawing while the
    request is on the wire.
    """

    def __init__(self, api):
        self.api = api

    async def toggle_like(self, post_id):
        return await asyncio.to_thread(self.api.toggle_like, post_id)

    async def toggle_bookmark(self, post_id):
        return await asyncio.to_thread(self.api.toggle_bookmark, post_id)

    async def create_comment(self, post_id, text):
        return await asyncio.to_thread(self.api.create_comment, post_id, text)

    async def update_post(self, post_id, content):
        return await asyncio.to_thread(self.api.update_post, post_id, content)

    async def delete_post(self, post_id):
        return await asyncio.to_thread(self.api.delete_post, post_id)


def _succeeded(result: Optional[ActionResult]) -> bool:
    # Toggle endpoints may resolve without a payload; only an explicit failure counts.
    return result is None or bool(result.success)


class PostInteractions:
    GENERIC_LIKE_ERROR = "Failed to update like"
    GENERIC_BOOKMARK_ERROR = "Failed to update bookmark"
    GENERIC_COMMENT_ERROR = "Failed to add comment"
    GENERIC_EDIT_ERROR = "Failed to update post"
    UNEXPECTED_ERROR = "An unexpected error occurred."
    GENERIC_DELETE_ERROR = "Failed to delete post"

    def __init__(
        self,
        post: Post,
        viewer_id: Optional[str],
        mutations: Mutations,
        notify: Optional[Notifier] = None,
        on_change: Optional[Callable[[], None]] = None,
    ):
        self.post = post
        self.viewer_id = viewer_id
        self.mutations = mutations
        self._notify = notify
        self._on_change = on_change

        # last state confirmed by the server; failures reset to this
        self._server_liked = post.liked_by(viewer_id)
        self._server_like_count = post.like_count

        self.liked = self._server_liked
        self.like_count = self._server_like_count
        self.bookmarked = post.bookmarked_by(viewer_id)
        self.comment_draft = ""
        self.edit_draft = post.content or ""
        self.comments_visible = False

        self.phases = {kind: Phase.IDLE for kind in Interaction}
        self._disposed = False

    # --- queries ---
    @property
    def signed_in(self) -> bool:
        return self.viewer_id is not None

    @property
    def can_manage(self) -> bool:
        """Whether the viewer may edit or delete this post."""
        return self.signed_in and self.viewer_id == self.post.author.id

    @property
    def in_flight(self) -> InFlight:
        return InFlight(*(self.is_pending(kind) for kind in Interaction))

    def is_pending(self, kind: Interaction) -> bool:
        return self.phases[kind] is Phase.PENDING

    def dispose(self) -> None:
        """Detach from the owning view; late mutation results are dropped."""
        self._disposed = True

    # --- internals ---
    def _begin(self, kind: Interaction) -> bool:
        if self._disposed or self.is_pending(kind):
            return False
        self.phases[kind] = Phase.PENDING
        return True

    def _finish(self, kind: Interaction, phase: Phase) -> None:
        self.phases[kind] = phase
        self._changed()

    def _changed(self) -> None:
        if self._on_change is not None and not self._disposed:
            self._on_change()

    def _emit(self, message: str, severity: str = "information") -> None:
        if self._notify is not None and not self._disposed:
            self._notify(message, severity)

    # --- operations ---
    async def toggle_like(self) -> bool:
        """Flip the like optimistically; on failure reset to the last server-confirmed state."""
        if not self.signed_in or not self._begin(Interaction.LIKE):
            return False
        self.liked = not self.liked
        self.like_count += 1 if self.liked else -1
        self._changed()

        try:
            ok = _succeeded(await self.mutations.toggle_like(self.post.id))
        except Exception:
            logger.exception("toggle_like failed for post %s", self.post.id)
            ok = False
        if self._disposed:
            return False

        if ok:
            self._server_liked, self._server_like_count = self.liked, self.like_count
            self._finish(Interaction.LIKE, Phase.COMMITTED)
            return True
        self.liked, self.like_count = self._server_liked, self._server_like_count
        self._emit(self.GENERIC_LIKE_ERROR, "error")
        self._finish(Interaction.LIKE, Phase.ROLLED_BACK)
        return False

    async def toggle_bookmark(self) -> bool:
        if not self.signed_in or not self._begin(Interaction.BOOKMARK):
            return False
        previous = self.bookmarked
        self.bookmarked = not previous
        self._changed()

        try:
            ok = _succeeded(await self.mutations.toggle_bookmark(self.post.id))
        except Exception:
            logger.exception("toggle_bookmark failed for post %s", self.post.id)
            ok = False
        if self._disposed:
            return False

        if ok:
            self._finish(Interaction.BOOKMARK, Phase.COMMITTED)
            return True
        self.bookmarked = previous
        self._emit(self.GENERIC_BOOKMARK_ERROR, "error")
        self._finish(Interaction.BOOKMARK, Phase.ROLLED_BACK)
        return False

    async def submit_comment(self, text: Optional[str] = None) -> bool:
        """Send a comment (defaults to the current draft).

        The comment is not appended locally; it shows up with the next read
        of the post.
        """
        text = (self.comment_draft if text is None else text).strip()
        if not text or not self.signed_in or not self._begin(Interaction.COMMENT):
            return False

        phase = Phase.ROLLED_BACK
        try:
            result = await self.mutations.create_comment(self.post.id, text)
            if self._disposed:
                return False
            if result is not None and result.success:
                self.comment_draft = ""
                self._emit("Comment posted successfully")
                phase = Phase.COMMITTED
            else:
                self._emit((result.error if result else None) or self.GENERIC_COMMENT_ERROR, "error")
        except Exception:
            logger.exception("create_comment failed for post %s", self.post.id)
            self._emit(self.GENERIC_COMMENT_ERROR, "error")
        finally:
            if not self._disposed:
                self._finish(Interaction.COMMENT, phase)
        return phase is Phase.COMMITTED

    async def submit_edit(self, text: Optional[str] = None) -> bool:
        """Save new post content (defaults to the edit draft).

        Closing whatever surface collected the text is up to the caller.
        """
        text = self.edit_draft if text is None else text
        if not text or not self.can_manage or not self._begin(Interaction.EDIT):
            return False

        phase = Phase.ROLLED_BACK
        try:
            result = await self.mutations.update_post(self.post.id, text)
            if self._disposed:
                return False
            if result.success:
                self._emit("Post updated successfully")
                phase = Phase.COMMITTED
            else:
                self._emit(result.error or self.GENERIC_EDIT_ERROR, "error")
        except Exception:
            logger.exception("update_post failed for post %s", self.post.id)
            self._emit(self.UNEXPECTED_ERROR, "error")
        finally:
            if not self._disposed:
                self._finish(Interaction.EDIT, phase)
        return phase is Phase.COMMITTED

    async def submit_delete(self) -> bool:
        """Delete the post.

        Raises PostActionError carrying the server's reason when the delete
        does not go through. Removing the post from any list on screen is
        the caller's job.
        """
        if not self.can_manage or not self._begin(Interaction.DELETE):
            return False

        phase = Phase.ROLLED_BACK
        try:
            try:
                result = await self.mutations.delete_post(self.post.id)
            except Exception as exc:
                logger.exception("delete_post failed for post %s", self.post.id)
                if self._disposed:
                    return False
                self._emit(self.GENERIC_DELETE_ERROR, "error")
                raise PostActionError(self.GENERIC_DELETE_ERROR) from exc

            if self._disposed:
                return False
            if not result.success:
                reason = result.error or self.GENERIC_DELETE_ERROR
                self._emit(reason, "error")
                raise PostActionError(reason)

            self._emit("Post deleted successfully")
            phase = Phase.COMMITTED
            return True
        finally:
            if not self._disposed:
                self._finish(Interaction.DELETE, phase)

    def toggle_comments_visible(self) -> bool:
        self.comments_visible = not self.comments_visible
        self._changed()
        return self.comments_visible
