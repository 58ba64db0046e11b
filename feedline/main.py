import argparse
import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional

from rich.text import Text
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal, Vertical, VerticalScroll
from textual.css.query import NoMatches
from textual.message import Message
from textual.reactive import reactive
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Label, Static, TabbedContent, TabPane, TextArea

from .api_interface import APIInterface, RealAPI, get_api
from .auth import AuthError, authenticate, clear_credentials
from .config import configure_logging
from .data_models import Post, Profile, utcnow
from .db_seed import seed
from .interactions import ApiMutations, Interaction, PostActionError, PostInteractions

logger = logging.getLogger("feedline.ui")


def format_time_ago(dt: datetime, now: Optional[datetime] = None) -> str:
    """Format datetime as 'time ago' string."""
    now = now or utcnow()
    diff = now - dt
    if diff.days > 0:
        return f"{diff.days}d ago"
    if diff.days < 0 or diff.seconds < 60:
        return "just now"
    if diff.seconds < 3600:
        return f"{diff.seconds // 60}m ago"
    return f"{diff.seconds // 3600}h ago"


# ───────── Dialogs ─────────
class EditPostDialog(ModalScreen[bool]):
    """Edits a post's content through its interaction controller."""

    def __init__(self, interactions: PostInteractions):
        super().__init__()
        self.interactions = interactions

    def compose(self) -> ComposeResult:
        with Vertical(classes="dialog"):
            yield Label("Edit Post", classes="dialog-title")
            yield Label("Post Content")
            yield TextArea(self.interactions.edit_draft, id="edit-content")
            with Horizontal(classes="dialog-buttons"):
                yield Button("Cancel", id="cancel")
                yield Button("Save Changes", id="save", variant="primary")

    def on_mount(self) -> None:
        self.query_one("#edit-content", TextArea).focus()

    def on_text_area_changed(self, event: TextArea.Changed) -> None:
        self.interactions.edit_draft = event.text_area.text

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "cancel":
            self.dismiss(False)
        elif event.button.id == "save":
            self.run_worker(self._save(), exclusive=True)

    def key_escape(self) -> None:
        self.dismiss(False)

    async def _save(self) -> None:
        save = self.query_one("#save", Button)
        save.disabled = True
        save.label = "Saving..."
        try:
            saved = await self.interactions.submit_edit()
        finally:
            save.disabled = False
            save.label = "Save Changes"
        if saved:
            self.dismiss(True)


class DeletePostDialog(ModalScreen[bool]):
    """Confirmation before a post is deleted."""

    def compose(self) -> ComposeResult:
        with Vertical(classes="dialog"):
            yield Label("Delete Post?", classes="dialog-title")
            yield Label("This action cannot be undone.")
            with Horizontal(classes="dialog-buttons"):
                yield Button("Cancel", id="cancel")
                yield Button("Delete", id="delete", variant="error")

    def on_mount(self) -> None:
        self.query_one("#cancel", Button).focus()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(event.button.id == "delete")

    def key_escape(self) -> None:
        self.dismiss(False)


class NewPostDialog(ModalScreen[bool]):
    """Compose and publish a new post."""

    def compose(self) -> ComposeResult:
        with Vertical(classes="dialog"):
            yield Label("New Post", classes="dialog-title")
            yield TextArea(id="new-post-content")
            yield Input(placeholder="Image URL (optional)", id="new-post-image")
            yield Static("", id="new-post-status", markup=False)
            with Horizontal(classes="dialog-buttons"):
                yield Button("Cancel", id="cancel")
                yield Button("Post", id="publish", variant="primary")

    def on_mount(self) -> None:
        self.query_one("#new-post-content", TextArea).focus()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "cancel":
            self.dismiss(False)
        elif event.button.id == "publish":
            self.run_worker(self._publish(), exclusive=True)

    def key_escape(self) -> None:
        self.dismiss(False)

    def _show_status(self, message: str, error: bool = False) -> None:
        status = self.query_one("#new-post-status", Static)
        status.update(message)
        status.set_class(error, "error")

    async def _publish(self) -> None:
        content = self.query_one("#new-post-content", TextArea).text
        image = self.query_one("#new-post-image", Input).value.strip() or None
        if not content.strip() and not image:
            self._show_status("Write something or attach an image.", error=True)
            return

        publish = self.query_one("#publish", Button)
        publish.disabled = True
        try:
            result = await asyncio.to_thread(self.app.api.create_post, content, image)
        except Exception:
            logger.exception("create_post failed")
            self._show_status("Failed to create post", error=True)
            return
        finally:
            publish.disabled = False

        if result.success:
            self.app.notify("📤 Post published!")
            self.dismiss(True)
        else:
            self._show_status(result.error or "Failed to create post", error=True)


# ───────── Post card ─────────
class PostCard(Vertical):
    """One post plus its like / bookmark / comment / edit / delete affordances."""

    class Changed(Message):
        """The post changed on the server; the owning feed should re-read it."""

        def __init__(self, card: "PostCard") -> None:
            super().__init__()
            self.card = card

    class Deleted(Message):
        """The post is gone; the owning feed should drop the card."""

        def __init__(self, card: "PostCard") -> None:
            super().__init__()
            self.card = card

    def __init__(self, post: Post, viewer_id: Optional[str], api: APIInterface, **kwargs):
        super().__init__(**kwargs)
        self.post = post
        self.interactions = PostInteractions(
            post,
            viewer_id,
            ApiMutations(api),
            notify=self._notify,
            on_change=self.refresh_state,
        )

    def compose(self) -> ComposeResult:
        post = self.post
        if post.image:
            yield Static(f"🖼  {post.image}", classes="post-image", markup=False)
        yield Static(self._header_text(), classes="post-header", markup=False)
        if post.content:
            yield Static(post.content, classes="post-text", markup=False)
        yield Static(self._stats_text(), classes="post-stats", markup=False)
        with Vertical(classes="post-comments"):
            for c in post.comments:
                yield Static(
                    f"  {c.author.display_name} · {format_time_ago(c.created_at)}\n  {c.content}",
                    classes="comment-item",
                    markup=False,
                )
            if self.interactions.signed_in:
                yield Input(placeholder="Write a comment...", classes="comment-input")

    def on_mount(self) -> None:
        self.refresh_state()

    def on_unmount(self) -> None:
        self.interactions.dispose()

    def _header_text(self) -> Text:
        a = self.post.author
        text = Text.assemble(
            (a.display_name, "bold"),
            f" @{a.username} • {format_time_ago(self.post.created_at)}",
        )
        if self.interactions.can_manage:
            text.append("   [e] edit  [x] delete", style="dim")
        return text

    def _stats_text(self) -> Text:
        i = self.interactions
        text = Text()
        text.append("♥" if i.liked else "♡", style="bold #ff5555" if i.liked else "")
        text.append(f" {i.like_count}   💬 {len(self.post.comments)}")
        if i.signed_in:
            text.append("   🔖 saved" if i.bookmarked else "   🔖", style="bold #f1fa8c" if i.bookmarked else "")
        return text

    def refresh_state(self) -> None:
        try:
            self.query_one(".post-stats", Static).update(self._stats_text())
            self.query_one(".post-comments").display = self.interactions.comments_visible
            self.set_class(self.interactions.liked, "liked")
            comment_input = self.query(".comment-input")
            if comment_input:
                comment_input.first().disabled = self.interactions.is_pending(Interaction.COMMENT)
        except NoMatches:
            pass

    def _notify(self, message: str, severity: str) -> None:
        self.app.notify(message, severity=severity, timeout=3)

    # --- actions (driven by the owning feed's keys) ---
    def like(self) -> None:
        if not self.interactions.signed_in:
            self.app.notify("Sign in to like posts (:login)", severity="warning")
            return
        # app-level workers outlive the card; the controller drops late results
        self.app.run_worker(self.interactions.toggle_like(), group="interactions")

    def bookmark(self) -> None:
        if not self.interactions.signed_in:
            self.app.notify("Sign in to bookmark posts (:login)", severity="warning")
            return
        self.app.run_worker(self.interactions.toggle_bookmark(), group="interactions")

    def toggle_comments(self) -> None:
        self.interactions.toggle_comments_visible()

    def focus_comment_input(self) -> None:
        if not self.interactions.comments_visible:
            self.interactions.toggle_comments_visible()
        comment_input = self.query(".comment-input")
        if comment_input:
            comment_input.first().focus()

    def edit(self) -> None:
        if not self.interactions.can_manage:
            return

        def done(saved: bool) -> None:
            if saved:
                self.post_message(self.Changed(self))

        self.app.push_screen(EditPostDialog(self.interactions), done)

    def delete(self) -> None:
        if not self.interactions.can_manage:
            return

        def confirmed(ok: bool) -> None:
            if ok:
                self.app.run_worker(self._delete(), group="interactions")

        self.app.push_screen(DeletePostDialog(), confirmed)

    async def _delete(self) -> None:
        try:
            deleted = await self.interactions.submit_delete()
        except PostActionError as e:
            logger.warning("delete of post %s refused: %s", self.post.id, e.reason)
            return
        if deleted:
            self.post_message(self.Deleted(self))

    def on_input_changed(self, event: Input.Changed) -> None:
        if event.input.has_class("comment-input"):
            self.interactions.comment_draft = event.value

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if not event.input.has_class("comment-input"):
            return
        event.stop()
        self.interactions.comment_draft = event.value
        self.app.run_worker(self._submit_comment(event.input), group="interactions")

    async def _submit_comment(self, comment_input: Input) -> None:
        if await self.interactions.submit_comment():
            comment_input.value = ""
            self.post_message(self.Changed(self))


# ───────── Feeds ─────────
class FeedPanel(VerticalScroll):
    """A scrollable list of PostCards with a vim-style cursor."""

    cursor_position = reactive(0)

    def __init__(self, loader: Callable[[], List[Post]], empty_text: str = "No posts yet.", **kwargs):
        super().__init__(**kwargs)
        self.loader = loader
        self.empty_text = empty_text

    def on_mount(self) -> None:
        self.watch(self, "cursor_position", self._update_cursor)
        self.reload()

    def reload(self) -> None:
        self.run_worker(self._reload(), exclusive=True, group="feed-load")

    async def _reload(self) -> None:
        try:
            posts = await asyncio.to_thread(self.loader)
        except Exception as e:
            logger.exception("feed load failed")
            self.app.notify(f"Could not load posts: {e}", severity="error")
            return

        expanded = {c.post.id for c in self.cards() if c.interactions.comments_visible}
        await self.remove_children()
        if not posts:
            await self.mount(Static(self.empty_text, classes="feed-empty", markup=False))
            return

        cards = [PostCard(p, self.app.viewer_id, self.app.api, classes="post-card") for p in posts]
        await self.mount(*cards)
        for card in cards:
            if card.post.id in expanded:
                card.interactions.toggle_comments_visible()
        self.cursor_position = min(self.cursor_position, len(cards) - 1)
        self._update_cursor()

    def cards(self) -> List[PostCard]:
        return list(self.query(PostCard))

    def current_card(self) -> Optional[PostCard]:
        cards = self.cards()
        if 0 <= self.cursor_position < len(cards):
            return cards[self.cursor_position]
        return None

    def _update_cursor(self) -> None:
        for i, card in enumerate(self.cards()):
            card.set_class(i == self.cursor_position, "vim-cursor")
            if i == self.cursor_position:
                self.scroll_to_widget(card, animate=False)

    def on_post_card_changed(self, message: PostCard.Changed) -> None:
        self.reload()

    async def on_post_card_deleted(self, message: PostCard.Deleted) -> None:
        await message.card.remove()
        remaining = len(self.cards())
        if not remaining:
            await self.mount(Static(self.empty_text, classes="feed-empty", markup=False))
        self.cursor_position = max(0, min(self.cursor_position, remaining - 1))
        self._update_cursor()

    # --- keys ---
    def key_j(self) -> None:
        self.cursor_position = min(self.cursor_position + 1, max(len(self.cards()) - 1, 0))

    def key_k(self) -> None:
        self.cursor_position = max(self.cursor_position - 1, 0)

    def key_g(self) -> None:
        self.cursor_position = 0

    def key_escape(self) -> None:
        self.focus()

    def key_l(self) -> None:
        card = self.current_card()
        if card:
            card.like()

    def key_s(self) -> None:
        card = self.current_card()
        if card:
            card.bookmark()

    def key_c(self) -> None:
        card = self.current_card()
        if card:
            card.toggle_comments()

    def key_i(self) -> None:
        card = self.current_card()
        if card:
            card.focus_comment_input()

    def key_e(self) -> None:
        card = self.current_card()
        if card:
            card.edit()

    def key_x(self) -> None:
        card = self.current_card()
        if card:
            card.delete()


class WhoToFollow(VerticalScroll):
    """Follow suggestions for the signed-in viewer."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.users: List[Profile] = []

    def on_mount(self) -> None:
        self.border_title = "Who to follow"
        self.reload()

    def reload(self) -> None:
        self.run_worker(self._reload(), exclusive=True)

    async def _reload(self) -> None:
        try:
            self.users = await asyncio.to_thread(self.app.api.get_random_users)
        except Exception:
            logger.exception("get_random_users failed")
            self.users = []
        await self.remove_children()
        if not self.users:
            await self.mount(Static("No suggestions right now.", markup=False))
            return
        for i, u in enumerate(self.users):
            await self.mount(
                Vertical(
                    Static(f"{u.name or u.username} @{u.username}\n{u.followers} followers", markup=False),
                    Horizontal(
                        Button("Follow", id=f"follow-{i}", classes="suggestion-button"),
                        Button("View", id=f"view-{i}", classes="suggestion-button"),
                    ),
                    classes="suggestion",
                )
            )

    def on_button_pressed(self, event: Button.Pressed) -> None:
        action, _, index = (event.button.id or "").partition("-")
        if not index.isdigit() or int(index) >= len(self.users):
            return
        user = self.users[int(index)]
        if action == "view":
            self.app.run_worker(self.app.show_view("profile", username=user.username))
        elif action == "follow":
            event.button.disabled = True
            self.run_worker(self._follow(user))

    async def _follow(self, user: Profile) -> None:
        try:
            result = await asyncio.to_thread(self.app.api.toggle_follow, user.id)
        except Exception:
            logger.exception("toggle_follow failed")
            self.app.notify("Failed to follow user", severity="error")
            return
        if result.success:
            self.app.notify(f"✓ Following @{user.username}!")
            self.reload()
        else:
            self.app.notify(result.error or "Failed to follow user", severity="error")


class HomeView(Horizontal):
    def compose(self) -> ComposeResult:
        api = self.app.api
        yield FeedPanel(lambda: api.get_posts(), "No posts yet. Press [n] to write one.", id="home-feed")
        if self.app.viewer_id:
            yield WhoToFollow(id="who-to-follow")


# ───────── Profiles ─────────
class ProfileBody(Vertical):
    """Header, follow toggle and post tabs of a loaded profile."""

    def __init__(self, profile: Profile, following: bool, **kwargs):
        super().__init__(**kwargs)
        self.profile = profile
        self.following = following

    @property
    def can_follow(self) -> bool:
        viewer = self.app.viewer_id
        return viewer is not None and viewer != self.profile.id

    def compose(self) -> ComposeResult:
        api = self.app.api
        pid = self.profile.id
        yield Static(self._header_text(), id="profile-header", markup=False)
        if self.can_follow:
            yield Button(self._follow_label(), id="follow-btn")
        with TabbedContent(initial="tab-posts"):
            with TabPane("Posts", id="tab-posts"):
                yield FeedPanel(lambda: api.get_user_posts(pid), "No posts yet.", id="profile-posts")
            with TabPane("Likes", id="tab-likes"):
                yield FeedPanel(lambda: api.get_user_liked_posts(pid), "No liked posts.", id="profile-likes")
            with TabPane("Bookmarks", id="tab-bookmarks"):
                yield FeedPanel(lambda: api.get_user_bookmarked_posts(pid), "No bookmarks.", id="profile-bookmarks")

    def _header_text(self) -> str:
        p = self.profile
        lines = [f"{p.page_title} @{p.username}", p.page_description]
        if p.location:
            lines.append(f"📍 {p.location}")
        if p.website:
            lines.append(f"🔗 {p.website}")
        lines.append(f"{p.posts_count} Posts   {p.followers} Followers   {p.following} Following")
        return "\n".join(lines)

    def _follow_label(self) -> str:
        return "Unfollow" if self.following else "Follow"

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "follow-btn":
            event.stop()
            self.run_worker(self._toggle_follow(event.button), exclusive=True)

    async def _toggle_follow(self, button: Button) -> None:
        button.disabled = True
        try:
            result = await asyncio.to_thread(self.app.api.toggle_follow, self.profile.id)
        except Exception:
            logger.exception("toggle_follow failed")
            self.app.notify("Failed to update follow status", severity="error")
            return
        finally:
            button.disabled = False

        if not result.success:
            self.app.notify(result.error or "Failed to update follow status", severity="error")
            return
        self.following = not self.following
        self.profile.followers += 1 if self.following else -1
        button.label = self._follow_label()
        self.query_one("#profile-header", Static).update(self._header_text())


class ProfileView(Vertical):
    """Loads a profile by username and shows it, or a not-found notice."""

    def __init__(self, username: str, **kwargs):
        super().__init__(**kwargs)
        self.username = username

    def compose(self) -> ComposeResult:
        yield Static(f"Loading @{self.username}...", classes="profile-loading", markup=False)

    def on_mount(self) -> None:
        self.run_worker(self._load(), exclusive=True)

    async def _load(self) -> None:
        api = self.app.api
        try:
            profile = await asyncio.to_thread(api.get_profile_by_username, self.username)
            following = False
            if profile and self.app.viewer_id and self.app.viewer_id != profile.id:
                following = await asyncio.to_thread(api.is_following, profile.id)
        except Exception:
            logger.exception("profile load failed for %s", self.username)
            self.app.notify(f"Could not load @{self.username}", severity="error")
            return

        await self.remove_children()
        if profile is None:
            self.app.sub_title = "User not found"
            await self.mount(Static(f"User not found: @{self.username}", classes="profile-missing", markup=False))
            return
        self.app.title = profile.page_title
        self.app.sub_title = profile.page_description
        await self.mount(ProfileBody(profile, following, id="profile-body"))
        try:
            self.query_one("#profile-posts", FeedPanel).focus()
        except NoMatches:
            pass


# ───────── App ─────────
class CommandBar(Input):
    def key_escape(self) -> None:
        self.value = ""
        self.display = False
        self.app.focus_main_content()


class FeedlineApp(App):
    CSS_PATH = "main.tcss"
    TITLE = "feedline"
    ENABLE_COMMAND_PALETTE = False

    BINDINGS = [
        Binding("q", "quit", "Quit", show=False),
        Binding("1", "show_home", "Home", show=False),
        Binding("p", "show_profile", "Profile", show=False),
        Binding("n", "new_post", "New Post", show=False),
        Binding("r", "reload", "Reload", show=False),
        Binding("colon", "show_command_bar", "Command", show=False),
    ]

    current_view = reactive("home")

    def __init__(self, api: Optional[APIInterface] = None, **kwargs):
        super().__init__(**kwargs)
        self.api = api or get_api()
        self.viewer_id: Optional[str] = None

    def compose(self) -> ComposeResult:
        yield Static("feedline", id="app-header", markup=False)
        yield Container(id="view-container")
        yield Static(
            "[1] Home [p] Profile [n] New [j/k] Move [l] Like [s] Save [c] Comments [i] Reply [e] Edit [x] Delete [:] Cmd",
            id="app-footer",
            markup=False,
        )
        yield CommandBar(placeholder=":u <username>  :login  :logout  :q", id="command-bar")

    async def on_mount(self) -> None:
        self.query_one("#command-bar", CommandBar).display = False
        await self.resolve_viewer()
        await self.show_view("home")

    async def resolve_viewer(self) -> None:
        try:
            self.viewer_id = await asyncio.to_thread(self.api.get_db_user_id)
        except Exception:
            logger.exception("could not resolve the signed-in user")
            self.notify("Could not reach the backend; browsing signed out", severity="warning")
            self.viewer_id = None
        who = f"@{self.api.handle}" if self.viewer_id else "signed out"
        self.query_one("#app-header", Static).update(f"feedline [{self.current_view}] {who}")

    async def show_view(self, name: str, **kwargs) -> None:
        container = self.query_one("#view-container", Container)
        await container.remove_children()
        self.title = "feedline"
        self.sub_title = ""
        if name == "profile":
            view = ProfileView(kwargs["username"], id="profile-view")
        else:
            name = "home"
            view = HomeView(id="home-view")
        await container.mount(view)
        self.current_view = name
        who = f"@{self.api.handle}" if self.viewer_id else "signed out"
        self.query_one("#app-header", Static).update(f"feedline [{name}] {who}")
        self.call_after_refresh(self.focus_main_content)

    def focus_main_content(self) -> None:
        feeds = self.query(FeedPanel)
        if feeds:
            feeds.first().focus()

    async def action_show_home(self) -> None:
        await self.show_view("home")

    async def action_show_profile(self) -> None:
        if not self.viewer_id or not self.api.handle:
            self.notify("Sign in to view your profile (:login)", severity="warning")
            return
        await self.show_view("profile", username=self.api.handle)

    def action_new_post(self) -> None:
        if not self.viewer_id:
            self.notify("Sign in to post (:login)", severity="warning")
            return

        def check_refresh(result: bool) -> None:
            if result:
                self.action_reload()

        self.push_screen(NewPostDialog(), check_refresh)

    def action_reload(self) -> None:
        for feed in self.query(FeedPanel):
            feed.reload()
        for suggestions in self.query(WhoToFollow):
            suggestions.reload()

    def action_show_command_bar(self) -> None:
        bar = self.query_one("#command-bar", CommandBar)
        bar.display = True
        bar.value = ""
        bar.focus()

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id != "command-bar":
            return
        bar = self.query_one("#command-bar", CommandBar)
        bar.display = False
        command = event.value.strip().lstrip(":/")
        bar.value = ""
        await self.run_command(command)

    async def run_command(self, command: str) -> None:
        verb, _, arg = command.partition(" ")
        arg = arg.strip().lstrip("@")
        if verb in ("q", "quit"):
            self.exit()
        elif verb in ("u", "user") and arg:
            await self.show_view("profile", username=arg)
        elif verb in ("h", "home", "1"):
            await self.show_view("home")
        elif verb == "n":
            self.action_new_post()
        elif verb == "login":
            self.run_worker(self._login(), exclusive=True, group="auth")
        elif verb == "logout":
            await self._logout()
        elif verb:
            self.notify(f"Unknown command: {verb}", severity="warning")
            self.focus_main_content()

    async def _login(self) -> None:
        self.notify("Opening browser for sign-in...")
        try:
            result = await asyncio.to_thread(authenticate)
        except AuthError as e:
            self.notify(f"Sign-in failed: {e}", severity="error")
            return
        self.api.set_handle(result["username"])
        if isinstance(self.api, RealAPI):
            self.api.set_token(result["tokens"]["access_token"])
        await self.resolve_viewer()
        await self.show_view("home")
        self.notify(f"Signed in as @{result['username']}")

    async def _logout(self) -> None:
        await asyncio.to_thread(clear_credentials)
        self.api.set_handle(None)
        if isinstance(self.api, RealAPI):
            self.api.clear_token()
        self.viewer_id = None
        await self.show_view("home")
        self.notify("Signed out")


def main(argv=None):
    parser = argparse.ArgumentParser(prog="feedline", description="A social feed in your terminal.")
    parser.add_argument("--seed", action="store_true", help="populate the local database with demo data and exit")
    parser.add_argument("--handle", help="browse as this username")
    args = parser.parse_args(argv)

    configure_logging()
    if args.seed:
        seed()
        return

    api = get_api()
    if args.handle:
        api.set_handle(args.handle)
    try:
        FeedlineApp(api=api).run()
    except Exception:
        logger.exception("Exception occurred while running FeedlineApp")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
