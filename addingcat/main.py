from textual import work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal, VerticalScroll
from textual.screen import ModalScreen, Screen
from textual.widgets import Button, Input, Label, Static, TextArea
from datetime import datetime, timezone
from typing import List, Optional
from rich.text import Text
import logging

from .config import CAPTION_MAX_LENGTH, Settings
from .context import AppContext
from .data_models import Identity, Post, Result
from .errors import AddingCatError, ValidationError
from .feed_store import LikeState
from .log import configure_logging
from . import validation

logger = logging.getLogger("addingcat.ui")


def format_time_ago(dt: datetime) -> str:
    """Format datetime as 'time ago' string."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    diff = datetime.now(timezone.utc) - dt
    if diff.total_seconds() < 60:
        return "just now"
    if diff.days > 0:
        return f"{diff.days}d ago"
    if diff.seconds < 60:
        return "just now"
    if diff.seconds < 3600:
        return f"{diff.seconds // 60}m ago"
    return f"{diff.seconds // 3600}h ago"


# ───────── Dialogs ─────────
class AlertDialog(ModalScreen):
    """Blocking message with a single OK button."""

    def __init__(self, title: str, message: str):
        super().__init__()
        self.title_text = title
        self.message = message

    def compose(self) -> ComposeResult:
        with Container(id="dialog-container"):
            yield Static(self.title_text, id="dialog-title", markup=False)
            yield Static(self.message, classes="dialog-message", markup=False)
            yield Button("OK", variant="primary", id="ok-button")

    def on_mount(self) -> None:
        self.query_one("#ok-button", Button).focus()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(None)


class ConfirmDialog(ModalScreen):
    def __init__(self, title: str, message: str, confirm_label: str = "OK"):
        super().__init__()
        self.title_text = title
        self.message = message
        self.confirm_label = confirm_label

    def compose(self) -> ComposeResult:
        with Container(id="dialog-container"):
            yield Static(self.title_text, id="dialog-title", markup=False)
            yield Static(self.message, classes="dialog-message", markup=False)
            with Horizontal(id="action-buttons"):
                yield Button(self.confirm_label, variant="error", id="confirm-button")
                yield Button("Cancel", id="cancel-button")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(event.button.id == "confirm-button")


class PostDialog(ModalScreen):
    """Create a post (image + caption) or edit an existing caption."""

    def __init__(self, post: Optional[Post] = None):
        super().__init__()
        self.post = post

    def compose(self) -> ComposeResult:
        with Container(id="dialog-container"):
            yield Static("Edit Post" if self.post else "Create New Post", id="dialog-title")
            if self.post is None:
                yield Input(placeholder="Path to an image file", id="image-input")
            yield TextArea(self.post.caption if self.post else "", id="caption-textarea")
            yield Static("", id="char-count")
            yield Static("", id="status-message", classes="status-message")
            with Horizontal(id="action-buttons"):
                yield Button("Save" if self.post else "Post", variant="primary", id="post-button")
                yield Button("Cancel", id="cancel-button")

    def on_mount(self) -> None:
        self._update_count()
        self.query_one("#image-input" if self.post is None else "#caption-textarea").focus()

    def on_text_area_changed(self, event: TextArea.Changed) -> None:
        self._update_count()

    def _update_count(self) -> None:
        length = len(self.query_one("#caption-textarea", TextArea).text)
        counter = self.query_one("#char-count", Static)
        counter.update(f"{length}/{CAPTION_MAX_LENGTH}")
        counter.set_class(length > CAPTION_MAX_LENGTH, "over-limit")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "cancel-button":
            self.dismiss(False)
            return
        try:
            caption = validation.clean_caption(self.query_one("#caption-textarea", TextArea).text)
            image_path = None
            if self.post is None:
                image_path = validation.check_image_file(self.query_one("#image-input", Input).value)
        except ValidationError as e:
            self.app.push_screen(AlertDialog("Error", e.message))
            return
        event.button.disabled = True
        self._show_status("Uploading..." if self.post is None else "Saving...")
        self._submit(caption, image_path)

    @work(thread=True, exclusive=True)
    def _submit(self, caption: str, image_path) -> None:
        feed = self.app.ctx.feed
        if self.post is not None:
            result = feed.update_post(self.post.id, caption)
        else:
            upload = feed.upload_image(image_path)
            if not upload.ok:
                self.app.call_from_thread(self._failed, upload)
                return
            result = feed.create_post(upload.data, caption)
        if result.ok:
            self.app.call_from_thread(self._done)
        else:
            self.app.call_from_thread(self._failed, result)

    def _done(self) -> None:
        self.app.notify("Post updated!" if self.post else "Post created successfully!", severity="information")
        self.dismiss(True)

    def _failed(self, result: Result) -> None:
        self.query_one("#post-button", Button).disabled = False
        self._show_status("")
        self.app.push_screen(AlertDialog("Error", result.error_message))

    def _show_status(self, message: str) -> None:
        self.query_one("#status-message", Static).update(message)


class ForgotPasswordDialog(ModalScreen):
    def compose(self) -> ComposeResult:
        with Container(id="dialog-container"):
            yield Static("Reset Password", id="dialog-title")
            yield Input(placeholder="Email", id="reset-email")
            with Horizontal(id="action-buttons"):
                yield Button("Send reset link", variant="primary", id="send-button")
                yield Button("Cancel", id="cancel-button")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "cancel-button":
            self.dismiss(None)
            return
        try:
            email = validation.clean_email(self.query_one("#reset-email", Input).value)
        except ValidationError as e:
            self.app.push_screen(AlertDialog("Error", e.message))
            return
        event.button.disabled = True
        self._send(email)

    @work(thread=True, exclusive=True)
    def _send(self, email: str) -> None:
        result = self.app.ctx.session.reset_password(email)
        self.app.call_from_thread(self._finish, result)

    def _finish(self, result: Result) -> None:
        self.query_one("#send-button", Button).disabled = False
        if result.ok:
            self.app.push_screen(
                AlertDialog("Check your email", "We sent you a link to reset your password."),
                lambda _: self.dismiss(None),
            )
        else:
            self.app.push_screen(AlertDialog("Error", result.error_message))


# ───────── Items ─────────
class PostItem(Static):
    """One post in a feed list."""

    can_focus = True

    def __init__(self, post: Post, state: LikeState, own: bool, **kwargs):
        super().__init__(**kwargs)
        self.post = post
        self.state = state
        self.own = own
        self.add_class("post-item")

    def render(self) -> Text:
        post = self.post
        author = post.author.username if post.author else post.user_id[:8]
        heart = {LikeState.LIKED: "♥", LikeState.NOT_LIKED: "♡", LikeState.PENDING: "…"}[self.state]
        text = Text()
        text.append(f"@{author}", style="bold")
        text.append(f"  {format_time_ago(post.created_at)}", style="#888888")
        if self.own:
            text.append("  [e]dit [x] delete", style="#888888")
        text.append(f"\n{post.caption}\n")
        text.append(f"{heart} {post.like_count}", style="red" if self.state == LikeState.LIKED else "")
        text.append(f"   {post.image_url}", style="underline #4a9eff")
        return text


def build_post_items(ctx: AppContext, posts: List[Post]) -> List[PostItem]:
    identity = ctx.session.identity
    me = identity.user_id if identity else None
    return [PostItem(p, ctx.feed.like_state(p.id), p.user_id == me) for p in posts]


# ───────── Screens ─────────
class AuthScreen(Screen):
    """Sign in / sign up form."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.signing_up = False

    def compose(self) -> ComposeResult:
        with Container(id="auth-panel"):
            yield Static("Adding Cat", id="auth-title")
            yield Input(placeholder="Email", id="email-input")
            yield Input(placeholder="Password", password=True, id="password-input")
            yield Input(placeholder="Confirm password", password=True, id="confirm-input", classes="signup-only")
            yield Input(placeholder="Username", id="username-input", classes="signup-only")
            yield Button("Sign In", variant="primary", id="submit-button")
            yield Button("Don't have an account? Sign Up", id="toggle-button")
            yield Button("Forgot password?", id="forgot-button")

    def on_mount(self) -> None:
        self._sync_mode()
        self.query_one("#email-input", Input).focus()

    def _sync_mode(self) -> None:
        for widget in self.query(".signup-only"):
            widget.display = self.signing_up
        self.query_one("#submit-button", Button).label = "Sign Up" if self.signing_up else "Sign In"
        self.query_one("#toggle-button", Button).label = (
            "Already have an account? Sign In" if self.signing_up else "Don't have an account? Sign Up"
        )

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "toggle-button":
            self.signing_up = not self.signing_up
            self._sync_mode()
        elif event.button.id == "forgot-button":
            self.app.push_screen(ForgotPasswordDialog())
        elif event.button.id == "submit-button":
            self._submit()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        self._submit()

    def _submit(self) -> None:
        password = self.query_one("#password-input", Input).value
        username = self.query_one("#username-input", Input).value
        try:
            email = validation.check_credentials(
                self.query_one("#email-input", Input).value,
                password,
                confirm_password=self.query_one("#confirm-input", Input).value,
                username=username,
                signing_up=self.signing_up,
            )
        except ValidationError as e:
            self.app.push_screen(AlertDialog("Error", e.message))
            return
        self.query_one("#submit-button", Button).disabled = True
        self._authenticate(email, password, username.strip(), self.signing_up)

    @work(thread=True, exclusive=True)
    def _authenticate(self, email: str, password: str, username: str, signing_up: bool) -> None:
        session = self.app.ctx.session
        if signing_up:
            result = session.sign_up(email, password, username)
        else:
            result = session.sign_in(email, password)
        self.app.call_from_thread(self._finish, result, signing_up)

    def _finish(self, result: Result, signing_up: bool) -> None:
        self.query_one("#submit-button", Button).disabled = False
        if not result.ok:
            self.app.push_screen(AlertDialog("Error", result.error_message))
        elif signing_up:
            self.signing_up = False
            self._sync_mode()
            self.app.push_screen(AlertDialog("Success", result.data.message))


class FeedScreen(Screen):
    BINDINGS = [
        Binding("r", "refresh", "Refresh"),
        Binding("n", "new_post", "New post"),
        Binding("l", "toggle_like", "Like"),
        Binding("e", "edit_post", "Edit"),
        Binding("x", "delete_post", "Delete"),
        Binding("p", "profile", "Profile"),
        Binding("o", "logout", "Logout"),
        Binding("j", "cursor_down", "Down", show=False),
        Binding("k", "cursor_up", "Up", show=False),
    ]

    def compose(self) -> ComposeResult:
        yield Static("", id="app-header", markup=False)
        yield VerticalScroll(id="feed-list")
        yield Static(
            "[r] Refresh [n] New Post [l] Like [e] Edit [x] Delete [p] Profile [o] Logout [j/k] Navigate",
            id="app-footer",
            markup=False,
        )

    def on_mount(self) -> None:
        self.render_feed()

    def on_screen_resume(self) -> None:
        self.render_feed()

    def render_feed(self) -> None:
        ctx = self.app.ctx
        profile = ctx.session.profile
        self.query_one("#app-header", Static).update(
            f"adding cat [feed] @{profile.username}" if profile else "adding cat [feed]"
        )
        feed_list = self.query_one("#feed-list", VerticalScroll)
        focused_id = self._focused_post().id if self._focused_post() else None
        feed_list.remove_children()
        items = build_post_items(ctx, ctx.feed.feed)
        if not items:
            feed_list.mount(Static("No posts yet. Press [n] to share a picture.", classes="empty", markup=False))
            return
        feed_list.mount(*items)
        target = next((i for i in items if i.post.id == focused_id), items[0])
        self.call_after_refresh(target.focus)

    def _focused_post(self) -> Optional[Post]:
        focused = self.focused
        return focused.post if isinstance(focused, PostItem) else None

    def _run(self, title: str, operation, *args) -> None:
        """Run a feed operation off the UI thread, then redraw."""
        self._run_worker(title, operation, args)

    @work(thread=True)
    def _run_worker(self, title: str, operation, args) -> None:
        result = operation(*args)
        self.app.call_from_thread(self._after, title, result)

    def _after(self, title: str, result: Result) -> None:
        self.render_feed()
        if not result.ok:
            self.app.push_screen(AlertDialog(title, result.error_message))

    def action_refresh(self) -> None:
        self._run("Error", self.app.ctx.feed.refresh_feed)

    def action_new_post(self) -> None:
        self.app.push_screen(PostDialog(), lambda changed: changed and self.render_feed())

    def action_toggle_like(self) -> None:
        post = self._focused_post()
        if post is None:
            return
        feed = self.app.ctx.feed
        state = feed.like_state(post.id)
        if state == LikeState.PENDING:
            return
        operation = feed.unlike_post if state == LikeState.LIKED else feed.like_post
        self._run("Error", operation, post.id)
        # show the pending heart right away
        self.render_feed()

    def _own_focused_post(self) -> Optional[Post]:
        post = self._focused_post()
        identity = self.app.ctx.session.identity
        if post is None or identity is None or post.user_id != identity.user_id:
            return None
        return post

    def action_edit_post(self) -> None:
        post = self._own_focused_post()
        if post is not None:
            self.app.push_screen(PostDialog(post), lambda changed: changed and self.render_feed())

    def action_delete_post(self) -> None:
        post = self._own_focused_post()
        if post is None:
            return

        def confirmed(ok: bool) -> None:
            if ok:
                self._run("Error", self.app.ctx.feed.delete_post, post.id)

        self.app.push_screen(ConfirmDialog("Delete Post", "Delete this post?", "Delete"), confirmed)

    def action_profile(self) -> None:
        self.app.push_screen(ProfileScreen())

    def action_logout(self) -> None:
        def confirmed(ok: bool) -> None:
            if ok:
                self.app.sign_out()

        self.app.push_screen(ConfirmDialog("Logout", "Are you sure you want to logout?", "Logout"), confirmed)

    def action_cursor_down(self) -> None:
        self.focus_next(PostItem)

    def action_cursor_up(self) -> None:
        self.focus_previous(PostItem)


class ProfileScreen(Screen):
    BINDINGS = [Binding("escape", "back", "Back")]

    def compose(self) -> ComposeResult:
        with Container(id="profile-panel"):
            yield Static("", id="profile-header", markup=False)
            with Horizontal(classes="profile-row"):
                yield Input(placeholder="Username", id="username-input")
                yield Button("Save username", id="username-button")
            with Horizontal(classes="profile-row"):
                yield Input(placeholder="Path to a new avatar image", id="avatar-input")
                yield Button("Change avatar", id="avatar-button")
                yield Button("Remove avatar", variant="error", id="remove-avatar-button")
            yield Label("Your posts", id="own-posts-title")
            yield VerticalScroll(id="own-posts")
            yield Button("Back", id="back-button")

    def on_mount(self) -> None:
        self.render_profile()

    def render_profile(self) -> None:
        ctx = self.app.ctx
        profile = ctx.session.profile
        if profile is None:
            self.query_one("#profile-header", Static).update("Profile unavailable")
            return
        avatar = profile.avatar_url or "no avatar"
        self.query_one("#profile-header", Static).update(f"@{profile.username}\n{avatar}")
        self.query_one("#username-input", Input).value = profile.username
        own = self.query_one("#own-posts", VerticalScroll)
        own.remove_children()
        own.mount(*build_post_items(ctx, ctx.feed.posts_by(profile.id)))

    def action_back(self) -> None:
        self.app.pop_screen()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        session = self.app.ctx.session
        try:
            if event.button.id == "back-button":
                self.app.pop_screen()
            elif event.button.id == "username-button":
                username = validation.clean_username(self.query_one("#username-input", Input).value)
                self._run("Profile updated successfully!", session.update_profile, username=username)
            elif event.button.id == "avatar-button":
                path = validation.check_image_file(self.query_one("#avatar-input", Input).value)
                self._run("Avatar updated successfully!", session.change_avatar, path)
            elif event.button.id == "remove-avatar-button":
                self.app.push_screen(
                    ConfirmDialog("Remove Avatar", "Are you sure you want to remove your avatar?", "Remove"),
                    lambda ok: ok and self._run("Avatar removed successfully!", session.remove_avatar),
                )
        except ValidationError as e:
            self.app.push_screen(AlertDialog("Error", e.message))

    def _run(self, success: str, operation, *args, **kwargs) -> None:
        self._run_worker(success, operation, args, kwargs)

    @work(thread=True)
    def _run_worker(self, success: str, operation, args, kwargs) -> None:
        result = operation(*args, **kwargs)
        self.app.call_from_thread(self._after, success, result)

    def _after(self, success: str, result: Result) -> None:
        if result.ok:
            self.app.notify(success, severity="information")
            # author names in the feed come from the server
            self.app.refresh_feed()
            self.render_profile()
        else:
            self.app.push_screen(AlertDialog("Error", result.error_message))


class LoadingScreen(Screen):
    def compose(self) -> ComposeResult:
        yield Static("Loading...", id="loading", markup=False)


class AddingCatApp(App):
    CSS_PATH = "main.tcss"
    ENABLE_COMMAND_PALETTE = False
    BINDINGS = [Binding("ctrl+q", "quit", "Quit", show=False)]

    def __init__(self, ctx: AppContext, **kwargs):
        super().__init__(**kwargs)
        self.ctx = ctx

    def on_mount(self) -> None:
        self.push_screen(LoadingScreen())
        self.ctx.session.subscribe(self._identity_changed)
        self._start()

    @work(thread=True, exclusive=True, group="session")
    def _start(self) -> None:
        result = self.ctx.start()
        self.call_from_thread(self._started, result)

    def _started(self, result: Result) -> None:
        self._show_for(self.ctx.session.identity)
        if not result.ok:
            self.push_screen(AlertDialog("Error", result.error_message))

    def _identity_changed(self, identity: Optional[Identity]) -> None:
        # store listeners run on worker threads
        self.call_from_thread(self._show_for, identity)

    def _show_for(self, identity: Optional[Identity]) -> None:
        while len(self.screen_stack) > 2:
            self.pop_screen()
        if identity is None:
            if not isinstance(self.screen, AuthScreen):
                self.switch_screen(AuthScreen())
        elif isinstance(self.screen, FeedScreen):
            self.screen.render_feed()
        else:
            self.switch_screen(FeedScreen())

    @work(thread=True, exclusive=True, group="session")
    def sign_out(self) -> None:
        result = self.ctx.session.sign_out()
        if not result.ok:
            self.call_from_thread(self.notify, f"Signed out locally: {result.error_message}", severity="warning")

    @work(thread=True, group="feed")
    def refresh_feed(self) -> None:
        self.ctx.feed.refresh_feed()
        self.call_from_thread(self._redraw_feed)

    def _redraw_feed(self) -> None:
        for screen in self.screen_stack:
            if isinstance(screen, FeedScreen):
                screen.render_feed()


def main():
    try:
        settings = Settings.from_env()
    except AddingCatError as e:
        raise SystemExit(f"addingcat: {e.message}")
    configure_logging(settings.debug)
    ctx = AppContext.from_settings(settings)
    logger.debug("starting AddingCatApp")
    try:
        AddingCatApp(ctx).run()
    finally:
        ctx.close()


if __name__ == "__main__":
    main()
