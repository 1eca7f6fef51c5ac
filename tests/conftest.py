from __future__ import annotations

import copy
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import keyring
import pytest
from keyring.backend import KeyringBackend
from keyring.errors import PasswordDeleteError, PasswordSetError

from addingcat.api_interface import SIGNED_IN, SIGNED_OUT, APIInterface, AuthEvents
from addingcat.context import AppContext
from addingcat.data_models import Identity
from addingcat.errors import NO_ROWS_CODE, RemoteError

ALICE_ID = "a11ce000-0000-4000-8000-000000000001"
BOB_ID = "b0b00000-0000-4000-8000-000000000002"
PUBLIC_URL = "https://fake.supabase.co/storage/v1/object/public"


class FakeAPI(AuthEvents, APIInterface):
    """In-memory backend with Supabase-like semantics.

    Row-level security is modelled for posts: updates and deletes only see
    rows owned by the signed-in user. ``failures[name]`` makes the next call
    of that method raise; ``hooks[name]`` runs once just before it.
    """

    def __init__(self):
        super().__init__()
        self.tables: Dict[str, List[Dict[str, Any]]] = {"users": [], "posts": [], "likes": []}
        self.accounts: Dict[str, Dict[str, Any]] = {}
        self.current: Optional[Identity] = None
        self.storage: Dict[tuple, Dict[str, Any]] = {}
        self.calls: List[str] = []
        self.rpc_calls: List[tuple] = []
        self.failures: Dict[str, Exception] = {}
        self.hooks: Dict[str, Callable[[], Any]] = {}
        self._clock = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def _enter(self, name: str) -> None:
        self.calls.append(name)
        hook = self.hooks.pop(name, None)
        if hook is not None:
            hook()
        exc = self.failures.pop(name, None)
        if exc is not None:
            raise exc

    def _tick(self) -> str:
        self._clock += timedelta(minutes=1)
        return self._clock.isoformat()

    # --- test helpers ---
    def add_account(self, email: str, password: str, user_id: Optional[str] = None, confirmed: bool = True) -> str:
        user_id = user_id or str(uuid.uuid4())
        self.accounts[email] = {"id": user_id, "password": password, "metadata": {}, "confirmed": confirmed}
        return user_id

    def confirm(self, email: str) -> None:
        self.accounts[email]["confirmed"] = True

    def seed_profile(self, user_id: str, username: str, avatar_url: Optional[str] = None) -> None:
        self.tables["users"].append({"id": user_id, "username": username, "avatar_url": avatar_url})

    def seed_post(self, user_id: str, caption: str, like_count: int = 0) -> Dict[str, Any]:
        stamp = self._tick()
        row = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "image_url": f"{PUBLIC_URL}/posts/{user_id}/{len(self.tables['posts'])}.jpg",
            "caption": caption,
            "like_count": like_count,
            "created_at": stamp,
            "updated_at": stamp,
        }
        self.tables["posts"].append(row)
        return row

    def seed_like(self, post_id: str, user_id: str) -> None:
        self.tables["likes"].append({"post_id": post_id, "user_id": user_id})
        self.post(post_id)["like_count"] += 1

    def post(self, post_id: str) -> Optional[Dict[str, Any]]:
        return next((p for p in self.tables["posts"] if p["id"] == post_id), None)

    def likes_for(self, post_id: str) -> List[Dict[str, Any]]:
        return [like for like in self.tables["likes"] if like["post_id"] == post_id]

    # --- auth ---
    def get_current_session(self):
        self._enter("get_current_session")
        return self.current

    def sign_in_with_password(self, email, password):
        self._enter("sign_in_with_password")
        account = self.accounts.get(email)
        if account is None or account["password"] != password:
            raise RemoteError("Invalid login credentials", code="invalid_credentials", status=400)
        if not account["confirmed"]:
            raise RemoteError("Email not confirmed", code="email_not_confirmed", status=400)
        self.current = Identity(
            user_id=account["id"],
            access_token=f"token-{account['id']}",
            refresh_token="refresh",
            email=email,
            user_metadata=dict(account["metadata"]),
        )
        self._emit(SIGNED_IN, self.current)
        return self.current

    def sign_up(self, email, password, metadata=None):
        self._enter("sign_up")
        if email in self.accounts:
            raise RemoteError("User already registered", code="user_already_exists", status=422)
        user_id = self.add_account(email, password, confirmed=False)
        self.accounts[email]["metadata"] = dict(metadata or {})
        return {"user": {"id": user_id, "email": email, "user_metadata": dict(metadata or {})}, "session": None}

    def sign_out(self):
        try:
            self._enter("sign_out")
        finally:
            self.current = None
            self._emit(SIGNED_OUT, None)

    def send_password_reset(self, email):
        self._enter("send_password_reset")
        return {}

    # --- tables ---
    def _matches(self, row, filters):
        return all(str(row.get(k)) == str(v) for k, v in (filters or {}).items())

    def _owned(self, table, row):
        if table != "posts":
            return True
        return self.current is not None and row["user_id"] == self.current.user_id

    def select(self, table, columns="*", filters=None, order=None, single=False):
        self._enter("select")
        rows = [copy.deepcopy(r) for r in self.tables[table] if self._matches(r, filters)]
        if table == "posts" and "users:user_id" in columns:
            for row in rows:
                author = next((u for u in self.tables["users"] if u["id"] == row["user_id"]), None)
                row["users"] = {"username": author["username"], "avatar_url": author["avatar_url"]} if author else None
        if order:
            column, _, direction = order.partition(".")
            rows.sort(key=lambda r: r[column], reverse=direction == "desc")
        if single:
            if len(rows) != 1:
                raise RemoteError(
                    "JSON object requested, multiple (or no) rows returned", code=NO_ROWS_CODE, status=406
                )
            return rows[0]
        return rows

    def insert(self, table, row):
        self._enter("insert")
        row = dict(row)
        if table == "users":
            for existing in self.tables["users"]:
                if existing["id"] == row["id"] or existing["username"] == row["username"]:
                    raise RemoteError("duplicate key value violates unique constraint", code="23505", status=409)
        if table == "posts":
            stamp = self._tick()
            row.setdefault("id", str(uuid.uuid4()))
            row.setdefault("created_at", stamp)
            row.setdefault("updated_at", stamp)
        self.tables[table].append(row)
        return copy.deepcopy(row)

    def update(self, table, values, filters):
        self._enter("update")
        if table == "users" and "username" in values:
            for existing in self.tables["users"]:
                if existing["username"] == values["username"] and not self._matches(existing, filters):
                    raise RemoteError("duplicate key value violates unique constraint", code="23505", status=409)
        changed = []
        for row in self.tables[table]:
            if self._matches(row, filters) and self._owned(table, row):
                row.update(values)
                if table == "posts":
                    row["updated_at"] = self._tick()
                changed.append(copy.deepcopy(row))
        return changed

    def delete(self, table, filters):
        self._enter("delete")
        doomed = [r for r in self.tables[table] if self._matches(r, filters) and self._owned(table, r)]
        self.tables[table] = [r for r in self.tables[table] if r not in doomed]
        if table == "posts":
            ids = {r["id"] for r in doomed}
            self.tables["likes"] = [like for like in self.tables["likes"] if like["post_id"] not in ids]
        return copy.deepcopy(doomed)

    def rpc(self, function, params=None):
        self._enter("rpc")
        self.rpc_calls.append((function, dict(params or {})))
        if self.current is None:
            raise RemoteError("not authenticated", code="28000", status=401)
        post = self.post(params["target_post_id"])
        if post is None:
            raise RemoteError("post not found", code="P0002", status=404)
        uid = self.current.user_id
        existing = [like for like in self.likes_for(post["id"]) if like["user_id"] == uid]
        if function == "like_post" and not existing:
            self.tables["likes"].append({"post_id": post["id"], "user_id": uid})
            post["like_count"] += 1
        elif function == "unlike_post" and existing:
            self.tables["likes"].remove(existing[0])
            post["like_count"] -= 1
        return post["like_count"]

    # --- storage ---
    def upload(self, bucket, key, data, content_type, upsert=False):
        self._enter("upload")
        if (bucket, key) in self.storage and not upsert:
            raise RemoteError("The resource already exists", code="Duplicate", status=409)
        self.storage[(bucket, key)] = {"data": data, "content_type": content_type, "upsert": upsert}
        return {"Key": f"{bucket}/{key}"}

    def remove(self, bucket, keys):
        self._enter("remove")
        for key in keys:
            self.storage.pop((bucket, key), None)

    def get_public_url(self, bucket, key):
        return f"{PUBLIC_URL}/{bucket}/{key}"


class MemoryKeyring(KeyringBackend):
    """Keyring backend kept in a dict; ``max_length`` mimics size limits."""

    priority = 1

    def __init__(self, max_length: Optional[int] = None):
        super().__init__()
        self.store: Dict[tuple, str] = {}
        self.max_length = max_length

    def get_password(self, service, username):
        return self.store.get((service, username))

    def set_password(self, service, username, password):
        if self.max_length is not None and len(password) > self.max_length:
            raise PasswordSetError(f"{username} is longer than {self.max_length} characters")
        self.store[(service, username)] = password

    def delete_password(self, service, username):
        try:
            del self.store[(service, username)]
        except KeyError:
            raise PasswordDeleteError(username)


@pytest.fixture()
def memory_keyring():
    previous = keyring.get_keyring()
    backend = MemoryKeyring()
    keyring.set_keyring(backend)
    try:
        yield backend
    finally:
        keyring.set_keyring(previous)


@pytest.fixture()
def api() -> FakeAPI:
    api = FakeAPI()
    api.add_account("alice@x.com", "secret1", user_id=ALICE_ID)
    api.add_account("bob@x.com", "secret2", user_id=BOB_ID)
    return api


@pytest.fixture()
def ctx(api) -> AppContext:
    context = AppContext(api)
    context.start()
    yield context
    context.close()


@pytest.fixture()
def signed_in(ctx) -> AppContext:
    """Context with alice signed in and her profile resolved."""
    result = ctx.session.sign_in("alice@x.com", "secret1")
    assert result.ok
    return ctx


@pytest.fixture()
def image_file(tmp_path):
    from PIL import Image

    path = tmp_path / "cat.png"
    Image.new("RGB", (4, 4), color=(200, 120, 40)).save(path)
    return path
