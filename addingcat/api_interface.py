from typing import Any, Callable, Dict, Iterable, List, Optional
from urllib.parse import quote
import logging
import threading

import requests
from keyring.errors import KeyringError
from requests import Session

from . import auth_storage
from .data_models import Identity
from .errors import RemoteError

logger = logging.getLogger("addingcat.backend")

# Auth events pushed to on_auth_state_change listeners
SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
TOKEN_REFRESHED = "TOKEN_REFRESHED"
USER_UPDATED = "USER_UPDATED"

AuthCallback = Callable[[str, Optional[Identity]], None]


class Subscription:
    """Handle returned by on_auth_state_change."""

    def __init__(self, listeners: List[AuthCallback], callback: AuthCallback, lock: threading.Lock):
        self._listeners = listeners
        self._callback = callback
        self._lock = lock

    def unsubscribe(self) -> None:
        with self._lock:
            if self._callback in self._listeners:
                self._listeners.remove(self._callback)


class APIInterface:
    """What the stores need from the backend: auth, tables and storage."""

    # auth
    def get_current_session(self) -> Optional[Identity]: ...
    def on_auth_state_change(self, callback: AuthCallback) -> Subscription: ...
    def sign_in_with_password(self, email: str, password: str) -> Identity: ...
    def sign_up(self, email: str, password: str, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]: ...
    def sign_out(self) -> None: ...
    def send_password_reset(self, email: str) -> Dict[str, Any]: ...
    # tables
    def select(self, table: str, columns: str = "*", filters: Optional[Dict[str, Any]] = None,
               order: Optional[str] = None, single: bool = False) -> Any: ...
    def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]: ...
    def update(self, table: str, values: Dict[str, Any], filters: Dict[str, Any]) -> List[Dict[str, Any]]: ...
    def delete(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]: ...
    def rpc(self, function: str, params: Optional[Dict[str, Any]] = None) -> Any: ...
    # storage
    def upload(self, bucket: str, key: str, data: bytes, content_type: str, upsert: bool = False) -> Dict[str, Any]: ...
    def remove(self, bucket: str, keys: Iterable[str]) -> None: ...
    def get_public_url(self, bucket: str, key: str) -> str: ...


class AuthEvents:
    """Listener registry shared by the real and in-memory backends."""

    def __init__(self):
        self._listeners: List[AuthCallback] = []
        self._listeners_lock = threading.Lock()

    def on_auth_state_change(self, callback: AuthCallback) -> Subscription:
        with self._listeners_lock:
            self._listeners.append(callback)
        return Subscription(self._listeners, callback, self._listeners_lock)

    def _emit(self, event: str, identity: Optional[Identity]) -> None:
        with self._listeners_lock:
            listeners = list(self._listeners)
        logger.debug("auth event %s (%d listener(s))", event, len(listeners))
        for callback in listeners:
            try:
                callback(event, identity)
            except Exception:
                # one broken listener must not starve the others
                logger.exception("auth listener failed handling %s", event)


class RealAPI(AuthEvents, APIInterface):
    """Client for a Supabase project: GoTrue auth, PostgREST tables, Storage.

    It expects the project URL (https://<ref>.supabase.co) and the public
    anon key. Requests run with the signed-in user's access token when there
    is one so row-level security applies to that user.
    """

    def __init__(self, base_url: str, anon_key: str, timeout: float = 10.0, persist_session: bool = True):
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key
        self.timeout = timeout
        self.persist_session = persist_session
        self.session: Session = requests.Session()
        self.session.headers.update({"apikey": anon_key})
        self._identity: Optional[Identity] = None
        self._restored = not persist_session
        self._identity_lock = threading.RLock()

    # --- helpers ---
    def _auth_header(self) -> Dict[str, str]:
        token = self._identity.access_token if self._identity else self.anon_key
        return {"Authorization": f"Bearer {token}"}

    def _request(
        self,
        method: str,
        path: str,
        params: Dict[str, Any] | None = None,
        json_payload: Any = None,
        data: bytes | None = None,
        headers: Dict[str, str] | None = None,
        authorized: bool = True,
    ) -> requests.Response:
        current = self._identity
        if authorized and current is not None and current.refresh_token and current.is_expired():
            self.refresh_session()

        url = f"{self.base_url}/{path.lstrip('/')}"
        all_headers = self._auth_header() if authorized else {"Authorization": f"Bearer {self.anon_key}"}
        if headers:
            all_headers.update(headers)
        try:
            resp = self.session.request(
                method,
                url,
                params=params,
                json=json_payload,
                data=data,
                headers=all_headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("%s %s failed: %s", method, path, e)
            raise RemoteError(f"Network error: {e}") from e

        if not resp.ok:
            err = self._error_from_response(resp)
            logger.debug("%s %s -> HTTP %s %r", method, path, resp.status_code, err)
            raise err
        return resp

    @staticmethod
    def _error_from_response(resp: requests.Response) -> RemoteError:
        try:
            body = resp.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            return RemoteError(resp.text or f"HTTP {resp.status_code}", status=resp.status_code)
        # PostgREST: code/message, GoTrue: error_code/msg, Storage: error/message
        code = body.get("error_code") or body.get("code") or body.get("error")
        message = (
            body.get("message")
            or body.get("msg")
            or body.get("error_description")
            or body.get("error")
            or f"HTTP {resp.status_code}"
        )
        return RemoteError(str(message), code=str(code) if code is not None else None, status=resp.status_code)

    @staticmethod
    def _json_or_none(resp: requests.Response) -> Any:
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError:
            return None

    @staticmethod
    def _filter_params(filters: Optional[Dict[str, Any]]) -> Dict[str, str]:
        params = {}
        for column, value in (filters or {}).items():
            if value is None:
                params[column] = "is.null"
            elif isinstance(value, bool):
                params[column] = f"eq.{str(value).lower()}"
            else:
                params[column] = f"eq.{value}"
        return params

    def _set_identity(self, identity: Optional[Identity]) -> None:
        with self._identity_lock:
            self._identity = identity
            self._restored = True
        if not self.persist_session:
            return
        try:
            if identity is None:
                auth_storage.clear_session()
            else:
                auth_storage.save_session(identity)
        except KeyringError:
            # keep the in-memory session; it just won't survive a restart
            logger.exception("could not persist session to keyring")

    # --- auth ---
    def get_current_session(self) -> Optional[Identity]:
        with self._identity_lock:
            if not self._restored:
                self._restored = True
                try:
                    self._identity = auth_storage.load_session()
                except KeyringError:
                    logger.exception("could not read stored session from keyring")
                    self._identity = None
            identity = self._identity

        if identity is not None and identity.is_expired():
            if not identity.refresh_token:
                logger.debug("stored session expired and has no refresh token")
                self._set_identity(None)
                return None
            try:
                identity = self._refresh(identity.refresh_token)
            except RemoteError as e:
                logger.warning("session refresh failed, signing out locally: %s", e.message)
                self._set_identity(None)
                return None
            self._set_identity(identity)
        return identity

    def _refresh(self, refresh_token: str) -> Identity:
        resp = self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "refresh_token"},
            json_payload={"refresh_token": refresh_token},
            authorized=False,
        )
        return Identity.from_token_response(resp.json())

    def refresh_session(self) -> Identity:
        """Exchange the refresh token for a new session and announce it."""
        current = self._identity
        if current is None or not current.refresh_token:
            raise RemoteError("No session to refresh")
        identity = self._refresh(current.refresh_token)
        self._set_identity(identity)
        self._emit(TOKEN_REFRESHED, identity)
        return identity

    def sign_in_with_password(self, email: str, password: str) -> Identity:
        resp = self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json_payload={"email": email, "password": password},
            authorized=False,
        )
        identity = Identity.from_token_response(resp.json())
        self._set_identity(identity)
        logger.debug("signed in as %s", identity.user_id)
        self._emit(SIGNED_IN, identity)
        return identity

    def sign_up(self, email: str, password: str, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Create an account. Returns {'user': {...}, 'session': Identity|None}.

        Projects with email confirmation enabled return only the user; the
        session is None until the address is confirmed and the user signs in.
        """
        resp = self._request(
            "POST",
            "/auth/v1/signup",
            json_payload={"email": email, "password": password, "data": metadata or {}},
            authorized=False,
        )
        body = resp.json()
        if body.get("access_token"):
            identity = Identity.from_token_response(body)
            self._set_identity(identity)
            self._emit(SIGNED_IN, identity)
            return {"user": body.get("user") or {}, "session": identity}
        return {"user": body, "session": None}

    def sign_out(self) -> None:
        """Revoke the session server-side. The local session is always dropped."""
        current = self._identity
        try:
            if current is not None:
                self._request("POST", "/auth/v1/logout")
        finally:
            self._set_identity(None)
            self._emit(SIGNED_OUT, None)

    def send_password_reset(self, email: str) -> Dict[str, Any]:
        resp = self._request("POST", "/auth/v1/recover", json_payload={"email": email}, authorized=False)
        return self._json_or_none(resp) or {}

    # --- tables ---
    def select(self, table, columns="*", filters=None, order=None, single=False):
        params = {"select": columns}
        params.update(self._filter_params(filters))
        if order:
            params["order"] = order
        headers = {"Accept": "application/vnd.pgrst.object+json"} if single else None
        resp = self._request("GET", f"/rest/v1/{table}", params=params, headers=headers)
        return resp.json()

    def insert(self, table, row):
        resp = self._request(
            "POST",
            f"/rest/v1/{table}",
            params={"select": "*"},
            json_payload=row,
            headers={"Prefer": "return=representation", "Accept": "application/vnd.pgrst.object+json"},
        )
        return resp.json()

    def update(self, table, values, filters):
        params = {"select": "*"}
        params.update(self._filter_params(filters))
        resp = self._request(
            "PATCH",
            f"/rest/v1/{table}",
            params=params,
            json_payload=values,
            headers={"Prefer": "return=representation"},
        )
        return self._json_or_none(resp) or []

    def delete(self, table, filters):
        params = {"select": "*"}
        params.update(self._filter_params(filters))
        resp = self._request("DELETE", f"/rest/v1/{table}", params=params, headers={"Prefer": "return=representation"})
        return self._json_or_none(resp) or []

    def rpc(self, function, params=None):
        resp = self._request("POST", f"/rest/v1/rpc/{function}", json_payload=params or {})
        return self._json_or_none(resp)

    # --- storage ---
    def upload(self, bucket, key, data, content_type, upsert=False):
        resp = self._request(
            "POST",
            f"/storage/v1/object/{bucket}/{quote(key)}",
            data=data,
            headers={"Content-Type": content_type, "x-upsert": "true" if upsert else "false"},
        )
        return self._json_or_none(resp) or {}

    def remove(self, bucket, keys):
        self._request("DELETE", f"/storage/v1/object/{bucket}", json_payload={"prefixes": list(keys)})

    def get_public_url(self, bucket, key):
        return f"{self.base_url}/storage/v1/object/public/{bucket}/{quote(key)}"
