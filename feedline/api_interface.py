"""
API Interface Layer for feedline.
The UI only talks to an APIInterface; RealAPI reaches an HTTP backend and
LocalAPI runs the same server actions against the local database.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests
from requests import Session

from . import config, db_repo
from .auth import get_stored_credentials
from .data_models import ActionResult, Author, Comment, Post, Profile, utcnow
from .db_models import create_db, get_session

logger = logging.getLogger("feedline.api")


class APIInterface:
    handle: Optional[str] = None

    def set_handle(self, handle: Optional[str]) -> None: ...
    def get_db_user_id(self) -> Optional[str]: ...
    # posts
    def get_posts(self, limit: Optional[int] = None) -> List[Post]: ...
    def create_post(self, content: str, image: Optional[str] = None) -> ActionResult: ...
    def toggle_like(self, post_id: str) -> ActionResult: ...
    def toggle_bookmark(self, post_id: str) -> ActionResult: ...
    def create_comment(self, post_id: str, text: str) -> ActionResult: ...
    def update_post(self, post_id: str, content: str) -> ActionResult: ...
    def delete_post(self, post_id: str) -> ActionResult: ...
    # profiles
    def get_profile_by_username(self, username: str) -> Optional[Profile]: ...
    def get_user_posts(self, user_id: str) -> List[Post]: ...
    def get_user_liked_posts(self, user_id: str) -> List[Post]: ...
    def get_user_bookmarked_posts(self, user_id: str) -> List[Post]: ...
    def is_following(self, user_id: str) -> bool: ...
    def toggle_follow(self, user_id: str) -> ActionResult: ...
    def get_random_users(self, limit: int = 3) -> List[Profile]: ...


def _parse_dt(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if value:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).replace(tzinfo=None)
    return utcnow()


class RealAPI(APIInterface):
    """API client that talks to an external HTTP backend.

    It expects a base_url like https://api.example.com and bearer-token auth
    set through set_token().
    """
    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = 5.0, handle: Optional[str] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.handle = handle
        self.session: Session = requests.Session()
        self._user_id: Optional[str] = None
        self.token: Optional[str] = None
        if token:
            self.set_token(token)

    # --- helpers ---
    def set_token(self, token: str) -> None:
        self.token = token
        self.session.headers.update({"Authorization": f"Bearer {self.token}"})

    def clear_token(self) -> None:
        self.token = None
        self.session.headers.pop("Authorization", None)

    def set_handle(self, handle: Optional[str]) -> None:
        """Update the handle (username) used in API requests"""
        self.handle = handle
        self._user_id = None

    def _request(self, method: str, path: str, params: Dict[str, Any] = None, json_payload: Dict[str, Any] = None) -> requests.Response:
        params = dict(params or {})
        if self.handle:
            params.setdefault("handle", self.handle)
        url = f"{self.base_url}/{path.lstrip('/')}"
        resp = self.session.request(method, url, params=params, json=json_payload, timeout=self.timeout)
        logger.debug("%s %s -> %s", method, url, resp.status_code)
        return resp

    def _get(self, path: str, params: Dict[str, Any] = None) -> Any:
        resp = self._request("GET", path, params=params)
        resp.raise_for_status()
        return resp.json()

    def _get_optional(self, path: str, params: Dict[str, Any] = None) -> Any:
        resp = self._request("GET", path, params=params)
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()

    def _mutate(self, method: str, path: str, json_payload: Dict[str, Any] = None) -> ActionResult:
        resp = self._request(method, path, json_payload=json_payload)
        resp.raise_for_status()
        data = resp.json() if resp.content else {}
        return self._convert_result(data)

    def get_db_user_id(self) -> Optional[str]:
        if not self.handle:
            return None
        if self._user_id is None:
            data = self._get("/me")
            self._user_id = str(data["id"]) if data and data.get("id") is not None else None
        return self._user_id

    def get_posts(self, limit: Optional[int] = None) -> List[Post]:
        params = {"limit": limit} if limit else None
        return [self._convert_post(p) for p in self._get("/posts", params=params)]

    def create_post(self, content: str, image: Optional[str] = None) -> ActionResult:
        return self._mutate("POST", "/posts", {"content": content, "image": image})

    def toggle_like(self, post_id: str) -> ActionResult:
        return self._mutate("POST", f"/posts/{post_id}/like")

    def toggle_bookmark(self, post_id: str) -> ActionResult:
        return self._mutate("POST", f"/posts/{post_id}/bookmark")

    def create_comment(self, post_id: str, text: str) -> ActionResult:
        return self._mutate("POST", f"/posts/{post_id}/comments", {"content": text})

    def update_post(self, post_id: str, content: str) -> ActionResult:
        return self._mutate("PATCH", f"/posts/{post_id}", {"content": content})

    def delete_post(self, post_id: str) -> ActionResult:
        return self._mutate("DELETE", f"/posts/{post_id}")

    def get_profile_by_username(self, username: str) -> Optional[Profile]:
        data = self._get_optional(f"/profiles/{username}")
        return self._convert_profile(data) if data else None

    def get_user_posts(self, user_id: str) -> List[Post]:
        return [self._convert_post(p) for p in self._get(f"/users/{user_id}/posts")]

    def get_user_liked_posts(self, user_id: str) -> List[Post]:
        return [self._convert_post(p) for p in self._get(f"/users/{user_id}/likes")]

    def get_user_bookmarked_posts(self, user_id: str) -> List[Post]:
        return [self._convert_post(p) for p in self._get(f"/users/{user_id}/bookmarks")]

    def is_following(self, user_id: str) -> bool:
        if not self.handle:
            return False
        data = self._get(f"/users/{user_id}/following")
        return bool(data.get("following"))

    def toggle_follow(self, user_id: str) -> ActionResult:
        return self._mutate("POST", f"/users/{user_id}/follow")

    def get_random_users(self, limit: int = 3) -> List[Profile]:
        return [self._convert_profile(u) for u in self._get("/users/suggestions", params={"limit": limit})]

    # --- conversion helpers ---
    @staticmethod
    def _convert_result(data: Dict[str, Any]) -> ActionResult:
        return ActionResult(
            success=bool(data.get("success")),
            error=data.get("error"),
            id=str(data["id"]) if data.get("id") is not None else None,
        )

    @staticmethod
    def _convert_author(a: Dict[str, Any]) -> Author:
        a = a or {}
        return Author(
            id=str(a.get("id", "")),
            username=a.get("username") or a.get("handle") or "unknown",
            name=a.get("name"),
            image=a.get("image"),
        )

    def _convert_post(self, p: Dict[str, Any]) -> Post:
        post_id = str(p.get("id"))
        likes = p.get("likes") or []
        counts = p.get("_count") or {}
        return Post(
            id=post_id,
            author=self._convert_author(p.get("author")),
            created_at=_parse_dt(p.get("createdAt") or p.get("created_at")),
            content=p.get("content"),
            image=p.get("image"),
            like_user_ids=[str(like.get("userId") or like.get("user_id")) for like in likes],
            bookmark_user_ids=[str(b.get("userId") or b.get("user_id")) for b in p.get("bookmarks") or []],
            comments=[
                Comment(
                    id=str(c.get("id")),
                    post_id=post_id,
                    author=self._convert_author(c.get("author")),
                    content=c.get("content") or "",
                    created_at=_parse_dt(c.get("createdAt") or c.get("created_at")),
                )
                for c in p.get("comments") or []
            ],
            like_count=int(counts.get("likes", p.get("like_count", len(likes))) or 0),
        )

    @staticmethod
    def _convert_profile(u: Dict[str, Any]) -> Profile:
        counts = u.get("_count") or {}
        return Profile(
            id=str(u.get("id")),
            username=u.get("username") or "",
            name=u.get("name"),
            bio=u.get("bio"),
            image=u.get("image"),
            location=u.get("location"),
            website=u.get("website"),
            created_at=_parse_dt(u["createdAt"]) if u.get("createdAt") else None,
            followers=int(counts.get("followers", u.get("followers", 0)) or 0),
            following=int(counts.get("following", u.get("following", 0)) or 0),
            posts_count=int(counts.get("posts", u.get("posts_count", 0)) or 0),
        )


class LocalAPI(APIInterface):
    """Runs the server actions in-process against the SQLAlchemy database."""

    def __init__(self, handle: Optional[str] = None, session_factory=get_session):
        self.handle = handle
        self._session_factory = session_factory

    def set_handle(self, handle: Optional[str]) -> None:
        self.handle = handle

    def _viewer_id(self, db) -> Optional[str]:
        if not self.handle:
            return None
        return db_repo.sync_user(db, self.handle).id

    def _as_viewer(self, action, *args) -> ActionResult:
        with self._session_factory() as db:
            user_id = self._viewer_id(db)
            if user_id is None:
                return ActionResult.fail("You must be signed in")
            return action(db, *args, user_id)

    def get_db_user_id(self) -> Optional[str]:
        with self._session_factory() as db:
            return self._viewer_id(db)

    def get_posts(self, limit: Optional[int] = None) -> List[Post]:
        with self._session_factory() as db:
            return db_repo.get_posts(db, limit)

    def create_post(self, content: str, image: Optional[str] = None) -> ActionResult:
        with self._session_factory() as db:
            user_id = self._viewer_id(db)
            if user_id is None:
                return ActionResult.fail("You must be signed in")
            return db_repo.create_post(db, user_id, content, image)

    def toggle_like(self, post_id: str) -> ActionResult:
        return self._as_viewer(db_repo.toggle_like, post_id)

    def toggle_bookmark(self, post_id: str) -> ActionResult:
        return self._as_viewer(db_repo.toggle_bookmark, post_id)

    def create_comment(self, post_id: str, text: str) -> ActionResult:
        with self._session_factory() as db:
            user_id = self._viewer_id(db)
            if user_id is None:
                return ActionResult.fail("You must be signed in")
            return db_repo.create_comment(db, post_id, user_id, text)

    def update_post(self, post_id: str, content: str) -> ActionResult:
        with self._session_factory() as db:
            user_id = self._viewer_id(db)
            if user_id is None:
                return ActionResult.fail("You must be signed in")
            return db_repo.update_post(db, post_id, user_id, content)

    def delete_post(self, post_id: str) -> ActionResult:
        return self._as_viewer(db_repo.delete_post, post_id)

    def get_profile_by_username(self, username: str) -> Optional[Profile]:
        with self._session_factory() as db:
            return db_repo.get_profile_by_username(db, username)

    def get_user_posts(self, user_id: str) -> List[Post]:
        with self._session_factory() as db:
            return db_repo.get_user_posts(db, user_id)

    def get_user_liked_posts(self, user_id: str) -> List[Post]:
        with self._session_factory() as db:
            return db_repo.get_user_liked_posts(db, user_id)

    def get_user_bookmarked_posts(self, user_id: str) -> List[Post]:
        with self._session_factory() as db:
            return db_repo.get_user_bookmarked_posts(db, user_id)

    def is_following(self, user_id: str) -> bool:
        with self._session_factory() as db:
            return db_repo.is_following(db, self._viewer_id(db), user_id)

    def toggle_follow(self, user_id: str) -> ActionResult:
        with self._session_factory() as db:
            viewer_id = self._viewer_id(db)
            if viewer_id is None:
                return ActionResult.fail("You must be signed in")
            return db_repo.toggle_follow(db, viewer_id, user_id)

    def get_random_users(self, limit: int = 3) -> List[Profile]:
        with self._session_factory() as db:
            return db_repo.get_random_users(db, self._viewer_id(db), limit)


_api: Optional[APIInterface] = None


def build_api() -> APIInterface:
    """Pick the backend: the HTTP API when BACKEND_URL is set, the local database otherwise.

    Stored credentials are refreshed first when only a refresh token is left.
    """
    stored = get_stored_credentials()
    handle = config.HANDLE or (stored or {}).get("username") or None

    if config.BACKEND_URL:
        client = RealAPI(base_url=config.BACKEND_URL, timeout=config.REQUEST_TIMEOUT, handle=handle)
        access_token = (stored or {}).get("tokens", {}).get("access_token")
        if access_token:
            client.set_token(access_token)
        return client

    create_db()
    return LocalAPI(handle=handle)


def get_api() -> APIInterface:
    global _api
    if _api is None:
        _api = build_api()
    return _api
