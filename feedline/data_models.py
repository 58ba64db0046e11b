"""
Data models for the feedline application.
These are the plain objects passed between the data layer and the UI.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class Author:
    """The public face of a user attached to posts and comments."""
    id: str
    username: str
    name: Optional[str] = None
    image: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.username


@dataclass
class Comment:
    """A comment on a post. Comments are append-only."""
    id: str
    post_id: str
    author: Author
    content: str
    created_at: datetime


@dataclass
class Post:
    """Represents a post together with its social interactions."""
    id: str
    author: Author
    created_at: datetime
    content: Optional[str] = None
    image: Optional[str] = None
    like_user_ids: List[str] = field(default_factory=list)
    bookmark_user_ids: List[str] = field(default_factory=list)
    comments: List[Comment] = field(default_factory=list)
    like_count: int = 0  # denormalized from the Like set

    def liked_by(self, user_id: Optional[str]) -> bool:
        return user_id is not None and user_id in self.like_user_ids

    def bookmarked_by(self, user_id: Optional[str]) -> bool:
        return user_id is not None and user_id in self.bookmark_user_ids


@dataclass
class Profile:
    """Represents a user profile page."""
    id: str
    username: str
    name: Optional[str] = None
    bio: Optional[str] = None
    image: Optional[str] = None
    location: Optional[str] = None
    website: Optional[str] = None
    created_at: Optional[datetime] = None
    followers: int = 0
    following: int = 0
    posts_count: int = 0

    @property
    def page_title(self) -> str:
        return self.name or self.username

    @property
    def page_description(self) -> str:
        return self.bio or f"Check out {self.username}'s profile."


@dataclass
class ActionResult:
    """Outcome of a mutation that resolved (as opposed to one that raised)."""
    success: bool
    error: Optional[str] = None
    id: Optional[str] = None

    @classmethod
    def ok(cls, id: Optional[str] = None) -> "ActionResult":
        return cls(success=True, id=id)

    @classmethod
    def fail(cls, error: str) -> "ActionResult":
        return cls(success=False, error=error)
