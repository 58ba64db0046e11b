# db_repo.py
"""Server actions executed against the local database.

Every mutation returns an ActionResult instead of raising, so callers see the
same contract whether they talk to this module or to the HTTP backend.
"""
import logging
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import selectinload

from . import data_models as dm
from .db_models import Bookmark, Comment, Follow, Like, Post, User

logger = logging.getLogger("feedline.db_repo")

_POST_LOAD_OPTIONS = (
    selectinload(Post.author),
    selectinload(Post.likes),
    selectinload(Post.bookmarks),
    selectinload(Post.comments).selectinload(Comment.author),
)


# --- conversion helpers ---
def _to_author(u: User) -> dm.Author:
    return dm.Author(id=u.id, username=u.username, name=u.name, image=u.image)


def _to_post(p: Post) -> dm.Post:
    return dm.Post(
        id=p.id,
        author=_to_author(p.author),
        created_at=p.created_at,
        content=p.content,
        image=p.image,
        like_user_ids=[like.user_id for like in p.likes],
        bookmark_user_ids=[b.user_id for b in p.bookmarks],
        comments=[
            dm.Comment(
                id=c.id,
                post_id=c.post_id,
                author=_to_author(c.author),
                content=c.content,
                created_at=c.created_at,
            )
            for c in p.comments
        ],
        like_count=p.likes_count,
    )


def _fail(db, message: str) -> dm.ActionResult:
    db.rollback()
    logger.exception(message)
    return dm.ActionResult.fail(message)


# --- users ---
def sync_user(db, username: str, name: str = None, email: str = None, image: str = None) -> User:
    """Return the local row for an identity-provider user, creating it on first sign-in."""
    user = db.query(User).filter(User.username == username).first()
    if user:
        return user
    user = User(username=username, name=name or username, email=email, image=image)
    db.add(user)
    db.commit()
    logger.debug("sync_user: created user %s (%s)", username, user.id)
    return user


def get_user_by_username(db, username: str) -> Optional[User]:
    return db.query(User).filter(User.username == username).first()


# --- posts ---
def create_post(db, author_id: str, content: Optional[str], image: Optional[str] = None) -> dm.ActionResult:
    content = (content or "").strip() or None
    if not content and not image:
        return dm.ActionResult.fail("Post must have content or an image")
    try:
        post = Post(author_id=author_id, content=content, image=image)
        db.add(post)
        db.commit()
        return dm.ActionResult.ok(id=post.id)
    except SQLAlchemyError:
        return _fail(db, "Failed to create post")


def get_posts(db, limit: Optional[int] = None) -> List[dm.Post]:
    q = db.query(Post).options(*_POST_LOAD_OPTIONS).populate_existing().order_by(Post.created_at.desc())
    if limit:
        q = q.limit(limit)
    return [_to_post(p) for p in q.all()]


def get_post(db, post_id: str) -> Optional[dm.Post]:
    p = db.query(Post).options(*_POST_LOAD_OPTIONS).populate_existing().filter(Post.id == post_id).first()
    return _to_post(p) if p else None


def toggle_like(db, post_id: str, user_id: str) -> dm.ActionResult:
    """Flip the viewer's Like and move the denormalized counter with it."""
    try:
        post = db.get(Post, post_id)
        if post is None:
            return dm.ActionResult.fail("Post not found")
        existing = db.query(Like).filter(Like.post_id == post_id, Like.user_id == user_id).first()
        if existing:
            db.delete(existing)
            # SQL-side decrement so concurrent togglers don't clobber each other
            post.likes_count = Post.likes_count - 1
        else:
            db.add(Like(post_id=post_id, user_id=user_id))
            post.likes_count = Post.likes_count + 1
        db.commit()
        return dm.ActionResult.ok()
    except IntegrityError:
        db.rollback()
        logger.warning("toggle_like: concurrent toggle on post %s by %s", post_id, user_id)
        return dm.ActionResult.fail("Like was changed concurrently")
    except SQLAlchemyError:
        return _fail(db, "Failed to toggle like")


def toggle_bookmark(db, post_id: str, user_id: str) -> dm.ActionResult:
    try:
        if db.get(Post, post_id) is None:
            return dm.ActionResult.fail("Post not found")
        existing = db.query(Bookmark).filter(
            Bookmark.post_id == post_id, Bookmark.user_id == user_id
        ).first()
        if existing:
            db.delete(existing)
        else:
            db.add(Bookmark(post_id=post_id, user_id=user_id))
        db.commit()
        return dm.ActionResult.ok()
    except IntegrityError:
        db.rollback()
        logger.warning("toggle_bookmark: concurrent toggle on post %s by %s", post_id, user_id)
        return dm.ActionResult.fail("Bookmark was changed concurrently")
    except SQLAlchemyError:
        return _fail(db, "Failed to toggle bookmark")


def create_comment(db, post_id: str, user_id: str, content: str) -> dm.ActionResult:
    content = (content or "").strip()
    if not content:
        return dm.ActionResult.fail("Content is required")
    try:
        if db.get(Post, post_id) is None:
            return dm.ActionResult.fail("Post not found")
        comment = Comment(post_id=post_id, author_id=user_id, content=content)
        db.add(comment)
        db.commit()
        return dm.ActionResult.ok(id=comment.id)
    except SQLAlchemyError:
        return _fail(db, "Failed to create comment")


def update_post(db, post_id: str, user_id: str, content: str) -> dm.ActionResult:
    try:
        post = db.get(Post, post_id)
        if post is None:
            return dm.ActionResult.fail("Post not found")
        if post.author_id != user_id:
            return dm.ActionResult.fail("Unauthorized - no edit permission")
        post.content = content
        db.commit()
        return dm.ActionResult.ok(id=post.id)
    except SQLAlchemyError:
        return _fail(db, "Failed to update post")


def delete_post(db, post_id: str, user_id: str) -> dm.ActionResult:
    try:
        # fresh collections, so the cascade reaches every like, bookmark and comment
        post = db.query(Post).options(*_POST_LOAD_OPTIONS).populate_existing().filter(Post.id == post_id).first()
        if post is None:
            return dm.ActionResult.fail("Post not found")
        if post.author_id != user_id:
            return dm.ActionResult.fail("Unauthorized - no delete permission")
        db.delete(post)
        db.commit()
        return dm.ActionResult.ok()
    except SQLAlchemyError:
        return _fail(db, "Failed to delete post")


# --- profiles ---
def get_profile_by_username(db, username: str) -> Optional[dm.Profile]:
    user = get_user_by_username(db, username)
    if user is None:
        return None
    followers = db.query(func.count(Follow.id)).filter(Follow.following_id == user.id).scalar()
    following = db.query(func.count(Follow.id)).filter(Follow.follower_id == user.id).scalar()
    posts_count = db.query(func.count(Post.id)).filter(Post.author_id == user.id).scalar()
    return dm.Profile(
        id=user.id,
        username=user.username,
        name=user.name,
        bio=user.bio,
        image=user.image,
        location=user.location,
        website=user.website,
        created_at=user.created_at,
        followers=followers or 0,
        following=following or 0,
        posts_count=posts_count or 0,
    )


def get_user_posts(db, user_id: str) -> List[dm.Post]:
    q = (
        db.query(Post)
        .options(*_POST_LOAD_OPTIONS)
        .populate_existing()
        .filter(Post.author_id == user_id)
        .order_by(Post.created_at.desc())
    )
    return [_to_post(p) for p in q.all()]


def get_user_liked_posts(db, user_id: str) -> List[dm.Post]:
    q = (
        db.query(Post)
        .join(Like, Like.post_id == Post.id)
        .options(*_POST_LOAD_OPTIONS)
        .populate_existing()
        .filter(Like.user_id == user_id)
        .order_by(Post.created_at.desc())
    )
    return [_to_post(p) for p in q.all()]


def get_user_bookmarked_posts(db, user_id: str) -> List[dm.Post]:
    q = (
        db.query(Post)
        .join(Bookmark, Bookmark.post_id == Post.id)
        .options(*_POST_LOAD_OPTIONS)
        .populate_existing()
        .filter(Bookmark.user_id == user_id)
        .order_by(Post.created_at.desc())
    )
    return [_to_post(p) for p in q.all()]


# --- social graph ---
def is_following(db, follower_id: Optional[str], target_id: str) -> bool:
    if not follower_id:
        return False
    return (
        db.query(Follow)
        .filter(Follow.follower_id == follower_id, Follow.following_id == target_id)
        .first()
        is not None
    )


def toggle_follow(db, follower_id: str, target_id: str) -> dm.ActionResult:
    if follower_id == target_id:
        return dm.ActionResult.fail("You cannot follow yourself")
    try:
        existing = db.query(Follow).filter(
            Follow.follower_id == follower_id, Follow.following_id == target_id
        ).first()
        if existing:
            db.delete(existing)
        else:
            db.add(Follow(follower_id=follower_id, following_id=target_id))
        db.commit()
        return dm.ActionResult.ok()
    except SQLAlchemyError:
        return _fail(db, "Failed to toggle follow")


def get_random_users(db, user_id: Optional[str], limit: int = 3) -> List[dm.Profile]:
    """Who-to-follow suggestions: anyone but the viewer and people they already follow."""
    q = db.query(User)
    if user_id:
        followed = select(Follow.following_id).where(Follow.follower_id == user_id)
        q = q.filter(User.id != user_id, ~User.id.in_(followed))
    users = q.order_by(func.random()).limit(limit).all()
    out = []
    for u in users:
        followers = db.query(func.count(Follow.id)).filter(Follow.following_id == u.id).scalar()
        out.append(dm.Profile(id=u.id, username=u.username, name=u.name, image=u.image, followers=followers or 0))
    return out
