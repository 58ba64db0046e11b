# db_seed.py
import datetime as dt
import random

from .data_models import utcnow
from .db_models import Bookmark, Comment, Follow, Like, Post, User, create_db, get_session


def seed(db=None):
    create_db()
    db = db or get_session()

    if db.query(User).count():
        print("Database already seeded.")
        return

    # Users
    handles = ["yourname", "alice", "bob", "charlie", "dana", "eve", "frank"]
    users = {}
    for h in handles:
        u = User(username=h, name=h.capitalize(), bio=f"{h} on feedline")
        db.add(u)
        users[h] = u
    db.commit()

    # Follows: yourname follows a couple of people
    for h in ("alice", "bob"):
        db.add(Follow(follower_id=users["yourname"].id, following_id=users[h].id))
    db.commit()

    # Posts
    texts = [
        "Just shipped a new feature! The TUI is looking amazing 🚀",
        "Working on a new CLI tool for developers. Any testers?",
        "Refactoring is like cleaning your room.",
        "TUIs are underrated. Fight me.",
        "Hackathon prep going well!",
    ]
    posts = []
    for i, t in enumerate(texts):
        author = users[handles[i % len(handles)]]
        p = Post(
            author_id=author.id,
            content=t,
            created_at=utcnow() - dt.timedelta(minutes=15 * i),
        )
        db.add(p)
        posts.append(p)
    db.commit()

    # Likes, keeping the denormalized counter in step
    for p in posts:
        for h in random.sample(handles, k=random.randint(0, 3)):
            db.add(Like(post_id=p.id, user_id=users[h].id))
            p.likes_count += 1
    db.add(Bookmark(post_id=posts[0].id, user_id=users["yourname"].id))
    db.commit()

    # A comment thread on posts[0]
    db.add_all(
        [
            Comment(post_id=posts[0].id, author_id=users["alice"].id, content="Looks great! What lib?"),
            Comment(post_id=posts[0].id, author_id=users["yourname"].id, content="Textual, all the way."),
        ]
    )
    db.commit()

    print("✅ Seed complete.")


if __name__ == "__main__":
    seed()
