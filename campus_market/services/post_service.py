from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from campus_market.core.errors import forbidden, not_found
from campus_market.models import Post, Profile
from campus_market.schemas.posts import PostCreateRequest, PostRead
from campus_market.services import realtime_service

logger = logging.getLogger(__name__)

FEED_PAGE_SIZE = 50


def _publish(db: Session, post: Post, *, op: str) -> None:
    realtime_service.enqueue_change(
        db,
        table="posts",
        op=op,
        row=PostRead.model_validate(post).model_dump(mode="json"),
    )


def list_posts(db: Session, *, user_id: str | None = None, limit: int = FEED_PAGE_SIZE) -> list[Post]:
    query = select(Post)
    if user_id:
        query = query.where(Post.user_id == user_id)
    query = query.order_by(Post.created_at.desc(), Post.id.asc()).limit(limit)
    return list(db.scalars(query).all())


def authors_for(db: Session, posts: Iterable[Post]) -> dict[str, Profile]:
    author_ids = {post.user_id for post in posts}
    if not author_ids:
        return {}
    profiles = db.scalars(select(Profile).where(Profile.id.in_(author_ids))).all()
    return {profile.id: profile for profile in profiles}


def get_post(db: Session, post_id: str) -> Post:
    post = db.get(Post, post_id)
    if post is None:
        raise not_found("post_not_found", "Post not found")
    return post


def create_post(db: Session, *, author: Profile, payload: PostCreateRequest) -> Post:
    post = Post(user_id=author.id, content=payload.content.strip(), image_url=payload.image_url)
    db.add(post)
    db.flush()
    _publish(db, post, op="INSERT")
    db.commit()
    db.refresh(post)
    logger.info("Post published post_id=%s user_id=%s", post.id, author.id)
    return post


def delete_post(db: Session, *, actor: Profile, post_id: str) -> None:
    post = get_post(db, post_id)
    if post.user_id != actor.id and not actor.is_admin:
        raise forbidden("Only the author or an admin can delete this post")
    row = PostRead.model_validate(post).model_dump(mode="json")
    db.delete(post)
    realtime_service.enqueue_change(db, table="posts", op="DELETE", row=row)
    db.commit()
    logger.info("Post deleted post_id=%s actor_id=%s", post_id, actor.id)
