from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from campus_market.api.deps import get_current_profile
from campus_market.core.errors import success_response
from campus_market.db.session import get_db
from campus_market.models import Post, Profile
from campus_market.schemas.posts import PostCreateRequest, PostRead, PostWithAuthor
from campus_market.schemas.profiles import ProfilePublic
from campus_market.services import post_service

router = APIRouter(prefix="/posts", tags=["posts"])


def _with_author(post: Post, author: Profile | None) -> dict[str, object]:
    entry = PostWithAuthor(
        post=PostRead.model_validate(post),
        author=ProfilePublic.model_validate(author) if author is not None else None,
    )
    return entry.model_dump(mode="json")


@router.get("")
def list_posts(
    user_id: str | None = Query(default=None, max_length=64),
    limit: int = Query(default=post_service.FEED_PAGE_SIZE, ge=1, le=100),
    db: Session = Depends(get_db),
    current_profile: Profile = Depends(get_current_profile),
):
    posts = post_service.list_posts(db, user_id=user_id, limit=limit)
    authors = post_service.authors_for(db, posts)
    return success_response({"posts": [_with_author(post, authors.get(post.user_id)) for post in posts]})


@router.get("/{post_id}")
def get_post(
    post_id: str,
    db: Session = Depends(get_db),
    current_profile: Profile = Depends(get_current_profile),
):
    post = post_service.get_post(db, post_id)
    return success_response(_with_author(post, db.get(Profile, post.user_id)))


@router.post("")
def create_post(
    payload: PostCreateRequest,
    db: Session = Depends(get_db),
    current_profile: Profile = Depends(get_current_profile),
):
    post = post_service.create_post(db, author=current_profile, payload=payload)
    return success_response(_with_author(post, current_profile), status_code=status.HTTP_201_CREATED)


@router.delete("/{post_id}")
def delete_post(
    post_id: str,
    db: Session = Depends(get_db),
    current_profile: Profile = Depends(get_current_profile),
):
    post_service.delete_post(db, actor=current_profile, post_id=post_id)
    return success_response({"ok": True})
