from fastapi import APIRouter

from campus_market.api.v1 import (
    admin,
    auth,
    friends,
    listings,
    lost_found,
    messages,
    notifications,
    posts,
    profiles,
    ratings,
    rpc,
    ws,
)

api_router = APIRouter()
api_router.include_router(auth.router)
api_router.include_router(profiles.router)
api_router.include_router(rpc.router)
api_router.include_router(messages.router)
api_router.include_router(listings.router)
api_router.include_router(lost_found.router)
api_router.include_router(posts.router)
api_router.include_router(ratings.router)
api_router.include_router(friends.router)
api_router.include_router(notifications.router)
api_router.include_router(admin.router)
api_router.include_router(ws.router)
