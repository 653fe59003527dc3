from campus_market.models.friend import Friend
from campus_market.models.listing import Listing, ListingImage
from campus_market.models.lost_found import LostFoundItem
from campus_market.models.message import Message
from campus_market.models.notification import Notification
from campus_market.models.post import Post
from campus_market.models.profile import Profile
from campus_market.models.rating import Rating
from campus_market.models.realtime_outbox_event import RealtimeOutboxEvent
from campus_market.models.refresh_token import RefreshToken
from campus_market.models.transaction import Transaction

__all__ = [
    "Friend",
    "Listing",
    "ListingImage",
    "LostFoundItem",
    "Message",
    "Notification",
    "Post",
    "Profile",
    "Rating",
    "RealtimeOutboxEvent",
    "RefreshToken",
    "Transaction",
]
