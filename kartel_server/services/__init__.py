"""
Domain services.

Each service owns one collection's rules and talks to the store only
through the ListIndex (or the RecordStore for singleton blobs).
"""

from .applications import ApplicationService
from .events import EventService
from .faqs import FaqService
from .gallery import GalleryService
from .members import MemberService, MemberSession
from .push import BroadcastResult, PushService
from .venues import VenueService

__all__ = [
    "ApplicationService",
    "MemberService",
    "MemberSession",
    "EventService",
    "VenueService",
    "FaqService",
    "GalleryService",
    "PushService",
    "BroadcastResult",
]
