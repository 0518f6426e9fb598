"""
Kartel backend - membership, events and notifications for The Kartel.

This package implements the serverless backend of a private members' club
on top of a key/value record store:
- Membership applications with email-link quick approval
- Member sign-in via magic links or passwords, admin sign-in
- Events with attendee sign-up, venues, FAQs and a photo gallery
- Web push broadcasts to members and admins

Architecture:
    HTTP API (api/) -> domain services (services/) -> ListIndex -> RecordStore
                                   |
                                   +-> notify/ (SendGrid email, web push)

Invariants:
    - Individually keyed records are the source of truth
    - Collection list blobs are caches that can be rebuilt
    - Notification failures never fail a write that already succeeded
"""

__version__ = "1.0.0"
