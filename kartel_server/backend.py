"""
Backend orchestrator.

Builds every collaborator from one ServerConfig: the record store, the
list index, token managers, authenticator, notification senders and the
domain services. The HTTP app and the CLI tools both go through it.

Invariants:
    - The store is connected before any service is used
    - Nothing reads the environment after construction
    - stop() closes everything start() opened, even after a failed start

How to change safely:
    - New services take their collaborators as constructor arguments
    - Tests inject a store and recording senders instead of patching
"""

from __future__ import annotations

import logging

from .auth import AuthenticationPort, create_authenticator
from .config import ServerConfig
from .list_index import ListIndex
from .notify.email import EmailSender, create_email_sender
from .notify.push import PushSender, create_push_sender
from .records import ADMIN_TOKENS, LOGIN_TOKENS, PASSWORD_RESET_TOKENS, Clock, utc_now
from .services import (
    ApplicationService,
    EventService,
    FaqService,
    GalleryService,
    MemberService,
    PushService,
    VenueService,
)
from .store.base import RecordStore, create_record_store
from .tokens import TokenManager

logger = logging.getLogger(__name__)


class Backend:
    """Wires store, auth, notifications and services together.

    Attributes:
        config: Server configuration
        store: Record store
        index: List/index consistency manager
        authenticator: Bearer token validation and session issuing
        applications, members, events, venues, faqs, gallery, push: Domain services

    Example:
        >>> backend = Backend(ServerConfig.from_env())
        >>> await backend.start()
        >>> await backend.applications.list_applications()
        >>> await backend.stop()
    """

    def __init__(
        self,
        config: ServerConfig | None = None,
        store: RecordStore | None = None,
        email: EmailSender | None = None,
        push: PushSender | None = None,
        authenticator: AuthenticationPort | None = None,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize the backend.

        Args:
            config: Server configuration (loaded from env if not provided)
            store: Record store override (built from config if not provided)
            email: Email sender override
            push: Push sender override
            authenticator: Authenticator override
            clock: Source of the current time
        """
        self.config = config or ServerConfig.from_env()
        self.clock = clock
        self._running = False

        self.store = store or create_record_store(self.config.store)
        self.email = email or create_email_sender(self.config.email)
        self.push_sender = push or create_push_sender(self.config.push)
        self.authenticator = authenticator or create_authenticator(self.config.auth, clock=clock)
        self.index = ListIndex(self.store, self.config.store.list_read_mode)

        self.setup_tokens = TokenManager(self.store, ADMIN_TOKENS, "applicationId", clock)
        self.login_tokens = TokenManager(self.store, LOGIN_TOKENS, "memberId", clock)
        self.reset_tokens = TokenManager(self.store, PASSWORD_RESET_TOKENS, "memberId", clock)

        self.applications = ApplicationService(
            self.index, self.setup_tokens, self.email, self.config, clock
        )
        self.members = MemberService(
            self.index,
            self.login_tokens,
            self.reset_tokens,
            self.authenticator,
            self.email,
            self.config,
            clock,
        )
        self.events = EventService(self.index, clock, self.email, self.config)
        self.venues = VenueService(self.index, clock)
        self.faqs = FaqService(self.index, clock)
        self.gallery = GalleryService(self.store, clock)
        self.push = PushService(
            self.index, self.push_sender, self.config.push.subscription_max_age_days, clock
        )

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Connect the store."""
        if self._running:
            logger.warning("Backend already running")
            return
        logger.info("Starting Kartel backend")
        self.config.log_config()
        try:
            await self.store.connect()
        except Exception as e:
            logger.error(f"Backend startup failed: {e}", exc_info=True)
            await self.stop()
            raise
        self._running = True
        logger.info("Kartel backend started")

    async def stop(self) -> None:
        """Close the store and outbound clients."""
        logger.info("Stopping Kartel backend")
        await self.email.close()
        await self.store.close()
        self._running = False
        logger.info("Kartel backend stopped")
