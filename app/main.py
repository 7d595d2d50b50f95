"""
Composition root for the subscription core.
Presentation code calls bootstrap() once, then opens subscription_service() per unit of work.
"""
import logging
from contextlib import contextmanager
from typing import Iterator

from app.core.config import settings
from app.core.logging import configure_logging
from app.db.session import get_db, init_db
from app.paywall.catalog import get_catalog
from app.services.payments.coordinator import PaymentSessionCoordinator
from app.services.payments.factory import PaymentProviderFactory
from app.services.payments.paystack import CheckoutLauncher
from app.services.payments.provider import PaymentProvider
from app.services.remote_sync.service import RemoteLedgerSync
from app.services.subscriptions.service import SubscriptionService

logger = logging.getLogger(__name__)

db_session = contextmanager(get_db)


def build_coordinator(
    launcher: CheckoutLauncher | None = None,
    provider: PaymentProvider | None = None,
) -> PaymentSessionCoordinator:
    if provider is None:
        provider = PaymentProviderFactory.create_from_settings(launcher=launcher)
    return PaymentSessionCoordinator.from_settings(provider)


def build_remote_sync() -> RemoteLedgerSync | None:
    if not settings.remote_sync_enabled:
        logger.info("remote_sync_disabled")
        return None
    return RemoteLedgerSync.from_settings()


class Runtime:
    """Process-wide collaborators shared by every SubscriptionService."""

    def __init__(
        self,
        coordinator: PaymentSessionCoordinator,
        remote_sync: RemoteLedgerSync | None = None,
    ) -> None:
        self.coordinator = coordinator
        self.remote_sync = remote_sync

    @contextmanager
    def subscription_service(self) -> Iterator[SubscriptionService]:
        with db_session() as db:
            yield SubscriptionService(db, self.coordinator, self.remote_sync)

    def shutdown(self) -> None:
        """Abort in-flight payment attempts and flush pending remote pushes."""
        self.coordinator.shutdown("app_shutdown")
        if self.remote_sync is not None:
            self.remote_sync.close(wait=True)


def bootstrap(
    launcher: CheckoutLauncher | None = None,
    provider: PaymentProvider | None = None,
) -> Runtime:
    configure_logging()
    init_db()
    get_catalog()
    return Runtime(build_coordinator(launcher, provider), build_remote_sync())
