"""
PaymentSessionCoordinator — one payment attempt end-to-end.

Created -> AwaitingUser -> {ProviderConfirmed, ProviderCancelled} -> Reconciling
        -> {Successful, Failed, Cancelled, Error}

Два канала завершения гонятся за одним CompletionLatch:
- callback провайдера (on_success / on_dismiss);
- поток опроса verify(reference) каждые poll_interval секунд, не более poll_max_attempts раз.
Первый записавший побеждает, остальные сигналы: no-op (логируются как dropped).

Закрытие окна оплаты (dismiss) без подтверждения коммитит Cancelled сразу; поздний
успех из опроса после этого отбрасывается. dismiss_settle_seconds > 0 даёт окно,
в котором опрос ещё может подтвердить оплату до фиксации Cancelled.
"""
from __future__ import annotations

import itertools
import logging
import secrets
import threading
import time
from enum import Enum
from typing import Callable

from app.core.config import settings
from app.paywall.models import Plan
from app.schemas.payments import PaymentOutcome, PaymentStatus, UserContext
from app.services.payments.errors import VerificationTransportError
from app.services.payments.provider import CheckoutRequest, PaymentProvider
from app.utils.currency import to_minor_units
from app.utils.metrics import (
    active_payment_sessions,
    payment_completion_dropped_total,
    payment_duration_seconds,
    payment_outcomes_total,
    payment_verify_polls_total,
)

logger = logging.getLogger(__name__)

# Extra wait on top of the poll window before the caller gives up on the latch
WAIT_GRACE_SECONDS = 5.0

_reference_counter = itertools.count(1)


def generate_reference(prefix: str = "SUB") -> str:
    """Time-based reference with a process-wide monotonic counter and a random suffix."""
    millis = int(time.time() * 1000)
    return f"{prefix}_{millis}_{next(_reference_counter)}_{secrets.token_hex(3)}"


class SessionState(str, Enum):
    CREATED = "created"
    AWAITING_USER = "awaiting_user"
    PROVIDER_CONFIRMED = "provider_confirmed"
    PROVIDER_CANCELLED = "provider_cancelled"
    RECONCILING = "reconciling"
    SUCCESSFUL = "successful"
    FAILED = "failed"
    CANCELLED = "cancelled"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset({
    SessionState.SUCCESSFUL,
    SessionState.FAILED,
    SessionState.CANCELLED,
    SessionState.ERROR,
})

_STATE_FOR_STATUS = {
    PaymentStatus.SUCCESSFUL: SessionState.SUCCESSFUL,
    PaymentStatus.FAILED: SessionState.FAILED,
    PaymentStatus.CANCELLED: SessionState.CANCELLED,
    PaymentStatus.ERROR: SessionState.ERROR,
}


class CompletionLatch:
    """Single-assignment outcome cell: first writer wins, later writers are no-ops."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._outcome: PaymentOutcome | None = None

    @property
    def completed(self) -> bool:
        return self._event.is_set()

    @property
    def outcome(self) -> PaymentOutcome | None:
        return self._outcome

    def try_complete(self, outcome: PaymentOutcome) -> bool:
        with self._lock:
            if self._outcome is not None:
                return False
            self._outcome = outcome
            self._event.set()
            return True

    def wait(self, timeout: float | None = None) -> PaymentOutcome | None:
        self._event.wait(timeout)
        return self._outcome


class PaymentSession:
    """State of a single attempt: its latch, its poll thread and its stop event."""

    def __init__(
        self,
        provider: PaymentProvider,
        plan: Plan,
        user: UserContext,
        *,
        reference: str,
        public_key: str,
        currency: str,
        minor_unit_factor: int = 100,
        poll_interval_seconds: float = 3.0,
        poll_max_attempts: int = 60,
        dismiss_settle_seconds: float = 0.0,
    ) -> None:
        self.provider = provider
        self.plan = plan
        self.user = user
        self.reference = reference
        self.public_key = public_key
        self.currency = currency
        self.amount_minor_units = to_minor_units(plan.price, minor_unit_factor)
        self.poll_interval_seconds = poll_interval_seconds
        self.poll_max_attempts = poll_max_attempts
        self.dismiss_settle_seconds = dismiss_settle_seconds

        self.state = SessionState.CREATED
        self.poll_attempts = 0
        self._state_lock = threading.Lock()
        self._latch = CompletionLatch()
        self._stop = threading.Event()
        self._poll_thread: threading.Thread | None = None
        self._settle_timer: threading.Timer | None = None
        self._started_at = time.monotonic()

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    @property
    def completed(self) -> bool:
        return self._latch.completed

    @property
    def outcome(self) -> PaymentOutcome | None:
        return self._latch.outcome

    @property
    def max_wait_seconds(self) -> float:
        return (
            self.poll_interval_seconds * (self.poll_max_attempts + 1)
            + self.dismiss_settle_seconds
            + WAIT_GRACE_SECONDS
        )

    def build_request(self) -> CheckoutRequest:
        return CheckoutRequest(
            public_key=self.public_key,
            amount_minor_units=self.amount_minor_units,
            reference=self.reference,
            currency=self.currency,
            email=self.user.email,
            metadata={"plan_id": self.plan.id, "plan_name": self.plan.name},
        )

    def start(self) -> None:
        """Start the poll channel, then open the provider UI (callback channel)."""
        self._transition(SessionState.AWAITING_USER)
        self._started_at = time.monotonic()
        self._poll_thread = threading.Thread(
            target=self._poll_loop,
            name=f"payment-poll-{self.reference}",
            daemon=True,
        )
        self._poll_thread.start()

        logger.info(
            "payment_invoking_provider",
            extra={
                "reference": self.reference,
                "user_id": self.user.user_id,
                "plan_id": self.plan.id,
                "amount": self.amount_minor_units,
                "currency": self.currency,
            },
        )
        try:
            self.provider.invoke(
                self.build_request(),
                on_success=self.on_provider_success,
                on_dismiss=self.on_provider_dismiss,
            )
        except Exception as e:
            logger.exception(
                "payment_invocation_error",
                extra={"reference": self.reference, "error": type(e).__name__},
            )
            self._complete(PaymentStatus.ERROR, f"Payment error: {e}", source="invoke")

    def wait(self, timeout: float | None = None) -> PaymentOutcome:
        """Block until terminal. Past the deadline the attempt is Failed, never left hanging."""
        deadline = self.max_wait_seconds if timeout is None else timeout
        outcome = self._latch.wait(deadline)
        if outcome is None:
            self._complete(PaymentStatus.FAILED, "Payment not confirmed in time", source="timeout")
            outcome = self._latch.outcome
        return outcome

    def abort(self, reason: str = "aborted") -> bool:
        """Cancel an in-flight attempt (e.g. shutdown). No-op if already terminal."""
        return self._complete(PaymentStatus.CANCELLED, f"Payment aborted: {reason}", source="abort")

    def close(self) -> None:
        """Release the poll thread and any pending settle timer."""
        self._stop.set()
        if self._settle_timer is not None:
            self._settle_timer.cancel()

    # ------------------------------------------------------------------
    # Provider callback channel
    # ------------------------------------------------------------------

    def on_provider_success(self) -> None:
        self._confirm(source="callback", message="Payment successful")

    def on_provider_dismiss(self) -> None:
        if self._latch.completed:
            self._record_dropped("dismiss")
            return
        self._transition(SessionState.PROVIDER_CANCELLED)
        logger.info(
            "payment_provider_dismissed",
            extra={"reference": self.reference, "user_id": self.user.user_id},
        )
        if self.dismiss_settle_seconds <= 0:
            self._complete(PaymentStatus.CANCELLED, "Payment cancelled", source="dismiss")
            return
        timer = threading.Timer(
            self.dismiss_settle_seconds,
            self._complete,
            args=(PaymentStatus.CANCELLED, "Payment cancelled"),
            kwargs={"source": "dismiss"},
        )
        timer.daemon = True
        self._settle_timer = timer
        timer.start()

    # ------------------------------------------------------------------
    # Server status polling channel
    # ------------------------------------------------------------------

    def _poll_loop(self) -> None:
        for attempt in range(1, self.poll_max_attempts + 1):
            if self._stop.wait(self.poll_interval_seconds):
                return
            self.poll_attempts = attempt
            try:
                result = self.provider.verify(self.reference)
            except VerificationTransportError as e:
                payment_verify_polls_total.labels(result="transport_error").inc()
                logger.warning(
                    "payment_verify_transport_error",
                    extra={"reference": self.reference, "attempt": attempt, "error": str(e)},
                )
                continue
            except Exception as e:
                payment_verify_polls_total.labels(result="transport_error").inc()
                logger.exception(
                    "payment_verify_unexpected_error",
                    extra={"reference": self.reference, "attempt": attempt, "error": type(e).__name__},
                )
                continue

            if result.is_success:
                payment_verify_polls_total.labels(result="success").inc()
                self._confirm(source="poll", message="Payment successful (auto-detected)")
                return

            payment_verify_polls_total.labels(result="inconclusive").inc()
            logger.debug(
                "payment_verify_inconclusive",
                extra={"reference": self.reference, "attempt": attempt, "status": result.status},
            )

        if not self._stop.is_set():
            self._complete(
                PaymentStatus.FAILED,
                f"Payment not confirmed after {self.poll_max_attempts} verification attempts",
                source="poll",
            )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _transition(self, new_state: SessionState) -> bool:
        with self._state_lock:
            if self.state.is_terminal:
                return False
            self.state = new_state
            return True

    def _confirm(self, source: str, message: str) -> None:
        if self._latch.completed:
            self._record_dropped(source)
            return
        self._transition(SessionState.PROVIDER_CONFIRMED)
        self._complete(PaymentStatus.SUCCESSFUL, message, source=source)

    def _complete(self, status: PaymentStatus, message: str, source: str) -> bool:
        self._transition(SessionState.RECONCILING)
        outcome = PaymentOutcome(
            status=status,
            reference=self.reference,
            amount=self.plan.price,
            message=message,
        )
        if not self._latch.try_complete(outcome):
            self._record_dropped(source)
            return False

        with self._state_lock:
            self.state = _STATE_FOR_STATUS[status]
        self.close()

        payment_outcomes_total.labels(status=status.value).inc()
        payment_duration_seconds.labels(status=status.value).observe(time.monotonic() - self._started_at)
        logger.info(
            "payment_completed",
            extra={
                "reference": self.reference,
                "user_id": self.user.user_id,
                "plan_id": self.plan.id,
                "status": status.value,
                "source": source,
            },
        )
        return True

    def _record_dropped(self, source: str) -> None:
        payment_completion_dropped_total.labels(source=source).inc()
        logger.info(
            "payment_completion_dropped",
            extra={
                "reference": self.reference,
                "source": source,
                "status": self.outcome.status.value if self.outcome else None,
            },
        )


class PaymentSessionCoordinator:
    """Runs payment attempts; each attempt gets its own PaymentSession."""

    def __init__(
        self,
        provider: PaymentProvider,
        *,
        public_key: str = "",
        currency: str = "NGN",
        minor_unit_factor: int = 100,
        poll_interval_seconds: float = 3.0,
        poll_max_attempts: int = 60,
        dismiss_settle_seconds: float = 0.0,
        reference_prefix: str = "SUB",
    ) -> None:
        self.provider = provider
        self.public_key = public_key
        self.currency = currency
        self.minor_unit_factor = minor_unit_factor
        self.poll_interval_seconds = poll_interval_seconds
        self.poll_max_attempts = poll_max_attempts
        self.dismiss_settle_seconds = dismiss_settle_seconds
        self.reference_prefix = reference_prefix
        self._sessions: dict[str, PaymentSession] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, provider: PaymentProvider) -> "PaymentSessionCoordinator":
        return cls(
            provider,
            public_key=settings.paystack_public_key,
            currency=settings.payment_currency,
            minor_unit_factor=settings.payment_minor_unit_factor,
            poll_interval_seconds=settings.payment_poll_interval_seconds,
            poll_max_attempts=settings.payment_poll_max_attempts,
            dismiss_settle_seconds=settings.payment_dismiss_settle_seconds,
            reference_prefix=settings.payment_reference_prefix,
        )

    def create_session(self, plan: Plan, user: UserContext) -> PaymentSession:
        return PaymentSession(
            self.provider,
            plan,
            user,
            reference=generate_reference(self.reference_prefix),
            public_key=self.public_key,
            currency=self.currency,
            minor_unit_factor=self.minor_unit_factor,
            poll_interval_seconds=self.poll_interval_seconds,
            poll_max_attempts=self.poll_max_attempts,
            dismiss_settle_seconds=self.dismiss_settle_seconds,
        )

    def run(
        self,
        plan: Plan,
        user: UserContext,
        on_created: Callable[[PaymentSession], None] | None = None,
    ) -> PaymentOutcome:
        """
        Drive one attempt to a terminal outcome. on_created runs before the provider
        is invoked (e.g. to record a pending ledger row); if it raises, nothing is charged.
        """
        session = self.create_session(plan, user)
        with self._lock:
            self._sessions[session.reference] = session
        active_payment_sessions.inc()
        try:
            if on_created is not None:
                on_created(session)
            session.start()
            return session.wait()
        finally:
            session.close()
            with self._lock:
                self._sessions.pop(session.reference, None)
            active_payment_sessions.dec()

    def active_references(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def shutdown(self, reason: str = "shutdown") -> int:
        """Abort every in-flight attempt. Returns how many were aborted."""
        with self._lock:
            sessions = list(self._sessions.values())
        aborted = sum(1 for s in sessions if s.abort(reason))
        if aborted:
            logger.warning("payment_sessions_aborted", extra={"count": aborted, "reason": reason})
        return aborted
