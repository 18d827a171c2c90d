"""
Outbound notifications.

Delivery is best-effort: it happens after the core operation has committed
and a failing notifier never changes that operation's outcome.
"""

import logging

from .models import Message, QuoteRequest

logger = logging.getLogger(__name__)


class Notifier:
    def request_submitted(self, request: QuoteRequest, provider_email: str) -> None:
        raise NotImplementedError

    def provider_replied(self, request: QuoteRequest, message: Message) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    def request_submitted(self, request: QuoteRequest, provider_email: str) -> None:
        logger.info(
            f"Notify {provider_email}: new quote request {request.id} "
            f"({request.event_type}) from {request.contact_name}"
        )

    def provider_replied(self, request: QuoteRequest, message: Message) -> None:
        logger.info(f"Notify {request.contact_email}: provider replied on request {request.id}")


def notify_safely(send, *args) -> bool:
    try:
        send(*args)
        return True
    except Exception as e:
        logger.warning(f"Notification {getattr(send, '__name__', send)} failed: {e}")
        return False
