"""
Firebase Cloud Messaging push delivery.

``FirebaseNotifier`` implements the ``Notifier`` interface. The Firebase SDK
is blocking, so each multicast runs in the default executor.
"""

import asyncio
import logging

import firebase_admin
from firebase_admin import credentials, messaging
from firebase_admin.exceptions import InvalidArgumentError

from booking.interfaces import NullNotifier, PushResult
from shared.config import get_settings

logger = logging.getLogger(__name__)

# FCM accepts at most 500 tokens per multicast
MAX_TOKENS_PER_MULTICAST = 500

# Errors meaning the token will never work again
INVALID_TOKEN_ERRORS = (
    messaging.UnregisteredError,
    messaging.SenderIdMismatchError,
    InvalidArgumentError,
)


def _get_firebase_app() -> firebase_admin.App:
    try:
        return firebase_admin.get_app()
    except ValueError:
        settings = get_settings()
        cred = credentials.Certificate(settings.GOOGLE_SERVICE_ACCOUNT_JSON)
        options = {"projectId": settings.FIREBASE_PROJECT_ID} if settings.FIREBASE_PROJECT_ID else None
        return firebase_admin.initialize_app(cred, options)


class FirebaseNotifier:
    """Push notifications through FCM."""

    def __init__(self, app: firebase_admin.App | None = None):
        self.app = app or _get_firebase_app()

    async def send(
        self,
        tokens: list[str],
        title: str,
        body: str,
        data: dict[str, str],
    ) -> PushResult:
        result = PushResult()
        if not tokens:
            return result

        loop = asyncio.get_running_loop()

        for i in range(0, len(tokens), MAX_TOKENS_PER_MULTICAST):
            batch = tokens[i:i + MAX_TOKENS_PER_MULTICAST]
            message = messaging.MulticastMessage(
                notification=messaging.Notification(title=title, body=body),
                data=data,
                tokens=batch,
            )

            def send_batch(msg: messaging.MulticastMessage = message) -> messaging.BatchResponse:
                return messaging.send_each_for_multicast(msg, app=self.app)

            response = await loop.run_in_executor(None, send_batch)

            result.success_count += response.success_count
            result.failure_count += response.failure_count

            for token, resp in zip(batch, response.responses):
                if resp.success:
                    continue
                if isinstance(resp.exception, INVALID_TOKEN_ERRORS):
                    result.invalid_tokens.append(token)
                else:
                    logger.warning(f"Push to device failed (token kept): {resp.exception}")

        logger.info(
            f"Push '{title}' sent: success={result.success_count}, "
            f"failure={result.failure_count}, invalid={len(result.invalid_tokens)}"
        )
        return result


def build_notifier():
    """Notifier for this process: Firebase when enabled, otherwise a no-op."""
    settings = get_settings()
    if not settings.PUSH_NOTIFICATIONS_ENABLED:
        logger.info("Push notifications disabled")
        return NullNotifier()

    try:
        return FirebaseNotifier()
    except Exception as e:
        logger.warning(f"Firebase initialization failed, push disabled: {e}")
        return NullNotifier()
