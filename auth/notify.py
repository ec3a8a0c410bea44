"""
auth/notify.py -- Post-registration and email verification notification hook.

Delivery is best effort: AuthService logs a failing notifier and still
returns normally. LoggingNotifier is the default; a mail or queue integration
implements the same two methods and sends verification_token to the user's
address. The token itself is never logged.
"""

from __future__ import annotations

import logging

from auth.models import UserProfile

logger = logging.getLogger("sessionkeeper.notify")


class LoggingNotifier:
    def user_registered(self, profile: UserProfile, verification_token: str | None) -> None:
        logger.info(
            "Welcome notification queued (user_id=%s verification=%s)",
            profile.id,
            "attached" if verification_token else "none",
        )

    def verification_requested(self, profile: UserProfile, verification_token: str) -> None:
        logger.info("Verification email queued (user_id=%s)", profile.id)
