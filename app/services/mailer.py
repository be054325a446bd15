"""
Outbound account email hook.

The core only hands freshly issued tokens to a ``Mailer``; delivery (SMTP,
provider API, queue) lives behind this interface.  ``LoggingMailer`` is the
default: it records that a message would have been sent, never the token.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class Mailer(ABC):
    @abstractmethod
    async def send_verification(self, email: str, token: str) -> None: ...

    @abstractmethod
    async def send_password_reset(self, email: str, token: str) -> None: ...


class LoggingMailer(Mailer):
    async def send_verification(self, email: str, token: str) -> None:
        logger.info("Verification email queued for %s", email)

    async def send_password_reset(self, email: str, token: str) -> None:
        logger.info("Password reset email queued for %s", email)
