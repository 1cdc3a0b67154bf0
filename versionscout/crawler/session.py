"""
Login session for the change-tracking service.

The service authenticates with a cookie set by a form login. The scheduler's
cookie jar keeps it, so logging in once is enough for the whole run.
"""

from __future__ import annotations

import asyncio
import re

from bs4 import BeautifulSoup

from versionscout.crawler.client import RequestScheduler, RequestSpec
from versionscout.crawler.urls import DEFAULT_BASE_URL
from versionscout.utils.errors import AuthenticationError
from versionscout.utils.logging import get_logger

logger = get_logger(__name__)

# A successful login redirects away; a failed one re-renders the login form
_LOGIN_FORM = re.compile(r"log in", re.IGNORECASE)


class SessionManager:
    """Logs in once and lets any number of callers wait for it.

    The first call to ensure_logged_in() starts the login request; every
    other caller, concurrent or later, awaits that same task. A failed login
    stays failed: callers keep getting the same AuthenticationError.
    """

    def __init__(
        self,
        scheduler: RequestScheduler,
        *,
        email: str,
        password: str,
        base_url: str = DEFAULT_BASE_URL,
    ) -> None:
        self._scheduler = scheduler
        self._email = email
        self._password = password
        self._login_url = f"{base_url.rstrip('/')}/login"
        self._login_task: asyncio.Future[None] | None = None

    @property
    def logged_in(self) -> bool:
        task = self._login_task
        return task is not None and task.done() and not task.cancelled() and task.exception() is None

    async def ensure_logged_in(self) -> None:
        """Wait until the session is logged in.

        Raises:
            AuthenticationError: If the service rejected the credentials.
            NetworkError: If the login request itself failed.
        """
        if self._login_task is None:
            self._login_task = asyncio.ensure_future(self._log_in())
        # shield: one impatient caller must not cancel the login for everyone
        await asyncio.shield(self._login_task)

    async def _log_in(self) -> None:
        if not self._email or not self._password:
            raise AuthenticationError("no credentials configured")

        logger.info("Logging in", url=self._login_url)

        response = await self._scheduler.submit(
            RequestSpec(
                self._login_url,
                method="POST",
                data={"em": self._email, "pw": self._password},
                follow_redirects=False,
                retry=False,
                requires_login=False,
            )
        )

        if _LOGIN_FORM.search(response.text):
            alert = BeautifulSoup(response.text, "html.parser").select_one(".alert")
            reason = alert.get_text().strip() if alert else None
            logger.error("Login rejected", url=self._login_url, reason=reason)
            raise AuthenticationError(reason)

        logger.info("Logged in", url=self._login_url)
