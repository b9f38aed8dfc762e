"""Hosted authentication: password sign-in, sign-up and sign-out.

Each browser profile owns one :class:`AuthSessionProvider`; its
``current_session`` is what the checkout sequencer gates on.
"""

from __future__ import annotations

from typing import Any

import structlog

from cafe_storefront.backend.client import BackendClient, BackendError
from cafe_storefront.models import AuthSession, AuthUser, RemoteResult

logger = structlog.get_logger(__name__)


def _parse_user(data: dict[str, Any]) -> AuthUser:
    metadata = data.get("user_metadata") or {}
    return AuthUser(
        id=str(data.get("id", "")),
        email=data.get("email", ""),
        name=metadata.get("name"),
    )


class AuthSessionProvider:
    """Wraps the hosted auth endpoints and remembers the current session.

    Errors are returned as human-readable messages; nothing is retried.
    """

    def __init__(self, client: BackendClient) -> None:
        self._client = client
        self._session: AuthSession | None = None

    @property
    def current_session(self) -> AuthSession | None:
        return self._session

    @property
    def is_authenticated(self) -> bool:
        return self._session is not None

    async def sign_in(self, email: str, password: str) -> RemoteResult[AuthSession]:
        try:
            data = await self._client.request(
                "POST",
                "/auth/v1/token",
                params={"grant_type": "password"},
                json_body={"email": email, "password": password},
                retry=False,
            )
        except BackendError as exc:
            logger.info("sign_in_failed", email=email, error=str(exc))
            return RemoteResult.fail(str(exc))

        session = self._parse_session(data)
        if session is None:
            return RemoteResult.fail("Sign-in response did not include a session.")

        self._session = session
        logger.info("signed_in", user_id=session.user.id)
        return RemoteResult[AuthSession].ok(session)

    async def sign_up(self, email: str, password: str, name: str | None = None) -> RemoteResult[AuthUser]:
        """Register a new account.

        When the provider returns a session straight away (email
        confirmation disabled) the profile is signed in as well.
        """
        try:
            data = await self._client.request(
                "POST",
                "/auth/v1/signup",
                json_body={"email": email, "password": password, "data": {"name": name}},
                retry=False,
            )
        except BackendError as exc:
            logger.info("sign_up_failed", email=email, error=str(exc))
            return RemoteResult.fail(str(exc))

        if not isinstance(data, dict):
            return RemoteResult.fail("Unexpected sign-up response.")

        session = self._parse_session(data)
        if session is not None:
            self._session = session
            user = session.user
        else:
            user = _parse_user(data.get("user") or data)

        logger.info("signed_up", user_id=user.id, session_issued=session is not None)
        return RemoteResult[AuthUser].ok(user)

    async def sign_out(self) -> RemoteResult[None]:
        session = self._session
        self._session = None
        if session is None:
            return RemoteResult.ok()

        try:
            await self._client.request(
                "POST",
                "/auth/v1/logout",
                access_token=session.access_token,
                retry=False,
            )
        except BackendError as exc:
            logger.warning("sign_out_failed", user_id=session.user.id, error=str(exc))
            return RemoteResult.fail(str(exc))

        logger.info("signed_out", user_id=session.user.id)
        return RemoteResult.ok()

    @staticmethod
    def _parse_session(data: Any) -> AuthSession | None:
        if not isinstance(data, dict) or not data.get("access_token"):
            return None
        return AuthSession(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            user=_parse_user(data.get("user") or {}),
        )
