"""Identity resolver: who is acting, and which role stands behind the session.

The STS resolver calls ``GetCallerIdentity``; when the caller is an
assumed-role session (``arn:aws:sts::<acct>:assumed-role/<role>/<session>``)
it looks the role up through IAM so the issuer ARN carries the role path,
which is what access entries must be granted to.
"""

from __future__ import annotations

import asyncio
import re
from abc import ABC, abstractmethod
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from eksorch.errors import AuthenticationError
from eksorch.models.identity import CallerIdentity
from eksorch.observability.logging import get_logger

_log = get_logger("identity")

_ASSUMED_ROLE_ARN = re.compile(
    r"^arn:(?P<partition>[\w-]+):sts::(?P<account>\d{12}):assumed-role/(?P<role>[\w+=,.@-]+)/(?P<session>.+)$"
)
_ARN = re.compile(r"^arn:[\w-]+:(iam|sts)::\d{12}:.+$")


def issuer_arn_for(arn: str, role_path: str = "/") -> str:
    """Return the IAM role ARN behind an assumed-role session ARN.

    Any other principal ARN is returned unchanged.
    """
    match = _ASSUMED_ROLE_ARN.match(arn)
    if match is None:
        return arn
    path = role_path if role_path.endswith("/") else f"{role_path}/"
    if not path.startswith("/"):
        path = f"/{path}"
    return f"arn:{match['partition']}:iam::{match['account']}:role{path}{match['role']}"


class IdentityResolver(ABC):
    """Read-only query against an external identity service."""

    @abstractmethod
    async def resolve(self) -> CallerIdentity:
        """Return the effective caller identity.

        Raises:
            AuthenticationError: no valid session exists.
        """


class StaticIdentityResolver(IdentityResolver):
    """Resolver for a principal supplied up front (CI, tests, offline plans)."""

    def __init__(self, arn: str, user_id: str = "static") -> None:
        if not _ARN.match(arn or ""):
            raise AuthenticationError(f"not a valid principal ARN: {arn!r}")
        self._arn = arn
        self._user_id = user_id

    async def resolve(self) -> CallerIdentity:
        account_id = self._arn.split(":")[4]
        return CallerIdentity(
            account_id=account_id,
            arn=self._arn,
            user_id=self._user_id,
            issuer_arn=issuer_arn_for(self._arn),
        )


class StsIdentityResolver(IdentityResolver):
    """Resolve the caller through AWS STS, and the session's role through IAM.

    Args:
        session: Optional pre-built boto3 Session (tests pass a mock).
        region:  Region for the STS endpoint.
        profile: Named profile used when no session is given.
    """

    def __init__(self, session: Any = None, region: str = "", profile: str = "") -> None:
        self._session = session
        self._region = region
        self._profile = profile

    def _boto_session(self) -> Any:
        if self._session is None:
            kwargs: dict[str, str] = {}
            if self._region:
                kwargs["region_name"] = self._region
            if self._profile:
                kwargs["profile_name"] = self._profile
            self._session = boto3.Session(**kwargs)
        return self._session

    async def resolve(self) -> CallerIdentity:
        return await asyncio.to_thread(self._resolve_sync)

    def _resolve_sync(self) -> CallerIdentity:
        session = self._boto_session()
        try:
            caller = session.client("sts").get_caller_identity()
        except NoCredentialsError as exc:
            raise AuthenticationError(f"no AWS credentials available: {exc}") from exc
        except (ClientError, BotoCoreError) as exc:
            raise AuthenticationError(f"GetCallerIdentity failed: {exc}") from exc

        arn = caller["Arn"]
        issuer = issuer_arn_for(arn)
        match = _ASSUMED_ROLE_ARN.match(arn)
        if match is not None:
            issuer = self._lookup_role_arn(session, match["role"], fallback=issuer)

        identity = CallerIdentity(
            account_id=caller["Account"],
            arn=arn,
            user_id=caller.get("UserId", ""),
            issuer_arn=issuer,
        )
        _log.info(
            "caller_identity_resolved",
            account_id=identity.account_id,
            arn=identity.arn,
            issuer_arn=identity.issuer_arn,
        )
        return identity

    def _lookup_role_arn(self, session: Any, role_name: str, fallback: str) -> str:
        """IAM knows the role path; without iam:GetRole fall back to a path-less ARN."""
        try:
            role = session.client("iam").get_role(RoleName=role_name)
        except ClientError as exc:
            _log.warning(
                "role_lookup_failed",
                role=role_name,
                error=str(exc),
                fallback=fallback,
            )
            return fallback
        return str(role["Role"]["Arn"])
