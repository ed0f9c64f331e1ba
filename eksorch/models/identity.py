"""Caller identity data structures."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CallerIdentity:
    """Effective identity of the acting principal.

    ``issuer_arn`` is the underlying IAM role for an assumed-role session and
    equals ``arn`` for any other principal type.
    """

    account_id: str
    arn: str
    user_id: str
    issuer_arn: str

    @property
    def is_assumed_role(self) -> bool:
        return ":assumed-role/" in self.arn
