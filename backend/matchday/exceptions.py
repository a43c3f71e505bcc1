from fastapi import HTTPException
from pydantic import BaseModel
from typing import Optional


class ProblemDetail(BaseModel):
    """RFC 7807 compliant error response."""

    type: str = "about:blank"
    title: str
    detail: Optional[str] = None
    status: int
    instance: Optional[str] = None
    code: str


class DomainException(Exception):
    """Base class for domain-specific exceptions."""

    def __init__(
        self,
        status_code: int,
        title: str,
        *,
        code: str,
        detail: str | None = None,
        type_: str = "about:blank",
    ) -> None:
        super().__init__(detail or title)
        self.status_code = status_code
        self.title = title
        self.detail = detail
        self.type = type_
        self.code = code


class ValidationError(DomainException):
    """A match lineup cannot be recorded as submitted."""

    def __init__(self, detail: str) -> None:
        super().__init__(
            status_code=422,
            title="Invalid match",
            detail=detail,
            code="match_validation_error",
        )


class NotEligible(DomainException):
    def __init__(self, detail: str) -> None:
        super().__init__(
            status_code=403,
            title="Not eligible to vote",
            detail=detail,
            code="mvp_not_eligible",
        )


class VotingClosed(DomainException):
    def __init__(self, match_id: str) -> None:
        super().__init__(
            status_code=409,
            title="Voting closed",
            detail=f"MVP voting for match '{match_id}' is closed",
            code="mvp_voting_closed",
        )


class MatchNotFound(DomainException):
    def __init__(self, match_id: str) -> None:
        super().__init__(
            status_code=404,
            title="Match not found",
            detail=f"match '{match_id}' not found",
            code="match_not_found",
        )


class MemberNotFound(DomainException):
    def __init__(self, member_id: str) -> None:
        super().__init__(
            status_code=404,
            title="Member not found",
            detail=f"group member '{member_id}' not found",
            code="member_not_found",
        )


class InviteNotFound(DomainException):
    def __init__(self, invite_id: str) -> None:
        super().__init__(
            status_code=404,
            title="Invite not found",
            detail=f"invite '{invite_id}' not found",
            code="invite_not_found",
        )


class StoreError(DomainException):
    """The store rejected a batched commit; nothing from the batch persisted."""

    def __init__(self, detail: str) -> None:
        super().__init__(
            status_code=503,
            title="Store unavailable",
            detail=detail,
            code="store_error",
        )


class MigrationInProgress(DomainException):
    """Season stats are being rebuilt; incremental writes must wait."""

    def __init__(self) -> None:
        super().__init__(
            status_code=409,
            title="Migration in progress",
            detail="a legacy migration is running; try again once it finishes",
            code="migration_in_progress",
        )


class PartialMigrationError(Exception):
    """A legacy match that could not be migrated as a whole.

    Raised when an entry is unresolved or when two entries resolve to the
    same member. Collected into the migration report rather than raised to
    the operator.
    """

    def __init__(
        self,
        legacy_match_id: str,
        legacy_player_id: str,
        group_id: str,
        *,
        reason: str | None = None,
    ) -> None:
        self.legacy_match_id = legacy_match_id
        self.legacy_player_id = legacy_player_id
        self.group_id = group_id
        reason = reason or f"has no group member in group '{group_id}'"
        super().__init__(
            f"Match {legacy_match_id}: legacy player '{legacy_player_id}' {reason}; "
            "match skipped"
        )


def http_problem(
    status_code: int,
    detail: str,
    code: str,
    *,
    headers: Optional[dict[str, str]] = None,
) -> HTTPException:
    """Create an HTTPException with an attached problem code."""

    exc = HTTPException(status_code=status_code, detail=detail, headers=headers)
    setattr(exc, "code", code)
    return exc
