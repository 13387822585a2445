from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional


class RemoteOutcome(str, Enum):
    SUCCESS = "success"
    REMOTE_FAILED_LOCAL_APPLIED = "remote_failed_local_applied"
    FAILED = "failed"


@dataclass
class RemoteCallResult:
    """Outcome of a best-effort Stripe side effect paired with a local write"""
    outcome: RemoteOutcome
    error: Optional[str] = None
    verified: bool = False

    @property
    def ok(self) -> bool:
        return self.outcome == RemoteOutcome.SUCCESS

    @classmethod
    def success(cls, verified: bool = True) -> "RemoteCallResult":
        return cls(outcome=RemoteOutcome.SUCCESS, verified=verified)

    @classmethod
    def local_only(cls, error: str) -> "RemoteCallResult":
        return cls(outcome=RemoteOutcome.REMOTE_FAILED_LOCAL_APPLIED, error=error)

    @classmethod
    def failed(cls, error: str) -> "RemoteCallResult":
        return cls(outcome=RemoteOutcome.FAILED, error=error)


class EventOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    NOT_FOUND = "not_found"
    LINKED = "linked"
    IGNORED = "ignored"
    UNHANDLED = "unhandled"


@dataclass
class EventResult:
    event_id: Optional[str]
    event_type: Optional[str]
    outcome: EventOutcome
    order: Any = None
    subscription: Any = None
    message: Optional[str] = None


class SettlementFailure(str, Enum):
    REQUEST_NOT_FOUND = "request_not_found"
    ALREADY_PROCESSED = "already_processed"
    NOT_APPROVED = "not_approved"
    NO_SUBSCRIPTION = "no_subscription"
    SUBSCRIPTION_NOT_FOUND = "subscription_not_found"
    ALREADY_SETTLED = "already_settled"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    USER_NOT_FOUND = "user_not_found"
    TRANSACTION_FAILED = "transaction_failed"


class SettlementCase(str, Enum):
    PARTIAL = "partial"
    FULL_LIQUIDATION = "full_liquidation"


@dataclass
class SettlementResult:
    success: bool
    failure: Optional[SettlementFailure] = None
    error: Optional[str] = None
    case: Optional[SettlementCase] = None
    remote: Optional[RemoteCallResult] = None

    @classmethod
    def fail(cls, failure: SettlementFailure, error: str) -> "SettlementResult":
        return cls(success=False, failure=failure, error=error)


@dataclass
class SweepReport:
    checked: int = 0
    updated: int = 0
    deleted: int = 0
    errors: int = 0
    error_messages: List[str] = field(default_factory=list)
