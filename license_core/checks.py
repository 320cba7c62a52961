# License Core - Policy Checks
"""
Policy checks over a verified LicenseRecord.

Every check is a small object with a `name` and an `evaluate(record)` method
returning None when the record passes, or a PolicyViolation naming the check.
Checks never read the clock: the reference time is passed in by the caller.

    policy = AllOf(NotBlocked(), NotExpired(at=now), HasFeature(3), ActivatedOn(code))
    violation = policy.evaluate(record)
"""
from datetime import datetime
from typing import Iterable, List, Optional, Protocol, Tuple

from pydantic import BaseModel, ConfigDict

from .errors import PolicyViolation, ViolationReason
from .models import FEATURE_COUNT, LicenseRecord, as_utc


class Check(Protocol):
    name: str

    def evaluate(self, record: LicenseRecord) -> Optional[PolicyViolation]:
        ...


def _check_feature_number(n: int) -> int:
    if isinstance(n, bool) or not isinstance(n, int) or not 1 <= n <= FEATURE_COUNT:
        raise ValueError(f"feature number must be an int in 1..{FEATURE_COUNT}, got {n!r}")
    return n


# ============================================================================
# Expiry
# ============================================================================

class NotExpired:
    """Passes while the effective expiry has not been reached at time `at`."""

    name = "not_expired"

    def __init__(self, at: datetime):
        self.at = as_utc(at)

    def evaluate(self, record):
        if record.expires_at is None and record.period_days is not None and record.created_at is None:
            return PolicyViolation(
                check_name=self.name,
                reason=ViolationReason.EXPIRED,
                detail="Validity period has no start date",
            )
        expiry = record.expiry()
        if expiry is not None and expiry < self.at:
            return PolicyViolation(
                check_name=self.name,
                reason=ViolationReason.EXPIRED,
                detail=f"License expired at {expiry.isoformat()}",
            )
        return None


class HasExpired:
    name = "has_expired"

    def __init__(self, at: datetime):
        self.at = as_utc(at)

    def evaluate(self, record):
        if NotExpired(self.at).evaluate(record) is None:
            return PolicyViolation(
                check_name=self.name,
                reason=ViolationReason.NOT_EXPIRED,
                detail="License has not expired",
            )
        return None


# ============================================================================
# Block / features
# ============================================================================

class NotBlocked:
    name = "not_blocked"

    def evaluate(self, record):
        if record.block:
            return PolicyViolation(
                check_name=self.name,
                reason=ViolationReason.BLOCKED,
                detail="License is blocked",
            )
        return None


class HasFeature:
    def __init__(self, n: int):
        self.n = _check_feature_number(n)
        self.name = f"has_feature_{n}"

    def evaluate(self, record):
        if not record.has_feature(self.n):
            return PolicyViolation(
                check_name=self.name,
                reason=ViolationReason.FEATURE_DISABLED,
                detail=f"Feature {self.n} is not enabled",
                feature=self.n,
            )
        return None


class HasNotFeature:
    def __init__(self, n: int):
        self.n = _check_feature_number(n)
        self.name = f"has_not_feature_{n}"

    def evaluate(self, record):
        if record.has_feature(self.n):
            return PolicyViolation(
                check_name=self.name,
                reason=ViolationReason.FEATURE_ENABLED,
                detail=f"Feature {self.n} is enabled",
                feature=self.n,
            )
        return None


# ============================================================================
# Machine binding
# ============================================================================

class WithinMachineLimit:
    name = "within_machine_limit"

    def evaluate(self, record):
        cap = record.max_no_of_machines
        if cap is not None and len(record.activated_machines) > cap:
            return PolicyViolation(
                check_name=self.name,
                reason=ViolationReason.MACHINE_LIMIT_EXCEEDED,
                detail=f"Maximum activations ({cap}) exceeded: {len(record.activated_machines)}",
            )
        return None


class ActivatedOn:
    """The machine must appear in the license's activation history."""

    name = "activated_on"

    def __init__(self, machine_code: str):
        self.machine_code = machine_code

    def evaluate(self, record):
        if self.machine_code not in record.machine_codes:
            return PolicyViolation(
                check_name=self.name,
                reason=ViolationReason.MACHINE_NOT_ALLOWED,
                detail="License not activated on this device",
            )
        return None


class AllowedOn:
    """Allow-list check. No list means no restriction; an empty list allows nobody."""

    name = "allowed_on"

    def __init__(self, machine_code: str):
        self.machine_code = machine_code

    def evaluate(self, record):
        allowed = record.allowed_machines
        if allowed is not None and self.machine_code not in allowed:
            return PolicyViolation(
                check_name=self.name,
                reason=ViolationReason.MACHINE_NOT_ALLOWED,
                detail="This device is not on the license's allow-list",
            )
        return None


# ============================================================================
# Composition
# ============================================================================

class AllOf:
    """AND of several checks, left to right, stopping at the first violation."""

    name = "all_of"

    def __init__(self, *checks: Check):
        self.checks: Tuple[Check, ...] = tuple(checks)

    def evaluate(self, record):
        for check in self.checks:
            violation = check.evaluate(record)
            if violation is not None:
                return violation
        return None


class Policy(AllOf):
    """Fluent builder: Policy().not_blocked().not_expired(now).has_feature(2)"""

    name = "policy"

    def _with(self, check: Check) -> "Policy":
        return Policy(*self.checks, check)

    def not_expired(self, at: datetime) -> "Policy":
        return self._with(NotExpired(at))

    def has_expired(self, at: datetime) -> "Policy":
        return self._with(HasExpired(at))

    def not_blocked(self) -> "Policy":
        return self._with(NotBlocked())

    def has_feature(self, n: int) -> "Policy":
        return self._with(HasFeature(n))

    def has_not_feature(self, n: int) -> "Policy":
        return self._with(HasNotFeature(n))

    def within_machine_limit(self) -> "Policy":
        return self._with(WithinMachineLimit())

    def activated_on(self, machine_code: str) -> "Policy":
        return self._with(ActivatedOn(machine_code))

    def allowed_on(self, machine_code: str) -> "Policy":
        return self._with(AllowedOn(machine_code))


class CheckReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    passed: bool
    violation: Optional[PolicyViolation] = None
    checks_run: Tuple[str, ...] = ()


def evaluate(record: LicenseRecord, checks: Iterable[Check]) -> CheckReport:
    """Run checks in order and report which ran and which one (if any) failed."""
    ran: List[str] = []
    for check in checks:
        ran.append(check.name)
        violation = check.evaluate(record)
        if violation is not None:
            return CheckReport(passed=False, violation=violation, checks_run=tuple(ran))
    return CheckReport(passed=True, checks_run=tuple(ran))
