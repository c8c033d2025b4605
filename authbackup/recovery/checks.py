"""Named health, functional and data-integrity checks used by recovery plans."""

import logging
import time
from typing import Callable, Dict, List, Optional, Tuple

import requests

from authbackup.backup.models import StoreKind
from authbackup.backup.stores import StoreBackupService
from authbackup.utils.timeouts import OperationTimeout, run_with_timeout

from .models import CheckOutcome, CheckType, ValidationCheck

logger = logging.getLogger(__name__)

# A check returns (passed, message); passed is None when the check does not apply.
CheckFunction = Callable[[], Tuple[Optional[bool], str]]


class CheckRegistry:
    """Maps check names to probe functions and runs them with a timeout."""

    def __init__(self):
        self._checks: Dict[str, CheckFunction] = {}

    def register(self, name: str, func: CheckFunction, *aliases: str) -> None:
        for key in (name,) + aliases:
            self._checks[key] = func

    def names(self) -> List[str]:
        return sorted(self._checks)

    def run(self, check: ValidationCheck) -> CheckOutcome:
        """
        Run one check.

        Args:
            check: Name, type, timeout and required flag

        Returns:
            CheckOutcome: Never raises; errors become a failed outcome
        """
        started = time.monotonic()
        func = self._checks.get(check.name)
        if func is None:
            return CheckOutcome(check.name, check.type, False, check.required, message="unknown check")

        try:
            passed, message = run_with_timeout(func, check.timeout)
        except OperationTimeout as e:
            passed, message = False, str(e)
        except Exception as e:
            passed, message = False, f"{type(e).__name__}: {e}"

        outcome = CheckOutcome(
            name=check.name,
            type=check.type,
            passed=bool(passed),
            required=check.required,
            skipped=passed is None,
            message=message,
            duration=time.monotonic() - started,
        )
        if outcome.failed:
            logger.warning("Check %s failed: %s", check.name, message)
        return outcome

    def run_named(self, names, check_type: CheckType, timeout: float = 30) -> List[CheckOutcome]:
        return [self.run(ValidationCheck(name, check_type, timeout)) for name in names]


def http_check(url: Optional[str]) -> CheckFunction:
    def check():
        if not url:
            return None, "HEALTH_CHECK_URL is not configured"
        response = requests.get(url, timeout=5)
        return response.status_code < 400, f"GET {url} -> {response.status_code}"

    return check


def build_default_checks(services: List[StoreBackupService], health_check_url: Optional[str] = None) -> CheckRegistry:
    """
    Register the built-in checks for the configured stores.

    Args:
        services: Store services (relational and key-value)
        health_check_url: Application health endpoint for functional checks

    Returns:
        CheckRegistry: Registry with database, redis, api, user-data and session-data checks
    """
    registry = CheckRegistry()
    by_kind = {service.kind: service for service in services}

    relational = by_kind.get(StoreKind.RELATIONAL)
    if relational:

        def database_connectivity():
            ok = relational.ping()
            return ok, "database reachable" if ok else "database unreachable"

        def user_data():
            tables = relational.snapshot()
            rows = sum(tables.values())
            return bool(tables), f"{len(tables)} table(s), {rows} row(s)"

        registry.register("database-connectivity", database_connectivity, "database")
        registry.register("user-data", user_data)

    kv = by_kind.get(StoreKind.KV)
    if kv:

        def redis_connectivity():
            ok = kv.ping()
            return ok, "redis reachable" if ok else "redis unreachable"

        def session_data():
            keys = kv.snapshot().get("keys", 0)
            return True, f"{keys} key(s)"

        registry.register("redis-connectivity", redis_connectivity, "redis")
        registry.register("session-data", session_data)

    registry.register("api-endpoints", http_check(health_check_url), "api")
    return registry
