"""
Mock adapter that records every call.

Used by the test suite and for exercising a controller without a live
service. Return values are plain attributes; setting ``errors[method]``
makes that method raise.
"""

from typing import Any, Dict, List, Optional, Tuple

from adapters.base import (
    Adapter,
    AdapterError,
    ApplyResult,
    Capabilities,
    ChangeSet,
    DirectApplier,
    HealthChecker,
    ServiceInfo,
)
from adapters.diff import diff_ir
from ir import IR, ConnectionIR, HealthReport

MOCK_VERSION = "1.0.0-mock"


class MockAdapter(Adapter, DirectApplier, HealthChecker):
    """
    Recording adapter for a single service type.

    Attributes:
        service_info: Returned by connect()
        capabilities: Returned by discover()
        state: Returned by current_state(); defaults to an empty IR
        change_set: Returned by diff(); None computes a real diff
        apply_result: Returned by apply(); None counts every change applied
        health: Returned by get_health()
        errors: Method name -> exception raised instead of returning
        calls: Ordered (method, args) records
    """

    def __init__(self, app: str = "sonarr"):
        self._app = app
        self.service_info = ServiceInfo(version=MOCK_VERSION)
        self.capabilities = Capabilities(
            resolutions=["2160p", "1080p", "720p", "480p"],
        )
        self.state: Optional[IR] = IR(app=app)
        self.change_set: Optional[ChangeSet] = None
        self.apply_result: Optional[ApplyResult] = None
        self.health = HealthReport()
        self.errors: Dict[str, Exception] = {}
        self.calls: List[Tuple[str, Tuple[Any, ...]]] = []

    @property
    def name(self) -> str:
        return f"mock-{self._app}"

    @property
    def supported_app(self) -> str:
        return self._app

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        error = self.errors.get(method)
        if error is not None:
            raise error

    def call_count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def called_methods(self) -> List[str]:
        return [name for name, _ in self.calls]

    def last_call(self, method: str) -> Tuple[Any, ...]:
        for name, args in reversed(self.calls):
            if name == method:
                return args
        raise AssertionError(f"{method} was never called")

    async def connect(self, conn: ConnectionIR) -> ServiceInfo:
        self._record("connect", conn)
        return self.service_info

    async def discover(self, conn: ConnectionIR) -> Capabilities:
        self._record("discover", conn)
        return self.capabilities

    async def current_state(self, conn: ConnectionIR) -> Optional[IR]:
        self._record("current_state", conn)
        return self.state

    def diff(
        self, current: Optional[IR], desired: IR, caps: Capabilities
    ) -> ChangeSet:
        self._record("diff", current, desired, caps)
        if self.change_set is not None:
            return self.change_set
        return diff_ir(current, desired, caps)

    async def apply(self, conn: ConnectionIR, changes: ChangeSet) -> ApplyResult:
        self._record("apply", conn, changes)
        if self.apply_result is not None:
            return self.apply_result
        return ApplyResult(applied=changes.total_changes())

    async def apply_direct(self, conn: ConnectionIR, ir: IR) -> ApplyResult:
        self._record("apply_direct", conn, ir)
        applied = len(ir.import_lists)
        if ir.media_management is not None:
            applied += 1
        if ir.authentication is not None:
            applied += 1
        return ApplyResult(applied=applied)

    async def get_health(self, conn: ConnectionIR) -> HealthReport:
        self._record("get_health", conn)
        return self.health


class UnreachableAdapter(MockAdapter):
    """Mock whose service never answers."""

    def __init__(self, app: str = "sonarr"):
        super().__init__(app)
        self.errors["connect"] = AdapterError("connection refused")
