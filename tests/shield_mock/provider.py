"""Mock enrollment provider with error injection.

Keeps enrollment in memory, records every call, and tracks how many
calls are in flight overall and per resource so tests can assert on the
driver's concurrency guarantees.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass

from shield_reconciler.models import AccountScope, EnrollmentState


@dataclass(frozen=True)
class MockCall:
    """One recorded provider call."""

    method: str
    resource_id: str


class MockEnrollmentProvider:
    """In-memory enrollment provider.

    Error injection:
        provider.inject_errors("enroll", "B", err1, err2)  # fail twice, then succeed
        provider.fail_always("unenroll", "A", err)        # fail every attempt

    Blocking:
        provider.block("enroll", "A")  # call waits until provider.release("enroll", "A")
    """

    def __init__(
        self,
        enrolled: Iterable[str] = (),
        *,
        delay_seconds: float = 0.0,
        accounts: dict[str, str] | None = None,
    ) -> None:
        """Initialize provider state.

        Args:
            enrolled: Resource ids enrolled at start.
            delay_seconds: Simulated latency of each enroll/unenroll call.
            accounts: Resource id -> account, used to filter list_enrolled.
        """
        self.enrolled: set[str] = set(enrolled)
        self.calls: list[MockCall] = []
        self.list_calls = 0
        self.list_error: BaseException | None = None
        self._delay_seconds = delay_seconds
        self._accounts = accounts or {}
        self._scripted: dict[tuple[str, str], list[BaseException]] = {}
        self._always: dict[tuple[str, str], BaseException] = {}
        self._gates: dict[tuple[str, str], asyncio.Event] = {}
        self._started: dict[tuple[str, str], asyncio.Event] = {}
        self._in_flight_total = 0
        self._in_flight: dict[str, int] = {}
        self.max_in_flight_total = 0
        self.max_in_flight_per_resource = 0

    # ------------------------------------------------------------------ setup

    def inject_errors(self, method: str, resource_id: str, *errors: BaseException) -> None:
        """Raise these errors on the next calls, in order, then succeed."""
        self._scripted.setdefault((method, resource_id), []).extend(errors)

    def fail_always(self, method: str, resource_id: str, error: BaseException) -> None:
        """Raise this error on every call."""
        self._always[(method, resource_id)] = error

    def block(self, method: str, resource_id: str) -> None:
        """Hold calls for this resource until release() is called."""
        self._gates[(method, resource_id)] = asyncio.Event()
        self._started[(method, resource_id)] = asyncio.Event()

    def release(self, method: str, resource_id: str) -> None:
        self._gates[(method, resource_id)].set()

    async def wait_started(self, method: str, resource_id: str) -> None:
        """Wait until a blocked call has been entered."""
        await self._started[(method, resource_id)].wait()

    # ------------------------------------------------------------ assertions

    def calls_for(self, resource_id: str) -> list[MockCall]:
        return [c for c in self.calls if c.resource_id == resource_id]

    def call_count(self, method: str, resource_id: str) -> int:
        return sum(1 for c in self.calls if c.method == method and c.resource_id == resource_id)

    @property
    def mutating_call_count(self) -> int:
        return len(self.calls)

    # --------------------------------------------------------------- protocol

    async def list_enrolled(self, account_scope: AccountScope) -> list[EnrollmentState]:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        return [
            EnrollmentState(resource_id=rid)
            for rid in sorted(self.enrolled)
            if account_scope.contains(self._accounts.get(rid, ""))
            or rid not in self._accounts
        ]

    async def enroll(self, resource_id: str) -> None:
        await self._call("enroll", resource_id)
        self.enrolled.add(resource_id)

    async def unenroll(self, resource_id: str) -> None:
        await self._call("unenroll", resource_id)
        self.enrolled.discard(resource_id)

    async def _call(self, method: str, resource_id: str) -> None:
        key = (method, resource_id)
        self.calls.append(MockCall(method, resource_id))

        self._in_flight_total += 1
        self._in_flight[resource_id] = self._in_flight.get(resource_id, 0) + 1
        self.max_in_flight_total = max(self.max_in_flight_total, self._in_flight_total)
        self.max_in_flight_per_resource = max(
            self.max_in_flight_per_resource, self._in_flight[resource_id]
        )
        try:
            if key in self._started:
                self._started[key].set()
            if key in self._gates:
                await self._gates[key].wait()
            # Always yield so concurrent calls can overlap
            await asyncio.sleep(self._delay_seconds)

            if key in self._always:
                raise self._always[key]
            scripted = self._scripted.get(key)
            if scripted:
                raise scripted.pop(0)
        finally:
            self._in_flight_total -= 1
            self._in_flight[resource_id] -= 1
