"""In-memory fakes for the inventory and enrollment boundaries.

Usage:
    from shield_mock import MockEnrollmentProvider, MockInventory, make_record

    provider = MockEnrollmentProvider(enrolled=["A"])
    provider.inject_errors("enroll", "B", ProviderError(ErrorKind.TIMEOUT))
    report = await ReconciliationDriver(provider, settings).reconcile(ops)

    assert provider.call_count("enroll", "B") == 2
"""

from .inventory import DEFAULT_ACCOUNT_ID, MockInventory, make_record
from .provider import MockCall, MockEnrollmentProvider

__all__ = [
    "DEFAULT_ACCOUNT_ID",
    "MockCall",
    "MockEnrollmentProvider",
    "MockInventory",
    "make_record",
]
