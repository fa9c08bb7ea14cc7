"""In-process stub for the payments port.

``PaymentsStub`` implements ``PaymentsPort`` without any network call. It is
used in tests and local development when ``USE_HTTP_ADAPTERS`` is off, so
payment confirmation works without the payments service running.
"""

import uuid
from typing import Optional
from .domain import PaymentsPort


class PaymentsStub(PaymentsPort):
    """Approves every positive charge and every refund.

    Non-positive amounts are rejected, mirroring the payments service's
    validation.
    """

    def charge(self, amount_cents: int, currency: str) -> tuple[bool, Optional[uuid.UUID]]:
        if amount_cents <= 0:
            return (False, None)
        return (True, uuid.uuid4())

    def refund(self, transaction_id: uuid.UUID) -> bool:
        return True
