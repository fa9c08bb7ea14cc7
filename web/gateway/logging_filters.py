"""Logging filter that stamps records with the current request id.

The id comes from the ContextVar set by ``RequestIdMiddleware``; the filter
is wired into ``LOGGING`` so formatters can reference ``%(request_id)s``.
"""

from logging import Filter, LogRecord
from .middleware import REQUEST_ID_CTX


class RequestIdFilter(Filter):
    """Attach a ``request_id`` attribute to log records.

    Records logged outside a request (management commands, startup) get a
    hyphen placeholder. A ``request_id`` passed explicitly through ``extra``
    is left untouched.
    """

    def filter(self, record: LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = REQUEST_ID_CTX.get()
        return True
