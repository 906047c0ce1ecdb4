"""Logging filter adding the current request id to every record.

Lets the JSON formatter emit ``request_id`` so order, webhook and stock
service log lines of one request can be correlated.
"""

from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX


class RequestIdFilter(Filter):
    """Set ``record.request_id`` from ``REQUEST_ID_CTX`` ("-" outside a request)."""

    def filter(self, record: LogRecord) -> bool:
        record.request_id = REQUEST_ID_CTX.get()
        return True
