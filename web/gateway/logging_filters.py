"""Logging filter that stamps records with the current request id.

Add ``RequestIdFilter`` to a handler so formatters (the JSON formatter in
``config.settings.LOGGING`` in particular) can reference ``request_id``
without every log call passing it explicitly.
"""

from logging import Filter, LogRecord

from .middleware import REQUEST_ID_CTX


class RequestIdFilter(Filter):
    """Attach ``record.request_id`` from ``REQUEST_ID_CTX``.

    Records emitted outside a request get ``"-"`` so ``%(request_id)s``
    always resolves.
    """

    def filter(self, record: LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = REQUEST_ID_CTX.get()
        return True
