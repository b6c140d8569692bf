"""Exceptions raised by dbexplorer."""

from .contracts import QueryErrorInfo


class DBExplorerError(Exception):
    """Base class for dbexplorer errors."""


class UnknownDatabaseType(DBExplorerError, ValueError):
    """No adapter is registered for the requested database type."""


class QueryError(DBExplorerError):
    """A statement failed on the server.

    Carries the structured fields the engine reported so the caller can
    show more than the bare message.
    """

    def __init__(self, info):
        super().__init__(info.message)
        self.info = info

    @property
    def message(self):
        return self.info.message

    @property
    def detail(self):
        return self.info.detail

    @property
    def code(self):
        return self.info.code

    @property
    def position(self):
        return self.info.position

    @classmethod
    def from_exception(cls, exc, adapter=None):
        """Wrap a driver exception, using the adapter to pick out its fields."""
        if adapter is not None:
            info = adapter.error_info(exc)
        else:
            info = QueryErrorInfo(message=str(exc) or "Unknown error")
        if adapter is not None and adapter.is_cancel_error(exc):
            return QueryCancelled(info)
        return cls(info)


class QueryCancelled(QueryError):
    """The statement was cancelled before it completed."""
