"""Exceptions raised by the Workbench client."""


class WorkbenchClientError(Exception):
    """Base class for client errors."""


class AuthenticationError(WorkbenchClientError):
    """The server rejected the login."""


class RelayRequestError(WorkbenchClientError):
    """The relay endpoint answered with a non-success status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConversationBusyError(WorkbenchClientError):
    """A send was attempted while the conversation still has a request in flight."""


class ConversationNotFoundError(WorkbenchClientError):
    """No local conversation has the given ID."""


class ConversationNotLoadedError(WorkbenchClientError):
    """The conversation's turns have not been fetched from the store yet."""
