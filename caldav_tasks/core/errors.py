"""Exception types raised by the transport layer."""


class CalDAVTasksError(Exception):
    """Base class for caldav-tasks errors."""


class TransportError(CalDAVTasksError):
    """A CalDAV request could not be completed (network, HTTP or protocol)."""


class AuthenticationError(TransportError):
    """The server rejected the account credentials."""


class NotConnectedError(TransportError):
    """An operation was attempted for an account with no open connection."""

    def __init__(self, account_id: str):
        super().__init__(f"Account not connected: {account_id}")
        self.account_id = account_id
