"""
Laundry Portal - Error Types

Every error is scoped to the page or action that produced it: routes catch
these at the call site and render them inline or as a redirect notice.
"""

from typing import Optional


class PortalError(Exception):
    """Base class for portal errors with a user-facing message."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ApiError(PortalError):
    """
    A backend call failed.

    Covers transport failures, non-JSON responses and business-rule errors
    returned by the server (shown to the user verbatim).
    """

    def __init__(
        self,
        message: str = "API request failed",
        status_code: Optional[int] = None,
        payload: Optional[dict] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}


class FormValidationError(PortalError):
    """A required field was missing; raised before any network call."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class LoginRequired(PortalError):
    """The current flow needs an authenticated customer to continue."""

    def __init__(self, next_url: str = "/"):
        super().__init__("Please log in to continue")
        self.next_url = next_url


class ActionInProgress(PortalError):
    """The same action on the same entity is already being submitted."""

    def __init__(self, key: str):
        super().__init__("This action is already in progress. Please wait.")
        self.key = key
