"""Exception hierarchy shared by sync, storage, credentials and research.

Callers distinguish failures by type: a rate limit means "retry later",
a re-authentication failure means "run login again", anything else is
reported as-is.
"""


class XBookmarksError(Exception):
    """Base exception for all x-bookmarks errors."""


class UnauthenticatedError(XBookmarksError):
    """No credential is stored."""

    def __init__(self, message: str = "Not authenticated. Run `x-bookmarks login` first."):
        super().__init__(message)


class ReauthenticationRequiredError(XBookmarksError):
    """A credential exists but could not be refreshed."""

    def __init__(self, message: str = "Token refresh failed. Please re-authenticate."):
        super().__init__(message)


class RateLimitedError(XBookmarksError):
    """The remote API throttled the request."""

    def __init__(self, retry_after: int):
        self.retry_after = retry_after
        super().__init__(f"Rate limited. Resets in {retry_after}s")


class RemoteError(XBookmarksError):
    """Non-success response from the remote API."""

    def __init__(self, status: int, detail: str = ""):
        self.status = status
        self.detail = detail
        super().__init__(f"Remote API {status}: {detail}" if detail else f"Remote API {status}")


class ValidationError(XBookmarksError):
    """Malformed caller input, rejected before any mutation."""

    def __init__(self, field: str, message: str | None = None):
        self.field = field
        super().__init__(message or f"Invalid value for '{field}'")


class NotFoundError(XBookmarksError):
    """A referenced entity does not exist."""

    def __init__(self, entity: str, key: object):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity.capitalize()} not found: {key}")


class ConflictError(XBookmarksError):
    """A uniqueness constraint would be violated."""


class SyncInProgressError(ConflictError):
    """Another sync invocation currently holds the sync flag."""

    def __init__(self, message: str = "A sync is already in progress."):
        super().__init__(message)
