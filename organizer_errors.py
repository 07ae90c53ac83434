"""
Error taxonomy for Gothic Organizer.

The engine and the installer raise these; the orchestration layer
(``organizer.Organizer``) catches them and turns them into user-facing
messages. Every error carries a ``suggested_action`` that is appended to the
message shown to the user.
"""

from __future__ import annotations


class OrganizerError(Exception):
    """Base class for every recoverable Gothic Organizer error."""

    default_action: str | None = None

    def __init__(self, message: str, suggested_action: str | None = None):
        super().__init__(message)
        self.message = message
        self.suggested_action = suggested_action or self.default_action

    def user_message(self) -> str:
        if self.suggested_action:
            return f"{self.message}\n\n{self.suggested_action}"
        return self.message


class NotFoundError(OrganizerError):
    """A referenced profile, instance or mod does not exist."""

    default_action = "Refresh the view and pick an existing entry."


class AlreadyExistsError(OrganizerError):
    """A name or storage slot is already taken."""

    default_action = "Choose a different name, or remove the existing entry first."


class InvalidSourceError(OrganizerError):
    """A candidate mod source is neither a directory nor a supported archive."""

    default_action = "Select a mod folder or a .zip archive."


class StorageIOError(OrganizerError):
    """A filesystem copy, extract, delete, read or write failed.

    ``os_error`` keeps the underlying exception so its text reaches the user.
    """

    default_action = "Check that the path exists and that you have permission to access it."

    def __init__(
        self,
        message: str,
        os_error: BaseException | None = None,
        suggested_action: str | None = None,
    ):
        if os_error is not None:
            message = f"{message}: {os_error}"
        super().__init__(message, suggested_action)
        self.os_error = os_error


class CorruptArchiveError(InvalidSourceError, StorageIOError):
    """An archive could not be read. Both an invalid source and an I/O failure."""

    default_action = "Download the archive again, or extract it manually and add the folder."

    def __init__(self, message: str, os_error: BaseException | None = None):
        StorageIOError.__init__(self, message, os_error)


class InconsistentStateError(OrganizerError):
    """An operation expected an active profile or instance that is gone."""

    default_action = "Select a profile and an instance, then try again."
