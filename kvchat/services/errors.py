class ChatError(Exception):
    """Base class for failures reported to the presentation layer."""

    default_message = "Unexpected error"

    def __init__(self, message: str | None = None) -> None:
        """Use ``message`` or the class default as the user-facing text."""
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ChatError):
    """A required field was empty or an argument was not acceptable."""

    default_message = "Please fill in all fields"


class AlreadyExists(ChatError):
    """Signup attempted for a username that is already registered."""

    default_message = "This user already exists"


class InvalidCredentials(ChatError):
    """Unknown username or wrong password. Deliberately indistinguishable."""

    default_message = "Invalid credentials"


class StorageUnavailable(ChatError):
    """The remote store could not be reached."""

    default_message = "Storage unavailable"
