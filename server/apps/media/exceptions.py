"""Exceptions for media app.

The lifecycle manager translates low-level store and codec faults into
these types; callers map them to user-visible responses.
"""


class MediaError(Exception):
    """Base class for media lifecycle errors."""


class UnsupportedTypeError(MediaError):
    """Raised when an upload's extension is on neither allow-list."""

    def __init__(self, filename: str, extension: str) -> None:
        """Initialize UnsupportedTypeError.

        Args:
            filename: Original filename hint supplied by the caller.
            extension: Extension derived from the filename.
        """
        self.filename = filename
        self.extension = extension
        super().__init__(
            f'Unsupported media type: {filename!r} (extension {extension!r})',
        )


class MediaNotFoundError(MediaError):
    """Raised when the target object does not exist for the user."""

    def __init__(self, user_id: str, object_id: str) -> None:
        """Initialize MediaNotFoundError.

        Args:
            user_id: Owner namespace.
            object_id: Requested object.
        """
        self.user_id = user_id
        self.object_id = object_id
        super().__init__(f'Media not found: {user_id}/{object_id}')


class ThumbnailNotFoundError(MediaNotFoundError):
    """Raised when no thumbnail is available after the bounded retry.

    The original may still exist; callers can fall back to it.
    """


class InvalidStateError(MediaError):
    """Raised when an operation is not legal for the object's state."""

    def __init__(
        self,
        user_id: str,
        object_id: str,
        state: str,
        expected: str,
    ) -> None:
        """Initialize InvalidStateError.

        Args:
            user_id: Owner namespace.
            object_id: Target object.
            state: Current lifecycle state.
            expected: State the operation requires.
        """
        self.user_id = user_id
        self.object_id = object_id
        self.state = state
        self.expected = expected
        super().__init__(
            f'Media {user_id}/{object_id} is {state}, expected {expected}',
        )


class ConflictError(MediaError):
    """Raised when a concurrent transition changed the record first.

    Safe to retry once.
    """

    def __init__(self, user_id: str, object_id: str) -> None:
        """Initialize ConflictError.

        Args:
            user_id: Owner namespace.
            object_id: Contended object.
        """
        self.user_id = user_id
        self.object_id = object_id
        super().__init__(
            f'Media {user_id}/{object_id} changed concurrently',
        )


class StoreFailureError(MediaError):
    """Raised on an I/O fault in the object store."""


class GeneratorFailureError(MediaError):
    """Raised when a thumbnail cannot be produced from an original."""


class ObjectMissingError(StoreFailureError):
    """Raised by the object store when a source path does not exist."""

    def __init__(self, name: str) -> None:
        """Initialize ObjectMissingError.

        Args:
            name: Storage name that was expected to exist.
        """
        self.name = name
        super().__init__(f'Stored object missing: {name}')
