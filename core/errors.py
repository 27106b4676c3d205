"""Exception types shared across the session, storage and dispatch layers."""


class SessionbotError(Exception):
    pass


class RecordDecodeError(SessionbotError):
    """A stored record could not be decoded back into a value."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"corrupt record {key!r}: {reason}")
        self.key = key


class SessionFetchError(SessionbotError):
    """The remote session bundle could not be fetched or decrypted."""


class MigrationError(SessionbotError):
    pass
