"""Custom exceptions for the card vault data layer."""


class CardVaultError(Exception):
    """Base exception for card vault errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class StoreError(CardVaultError):
    """Raised when a storage operation fails."""


class NotInitializedError(StoreError):
    """Raised when a store handle is used before it was opened."""

    def __init__(self, store: str):
        super().__init__(f"{store} not connected. Call connect() first.")
        self.store = store


class CorruptStoreError(StoreError):
    """Raised when a database file fails its integrity check."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Database at {path} failed integrity check: {reason}")
        self.path = path
        self.reason = reason


class DownloadFailedError(StoreError):
    """Raised when a required download could not be completed."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Download of {url} failed: {reason}")
        self.url = url
        self.reason = reason


class ConstraintViolationError(StoreError):
    """Raised when a write violates a database constraint."""


class NetworkFailureError(CardVaultError):
    """Raised when a remote source cannot be reached or returns garbage."""


class CardNotFoundError(CardVaultError):
    """Raised when a card is not found."""

    def __init__(self, identifier: str):
        super().__init__(f"Card not found: {identifier}")
        self.identifier = identifier


class CollectionNotFoundError(CardVaultError):
    """Raised when a collection is not found."""

    def __init__(self, collection_id: int):
        super().__init__(f"Collection not found: {collection_id}")
        self.collection_id = collection_id
