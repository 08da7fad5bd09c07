class ListingStoreError(Exception):
    """Base class for every error raised by the listing store."""


class NotFoundError(ListingStoreError):
    def __init__(self, kind: str, key: int):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: id = {key}")


class InvalidArgumentError(ListingStoreError):
    pass


class DataCorruptionError(ListingStoreError):
    pass


class StorageUnavailableError(ListingStoreError):
    pass


class StartupFatalError(ListingStoreError):
    """Raised when the service cannot start serving at all."""


class OpenError(StartupFatalError):
    pass


class ExtensionRegistrationError(StartupFatalError):
    pass


class SchemaMismatchError(StartupFatalError):
    pass
