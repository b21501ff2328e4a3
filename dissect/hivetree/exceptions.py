class Error(Exception):
    pass


class InvalidHeaderError(Error):
    pass


class TruncatedReadError(Error):
    pass


class MalformedCellSizeError(Error):
    pass


class InvalidCountError(Error):
    pass


class UnknownSubkeyEncodingError(Error):
    pass


class RootKeyNotFoundError(Error):
    pass


class KeyCycleError(Error):
    pass


class RegistryKeyNotFoundError(Error):
    pass
