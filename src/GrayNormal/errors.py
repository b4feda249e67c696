"""Exception types raised by the heightmap-to-normal pipeline."""


class GrayNormalError(Exception):
    """Base class for all pipeline errors."""


class UsageError(GrayNormalError, ValueError):
    """Raised for bad or missing arguments (no inputs, bad values)."""


class MissingExtensionError(UsageError):
    """Raised when an input path has no extension to strip for the output name."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"File extension doesn't exist: {path}")


class ImageDecodeError(GrayNormalError, IOError):
    """Raised when a heightmap cannot be opened or decoded."""

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        msg = f"Failed to decode heightmap: {path}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class ImageEncodeError(GrayNormalError, IOError):
    """Raised when a normal map cannot be written."""

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        msg = f"Failed to write normal map: {path}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class DimensionMismatchError(GrayNormalError, ValueError):
    """Raised when merge inputs do not share the same width and height."""

    def __init__(self, path: str, expected: tuple, actual: tuple):
        self.path = path
        self.expected = tuple(expected)
        self.actual = tuple(actual)
        super().__init__(
            f"Heightmap {path} is {actual[1]}x{actual[0]}, expected "
            f"{expected[1]}x{expected[0]} (all merge inputs must share "
            f"the same dimensions)"
        )


class BatchAbortedError(GrayNormalError, RuntimeError):
    """Raised when a fail-fast batch stops on the first failing file.

    ``result`` holds the partial :class:`~GrayNormal.core.records.BatchResult`
    (files already written stay on disk) and ``cause`` the original error.
    """

    def __init__(self, message: str, result=None, cause: Exception = None):
        super().__init__(message)
        self.result = result
        self.cause = cause
