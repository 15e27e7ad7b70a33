class ConfigurationError(ValueError):
    """Invalid shape, chunk shape, dtype, path or other configuration."""


class StorageError(OSError):
    """Failure of the underlying store while reading, writing or deleting."""


class SerializationError(ValueError):
    """Malformed JSON or a value outside the JSON document model."""


class RangeError(IndexError):
    """Inconsistent index range or shape passed to the indexing/copy routines."""


class _BaseConfigurationError(ConfigurationError):
    _msg = ""

    def __init__(self, *args):
        super().__init__(self._msg.format(*args))


class _BaseRangeError(RangeError):
    _msg = ""

    def __init__(self, *args):
        super().__init__(self._msg.format(*args))


class MetadataError(SerializationError):
    pass


class ContainsArrayError(_BaseConfigurationError):
    _msg = "path {0!r} contains an array"


class ArrayNotFoundError(_BaseConfigurationError):
    _msg = "array not found at path {0!r}"


class FSPathExistNotDir(_BaseConfigurationError):
    _msg = "path exists but is not a directory: {0!r}"


class ReadOnlyError(PermissionError):
    def __init__(self):
        super().__init__("object is read-only")


class BoundsCheckError(_BaseRangeError):
    _msg = "region {0!r} at offset {1!r} is out of bounds for array with shape {2!r}"


def err_rank_mismatch(what, expected, actual):
    raise RangeError(
        f"rank mismatch for {what}; expected {expected} dimensions, got {actual}"
    )
