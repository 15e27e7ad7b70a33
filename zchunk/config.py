from typing import Any, Optional

from donfig import Config

from zchunk.errors import ConfigurationError
from zchunk.types import DIMENSION_SEPARATOR

config = Config(
    "zchunk",
    defaults=[
        {
            "json_indent": 4,
            "array": {
                "dimension_separator": ".",
                "compressor": "default",
            },
        }
    ],
)


def parse_json_indent(data: Any) -> int:
    if isinstance(data, int) and not isinstance(data, bool) and data >= 0:
        return data
    raise ConfigurationError(f"json_indent must be a non-negative integer, got {data!r}")


def parse_dimension_separator(data: Optional[str]) -> DIMENSION_SEPARATOR:
    if data is None:
        return "."
    if data in (".", "/"):
        return data
    raise ConfigurationError(
        f"dimension_separator must be either '.' or '/', found: {data!r}"
    )
