from typing import Dict, List, Literal, Tuple, Union

DIMENSION_SEPARATOR = Literal[".", "/"]

PathLike = Union[str, bytes, None]

Shape = Tuple[int, ...]
ChunkIndex = Tuple[int, ...]

# attribute values are limited to what a JSON document can hold
JSONValue = Union[None, bool, int, float, str, List["JSONValue"], Dict[str, "JSONValue"]]
AttributeMap = Dict[str, JSONValue]
