import pytest

from zchunk.config import config, parse_dimension_separator, parse_json_indent
from zchunk.errors import ConfigurationError


def test_config_defaults():
    assert 4 == config.get('json_indent')
    assert '.' == config.get('array.dimension_separator')
    assert 'default' == config.get('array.compressor')


def test_config_set():
    with config.set({'json_indent': 2, 'array.dimension_separator': '/'}):
        assert 2 == config.get('json_indent')
        assert '/' == config.get('array.dimension_separator')
    assert 4 == config.get('json_indent')


def test_parse_json_indent():
    assert 0 == parse_json_indent(0)
    assert 4 == parse_json_indent(4)
    for bad in [-1, 2.0, '4', None, True]:
        with pytest.raises(ConfigurationError):
            parse_json_indent(bad)


def test_parse_dimension_separator():
    assert '.' == parse_dimension_separator(None)
    assert '.' == parse_dimension_separator('.')
    assert '/' == parse_dimension_separator('/')
    for bad in ['', '-', '__', 0]:
        with pytest.raises(ConfigurationError):
            parse_dimension_separator(bad)
