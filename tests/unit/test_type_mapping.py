"""
Unit tests for the type mapping registry and the built-in codecs.
"""
import datetime
import decimal
import math
import pathlib
import urllib.parse
import uuid

import numpy as np
import pytest
from dateutil import tz
from entitystore.cursor import RowCursor
from entitystore.exceptions import NoMappingFound, TransientEntityError
from entitystore.registry import TypeRegistry, create_default_registry
from entitystore.types import BooleanTypeMapping, DateTimeTypeMapping
from entitystore.types import EntityTypeMapping, IntegerTypeMapping
from entitystore.types import StringifyTypeMapping, StringTypeMapping
from entitystore.types import from_epoch_millis, to_epoch_millis

from tests.fixtures.models import Department, Opaque, Person, Tag


@pytest.fixture
def registry():
    return create_default_registry()


def decode(registry, python_type, raw):
    """Decode one raw column value as `python_type`."""
    cursor = RowCursor(['value'], [(raw,)])
    cursor.move_to_first()
    return registry.resolve(python_type).decode(cursor, 0, python_type)


class TestRegistry:
    """Tests for registration order and resolution"""

    def test_register_prepends(self):
        registry = TypeRegistry()
        first = StringTypeMapping(str, 'VARCHAR')
        second = StringTypeMapping(str, 'TEXT')
        registry.register(first)
        registry.register(second)
        assert registry.resolve(str) is second
        assert list(registry) == [second, first]

        registry.unregister(second)
        assert registry.resolve(str) is first

    def test_resolution_by_subclass(self, registry):
        assert isinstance(registry.resolve(bool), BooleanTypeMapping)
        assert isinstance(registry.resolve(int), IntegerTypeMapping)
        assert isinstance(registry.resolve(datetime.datetime), DateTimeTypeMapping)
        assert isinstance(registry.resolve(Person), EntityTypeMapping)
        assert registry.resolve(pathlib.PurePosixPath) is registry.resolve(pathlib.PurePath)

    def test_no_default_mapping(self, registry):
        assert registry.default is None
        assert registry.find(Opaque) is None
        with pytest.raises(NoMappingFound, match='Opaque'):
            registry.resolve(Opaque)

    def test_default_mapping(self):
        registry = create_default_registry(stringify_unmapped=True)
        assert isinstance(registry.resolve(Opaque), StringifyTypeMapping)
        assert registry.find(Opaque) is None
        assert registry.encode(Opaque('x')) == "'x'"

        registry.set_default(None)
        with pytest.raises(NoMappingFound):
            registry.resolve(Opaque)

    @pytest.mark.parametrize(('python_type', 'sql_type'), [
        (int, 'INTEGER'),
        (bool, 'TINYINT'),
        (float, 'DOUBLE'),
        (decimal.Decimal, 'NUMERIC'),
        (str, 'VARCHAR'),
        (datetime.date, 'BIGINT'),
        (datetime.datetime, 'BIGINT'),
        (uuid.UUID, 'VARCHAR'),
        (pathlib.PurePosixPath, 'VARCHAR'),
        (urllib.parse.ParseResult, 'VARCHAR'),
        (np.int8, 'TINYINT'),
        (np.int16, 'SMALLINT'),
        (np.int32, 'INTEGER'),
        (np.int64, 'BIGINT'),
        (np.float32, 'FLOAT'),
        (np.float64, 'DOUBLE'),
        (np.bool_, 'TINYINT'),
    ])
    def test_sql_types(self, registry, python_type, sql_type):
        assert registry.sql_type(python_type) == sql_type

    def test_reference_sql_type(self, registry, context):
        department = context.get_mapping(Department)
        assert registry.sql_type(Department, context) == f'INTEGER REFERENCES {department.table_name}(id)'
        tags = context.get_mapping(Tag)
        assert registry.sql_type(Tag, context) == f'VARCHAR REFERENCES {tags.table_name}(code)'


class TestEncoding:
    """Tests for rendering values as SQL literals"""

    @pytest.mark.parametrize(('value', 'expected'), [
        (None, 'null'),
        (42, '42'),
        (-7, '-7'),
        (True, '1'),
        (False, '0'),
        (1.5, '1.5'),
        (math.nan, 'null'),
        (math.inf, 'null'),
        (decimal.Decimal('12.50'), '12.50'),
        (decimal.Decimal('NaN'), 'null'),
        ('Joe', "'Joe'"),
        ("O'Brien", "'O''Brien'"),
        (datetime.datetime(1970, 1, 1, 0, 0, 1), '1000'),
        (datetime.datetime(1970, 1, 1, 1, 0, tzinfo=tz.tzoffset(None, 3600)), '0'),
        (datetime.date(1970, 1, 2), '86400000'),
        (uuid.UUID(int=1), "'00000000-0000-0000-0000-000000000001'"),
        (pathlib.PurePosixPath('/tmp/a'), "'/tmp/a'"),
        (urllib.parse.urlparse('http://example.com/a?b=1'), "'http://example.com/a?b=1'"),
        (np.int16(-3), '-3'),
        (np.float32(0.5), '0.5'),
        (np.float64(math.nan), 'null'),
        (np.bool_(True), '1'),
    ])
    def test_encode(self, registry, value, expected):
        assert registry.encode(value) == expected

    def test_encode_unmapped_value(self, registry):
        with pytest.raises(NoMappingFound):
            registry.encode(Opaque())

    def test_encode_transient_reference_without_handle(self, registry):
        with pytest.raises(TransientEntityError):
            registry.encode(Department(title='Sales'))

    def test_encode_stored_reference(self, registry):
        department = Department(id=7, title='Sales')
        department._transient = False
        assert registry.encode(department) == '7'

    def test_encode_transient_reference_saves_it(self, registry, fake_handle):
        department = Department(title='Sales')
        assert registry.encode(department, fake_handle) == '1'
        assert not department.is_transient
        assert fake_handle.statements_starting('INSERT')


class TestDecoding:
    """Tests for reading column values back"""

    def test_null_decodes_to_none(self, registry):
        for python_type in (int, str, datetime.date, uuid.UUID, np.int16):
            assert decode(registry, python_type, None) is None

    def test_scalars(self, registry):
        assert decode(registry, int, 42) == 42
        assert decode(registry, bool, 1) is True
        assert decode(registry, bool, 0) is False
        assert decode(registry, float, 1.5) == 1.5
        assert decode(registry, decimal.Decimal, 12.5) == decimal.Decimal('12.5')
        assert decode(registry, str, 'Joe') == 'Joe'

    def test_datetime(self, registry):
        value = decode(registry, datetime.datetime, 1000)
        assert value == datetime.datetime(1970, 1, 1, 0, 0, 1, tzinfo=tz.UTC)
        assert value.tzinfo is not None

    def test_datetime_from_legacy_text(self, registry):
        value = decode(registry, datetime.datetime, '2023-05-15T14:30:45')
        assert value == datetime.datetime(2023, 5, 15, 14, 30, 45, tzinfo=tz.UTC)

    def test_date(self, registry):
        assert decode(registry, datetime.date, 86400000) == datetime.date(1970, 1, 2)

    def test_locators(self, registry):
        ref = uuid.UUID(int=5)
        assert decode(registry, uuid.UUID, str(ref)) == ref
        assert decode(registry, pathlib.PurePosixPath, '/tmp/a') == pathlib.PurePosixPath('/tmp/a')
        url = decode(registry, urllib.parse.ParseResult, 'http://example.com/a')
        assert url.netloc == 'example.com'

    def test_empty_locator_decodes_to_none(self, registry):
        assert decode(registry, uuid.UUID, '') is None
        assert decode(registry, urllib.parse.ParseResult, '') is None

    def test_numpy_widths(self, registry):
        small = decode(registry, np.int16, -3)
        assert small == -3
        assert isinstance(small, np.int16)
        single = decode(registry, np.float32, 0.5)
        assert isinstance(single, np.float32)
        assert decode(registry, np.bool_, 1)

    def test_stringify_default(self):
        registry = create_default_registry(stringify_unmapped=True)
        assert decode(registry, Opaque, 'x').text == 'x'


@pytest.mark.parametrize('value', [
    datetime.datetime(2023, 5, 15, 14, 30, 45, 123000, tzinfo=tz.UTC),
    datetime.datetime(1969, 7, 20, 20, 17, 40, tzinfo=tz.UTC),
])
def test_epoch_millis_preserved(value):
    """Test encoding then decoding a datetime keeps its epoch milliseconds"""
    millis = to_epoch_millis(value)
    assert to_epoch_millis(from_epoch_millis(millis)) == millis
    assert from_epoch_millis(millis) == value
