"""
Unit tests for the mapping builder.
"""
from unittest.mock import patch

import pytest
from entitystore import Entity
from entitystore.exceptions import MappingError, MissingPrimaryKey
from entitystore.exceptions import UnmappableType
from entitystore.mapping import FieldRole, build_mapping, reflect_fields
from entitystore.mapping import table_name_for
from entitystore.registry import create_default_registry

from tests.fixtures.models import Declared, Department, DerivedRecord
from tests.fixtures.models import DuplicateColumns, HasOpaque, ListOfScalars
from tests.fixtures.models import NoKey, Person, Renamed, ScalarInverse, Tag
from tests.fixtures.models import TwoKeys


def test_persisted_fields_and_key(context):
    """Test annotations become columns in declaration order with an id key"""
    mapping = context.get_mapping(Person)

    assert mapping.columns == ['id', 'name', 'age', 'employer']
    assert mapping.primary_key.name == 'id'
    assert mapping.primary_key.column == 'id'
    assert mapping.auto_increment
    assert mapping.inverse_fields == ()
    assert mapping.field('age').python_type is int
    assert mapping.field('employer').python_type is Department
    assert all(f.role is FieldRole.PERSISTED for f in mapping.fields)


def test_inverse_fields_have_no_column(context):
    """Test inverse fields are kept apart from persisted ones"""
    mapping = context.get_mapping(Department)

    assert mapping.columns == ['id', 'title']
    [people] = mapping.inverse_fields
    assert people.name == 'people'
    assert people.role is FieldRole.INVERSE
    assert people.python_type is list
    assert people.element_type is Person
    assert people.inverse == 'employer'


def test_table_name():
    """Test table names come from the qualified type name"""
    assert table_name_for(Person) == 'testsfixturesmodelsPerson'
    assert table_name_for(Renamed) == 'renamed_things'


def test_table_name_of_local_class():
    """Test characters that are not valid in identifiers are removed"""
    class Local(Entity):
        id: int

    name = table_name_for(Local)
    assert name.endswith('test_table_name_of_local_classlocalsLocal')
    assert name.isidentifier()


def test_mapping_is_cached(context):
    """Test a second lookup neither reflects again nor builds a different mapping"""
    with patch('entitystore.mapping.reflect_fields', wraps=reflect_fields) as spy:
        first = context.get_mapping(Person)
        second = context.get_mapping(Person)

    assert spy.call_count == 1
    assert first is second
    assert build_mapping(Person, context.registry) == first


def test_shadowed_key_maps_once(context):
    """Test a field redeclared in a subclass maps only the most-derived declaration"""
    mapping = context.get_mapping(DerivedRecord)

    assert mapping.columns == ['ident', 'extra', 'note']
    assert mapping.primary_key.name == 'id'
    assert mapping.primary_key.column == 'ident'


def test_constants_private_and_ignored_fields(context):
    """Test class constants, private names and ignored fields are skipped"""
    mapping = context.get_mapping(Declared)

    assert mapping.columns == ['_id', '_secret', 'display_label']
    assert mapping.primary_key.name == '_id'
    assert mapping.field('kind') is None
    assert mapping.field('_scratch') is None
    assert mapping.field('cache') is None


def test_explicit_key_wins(context):
    """Test column(primary_key=True) beats the id naming convention"""
    mapping = context.get_mapping(TwoKeys)
    assert mapping.primary_key.name == 'code'
    assert not mapping.auto_increment


def test_text_key_is_not_generated(context):
    mapping = context.get_mapping(Tag)
    assert mapping.primary_key.name == 'code'
    assert not mapping.auto_increment


def test_missing_primary_key(context, fake_handle):
    """Test a type without a key fails before any SQL is issued"""
    with pytest.raises(MissingPrimaryKey, match='NoKey has no primary key'):
        context.get_mapping_ensure_schema(fake_handle, NoKey)
    assert fake_handle.statements == []


def test_list_field_must_be_inverse(context):
    with pytest.raises(UnmappableType, match='must be declared inverse'):
        context.get_mapping(ListOfScalars)


def test_inverse_field_must_refer_to_records(context):
    with pytest.raises(UnmappableType, match='record types'):
        context.get_mapping(ScalarInverse)


def test_unmappable_type_fails_at_build(context):
    """Test an unmapped field type fails when the mapping is built"""
    with pytest.raises(UnmappableType, match='HasOpaque.thing'):
        context.get_mapping(HasOpaque)


def test_unmappable_type_with_stringify_default():
    """Test the text fallback maps otherwise unmapped types"""
    registry = create_default_registry(stringify_unmapped=True)
    mapping = build_mapping(HasOpaque, registry)
    assert mapping.columns == ['id', 'thing']


def test_duplicate_columns(context):
    with pytest.raises(MappingError, match='label'):
        context.get_mapping(DuplicateColumns)


def test_unresolvable_annotation(context):
    """Test annotations naming unknown types fail as unmappable"""
    class Dangling(Entity):
        id: int
        other: 'DoesNotExist'  # noqa: F821

    with pytest.raises(UnmappableType, match='DoesNotExist'):
        context.get_mapping(Dangling)


def test_column_lookup_by_field_or_column(context):
    """Test inverse targets resolve by field name or by column name"""
    mapping = context.get_mapping(DerivedRecord)
    assert mapping.column_for('id') == 'ident'
    assert mapping.column_for('IDENT') == 'ident'
    assert mapping.column_for('missing') is None
