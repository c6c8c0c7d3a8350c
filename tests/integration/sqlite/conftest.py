"""
Fixtures for SQLite integration tests.
"""
import pytest

from tests.fixtures.models import Department, Person


@pytest.fixture
def staffed_department(sqlite_store):
    """Department with two people saved through the default handle."""
    department = Department(title='Engineering')
    department.save()
    for name, age in (('Alice', 34), ('Bob', 41)):
        Person(name=name, age=age, employer=department).save()
    return department
