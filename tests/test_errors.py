import psycopg2
import pytest
from psycopg2 import errors as pg_errors

from db import errors


@pytest.mark.parametrize("exc_cls, kind, status", [
    (pg_errors.UniqueViolation, "unique", 409),
    (pg_errors.ForeignKeyViolation, "foreign_key", 400),
    (pg_errors.CheckViolation, "check", 400),
    (pg_errors.NotNullViolation, "not_null", 400),
])
def test_integrity_errors_become_constraint_errors(exc_cls, kind, status):
    err = errors.translate(exc_cls("violates constraint"))
    assert isinstance(err, errors.ConstraintError)
    assert err.kind == kind
    assert err.http_status == status
    assert isinstance(err.original, exc_cls)


def test_data_error_becomes_validation_error():
    err = errors.translate(pg_errors.InvalidTextRepresentation("bad date"))
    assert isinstance(err, errors.ValidationError)
    assert err.http_status == 400


def test_statement_timeout_is_a_connection_error():
    err = errors.translate(pg_errors.QueryCanceled("canceling statement due to statement timeout"))
    assert isinstance(err, errors.ConnectionError)
    assert err.http_status == 503


def test_operational_error_is_a_connection_error():
    assert isinstance(errors.translate(psycopg2.OperationalError("gone")), errors.ConnectionError)


def test_other_driver_errors_are_query_errors():
    err = errors.translate(pg_errors.UndefinedTable('relation "todos" does not exist'))
    assert isinstance(err, errors.QueryError)
    assert err.code == "QUERY_ERROR"


def test_translate_is_idempotent():
    original = errors.ValidationError("nope")
    assert errors.translate(original) is original


def test_validation_error_payload():
    err = errors.ValidationError("Invalid", details=[{"field": "title", "message": "too short"}])
    assert err.fields == ["title"]
    assert err.to_dict() == {
        "code": "VALIDATION_ERROR",
        "error": "Invalid",
        "details": [{"field": "title", "message": "too short"}],
    }


def test_every_error_shares_the_base_class():
    for cls in (
        errors.ConfigurationError,
        errors.ConnectionError,
        errors.MigrationError,
        errors.QueryError,
        errors.ValidationError,
        errors.ConstraintError,
    ):
        assert issubclass(cls, errors.DatabaseError)
