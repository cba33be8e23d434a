#!/usr/bin/env python3
"""Utility functions and data structures for database anonymization"""
from collections import namedtuple

GLOBALS = {"debug": False}

# Batch sizing (rows per transaction)
DEFAULT_BATCH_SIZE = 1000
LARGE_TABLE_BATCH_SIZE = 10000
LARGE_TABLE_THRESHOLD = 100000

DEFAULT_PG_HOST = "localhost"
DEFAULT_PG_PORT = 5432

# Config locale code -> Faker locale
SUPPORTED_LOCALES = {"en": "en_US", "th": "th_TH"}

TEXT_CATEGORIES = (
    "string", "name", "internet", "random", "datatype",
    "lorem", "phone", "person", "address", "company",
)
NUMERIC_CATEGORIES = ("number", "datatype")
DATE_CATEGORIES = ("date",)

# PostgreSQL data_type (lower-cased) -> compatible generator categories
PG_TO_FAKER_TYPE_MAP = {
    "character varying": TEXT_CATEGORIES,
    "varchar": TEXT_CATEGORIES,
    "character": TEXT_CATEGORIES,
    "char": TEXT_CATEGORIES,
    "text": TEXT_CATEGORIES,
    "uuid": ("datatype", "string", "random"),
    "integer": NUMERIC_CATEGORIES,
    "bigint": NUMERIC_CATEGORIES,
    "smallint": NUMERIC_CATEGORIES,
    "numeric": NUMERIC_CATEGORIES,
    "decimal": NUMERIC_CATEGORIES,
    "real": NUMERIC_CATEGORIES,
    "double precision": NUMERIC_CATEGORIES,
    "boolean": ("datatype",),
    "date": DATE_CATEGORIES,
    "timestamp": DATE_CATEGORIES,
    "timestamptz": DATE_CATEGORIES,
    "timestamp without time zone": DATE_CATEGORIES,
    "timestamp with time zone": DATE_CATEGORIES,
    "json": ("datatype",),
    "jsonb": ("datatype",),
}

# Python value kinds a generator returns, checked per column type on top of
# the category map. Text columns take any scalar through an assignment cast.
KIND_TEXT = "text"
KIND_SMALL_INT = "small_int"    # fits smallint (0..9999)
KIND_INT = "int"                # fits integer (up to 9 digits)
KIND_FLOAT = "float"
KIND_DECIMAL = "decimal"
KIND_BOOLEAN = "boolean"
KIND_UUID = "uuid"
KIND_DATE = "date"
KIND_DATETIME = "datetime"
KIND_JSON = "json"

ALL_KINDS = (
    KIND_TEXT, KIND_SMALL_INT, KIND_INT, KIND_FLOAT, KIND_DECIMAL,
    KIND_BOOLEAN, KIND_UUID, KIND_DATE, KIND_DATETIME, KIND_JSON,
)
INTEGER_KINDS = (KIND_SMALL_INT, KIND_INT)
NUMBER_KINDS = (KIND_SMALL_INT, KIND_INT, KIND_FLOAT, KIND_DECIMAL)
TEMPORAL_KINDS = (KIND_DATE, KIND_DATETIME)

# PostgreSQL data_type (lower-cased) -> value kinds it accepts
PG_TYPE_VALUE_KINDS = {
    "character varying": ALL_KINDS,
    "varchar": ALL_KINDS,
    "character": ALL_KINDS,
    "char": ALL_KINDS,
    "text": ALL_KINDS,
    "uuid": (KIND_UUID,),
    "integer": INTEGER_KINDS,
    "bigint": INTEGER_KINDS,
    "smallint": (KIND_SMALL_INT,),
    "numeric": NUMBER_KINDS,
    "decimal": NUMBER_KINDS,
    "real": NUMBER_KINDS,
    "double precision": NUMBER_KINDS,
    "boolean": (KIND_BOOLEAN,),
    "date": TEMPORAL_KINDS,
    "timestamp": TEMPORAL_KINDS,
    "timestamptz": TEMPORAL_KINDS,
    "timestamp without time zone": TEMPORAL_KINDS,
    "timestamp with time zone": TEMPORAL_KINDS,
    "json": (KIND_JSON,),
    "jsonb": (KIND_JSON,),
}

ColumnRule = namedtuple("ColumnRule", ["name", "type", "locale_code"])
TableConfig = namedtuple("TableConfig", ["name", "columns", "batch_size"])
SchemaConfig = namedtuple("SchemaConfig", ["name", "tables"])
GeneratorType = namedtuple("GeneratorType", ["category", "method"])
ColumnInfo = namedtuple("ColumnInfo", ["column_name", "data_type"])
DbConfig = namedtuple("DbConfig", ["host", "port", "database", "user", "password"])
BatchPlan = namedtuple("BatchPlan", ["total_rows", "batch_size", "total_batches"])
TableResult = namedtuple("TableResult", ["schema", "table", "total_rows", "batches", "rows_updated"])


class AnonymizerError(Exception):
    """Base class for all anonymization failures"""


class ConfigError(AnonymizerError, ValueError):
    """Invalid configuration file or connection parameters"""


class ValidationError(AnonymizerError):
    """Configuration does not match the live database"""


class MissingSchemaError(ValidationError):
    def __init__(self, schema):
        self.schema = schema
        super().__init__("Schema '{0}' does not exist in the database.".format(schema))


class MissingTableError(ValidationError):
    def __init__(self, schema, table):
        self.schema, self.table = schema, table
        super().__init__("Table '{0}.{1}' does not exist in the database.".format(schema, table))


class MissingColumnError(ValidationError):
    def __init__(self, schema, table, column):
        self.schema, self.table, self.column = schema, table, column
        super().__init__("Column '{0}' does not exist in table '{1}.{2}'.".format(
            column, schema, table))


class InvalidGeneratorTypeError(ValidationError):
    def __init__(self, generator_type, locale_code=None, valid_methods=None,
                 valid_categories=None, suggestion=None):
        self.generator_type = generator_type
        self.locale_code = locale_code
        self.valid_methods = tuple(valid_methods or ())
        self.valid_categories = tuple(valid_categories or ())
        self.suggestion = suggestion
        msg = "Invalid generator type: {0}".format(generator_type)
        if locale_code:
            msg += " (locale '{0}')".format(locale_code)
        hints = []
        if suggestion:
            hints.append("Did you mean '{0}'?".format(suggestion))
        if self.valid_methods:
            hints.append("Valid methods: {0}.".format(", ".join(self.valid_methods)))
        elif self.valid_categories:
            hints.append("Valid categories: {0}.".format(", ".join(self.valid_categories)))
        if hints:
            msg += ". " + " ".join(hints)
        super().__init__(msg)


class IncompatibleGeneratorTypeError(ValidationError):
    def __init__(self, generator_type, data_type, column=None):
        self.generator_type = generator_type
        self.data_type = data_type
        self.column = column
        msg = "Generator type '{0}' is not compatible with PostgreSQL type '{1}'".format(
            generator_type, data_type)
        if column:
            msg += " (column '{0}')".format(column)
        super().__init__(msg)


class PrimaryKeyColumnError(ValidationError):
    """A column rule would rewrite the key the batches are paged by"""

    def __init__(self, schema, table, column):
        self.schema, self.table, self.column = schema, table, column
        super().__init__(
            "Column '{0}' is part of the primary key of '{1}.{2}' and cannot be anonymized.".format(
                column, schema, table))


class NoPrimaryKeyError(AnonymizerError):
    def __init__(self, schema, table, pk_columns=()):
        self.schema, self.table = schema, table
        self.pk_columns = tuple(pk_columns)
        msg = "Table {0}.{1} must have a single-column primary key for batch processing.".format(
            schema, table)
        if len(self.pk_columns) > 1:
            msg += " Found composite key: {0}".format(", ".join(self.pk_columns))
        super().__init__(msg)


class MutationFailedError(AnonymizerError):
    def __init__(self, schema, table, batch_index, cause=None):
        self.schema, self.table = schema, table
        self.batch_index = batch_index
        self.cause = cause
        super().__init__("Batch {0} of {1}.{2} failed and was rolled back: {3}".format(
            batch_index + 1, schema, table, cause))


def debug_print(*args, **kwargs):
    if GLOBALS["debug"]:
        print("[DEBUG]", *args, **kwargs)


def quote_ident(name):
    """Quote a PostgreSQL identifier, doubling embedded quotes"""
    return '"' + name.replace('"', '""') + '"'


def qualified_name(schema, table):
    return "{0}.{1}".format(quote_ident(schema), quote_ident(table))


def _param_ident(name):
    # Statements executed with bound parameters treat '%' as a placeholder marker
    return quote_ident(name).replace("%", "%%")


def parse_generator_type(generator_type):
    """
    Split a generator identifier such as "internet.email".

    Returns: GeneratorType
    Raises: InvalidGeneratorTypeError unless there is exactly one dot
            separating a non-empty category and method
    """
    if not isinstance(generator_type, str):
        raise InvalidGeneratorTypeError(generator_type)
    parts = generator_type.split(".")
    if len(parts) != 2 or not all(p.strip() for p in parts):
        raise InvalidGeneratorTypeError(generator_type)
    return GeneratorType(parts[0].strip(), parts[1].strip())


def compatible_categories(data_type):
    return PG_TO_FAKER_TYPE_MAP.get((data_type or "").lower(), ())


def accepted_value_kinds(data_type):
    return PG_TYPE_VALUE_KINDS.get((data_type or "").lower(), ())


def render_count_statement(schema, table):
    return "SELECT COUNT(*) FROM {0}".format(qualified_name(schema, table))


def render_pk_page_statement(schema, table, pk_column):
    """Primary key page ordered by the key; binds LIMIT and OFFSET"""
    pk = _param_ident(pk_column)
    return "SELECT {0} FROM {1}.{2} ORDER BY {0} LIMIT %s OFFSET %s".format(
        pk, _param_ident(schema), _param_ident(table))


def render_update_statement(schema, table, colnames, pk_column):
    """
    Render a single-row UPDATE keyed by the primary key.

    Assignments keep the order of colnames; the primary key value is the
    last bound parameter.
    """
    if not colnames:
        raise ValueError("UPDATE needs at least one column")
    assignments = ", ".join("{0} = %s".format(_param_ident(c)) for c in colnames)
    return "UPDATE {0}.{1} SET {2} WHERE {3} = %s".format(
        _param_ident(schema), _param_ident(table), assignments, _param_ident(pk_column))
