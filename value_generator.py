#!/usr/bin/env python3
"""Value generation module resolving generator identifiers to Faker providers"""
import re

from faker import Faker

from anonymize_database_utils import (
    debug_print, SUPPORTED_LOCALES, InvalidGeneratorTypeError,
    KIND_TEXT, KIND_SMALL_INT, KIND_INT, KIND_FLOAT, KIND_DECIMAL,
    KIND_BOOLEAN, KIND_UUID, KIND_DATE, KIND_DATETIME, KIND_JSON,
)


def _text_methods(*methods):
    return {m: KIND_TEXT for m in methods}


# Category -> {zero-argument Faker method: kind of value it returns}
GENERATOR_REGISTRY = {
    "person": _text_methods(
        "name", "first_name", "last_name", "first_name_male", "first_name_female",
        "last_name_male", "last_name_female", "name_male", "name_female",
        "prefix", "suffix",
    ),
    "name": _text_methods("name", "first_name", "last_name", "prefix", "suffix"),
    "internet": _text_methods(
        "email", "safe_email", "free_email", "company_email", "user_name",
        "url", "uri", "domain_name", "hostname", "ipv4", "ipv6", "mac_address",
    ),
    "phone": _text_methods("phone_number", "msisdn", "country_calling_code"),
    "lorem": _text_methods("word", "sentence", "paragraph", "text"),
    "string": dict(
        _text_methods("pystr", "password", "md5", "sha1", "sha256", "lexify", "bothify"),
        uuid4=KIND_UUID,
    ),
    "random": dict(
        _text_methods("random_letter", "lexify", "numerify"),
        random_digit=KIND_SMALL_INT,
        uuid4=KIND_UUID,
    ),
    "number": {
        "random_int": KIND_SMALL_INT,
        "random_digit": KIND_SMALL_INT,
        "pyint": KIND_SMALL_INT,
        "random_number": KIND_INT,
        "pyfloat": KIND_FLOAT,
        "pydecimal": KIND_DECIMAL,
    },
    "datatype": {
        "boolean": KIND_BOOLEAN,
        "pybool": KIND_BOOLEAN,
        "uuid4": KIND_UUID,
        "pyint": KIND_SMALL_INT,
        "pystr": KIND_TEXT,
        "json": KIND_JSON,
    },
    "date": {
        "date_object": KIND_DATE,
        "date_this_year": KIND_DATE,
        "date_this_decade": KIND_DATE,
        "date_of_birth": KIND_DATE,
        "past_date": KIND_DATE,
        "future_date": KIND_DATE,
        "date_time": KIND_DATETIME,
        "date_time_this_year": KIND_DATETIME,
        "date_time_this_decade": KIND_DATETIME,
        "past_datetime": KIND_DATETIME,
        "future_datetime": KIND_DATETIME,
    },
    "address": _text_methods("address", "street_address", "city", "postcode", "country"),
    "company": _text_methods("company", "company_suffix", "job", "catch_phrase"),
}

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def snake_case(name):
    """firstName -> first_name"""
    return _CAMEL_BOUNDARY.sub("_", name).lower()


class ValueGenerator:
    """
    Produces synthetic values for (category, method) generator identifiers.

    One Faker instance is created per supported locale plus a locale-neutral
    default. Every registry entry is resolved to a bound method up front so
    generation is a dictionary lookup.

    Values are not seeded and differ between runs.
    """

    def __init__(self, registry=None):
        """
        Args:
            registry: Optional dict of category -> {method name: value kind},
                      defaults to GENERATOR_REGISTRY
        """
        self.registry = registry if registry is not None else GENERATOR_REGISTRY
        self.fakers = {None: Faker()}
        for code, locale in SUPPORTED_LOCALES.items():
            self.fakers[code] = Faker(locale)

        # {locale_code: {(category, method): callable}}
        self.generators = {}
        for code, fake in self.fakers.items():
            self.generators[code] = self._resolve_registry(fake)
            debug_print("Locale {0}: {1} generators available".format(
                code or "default", len(self.generators[code])))

    def _resolve_registry(self, fake):
        resolved = {}
        for category, methods in self.registry.items():
            for method in methods:
                fn = getattr(fake, method, None)
                if callable(fn):
                    resolved[(category, method)] = fn
        return resolved

    def has_generator(self, category, method, locale_code=None):
        generators = self.generators.get(locale_code)
        return generators is not None and (category, method) in generators

    def value_kind(self, category, method):
        """Kind of value a registered method returns, None when unregistered"""
        return self.registry.get(category, {}).get(method)

    def available_methods(self, category, locale_code=None):
        generators = self.generators.get(locale_code, {})
        return sorted(m for (c, m) in generators if c == category)

    def unknown_generator_error(self, category, method, locale_code=None):
        """
        Build an InvalidGeneratorTypeError listing what the category offers.

        A camelCase method whose snake_case form exists is suggested, so
        "person.firstName" points at "person.first_name".
        """
        generator_type = "{0}.{1}".format(category, method)
        if locale_code not in self.generators:
            return InvalidGeneratorTypeError(generator_type, locale_code)
        methods = self.available_methods(category, locale_code)
        if not methods:
            return InvalidGeneratorTypeError(
                generator_type, locale_code,
                valid_categories=sorted(set(c for (c, _) in self.generators[locale_code])))
        suggestion = None
        candidate = snake_case(method)
        if candidate != method and candidate in methods:
            suggestion = "{0}.{1}".format(category, candidate)
        return InvalidGeneratorTypeError(
            generator_type, locale_code, valid_methods=methods, suggestion=suggestion)

    def generate(self, category, method, locale_code=None):
        """Return one value from the locale's generator, or the default one when no locale is set"""
        fn = self.generators.get(locale_code, {}).get((category, method))
        if fn is None:
            raise self.unknown_generator_error(category, method, locale_code)
        return fn()
