"""
Jakson — Request Validation
=============================

What:  Compiles the JSON Schemas (draft-07) an Action declares for its request
       body, route params and query string, and reports violations in the
       wire format clients receive in 400 responses.
How:   jsonschema's Draft7Validator does the checking in all-errors mode with
       format checking on. Each violation is rewritten to:

           {
               "keyword": "type",
               "dataPath": ".id",
               "schemaPath": "#/properties/id/type",
               "params": {"type": "integer"},
               "message": "should be integer"
           }

       Route params and query values always arrive as strings, so their
       validators coerce scalars to the declared types first ("1" → 1,
       "true" → True). Body validators never coerce: a JSON body must already
       carry real numbers and booleans.
Who:   Action compiles its validators through the module-level ValidatorCache,
       once per Action subclass.

Validation order (first failing stage wins):
    body → params → query
"""

import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from jsonschema import Draft7Validator, FormatChecker
from jsonschema.exceptions import ValidationError as SchemaViolation
from starlette.requests import Request

Schema = Dict[str, Any]
Violation = Dict[str, Any]

_IDENTIFIER = re.compile(r"^[A-Za-z_$][A-Za-z0-9_$]*$")


@dataclass(frozen=True)
class Schemas:
    """JSON Schemas for request.body, the route params and the query string."""

    body: Optional[Schema] = None
    params: Optional[Schema] = None
    query: Optional[Schema] = None


# ══════════════════════════════════════════════════════════════════════════
# Compiled schemas
# ══════════════════════════════════════════════════════════════════════════


class CompiledSchema:
    """
    A reusable check function for one schema.

    Calling it returns the list of violations; an empty list means valid.
    Compiling an invalid schema raises jsonschema.SchemaError.
    """

    def __init__(self, schema: Schema, coerce_types: bool = False):
        Draft7Validator.check_schema(schema)
        self.schema = schema
        self.coerce_types = coerce_types
        self._validator = Draft7Validator(schema, format_checker=FormatChecker())

    def __call__(self, data: Any) -> List[Violation]:
        if self.coerce_types:
            data = coerce(self.schema, data)

        violations: List[Violation] = []
        seen: set = set()
        for error in self._validator.iter_errors(data):
            violations.extend(_to_violations(error, seen))
        return violations


def compile_schema(schema: Schema, coerce_types: bool = False) -> CompiledSchema:
    return CompiledSchema(schema, coerce_types=coerce_types)


# ── Violation formatting ──────────────────────────────────────────────────


def data_path(path: Sequence[Any]) -> str:
    """
    Render a document path in dot notation.

    >>> data_path(["users", 0, "first-name"])
    ".users[0]['first-name']"
    """
    parts = []
    for part in path:
        if isinstance(part, int):
            parts.append(f"[{part}]")
        elif _IDENTIFIER.match(part):
            parts.append(f".{part}")
        else:
            escaped = part.replace("\\", "\\\\").replace("'", "\\'")
            parts.append(f"['{escaped}']")
    return "".join(parts)


def schema_path(path: Sequence[Any]) -> str:
    return "#/" + "/".join(str(part) for part in path) if path else "#"


def _violation(
    keyword: str,
    error: SchemaViolation,
    params: Dict[str, Any],
    message: str,
) -> Violation:
    return {
        "keyword": keyword,
        "dataPath": data_path(list(error.absolute_path)),
        "schemaPath": schema_path(list(error.absolute_schema_path)),
        "params": params,
        "message": message,
    }


def _to_violations(error: SchemaViolation, seen: set) -> Iterator[Violation]:
    keyword = error.validator
    value = error.validator_value
    instance = error.instance

    # Errors from inside anyOf/oneOf branches come first, like the
    # branch errors a full validation pass reports.
    if keyword in ("anyOf", "oneOf") and error.context:
        for sub_error in error.context:
            yield from _to_violations(sub_error, seen)

    if keyword is None:
        yield _violation("false schema", error, {}, "boolean schema is false")

    elif keyword == "type":
        types = ",".join(value) if isinstance(value, list) else value
        yield _violation("type", error, {"type": types}, f"should be {types}")

    elif keyword == "required":
        key = (tuple(error.absolute_path), tuple(error.absolute_schema_path))
        if key in seen:
            return
        seen.add(key)
        for missing in _missing_required(value, instance):
            yield _violation(
                "required",
                error,
                {"missingProperty": missing},
                f"should have required property '{missing}'",
            )

    elif keyword == "additionalProperties":
        key = (tuple(error.absolute_path), tuple(error.absolute_schema_path))
        if key in seen:
            return
        seen.add(key)
        for name in _additional_properties(error.schema, instance):
            yield _violation(
                "additionalProperties",
                error,
                {"additionalProperty": name},
                "should NOT have additional properties",
            )

    elif keyword == "dependencies":
        key = (tuple(error.absolute_path), tuple(error.absolute_schema_path))
        if key in seen:
            return
        seen.add(key)
        for prop, deps, missing in _missing_dependencies(value, instance):
            deps_str = ", ".join(deps)
            noun = "property" if len(deps) == 1 else "properties"
            yield _violation(
                "dependencies",
                error,
                {
                    "property": prop,
                    "missingProperty": missing,
                    "depsCount": len(deps),
                    "deps": deps_str,
                },
                f"should have {noun} {deps_str} when property {prop} is present",
            )

    elif keyword in _LIMIT_MESSAGES:
        comparison, exclusive = _LIMIT_MESSAGES[keyword]
        yield _violation(
            keyword,
            error,
            {"comparison": comparison, "limit": value, "exclusive": exclusive},
            f"should be {comparison} {value}",
        )

    elif keyword in _COUNT_MESSAGES:
        yield _violation(
            keyword, error, {"limit": value}, _COUNT_MESSAGES[keyword].format(limit=value)
        )

    elif keyword == "pattern":
        yield _violation("pattern", error, {"pattern": value}, f'should match pattern "{value}"')

    elif keyword == "format":
        yield _violation("format", error, {"format": value}, f'should match format "{value}"')

    elif keyword == "enum":
        yield _violation(
            "enum",
            error,
            {"allowedValues": value},
            "should be equal to one of the allowed values",
        )

    elif keyword == "const":
        yield _violation("const", error, {"allowedValue": value}, "should be equal to constant")

    elif keyword == "multipleOf":
        yield _violation(
            "multipleOf", error, {"multipleOf": value}, f"should be multiple of {value}"
        )

    elif keyword == "uniqueItems":
        i, j = _duplicate_items(instance)
        yield _violation(
            "uniqueItems",
            error,
            {"i": i, "j": j},
            f"should NOT have duplicate items (items ## {j} and {i} are identical)",
        )

    elif keyword == "anyOf":
        yield _violation("anyOf", error, {}, "should match some schema in anyOf")

    elif keyword == "oneOf":
        passing = _passing_schemas(value, instance)
        yield _violation(
            "oneOf",
            error,
            {"passingSchemas": passing if len(passing) > 1 else None},
            "should match exactly one schema in oneOf",
        )

    elif keyword == "not":
        yield _violation("not", error, {}, "should NOT be valid")

    elif keyword == "contains":
        yield _violation("contains", error, {}, "should contain a valid item")

    elif keyword == "additionalItems":
        limit = len(error.schema.get("items", []))
        yield _violation(
            "additionalItems",
            error,
            {"limit": limit},
            f"should NOT have more than {limit} items",
        )

    else:
        yield _violation(keyword, error, {}, error.message)


_LIMIT_MESSAGES: Dict[str, Tuple[str, bool]] = {
    "minimum": (">=", False),
    "maximum": ("<=", False),
    "exclusiveMinimum": (">", True),
    "exclusiveMaximum": ("<", True),
}

_COUNT_MESSAGES: Dict[str, str] = {
    "minLength": "should NOT be shorter than {limit} characters",
    "maxLength": "should NOT be longer than {limit} characters",
    "minItems": "should NOT have fewer than {limit} items",
    "maxItems": "should NOT have more than {limit} items",
    "minProperties": "should NOT have fewer than {limit} properties",
    "maxProperties": "should NOT have more than {limit} properties",
}


def _missing_required(required: List[str], instance: Any) -> List[str]:
    if not isinstance(instance, dict):
        return []
    return [name for name in required if name not in instance]


def _additional_properties(schema: Schema, instance: Any) -> List[str]:
    if not isinstance(instance, dict):
        return []
    properties = schema.get("properties", {})
    patterns = [re.compile(p) for p in schema.get("patternProperties", {})]
    return [
        name
        for name in instance
        if name not in properties and not any(p.search(name) for p in patterns)
    ]


def _missing_dependencies(
    dependencies: Dict[str, Any], instance: Any
) -> Iterator[Tuple[str, List[str], str]]:
    if not isinstance(instance, dict):
        return
    for prop, deps in dependencies.items():
        if prop not in instance or not isinstance(deps, list):
            continue
        for dep in deps:
            if dep not in instance:
                yield prop, deps, dep


def _duplicate_items(items: List[Any]) -> Tuple[Optional[int], Optional[int]]:
    """Highest index i that repeats an earlier item, and the closest such j < i."""
    for i in range(len(items) - 1, 0, -1):
        for j in range(i - 1, -1, -1):
            if _json_equal(items[i], items[j]):
                return i, j
    return None, None


def _json_equal(a: Any, b: Any) -> bool:
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    return a == b


def _passing_schemas(schemas: List[Schema], instance: Any) -> List[int]:
    checker = FormatChecker()
    return [
        index
        for index, sub_schema in enumerate(schemas)
        if Draft7Validator(sub_schema, format_checker=checker).is_valid(instance)
    ]


# ══════════════════════════════════════════════════════════════════════════
# Type coercion
# ══════════════════════════════════════════════════════════════════════════


def coerce(schema: Any, data: Any) -> Any:
    """
    Return a copy of `data` with scalars coerced to the types `schema` declares.

    Follows `properties`, `additionalProperties` and `items`. A value that
    already matches one of the declared types is left alone; a value that
    cannot be coerced is left alone and fails validation.

    >>> coerce({"type": "object", "properties": {"id": {"type": "integer"}}}, {"id": "1"})
    {'id': 1}
    """
    if not isinstance(schema, dict):
        return data

    declared = schema.get("type")
    if declared is not None:
        data = _coerce_value(data, declared if isinstance(declared, list) else [declared])

    if isinstance(data, dict):
        properties = schema.get("properties", {})
        additional = schema.get("additionalProperties")
        coerced = {}
        for name, value in data.items():
            if name in properties:
                coerced[name] = coerce(properties[name], value)
            elif isinstance(additional, dict):
                coerced[name] = coerce(additional, value)
            else:
                coerced[name] = value
        return coerced

    if isinstance(data, list):
        items = schema.get("items")
        if isinstance(items, dict):
            return [coerce(items, value) for value in data]
        if isinstance(items, list):
            return [
                coerce(items[index], value) if index < len(items) else value
                for index, value in enumerate(data)
            ]

    return data


_NO_COERCION = object()


def _coerce_value(data: Any, types: List[str]) -> Any:
    if any(_is_type(data, t) for t in types):
        return data
    for t in types:
        converter = _CONVERTERS.get(t)
        if converter is None:
            continue
        coerced = converter(data)
        if coerced is not _NO_COERCION:
            return coerced
    return data


def _is_type(data: Any, json_type: str) -> bool:
    if json_type == "null":
        return data is None
    if json_type == "boolean":
        return isinstance(data, bool)
    if json_type == "integer":
        if isinstance(data, bool):
            return False
        return isinstance(data, int) or (isinstance(data, float) and data.is_integer())
    if json_type == "number":
        return isinstance(data, (int, float)) and not isinstance(data, bool)
    if json_type == "string":
        return isinstance(data, str)
    if json_type == "object":
        return isinstance(data, dict)
    if json_type == "array":
        return isinstance(data, list)
    return False


def _parse_number(text: str) -> Any:
    text = text.strip()
    if not text or "_" in text:
        return _NO_COERCION
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return _NO_COERCION
    if not math.isfinite(number):
        return _NO_COERCION
    return int(number) if number.is_integer() else number


def _to_number(data: Any) -> Any:
    if isinstance(data, bool):
        return int(data)
    if data is None:
        return 0
    if isinstance(data, str):
        return _parse_number(data)
    return _NO_COERCION


def _to_integer(data: Any) -> Any:
    number = _to_number(data)
    if isinstance(number, float):
        return _NO_COERCION
    return number


def _to_string(data: Any) -> Any:
    if isinstance(data, bool):
        return "true" if data else "false"
    if data is None:
        return ""
    if isinstance(data, int):
        return str(data)
    if isinstance(data, float):
        return str(int(data)) if data.is_integer() else repr(data)
    return _NO_COERCION


def _to_boolean(data: Any) -> Any:
    if data == "true" or (_is_type(data, "number") and data == 1):
        return True
    if data == "false" or (_is_type(data, "number") and data == 0) or data is None:
        return False
    return _NO_COERCION


def _to_null(data: Any) -> Any:
    if data == "" or data is False or (_is_type(data, "number") and data == 0):
        return None
    return _NO_COERCION


_CONVERTERS: Dict[str, Callable[[Any], Any]] = {
    "number": _to_number,
    "integer": _to_integer,
    "string": _to_string,
    "boolean": _to_boolean,
    "null": _to_null,
}


# ══════════════════════════════════════════════════════════════════════════
# Request validators
# ══════════════════════════════════════════════════════════════════════════


class RequestValidator:
    """Checks one part of a request against a compiled schema."""

    coerce_types = False

    def __init__(self, schema: Schema):
        self.check = compile_schema(schema, coerce_types=self.coerce_types)

    def get_value(self, request: Request) -> Any:
        raise NotImplementedError

    def validate(self, request: Request) -> List[Violation]:
        return self.check(self.get_value(request))


class BodyValidator(RequestValidator):
    def get_value(self, request: Request) -> Any:
        return getattr(request.state, "body", {})


class ParamsValidator(RequestValidator):
    coerce_types = True

    def get_value(self, request: Request) -> Any:
        return dict(request.path_params)


class QueryValidator(RequestValidator):
    coerce_types = True

    def get_value(self, request: Request) -> Any:
        return query_dict(request)


def query_dict(request: Request) -> Dict[str, Any]:
    """Query parameters as a dict; repeated keys become lists of strings."""
    query: Dict[str, Any] = {}
    for key, value in request.query_params.multi_items():
        if key not in query:
            query[key] = value
        elif isinstance(query[key], list):
            query[key].append(value)
        else:
            query[key] = [query[key], value]
    return query


@dataclass
class Validators:
    """The compiled validators of one Action subclass, in validation order."""

    body: Optional[BodyValidator] = None
    params: Optional[ParamsValidator] = None
    query: Optional[QueryValidator] = None

    @classmethod
    def from_schemas(cls, schemas: Optional[Schemas]) -> "Validators":
        if schemas is None:
            return cls()
        return cls(
            body=BodyValidator(schemas.body) if schemas.body else None,
            params=ParamsValidator(schemas.params) if schemas.params else None,
            query=QueryValidator(schemas.query) if schemas.query else None,
        )

    def __iter__(self) -> Iterator[RequestValidator]:
        for validator in (self.body, self.params, self.query):
            if validator is not None:
                yield validator

    def is_empty(self) -> bool:
        return self.body is None and self.params is None and self.query is None


class ValidatorCache:
    """
    Compiled validators per Action subclass.

    Entries are created lazily on the first instance of a subclass and reused
    for every later instance. There is no lock: two requests racing on a cold
    subclass may both compile, and the last write wins. Compiled validators
    are stateless, so either copy is correct.
    """

    def __init__(self):
        self._validators: Dict[type, Validators] = {}

    def get(self, action_class: type, schemas: Optional[Schemas]) -> Validators:
        validators = self._validators.get(action_class)
        if validators is None:
            validators = Validators.from_schemas(schemas)
            self._validators[action_class] = validators
        return validators

    def __contains__(self, action_class: type) -> bool:
        return action_class in self._validators

    def clear(self) -> None:
        self._validators.clear()
