"""JSON schema registry and per-key validation helpers."""

from __future__ import annotations

import importlib.resources as resources
import json
from dataclasses import dataclass
from typing import Any, Iterable

from jsonschema import Draft202012Validator, validators

from .errors import ConfigError

_PACKAGE = "upgrade_scheduler"
CONFIG_SCHEMA = "contracts/config_schema.json"


@dataclass(frozen=True)
class SchemaIssue:
    path: str
    message: str


def _path_to_str(path: Iterable[Any]) -> str:
    parts = ["$"]
    for part in path:
        if isinstance(part, int):
            parts.append(f"[{part}]")
        else:
            parts.append(f".{part}")
    return "".join(parts)


def _is_strict_integer(_checker: Any, instance: Any) -> bool:
    return isinstance(instance, int) and not isinstance(instance, bool)


def _make_validator_class():
    type_checker = Draft202012Validator.TYPE_CHECKER
    # 3.0 is an integer under Draft 2020-12; counters must be real ints.
    type_checker = type_checker.redefine("integer", _is_strict_integer)
    type_checker = type_checker.redefine("object", lambda _c, inst: isinstance(inst, dict))
    return validators.extend(Draft202012Validator, type_checker=type_checker)


_Validator = _make_validator_class()


def load_packaged_schema(rel_path: str = CONFIG_SCHEMA) -> dict[str, Any]:
    try:
        text = resources.files(_PACKAGE).joinpath(rel_path).read_text(encoding="utf-8")
        schema = json.loads(text)
    except (OSError, ValueError) as exc:
        raise ConfigError(f"packaged schema unreadable: {rel_path}: {exc}") from exc
    if not isinstance(schema, dict):
        raise ConfigError(f"packaged schema is not an object: {rel_path}")
    return schema


class SchemaRegistry:
    def __init__(self, schema: dict[str, Any] | None = None) -> None:
        self._schema = schema if schema is not None else load_packaged_schema()
        self._validator_cache: dict[int, Draft202012Validator] = {}

    def key_schema(self, group: str, name: str) -> dict[str, Any]:
        groups = self._schema.get("properties", {})
        group_schema = groups.get(group, {}) if isinstance(groups, dict) else {}
        props = group_schema.get("properties", {}) if isinstance(group_schema, dict) else {}
        sub = props.get(name)
        if not isinstance(sub, dict):
            raise ConfigError(f"no schema for {group}.{name}")
        return sub

    def validate(self, schema: dict[str, Any], instance: Any, *, prefix: str = "$") -> list[SchemaIssue]:
        validator = self._validator(schema)
        errors = sorted(
            validator.iter_errors(instance),
            key=lambda err: (_path_to_str(err.absolute_path), err.message),
        )
        issues = []
        for err in errors:
            path = _path_to_str(err.absolute_path)
            issues.append(SchemaIssue(path=prefix + path[1:], message=err.message))
        return issues

    def validate_key(self, group: str, name: str, value: Any) -> list[SchemaIssue]:
        return self.validate(self.key_schema(group, name), value, prefix=f"$.{group}.{name}")

    def format_issues(self, issues: list[SchemaIssue]) -> str:
        return "; ".join(f"{issue.path}: {issue.message}" for issue in issues)

    def _validator(self, schema: dict[str, Any]) -> Draft202012Validator:
        key = id(schema)
        cached = self._validator_cache.get(key)
        if cached is not None:
            return cached
        validator = _Validator(schema)
        self._validator_cache[key] = validator
        return validator
