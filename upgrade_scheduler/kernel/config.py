"""Layered configuration resolution.

Sources, highest precedence first: an explicit custom file, the managed file
pushed by the device-management system, the local unmanaged file, and the
compiled-in defaults. Resolution is key-by-key: a managed file that only sets
``MAX_DEFERS`` still lets every other key fall through to the local file or
the defaults. A source that cannot be parsed, or a value that fails its schema
rule, is skipped with a warning; it never aborts the run.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml

from .errors import ConfigError
from .logging import EventLogger, null_logger
from .schema_registry import SchemaRegistry


class ConfigSource(Enum):
    CUSTOM_FILE = "custom_file"
    MANAGED_FILE = "managed_file"
    LOCAL_FILE = "local_file"
    DEFAULTS = "defaults"

    @property
    def precedence(self) -> int:
        return _PRECEDENCE.index(self)


_PRECEDENCE = [ConfigSource.CUSTOM_FILE, ConfigSource.MANAGED_FILE, ConfigSource.LOCAL_FILE, ConfigSource.DEFAULTS]


@dataclass(frozen=True)
class ConfigKey:
    attr: str
    group: str
    name: str


CONFIG_KEYS: tuple[ConfigKey, ...] = (
    ConfigKey("installer_target_version", "core_settings", "INSTALLER_OS"),
    ConfigKey("max_deferrals", "core_settings", "MAX_DEFERS"),
    ConfigKey("max_aborts", "core_settings", "MAX_ABORTS"),
    ConfigKey("deferral_window_seconds", "core_settings", "DEFERRAL_WINDOW_SECONDS"),
    ConfigKey("force_timeout_seconds", "core_settings", "FORCE_TIMEOUT_SECONDS"),
    ConfigKey("min_drive_space_gb", "core_settings", "MIN_DRIVE_SPACE"),
    ConfigKey("test_mode", "feature_toggles", "TEST_MODE"),
    ConfigKey("debug_mode", "feature_toggles", "DEBUG_MODE"),
    ConfigKey("skip_os_version_check", "feature_toggles", "SKIP_OS_VERSION_CHECK"),
    ConfigKey("auto_install_dependencies", "feature_toggles", "AUTO_INSTALL_DEPENDENCIES"),
    ConfigKey("prevent_all_reboots", "feature_toggles", "PREVENT_ALL_REBOOTS"),
    ConfigKey("upgrade_tool_path", "paths", "SCRIPT_PATH"),
    ConfigKey("dialog_path", "paths", "DIALOG_BIN"),
    ConfigKey("dialog_title", "dialog_settings", "DIALOG_TITLE"),
    ConfigKey("dialog_message", "dialog_settings", "DIALOG_MESSAGE"),
    ConfigKey("dialog_icon", "dialog_settings", "DIALOG_ICON"),
    ConfigKey("dialog_position", "dialog_settings", "DIALOG_POSITION"),
    ConfigKey("install_now_text", "dialog_settings", "INSTALL_NOW_TEXT"),
    ConfigKey("schedule_today_text", "dialog_settings", "SCHEDULE_TODAY_TEXT"),
    ConfigKey("defer_text", "dialog_settings", "DEFER_TEXT"),
    ConfigKey("preinstall_title", "dialog_settings", "PREINSTALL_TITLE"),
    ConfigKey("preinstall_message", "dialog_settings", "PREINSTALL_MESSAGE"),
    ConfigKey("preinstall_continue_text", "dialog_settings", "PREINSTALL_CONTINUE_TEXT"),
    ConfigKey("preinstall_countdown_seconds", "dialog_settings", "PREINSTALL_COUNTDOWN"),
)

# Labels shown side by side in one select list; they must stay distinct.
_ACTION_LABEL_KEYS = tuple(
    key for key in CONFIG_KEYS if key.name in {"INSTALL_NOW_TEXT", "SCHEDULE_TODAY_TEXT", "DEFER_TEXT"}
)

DEFAULTS: dict[str, dict[str, Any]] = {
    "core_settings": {
        "INSTALLER_OS": "15",
        "MAX_DEFERS": 3,
        "MAX_ABORTS": 3,
        "DEFERRAL_WINDOW_SECONDS": 86400,
        "FORCE_TIMEOUT_SECONDS": 259200,
        "MIN_DRIVE_SPACE": 50,
    },
    "feature_toggles": {
        "TEST_MODE": True,
        "DEBUG_MODE": False,
        "SKIP_OS_VERSION_CHECK": False,
        "AUTO_INSTALL_DEPENDENCIES": False,
        "PREVENT_ALL_REBOOTS": False,
    },
    "paths": {
        "SCRIPT_PATH": "/Library/Management/erase-install/erase-install.sh",
        "DIALOG_BIN": "/usr/local/bin/dialog",
    },
    "dialog_settings": {
        "DIALOG_TITLE": "macOS Upgrade Required",
        "DIALOG_MESSAGE": "Please install the macOS upgrade. Select an action:",
        "DIALOG_ICON": "SF=gear",
        "DIALOG_POSITION": "topright",
        "INSTALL_NOW_TEXT": "Install Now",
        "SCHEDULE_TODAY_TEXT": "Schedule Today",
        "DEFER_TEXT": "Defer 24 Hours",
        "PREINSTALL_TITLE": "macOS Upgrade Starting",
        "PREINSTALL_MESSAGE": "Your upgrade will begin in 60 seconds.\nClick Continue to start immediately.",
        "PREINSTALL_CONTINUE_TEXT": "Continue Now",
        "PREINSTALL_COUNTDOWN": 60,
    },
}


@dataclass(frozen=True)
class EffectiveConfig:
    installer_target_version: str
    max_deferrals: int
    max_aborts: int
    deferral_window_seconds: int
    force_timeout_seconds: int
    min_drive_space_gb: int
    test_mode: bool
    debug_mode: bool
    skip_os_version_check: bool
    auto_install_dependencies: bool
    prevent_all_reboots: bool
    upgrade_tool_path: str
    dialog_path: str
    dialog_title: str
    dialog_message: str
    dialog_icon: str
    dialog_position: str
    install_now_text: str
    schedule_today_text: str
    defer_text: str
    preinstall_title: str
    preinstall_message: str
    preinstall_continue_text: str
    preinstall_countdown_seconds: int
    source: ConfigSource = ConfigSource.DEFAULTS
    sources: Mapping[str, ConfigSource] = field(default_factory=lambda: MappingProxyType({}))
    warnings: tuple[str, ...] = ()

    @property
    def dry_run(self) -> bool:
        return bool(self.test_mode or self.prevent_all_reboots)

    def as_dict(self) -> dict[str, Any]:
        values = {key.attr: getattr(self, key.attr) for key in CONFIG_KEYS}
        return {
            "values": values,
            "source": self.source.value,
            "sources": {attr: src.value for attr, src in sorted(self.sources.items())},
            "warnings": list(self.warnings),
        }


def default_config() -> EffectiveConfig:
    values = {key.attr: DEFAULTS[key.group][key.name] for key in CONFIG_KEYS}
    sources = {key.attr: ConfigSource.DEFAULTS for key in CONFIG_KEYS}
    return EffectiveConfig(**values, source=ConfigSource.DEFAULTS, sources=MappingProxyType(sources))


def load_config_document(path: Path) -> dict[str, Any]:
    """Parse a JSON (or YAML, by suffix) config document into a dict.

    Raises ``ConfigError`` for unreadable or malformed documents.
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"unreadable config {path}: {exc}") from exc
    try:
        if Path(path).suffix.lower() in {".yaml", ".yml"}:
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (ValueError, yaml.YAMLError) as exc:
        raise ConfigError(f"malformed config {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config {path} must be an object, got {type(data).__name__}")
    return data


@dataclass(frozen=True)
class ConfigPaths:
    managed_path: Path
    local_path: Path


class ConfigResolver:
    def __init__(
        self,
        paths: ConfigPaths,
        *,
        registry: SchemaRegistry | None = None,
        logger: EventLogger | None = None,
    ) -> None:
        self._paths = paths
        self._registry = registry or SchemaRegistry()
        self._log = logger or null_logger()

    def resolve(self, custom_path: str | Path | None = None) -> EffectiveConfig:
        warnings: list[str] = []
        layers: list[tuple[ConfigSource, dict[str, Any]]] = []
        candidates: list[tuple[ConfigSource, Path]] = []
        if custom_path:
            candidates.append((ConfigSource.CUSTOM_FILE, Path(custom_path).expanduser()))
        candidates.append((ConfigSource.MANAGED_FILE, self._paths.managed_path))
        candidates.append((ConfigSource.LOCAL_FILE, self._paths.local_path))
        for source, path in candidates:
            doc = self._load_layer(source, path, warnings, required=source is ConfigSource.CUSTOM_FILE)
            if doc is not None:
                layers.append((source, doc))
        layers.append((ConfigSource.DEFAULTS, DEFAULTS))

        values: dict[str, Any] = {}
        sources: dict[str, ConfigSource] = {}
        for key in CONFIG_KEYS:
            for source, doc in layers:
                found, value = self._lookup(source, doc, key, warnings)
                if found:
                    values[key.attr] = value
                    sources[key.attr] = source
                    break
            else:
                raise ConfigError(f"no usable value for {key.group}.{key.name}")
        self._ensure_distinct_labels(values, sources, warnings)
        for source, doc in layers:
            self._note_unknown_keys(source, doc)

        winner = min(sources.values(), key=lambda src: src.precedence)
        config = EffectiveConfig(
            **values,
            source=winner,
            sources=MappingProxyType(dict(sources)),
            warnings=tuple(warnings),
        )
        self._log.info(
            "config_resolved",
            source=winner.value,
            layers=[src.value for src, _doc in layers],
            warnings=len(warnings),
        )
        return config

    def _load_layer(
        self,
        source: ConfigSource,
        path: Path,
        warnings: list[str],
        *,
        required: bool,
    ) -> dict[str, Any] | None:
        if not path.exists():
            if required:
                self._warn(warnings, f"{source.value}: {path} does not exist; ignored")
            else:
                self._log.debug("config_source_absent", source=source.value, path=str(path))
            return None
        try:
            doc = load_config_document(path)
        except ConfigError as exc:
            self._warn(warnings, f"{source.value}: {exc}; source ignored")
            return None
        self._log.debug("config_source_loaded", source=source.value, path=str(path))
        return doc

    def _lookup(
        self,
        source: ConfigSource,
        doc: dict[str, Any],
        key: ConfigKey,
        warnings: list[str],
    ) -> tuple[bool, Any]:
        group = doc.get(key.group)
        if group is None:
            return False, None
        if not isinstance(group, dict):
            if source is ConfigSource.DEFAULTS:
                raise ConfigError(f"defaults group {key.group} is not an object")
            self._warn(warnings, f"{source.value}: {key.group} is not an object; group ignored")
            return False, None
        if key.name not in group:
            return False, None
        value = group[key.name]
        issues = self._registry.validate_key(key.group, key.name, value)
        if issues:
            if source is ConfigSource.DEFAULTS:
                raise ConfigError(f"invalid default: {self._registry.format_issues(issues)}")
            self._warn(warnings, f"{source.value}: {self._registry.format_issues(issues)}; value ignored")
            return False, None
        return True, value

    def _ensure_distinct_labels(
        self,
        values: dict[str, Any],
        sources: dict[str, ConfigSource],
        warnings: list[str],
    ) -> None:
        while True:
            by_label: dict[str, list[ConfigKey]] = {}
            for key in _ACTION_LABEL_KEYS:
                by_label.setdefault(values[key.attr], []).append(key)
            clashing = [
                key
                for group in by_label.values()
                if len(group) > 1
                for key in group
                if sources[key.attr] is not ConfigSource.DEFAULTS
            ]
            if not clashing:
                if len(by_label) != len(_ACTION_LABEL_KEYS):
                    raise ConfigError("default action labels are not distinct")
                return
            for key in clashing:
                self._warn(
                    warnings,
                    f"{sources[key.attr].value}: {key.group}.{key.name} duplicates another action label; value ignored",
                )
                values[key.attr] = DEFAULTS[key.group][key.name]
                sources[key.attr] = ConfigSource.DEFAULTS

    def _note_unknown_keys(self, source: ConfigSource, doc: dict[str, Any]) -> None:
        known = {(key.group, key.name) for key in CONFIG_KEYS}
        groups = {key.group for key in CONFIG_KEYS}
        for group_name, group in doc.items():
            if group_name not in groups:
                self._log.debug("config_unknown_group", source=source.value, group=str(group_name))
                continue
            if not isinstance(group, dict):
                continue
            for name in group:
                if (group_name, name) not in known:
                    self._log.debug("config_unknown_key", source=source.value, key=f"{group_name}.{name}")

    def _warn(self, warnings: list[str], message: str) -> None:
        # Repeated group warnings (one per key) collapse into one entry.
        if message in warnings:
            return
        warnings.append(message)
        self._log.warning("config_warning", detail=message)
