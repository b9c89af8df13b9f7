"""Extension profile loading and validation for YAML-based scratchlink profiles.

A profile names one extension instance: which bridge variant it drives, the
bridge process URL, and the options forwarded on discovery. Packaged profiles
ship inside `scratchlink.profiles`; user profiles in the XDG config and data
directories override them by id.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from functools import lru_cache
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from scratchlink.core.errors import ProfileLoadError, ProfileValidationError
from scratchlink.core.model import ExtensionProfile

LOGGER = logging.getLogger(__name__)

_BRIDGE_URL_RE = re.compile(r"^wss?://[^\s/]+(/\S*)?$", re.IGNORECASE)
_PROFILE_SUFFIXES = (".yml", ".yaml")
_BOOL_TAG = "tag:yaml.org,2002:bool"
_DEFAULT_TIMINGS = {"scan_timeout_s": 15.0, "poll_interval_s": 0.1, "open_timeout_s": 5.0}


class UniqueKeyLoader(yaml.SafeLoader):
    """Safe loader that rejects duplicate keys and leaves yes/no/on/off as strings."""


# Booleans are normalised per field, so `on`/`off` style values stay text here.
UniqueKeyLoader.yaml_implicit_resolvers = {
    first_char: [(tag, regexp) for tag, regexp in resolvers if tag != _BOOL_TAG]
    for first_char, resolvers in yaml.SafeLoader.yaml_implicit_resolvers.items()
}


def _construct_unique_mapping(loader: UniqueKeyLoader, node: yaml.MappingNode, deep: bool = False) -> dict[Any, Any]:
    seen: dict[Any, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in seen:
            line = key_node.start_mark.line + 1
            raise ProfileValidationError(f"Duplicate key '{key}' on line {line}")
        seen[key] = loader.construct_object(value_node, deep=deep)
    return seen


UniqueKeyLoader.add_constructor(yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG, _construct_unique_mapping)


@dataclass(frozen=True)
class LoadedProfiles:
    profiles: dict[str, ExtensionProfile]
    warnings: tuple[str, ...]


@lru_cache(maxsize=1)
def _profile_validator() -> Any:
    schema_file = resources.files("scratchlink.schemas").joinpath("profile.schema.json")
    schema = json.loads(schema_file.read_text(encoding="utf-8"))
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _user_profile_dirs() -> list[Path]:
    config_home = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    data_home = os.environ.get("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
    return [Path(config_home) / "scratchlink" / "profiles", Path(data_home) / "scratchlink" / "profiles"]


def _parse_document(source: Path | Traversable) -> dict[str, Any]:
    try:
        text = source.read_text(encoding="utf-8")
    except OSError as exc:
        raise ProfileLoadError(f"Could not read profile file {source}: {exc}") from exc

    try:
        document = yaml.load(text, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ProfileValidationError(f"Invalid YAML in {source}: {exc}") from exc
    except ProfileValidationError as exc:
        raise ProfileValidationError(f"{exc} in {source}") from exc

    if not isinstance(document, dict):
        raise ProfileValidationError(f"Profile file {source} must contain a mapping at root")
    return document


def _bridge_url(value: str, *, field: str) -> str:
    url = value.strip()
    if _BRIDGE_URL_RE.match(url) is None:
        raise ProfileValidationError(f"{field} must be a ws:// or wss:// URL, got '{url}'")
    return url


def _flag(value: Any, *, field: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in {"true", "yes", "on"}:
        return True
    if text in {"false", "no", "off"}:
        return False
    raise ProfileValidationError(f"{field} must be boolean true/false, got '{value}'")


def _profile_from_document(document: dict[str, Any], source: Path | Traversable) -> ExtensionProfile:
    try:
        _profile_validator().validate(document)
    except ValidationError as exc:
        location = "/".join(str(part) for part in exc.absolute_path)
        suffix = f" at '{location}'" if location else ""
        raise ProfileValidationError(f"Schema validation failed for {source}{suffix}: {exc.message}") from exc

    profile_id = document["id"]
    write_with_response = document.get("write_with_response")
    if write_with_response is not None:
        write_with_response = _flag(write_with_response, field=f"{profile_id}.write_with_response")

    timings = {key: float(document.get(key, default)) for key, default in _DEFAULT_TIMINGS.items()}
    return ExtensionProfile(
        id=profile_id,
        name=document["name"],
        kind=document["kind"],
        url=_bridge_url(document["url"], field=f"{profile_id}.url"),
        peripheral_options=dict(document.get("peripheral_options") or {}),
        write_with_response=write_with_response,
        encoding=document.get("encoding", "base64"),
        **timings,
    )


def _packaged_sources() -> list[Traversable]:
    package = resources.files("scratchlink.profiles")
    return sorted(
        (entry for entry in package.iterdir() if entry.name.endswith(_PROFILE_SUFFIXES)),
        key=lambda entry: entry.name,
    )


def _user_sources() -> list[Path]:
    sources: list[Path] = []
    for directory in _user_profile_dirs():
        if directory.is_dir():
            sources.extend(sorted(p for p in directory.iterdir() if p.suffix in _PROFILE_SUFFIXES))
    return sources


def load_profiles() -> LoadedProfiles:
    profiles: dict[str, ExtensionProfile] = {}
    for source in _packaged_sources():
        profile = _profile_from_document(_parse_document(source), source)
        profiles[profile.id] = profile

    warnings: list[str] = []
    for source in _user_sources():
        profile = _profile_from_document(_parse_document(source), source)
        if profile.id in profiles:
            message = f"User profile '{profile.id}' overrides packaged profile ({source})"
            LOGGER.warning(message)
            warnings.append(message)
        profiles[profile.id] = profile

    LOGGER.debug("Loaded %d extension profiles", len(profiles))
    return LoadedProfiles(profiles=profiles, warnings=tuple(warnings))
