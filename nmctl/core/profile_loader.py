"""Connection profile loading and validation for YAML-based nmctl profiles."""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from nmctl.core.errors import ProfileLoadError, ProfileValidationError
from nmctl.core.model import ConnProfile
from nmctl.core.nmp import MgmtProto

_BLE_ADDR_RE = re.compile(r"^([0-9A-F]{2}(?::[0-9A-F]{2}){5}|[0-9A-F]{8}-(?:[0-9A-F]{4}-){3}[0-9A-F]{12})$")
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ProfileValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class LoadedProfiles:
    profiles: dict[str, ConnProfile]
    warnings: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("nmctl.schemas").joinpath("profile.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def profile_dir() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "nmctl/profiles"


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ProfileLoadError(f"Could not read profile file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ProfileValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ProfileValidationError(f"Profile file {path} must contain a mapping at root")
    return loaded


def _normalize_ble_address(value: str, *, context: str) -> str:
    normalized = value.strip().upper()
    if not _BLE_ADDR_RE.match(normalized):
        raise ProfileValidationError(
            f"{context} must be a MAC address (AA:BB:CC:DD:EE:FF) or a platform UUID"
        )
    return normalized


def build_profile(doc: dict[str, Any], source: Path | str) -> ConnProfile:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ProfileValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    conn_type = doc["type"]
    address = doc["address"].strip()
    if conn_type == "ble":
        address = _normalize_ble_address(address, context=f"{doc['name']}.address")

    return ConnProfile(
        name=doc["name"],
        type=conn_type,
        address=address,
        port=int(doc["port"]) if "port" in doc else None,
        mtu=int(doc["mtu"]) if "mtu" in doc else None,
        mgmt_proto=MgmtProto(doc.get("mgmt_proto", MgmtProto.NMP.value)),
        timeout_s=float(doc.get("timeout_s", 10.0)),
        tries=int(doc.get("tries", 1)),
    )


def _iter_profile_paths() -> list[Path]:
    directory = profile_dir()
    if not directory.exists() or not directory.is_dir():
        return []
    return sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"})


def load_profiles() -> LoadedProfiles:
    profiles: dict[str, ConnProfile] = {}
    warnings: list[str] = []

    for path in _iter_profile_paths():
        doc = _read_yaml(path)
        profile = build_profile(doc, path)
        if profile.name in profiles:
            warning = f"Profile '{profile.name}' in {path.name} overrides an earlier definition"
            LOGGER.warning(warning)
            warnings.append(warning)
        profiles[profile.name] = profile

    return LoadedProfiles(profiles=profiles, warnings=tuple(warnings))


def profile_to_doc(profile: ConnProfile) -> dict[str, Any]:
    doc: dict[str, Any] = {
        "name": profile.name,
        "type": profile.type,
        "address": profile.address,
    }
    if profile.port is not None:
        doc["port"] = profile.port
    if profile.mtu is not None:
        doc["mtu"] = profile.mtu
    doc["mgmt_proto"] = profile.mgmt_proto.value
    doc["timeout_s"] = profile.timeout_s
    doc["tries"] = profile.tries
    return doc


def _profile_files(name: str) -> list[Path]:
    """Files whose document defines profile `name`, in load order."""
    return [path for path in _iter_profile_paths() if _read_yaml(path).get("name") == name]


def save_profile(profile: ConnProfile) -> Path:
    """Validate and write `profile`, replacing any file that already defines it.

    A new profile goes to `<profile_dir>/<name>.yaml`. Once written, it is the
    only file that defines the profile.
    """
    doc = profile_to_doc(profile)
    build_profile(doc, profile.name)

    holders = _profile_files(profile.name)
    if holders:
        path = holders[-1]
    else:
        path = profile_dir() / f"{profile.name}.yaml"
        if path.exists():
            raise ProfileLoadError(f"{path} already holds a different profile")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(doc, sort_keys=False), encoding="utf-8")
        for stale in holders[:-1]:
            stale.unlink()
    except OSError as exc:
        raise ProfileLoadError(f"Could not write profile file {path}: {exc}") from exc
    return path


def delete_profile(name: str) -> bool:
    removed = False
    for path in _profile_files(name):
        try:
            path.unlink()
        except OSError as exc:
            raise ProfileLoadError(f"Could not delete profile file {path}: {exc}") from exc
        removed = True
    return removed
