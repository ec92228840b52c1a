#!/usr/bin/env python3
"""
Configuration for banner.

All settings live in one frozen BannerConfig built from the defaults in
constants.py and optionally overlaid by a YAML file. Components receive the
config at construction time; nothing reads settings from module globals.
"""
import os
import re
import dataclasses
import logging
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from banner.core import constants
from banner.core.exceptions import ConfigurationError, InvalidArgumentError

logger = logging.getLogger("banner.config")

LIST_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
# "banner ban list" prints the lists instead of banning one
RESERVED_LIST_IDS = ("list",)
# Room for the longest derived name, "<id>_set6"
MAX_LIST_ID_LENGTH = constants.MAX_NAME_LENGTH - len(constants.SET_SUFFIX) - 1


@dataclasses.dataclass(frozen=True)
class BanList:
    """A named list of domains to block.

    ``domains`` is empty until the list is fetched from ``url``.
    """
    list_id: str
    url: Optional[str] = None
    domains: Tuple[str, ...] = ()
    action: str = constants.DEFAULT_ACTION
    hooks: Tuple[str, ...] = constants.DEFAULT_HOOKS

    def set_name(self, family: int = 4) -> str:
        name = f"{self.list_id}{constants.SET_SUFFIX}"
        return name if family == 4 else f"{name}6"

    def chain_name(self) -> str:
        # iptables and ip6tables keep separate chain namespaces
        return f"{self.list_id}{constants.CHAIN_SUFFIX}"

    def with_domains(self, domains) -> "BanList":
        return dataclasses.replace(self, domains=tuple(domains))


@dataclasses.dataclass(frozen=True)
class BannerConfig:
    lists: Tuple[BanList, ...] = ()
    ipv6: bool = False
    strict_resolution: bool = False
    jump_position: int = constants.DEFAULT_JUMP_POSITION
    fetch_timeout: int = constants.DEFAULT_FETCH_TIMEOUT
    dns_timeout: float = constants.DEFAULT_DNS_TIMEOUT
    command_timeout: int = constants.DEFAULT_COMMAND_TIMEOUT
    hash_size: int = constants.DEFAULT_HASH_SIZE
    max_elements: int = constants.DEFAULT_MAX_ELEMENTS
    lock_path: str = constants.LOCK_PATH
    log_file: Optional[str] = constants.LOG_FILE
    rules_v4_path: str = constants.RULES_V4_PATH
    rules_v6_path: str = constants.RULES_V6_PATH
    ipsets_path: str = constants.IPSETS_PATH
    source_path: Optional[str] = None

    @property
    def list_ids(self) -> Tuple[str, ...]:
        return tuple(b.list_id for b in self.lists)

    @property
    def families(self) -> Tuple[int, ...]:
        return (4, 6) if self.ipv6 else (4,)

    def get_list(self, list_id: str) -> BanList:
        for ban_list in self.lists:
            if ban_list.list_id == list_id:
                return ban_list
        known = ", ".join(self.list_ids) or "none"
        raise InvalidArgumentError(f"Invalid ban type: {list_id}", details=f"known lists: {known}")

    def replace(self, **changes) -> "BannerConfig":
        return dataclasses.replace(self, **changes)


def default_config() -> BannerConfig:
    lists = tuple(BanList(list_id=k, url=v) for k, v in constants.DEFAULT_LISTS.items())
    return BannerConfig(lists=lists)


def _validate_action(field: str, value: Any, allowed=constants.BAN_ACTIONS) -> str:
    action = str(value).upper()
    if action not in allowed:
        raise ConfigurationError(field, f"must be one of {', '.join(allowed)}, got {value!r}")
    return action


def _validate_hooks(field: str, value: Any) -> Tuple[str, ...]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)) or not value:
        raise ConfigurationError(field, "must be a non-empty list of chain names")
    hooks = []
    for hook in value:
        hook = str(hook).upper()
        if hook not in constants.GLOBAL_CHAINS:
            raise ConfigurationError(field, f"unknown chain {hook!r}")
        if hook not in hooks:
            hooks.append(hook)
    return tuple(hooks)


def _validate_positive_int(field: str, value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(field, f"expected an integer, got {value!r}")
    if number < 1:
        raise ConfigurationError(field, f"must be >= 1, got {number}")
    return number


def validate_list_id(list_id: str) -> str:
    if not LIST_ID_PATTERN.match(list_id or ""):
        raise ConfigurationError("lists", f"invalid list id {list_id!r}")
    if list_id in RESERVED_LIST_IDS:
        raise ConfigurationError("lists", f"list id {list_id!r} is reserved")
    if len(list_id) > MAX_LIST_ID_LENGTH:
        raise ConfigurationError("lists", f"list id {list_id!r} longer than {MAX_LIST_ID_LENGTH} characters")
    return list_id


def _parse_lists(raw: Any, action: str, hooks: Tuple[str, ...]) -> Tuple[BanList, ...]:
    if not isinstance(raw, Mapping):
        raise ConfigurationError("lists", "must be a mapping of list id to url or settings")
    lists = []
    for list_id, entry in raw.items():
        list_id = validate_list_id(str(list_id))
        field = f"lists.{list_id}"
        if isinstance(entry, str):
            lists.append(BanList(list_id=list_id, url=entry, action=action, hooks=hooks))
            continue
        if not isinstance(entry, Mapping):
            raise ConfigurationError(field, "must be a url or a mapping")
        domains = entry.get("domains") or ()
        if isinstance(domains, str) or not isinstance(domains, (list, tuple)):
            raise ConfigurationError(f"{field}.domains", "must be a list of domains")
        url = entry.get("url")
        if not url and not domains:
            raise ConfigurationError(field, "needs a url or inline domains")
        lists.append(BanList(
            list_id=list_id,
            url=url,
            domains=tuple(str(d) for d in domains),
            action=_validate_action(f"{field}.action", entry.get("action", action)),
            hooks=_validate_hooks(f"{field}.hooks", entry.get("hooks", hooks)),
        ))
    return tuple(lists)


def config_from_mapping(data: Mapping[str, Any], base: Optional[BannerConfig] = None) -> BannerConfig:
    """Overlay a parsed YAML mapping on ``base`` (the defaults when omitted)."""
    cfg = base or default_config()
    if not isinstance(data, Mapping):
        raise ConfigurationError("<root>", "configuration must be a mapping")

    changes: Dict[str, Any] = {}
    action = _validate_action("action", data.get("action", constants.DEFAULT_ACTION))
    hooks = _validate_hooks("hooks", data.get("hooks", constants.DEFAULT_HOOKS))

    if "lists" in data:
        changes["lists"] = _parse_lists(data["lists"], action, hooks)
    elif "action" in data or "hooks" in data:
        changes["lists"] = tuple(dataclasses.replace(b, action=action, hooks=hooks) for b in cfg.lists)

    for key in ("ipv6", "strict_resolution"):
        if key in data:
            changes[key] = bool(data[key])

    for key in ("jump_position", "fetch_timeout", "command_timeout", "hash_size", "max_elements"):
        if key in data:
            changes[key] = _validate_positive_int(key, data[key])

    if "dns_timeout" in data:
        try:
            changes["dns_timeout"] = float(data["dns_timeout"])
        except (TypeError, ValueError):
            raise ConfigurationError("dns_timeout", f"expected a number, got {data['dns_timeout']!r}")

    if "lock_path" in data:
        if not data["lock_path"]:
            raise ConfigurationError("lock_path", "must not be empty")
        changes["lock_path"] = str(data["lock_path"])
    if "log_file" in data:
        # an empty value disables the file handler
        changes["log_file"] = data["log_file"] or None

    persist = data.get("persist") or {}
    if not isinstance(persist, Mapping):
        raise ConfigurationError("persist", "must be a mapping")
    for key, attr in (("rules_v4", "rules_v4_path"), ("rules_v6", "rules_v6_path"), ("ipsets", "ipsets_path")):
        if key in persist:
            changes[attr] = str(persist[key])

    return cfg.replace(**changes)


def load_config(path: Optional[str] = None) -> BannerConfig:
    """Load the configuration.

    Lookup order: ``path``, then ``$BANNER_CONFIG``, then
    /etc/banner/config.yaml. An explicitly named file must exist; the
    default location is optional.
    """
    explicit = path or os.environ.get(constants.CONFIG_ENV_VAR)
    candidate = explicit or constants.CONFIG_PATH

    if not os.path.exists(candidate):
        if explicit:
            raise ConfigurationError("config", f"file not found: {candidate}")
        logger.debug("No config file at %s, using defaults", candidate)
        return default_config()

    try:
        with open(candidate, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError("config", f"{candidate}: {e}")
    except OSError as e:
        raise ConfigurationError("config", f"{candidate}: {e.strerror}")

    logger.debug("Loaded config from %s", candidate)
    return config_from_mapping(data).replace(source_path=candidate)


def dump_default_config() -> str:
    """YAML text written by ``banner install``."""
    cfg = default_config()
    data = {
        "lists": {b.list_id: b.url for b in cfg.lists},
        "action": constants.DEFAULT_ACTION,
        "hooks": list(constants.DEFAULT_HOOKS),
        "ipv6": cfg.ipv6,
        "strict_resolution": cfg.strict_resolution,
        "jump_position": cfg.jump_position,
        "persist": {
            "rules_v4": cfg.rules_v4_path,
            "rules_v6": cfg.rules_v6_path,
            "ipsets": cfg.ipsets_path,
        },
    }
    return yaml.safe_dump(data, sort_keys=False)
