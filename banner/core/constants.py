#!/usr/bin/env python3
"""Defaults shared across the banner package."""

__version__ = "1.0.0"

SCRIPT_NAME = "banner"
BRANCH = "speedtest"
REPO_URL = f"https://github.com/erfjab/{SCRIPT_NAME}"
RAW_CONTENT_URL = f"https://raw.githubusercontent.com/erfjab/{SCRIPT_NAME}/{BRANCH}"

DEFAULT_LISTS = {
    "speedtest": f"{RAW_CONTENT_URL}/lists/speedtest.list",
    "iranian": f"{RAW_CONTENT_URL}/lists/iranian.list",
}

# Paths
CONFIG_DIR = "/etc/banner"
CONFIG_PATH = f"{CONFIG_DIR}/config.yaml"
INSTALL_MARKER = f"{CONFIG_DIR}/.installed"
LOCK_PATH = "/var/run/banner"
LOG_FILE = "/var/log/banner.log"
RULES_V4_PATH = "/etc/iptables/rules.v4"
RULES_V6_PATH = "/etc/iptables/rules.v6"
IPSETS_PATH = "/etc/iptables/ipsets"

CONFIG_ENV_VAR = "BANNER_CONFIG"

# Filter engine
ACTIONS = ("DROP", "REJECT", "ACCEPT")
BAN_ACTIONS = ("DROP", "REJECT")
GLOBAL_CHAINS = ("INPUT", "OUTPUT", "FORWARD")
DEFAULT_ACTION = "DROP"
DEFAULT_HOOKS = ("OUTPUT", "FORWARD")
DEFAULT_JUMP_POSITION = 1
DEFAULT_HASH_SIZE = 1024
DEFAULT_MAX_ELEMENTS = 65536
SET_SUFFIX = "_set"
CHAIN_SUFFIX = "_chain"
# ipset and iptables both cap names at 31 characters
MAX_NAME_LENGTH = 31

# Network
DEFAULT_FETCH_TIMEOUT = 15
DEFAULT_DNS_TIMEOUT = 5.0
DEFAULT_COMMAND_TIMEOUT = 30
USER_AGENT = f"{SCRIPT_NAME}/{__version__}"

# Host dependencies: command -> package name
DEPENDENCIES = {
    "iptables": "iptables",
    "ipset": "ipset",
}
PACKAGE_MANAGERS = ("apt", "yum")
