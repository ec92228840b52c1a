#!/usr/bin/env python3
import re
import logging
import ipaddress
import contextlib
from typing import List, Optional
from urllib.parse import urlparse

import requests

from banner.core import constants
from banner.core.config import BanList
from banner.core.exceptions import NetworkError

logger = logging.getLogger("banner.ban_list")


def normalize_domain(domain: str) -> str:
    """Normalize a list entry to a bare hostname.
    - strips scheme (http/https), path/query/fragment/port
    - lowercases
    - removes a trailing dot
    - keeps IP and CIDR literals as-is
    """
    d = domain.strip().lower()
    with contextlib.suppress(ValueError):
        return str(ipaddress.ip_network(d, strict=False)) if "/" in d else str(ipaddress.ip_address(d))

    d = re.sub(r"^([a-z][a-z0-9+.-]*://)", "", d)
    d = d.split('/')[0]
    d = d.split('#')[0]
    d = d.split('?', 1)[0]

    # Bracketed IPv6 like [2001:db8::1]:443
    if d.startswith('['):
        end = d.find(']')
        if end != -1:
            with contextlib.suppress(ValueError):
                return str(ipaddress.ip_address(d[1:end]))

    with contextlib.suppress(ValueError):
        return str(ipaddress.ip_address(d))

    if ':' in d:
        d = d.split(':', 1)[0]
    if d.endswith('.'):
        d = d[:-1]
    return d


def parse_domains(text: str) -> List[str]:
    """Parse newline-delimited list content, dropping blanks, comments and repeats."""
    seen = set()
    domains = []
    for line in text.splitlines():
        line = re.split(r"\s*#", line, maxsplit=1)[0].strip()
        if not line:
            continue
        domain = normalize_domain(line)
        if domain and domain not in seen:
            seen.add(domain)
            domains.append(domain)
    return domains


def is_local_path(source: str) -> bool:
    return bool(source) and ("://" not in source or urlparse(source).scheme == "file")


class BanListHandler:
    """Fetches ban list contents from their configured sources."""

    def __init__(self, timeout: int = constants.DEFAULT_FETCH_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", constants.USER_AGENT)

    def fetch_text(self, source: str) -> str:
        """Return the raw text behind a URL or local path; raise NetworkError on failure."""
        if is_local_path(source):
            path = urlparse(source).path if source.startswith("file://") else source
            try:
                with open(path, "r", encoding="utf-8", errors="ignore") as f:
                    return f.read()
            except OSError as e:
                raise NetworkError(f"Failed to read ban list {source}", details=e.strerror)

        try:
            response = self.session.get(source, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise NetworkError(f"Failed to download ban list {source}", details=str(e))
        return response.text

    def fetch(self, ban_list: BanList) -> BanList:
        """Return ``ban_list`` with its domains filled in.

        Inline domains from the config are used as-is; otherwise the list is
        downloaded from its url.
        """
        if ban_list.domains and not ban_list.url:
            domains = parse_domains("\n".join(ban_list.domains))
        elif ban_list.url:
            logger.debug("Fetching %s list from %s", ban_list.list_id, ban_list.url)
            domains = parse_domains(self.fetch_text(ban_list.url))
            # Inline entries extend a remote list
            for extra in parse_domains("\n".join(ban_list.domains)):
                if extra not in domains:
                    domains.append(extra)
        else:
            raise NetworkError(f"No source configured for list {ban_list.list_id}")

        logger.info("Found %d entries in %s list", len(domains), ban_list.list_id)
        return ban_list.with_domains(domains)
