#!/usr/bin/env python3
"""
Domain resolution for ban lists.

Each domain is looked up with dnspython (A, plus AAAA when IPv6 is on).
IP and CIDR literals in a list skip the lookup. A domain that fails to
resolve is skipped with a warning unless the resolver is strict, in which
case the first failure aborts the run.
"""
import logging
import ipaddress
import dataclasses
from typing import Iterable, List, Optional, Union

import dns.exception
import dns.resolver

from banner.core import constants
from banner.core.exceptions import NetworkError

logger = logging.getLogger("banner.dns")

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


@dataclasses.dataclass(frozen=True)
class ResolvedAddress:
    network: Network
    annotation: Optional[str] = None

    @property
    def version(self) -> int:
        return self.network.version

    def __str__(self) -> str:
        # host routes are written as plain addresses, the way ipset lists them
        if self.network.prefixlen == self.network.max_prefixlen:
            return str(self.network.network_address)
        return str(self.network)


def parse_literal(entry: str) -> Optional[Network]:
    """Return the network for an IP/CIDR literal, or None for a hostname."""
    try:
        if "/" in entry:
            return ipaddress.ip_network(entry, strict=False)
        return ipaddress.ip_network(ipaddress.ip_address(entry))
    except ValueError:
        return None


def is_local(address) -> bool:
    """True for addresses a ban must never cover: loopback, private, link-local..."""
    return (address.is_loopback or address.is_unspecified or address.is_private
            or address.is_link_local or address.is_multicast)


class DomainResolver:
    def __init__(self, ipv6: bool = False, strict: bool = False,
                 timeout: float = constants.DEFAULT_DNS_TIMEOUT, resolver=None):
        self.ipv6 = ipv6
        self.strict = strict
        if resolver is None:
            try:
                resolver = dns.resolver.Resolver()
            except dns.exception.DNSException as e:
                raise NetworkError("No usable DNS resolver configuration", details=str(e))
            resolver.lifetime = timeout
        self.resolver = resolver

    @property
    def record_types(self):
        return ("A", "AAAA") if self.ipv6 else ("A",)

    def lookup(self, domain: str) -> List[ResolvedAddress]:
        """Resolve one domain. Raises NetworkError when no record type answered."""
        addresses: List[ResolvedAddress] = []
        errors = []
        answered = False
        for rdtype in self.record_types:
            try:
                answer = self.resolver.resolve(domain, rdtype)
            except dns.resolver.NoAnswer:
                # the name exists, just not with this record type
                answered = True
                continue
            except dns.exception.DNSException as e:
                errors.append(f"{rdtype}: {e.__class__.__name__}")
                continue
            answered = True
            for rdata in answer:
                address = ipaddress.ip_address(rdata.to_text())
                if is_local(address):
                    logger.warning("Ignoring local address %s for %s", address, domain)
                    continue
                addresses.append(ResolvedAddress(ipaddress.ip_network(address), annotation=domain))

        if not answered:
            raise NetworkError(f"Failed to resolve {domain}", details="; ".join(errors))
        return addresses

    def resolve(self, domains: Iterable[str]) -> List[ResolvedAddress]:
        """Resolve ``domains`` in order into a flat list (duplicates kept)."""
        resolved: List[ResolvedAddress] = []
        for domain in domains:
            literal = parse_literal(domain)
            if literal is not None:
                if literal.version == 6 and not self.ipv6:
                    logger.debug("Skipping IPv6 entry %s (IPv6 disabled)", literal)
                    continue
                resolved.append(ResolvedAddress(literal, annotation="literal"))
                continue

            try:
                found = self.lookup(domain)
            except NetworkError as e:
                if self.strict:
                    raise
                logger.warning("%s, skipping", e)
                continue

            if not found:
                logger.warning("No addresses found for %s", domain)
            else:
                logger.debug("Resolved %s -> %s", domain, ", ".join(str(a) for a in found))
            resolved.extend(found)
        return resolved
