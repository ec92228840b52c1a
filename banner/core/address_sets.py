#!/usr/bin/env python3
import logging
from typing import Iterable, List

from banner.network.dns_handler import ResolvedAddress
from banner.network.firewall_handler import EXISTS, NOT_FOUND, FilterEngine

logger = logging.getLogger("banner.sets")


class AddressSetManager:
    """Creates, fills and destroys the ipsets that back a ban list."""

    def __init__(self, engine: FilterEngine):
        self.engine = engine

    def exists(self, name: str) -> bool:
        return self.engine.set_exists(name)

    def members(self, name: str) -> List[str]:
        return self.engine.set_members(name)

    def ensure_set(self, name: str, family: int = 4) -> bool:
        """Create the set if absent. Returns True when it was created."""
        if self.engine.set_exists(name):
            logger.debug("Set %s already exists", name)
            return False
        result = self.engine.create_set(name, family)
        if result.kind == EXISTS:
            return False
        result.raise_for_error(f"Failed to create set {name}")
        logger.info("Created address set %s", name)
        return True

    def add_members(self, name: str, addresses: Iterable[ResolvedAddress]) -> int:
        """Insert every address not already in the set; returns how many were added."""
        added = 0
        for address in addresses:
            entry = str(address)
            if self.engine.test_member(name, entry):
                logger.debug("%s already in %s", entry, name)
                continue
            result = self.engine.add_member(name, entry, comment=address.annotation)
            if result.kind == EXISTS:
                continue
            result.raise_for_error(f"Failed to add {entry} to set {name}")
            added += 1
        logger.info("Added %d new members to %s", added, name)
        return added

    def destroy_set(self, name: str) -> bool:
        """Destroy the set. Returns False when there was nothing to destroy.

        Chains matching the set must be removed first; the engine refuses to
        destroy a referenced set.
        """
        result = self.engine.destroy_set(name)
        if result.kind == NOT_FOUND:
            return False
        result.raise_for_error(f"Failed to destroy set {name}")
        logger.info("Destroyed address set %s", name)
        return True
