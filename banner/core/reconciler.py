#!/usr/bin/env python3
"""
Ban/unban reconciliation.

A ban list is either enforced (its address set and chain exist) or not
(neither exists). ban() and unban() drive a list to one of the two states
and save the result. Both run under a lock file so two banner processes
never interleave their mutations, and both start by repairing a set/chain
pair left half-built by an interrupted run.

unban() tears everything down: jump rules, chain and set are all removed.
"""
import os
import logging
import contextlib
import dataclasses
from typing import Iterable, Optional

import lockfile

from banner.core import constants
from banner.core.address_sets import AddressSetManager
from banner.core.config import BanList, BannerConfig
from banner.core.exceptions import BannerError, InvalidArgumentError, LockError, NetworkError
from banner.core.rules import RuleInstaller
from banner.file_handlers.ban_list import BanListHandler
from banner.network.dns_handler import DomainResolver
from banner.network.firewall_handler import FilterEngine
from banner.utils.logger import success

logger = logging.getLogger("banner.reconciler")

ENFORCED = "enforced"
UNENFORCED = "unenforced"


@dataclasses.dataclass
class ReconcileResult:
    list_id: str
    state: str
    changed: bool
    added: int = 0
    skipped: bool = False


class Reconciler:
    def __init__(self, config: BannerConfig, engine: FilterEngine,
                 ban_lists: Optional[BanListHandler] = None,
                 resolver: Optional[DomainResolver] = None):
        self.config = config
        self.sets = AddressSetManager(engine)
        self.rules = RuleInstaller(engine, jump_position=config.jump_position)
        self.ban_lists = ban_lists or BanListHandler(timeout=config.fetch_timeout)
        self._resolver = resolver

    @property
    def resolver(self) -> DomainResolver:
        # built on first use so unban never needs a resolver configuration
        if self._resolver is None:
            self._resolver = DomainResolver(ipv6=self.config.ipv6,
                                            strict=self.config.strict_resolution,
                                            timeout=self.config.dns_timeout)
        return self._resolver

    @contextlib.contextmanager
    def locked(self):
        lock_dir = os.path.dirname(os.path.abspath(self.config.lock_path))
        os.makedirs(lock_dir, exist_ok=True)
        lock = lockfile.FileLock(self.config.lock_path)
        try:
            lock.acquire(timeout=0)
        except lockfile.AlreadyLocked:
            raise LockError(self.config.lock_path)
        except lockfile.LockFailed as e:
            raise BannerError("Failed to acquire lock", details=str(e))
        logger.debug("Acquired lock %s", lock.lock_file)
        try:
            yield
        finally:
            lock.release()

    def is_enforced(self, ban_list: BanList) -> bool:
        return any(self.sets.exists(ban_list.set_name(family)) for family in self.config.families)

    def repair(self, ban_list: BanList) -> bool:
        """Tear down any half-built family.

        Half-built means the set exists without its chain, the chain exists
        without its set, or the chain is not jumped to from every hook.
        """
        repaired = False
        chain = ban_list.chain_name()
        for family in self.config.families:
            set_name = ban_list.set_name(family)
            has_set = self.sets.exists(set_name)
            has_chain = self.rules.exists(chain, family)
            if not has_set and not has_chain:
                continue
            if has_set and has_chain:
                if self.rules.is_attached(chain, ban_list.hooks, family):
                    continue
                logger.warning("Found %s not attached to %s, removing leftovers",
                               chain, ", ".join(ban_list.hooks))
            else:
                present, missing = (set_name, chain) if has_set else (chain, set_name)
                logger.warning("Found %s without %s, removing leftovers", present, missing)
            self.rules.remove_chain(chain, constants.GLOBAL_CHAINS, family)
            self.sets.destroy_set(set_name)
            repaired = True
        return repaired

    def ban(self, list_id: str, action: Optional[str] = None) -> ReconcileResult:
        ban_list = self.config.get_list(list_id)
        action = (action or ban_list.action).upper()
        if action not in constants.BAN_ACTIONS:
            raise InvalidArgumentError(f"Invalid action: {action}",
                                       details=f"use one of {', '.join(constants.BAN_ACTIONS)}")

        with self.locked():
            repaired = self.repair(ban_list)
            if self.is_enforced(ban_list):
                if repaired:
                    self.rules.persist()
                logger.warning("%s is already banned; unban it first to refresh its addresses", list_id)
                return ReconcileResult(list_id, ENFORCED, changed=repaired, skipped=True)

            logger.info("Applying %s bans...", list_id)
            fetched = self.ban_lists.fetch(ban_list)
            addresses = self.resolver.resolve(fetched.domains)
            if not addresses:
                raise NetworkError(f"No addresses resolved for {list_id}",
                                   details=f"{len(fetched.domains)} entries tried")

            added = 0
            for family in self.config.families:
                family_addresses = [a for a in addresses if a.version == family]
                if not family_addresses:
                    continue
                set_name = ban_list.set_name(family)
                self.sets.ensure_set(set_name, family)
                added += self.sets.add_members(set_name, family_addresses)
                self.rules.ensure_chain(ban_list.chain_name(), set_name, action,
                                        ban_list.hooks, family)
            self.rules.persist()

        success(logger, "Banned %s: %d addresses from %d entries", list_id, added, len(fetched.domains))
        return ReconcileResult(list_id, ENFORCED, changed=True, added=added)

    def unban(self, list_id: str) -> ReconcileResult:
        ban_list = self.config.get_list(list_id)
        chain = ban_list.chain_name()

        with self.locked():
            logger.info("Removing %s bans...", list_id)
            changed = False
            for family in self.config.families:
                # chain first, the set cannot be destroyed while referenced
                changed |= self.rules.remove_chain(chain, constants.GLOBAL_CHAINS, family)
                changed |= self.sets.destroy_set(ban_list.set_name(family))
            if changed:
                self.rules.persist()

        if changed:
            success(logger, "Unbanned %s", list_id)
        else:
            logger.warning("%s is not banned", list_id)
        return ReconcileResult(list_id, UNENFORCED, changed=changed)

    def unban_all(self, list_ids: Optional[Iterable[str]] = None):
        """Unban every list, downgrading per-list failures to warnings."""
        results = []
        for list_id in list_ids or self.config.list_ids:
            try:
                results.append(self.unban(list_id))
            except BannerError as e:
                logger.warning("Could not unban %s: %s", list_id, e)
        return results
