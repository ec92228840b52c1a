#!/usr/bin/env python3
"""
Reconciler tests

Drives ban/unban against the in-memory filter engine and a stub DNS
resolver, covering idempotence, set/chain pairing, dedup of addresses,
tolerance of unresolvable domains and status accuracy.
"""
import shutil
import tempfile
import unittest

import lockfile

from banner.core.config import BanList, BannerConfig
from banner.core.exceptions import (
    FilterEngineError, InvalidArgumentError, LockError, NetworkError,
)
from banner.core.reconciler import ENFORCED, UNENFORCED, Reconciler
from banner.core.status import StatusReporter
from banner.network.dns_handler import DomainResolver
from banner.network.firewall_handler import REJECTED, EngineResult

from fake_engine import FakeFilterEngine, StubDNSResolver

SPEEDTEST_RECORDS = {
    ("speedtest.net", "A"): ["1.2.3.4"],
    ("fast.com", "A"): ["5.6.7.8"],
}


class ReconcilerTestCase(unittest.TestCase):
    domains = ("speedtest.net", "fast.com")
    records = SPEEDTEST_RECORDS
    strict = False

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.config = BannerConfig(
            lists=(BanList("speedtest", domains=self.domains),),
            lock_path=f"{self.tmpdir}/banner",
            log_file=None,
            strict_resolution=self.strict,
        )
        self.engine = FakeFilterEngine()
        self.dns = StubDNSResolver(dict(self.records))
        self.reconciler = self.make_reconciler()
        self.reporter = StatusReporter(self.config, self.engine)

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def make_reconciler(self):
        resolver = DomainResolver(strict=self.config.strict_resolution, resolver=self.dns)
        return Reconciler(self.config, self.engine, resolver=resolver)

    def assertPaired(self):
        has_set = self.engine.set_exists("speedtest_set")
        has_chain = self.engine.chain_exists("speedtest_chain")
        self.assertEqual(has_set, has_chain, "set and chain must exist together")


class TestBanUnban(ReconcilerTestCase):

    def test_end_to_end_speedtest(self):
        result = self.reconciler.ban("speedtest")

        self.assertEqual(result.state, ENFORCED)
        self.assertEqual(result.added, 2)
        self.assertEqual(set(self.engine.set_members("speedtest_set")), {"1.2.3.4", "5.6.7.8"})
        self.assertEqual(self.engine.chains[(4, "speedtest_chain")],
                         [("speedtest_set", "dst", "DROP")])
        self.assertEqual(self.engine.hooks[(4, "OUTPUT")], ["speedtest_chain"])
        self.assertEqual(self.engine.hooks[(4, "FORWARD")], ["speedtest_chain"])
        self.assertEqual(self.reporter.status("speedtest").state, "active")

        result = self.reconciler.unban("speedtest")

        self.assertEqual(result.state, UNENFORCED)
        self.assertTrue(result.changed)
        self.assertFalse(self.engine.set_exists("speedtest_set"))
        self.assertFalse(self.engine.chain_exists("speedtest_chain"))
        self.assertEqual(self.engine.jump_count("speedtest_chain"), 0)
        self.assertEqual(self.reporter.status("speedtest").state, "inactive")

    def test_ban_twice_is_idempotent(self):
        self.reconciler.ban("speedtest")
        members = self.engine.set_members("speedtest_set")
        queries = len(self.dns.queries)

        result = self.reconciler.ban("speedtest")

        self.assertTrue(result.skipped)
        self.assertFalse(result.changed)
        self.assertEqual(self.engine.set_members("speedtest_set"), members)
        self.assertEqual(self.engine.jump_count("speedtest_chain"), 2)
        self.assertEqual(len(self.engine.chains), 1)
        # already enforced lists are not re-resolved
        self.assertEqual(len(self.dns.queries), queries)

    def test_persist_once_per_batch(self):
        self.reconciler.ban("speedtest")
        self.assertEqual(self.engine.saves, 1)
        self.reconciler.unban("speedtest")
        self.assertEqual(self.engine.saves, 2)

    def test_unban_not_banned_is_harmless(self):
        result = self.reconciler.unban("speedtest")
        self.assertFalse(result.changed)
        self.assertEqual(self.engine.saves, 0)

    def test_pairing_holds_across_sequences(self):
        for op in ("ban", "ban", "unban", "unban", "ban", "unban", "ban"):
            getattr(self.reconciler, op)("speedtest")
            self.assertPaired()

    def test_reject_action(self):
        self.reconciler.ban("speedtest", action="reject")
        self.assertEqual(self.engine.chains[(4, "speedtest_chain")][0][2], "REJECT")

    def test_accept_is_not_a_ban_action(self):
        with self.assertRaises(InvalidArgumentError):
            self.reconciler.ban("speedtest", action="accept")

    def test_unknown_list(self):
        with self.assertRaises(InvalidArgumentError):
            self.reconciler.ban("nope")
        with self.assertRaises(InvalidArgumentError):
            self.reconciler.unban("nope")

    def test_unban_all(self):
        self.reconciler.ban("speedtest")
        results = self.reconciler.unban_all()
        self.assertEqual([r.list_id for r in results], ["speedtest"])
        self.assertFalse(self.engine.set_exists("speedtest_set"))


class TestDuplicateAddresses(ReconcilerTestCase):
    domains = ("speedtest.net", "www.speedtest.net", "fast.com")
    records = {**SPEEDTEST_RECORDS, ("www.speedtest.net", "A"): ["1.2.3.4"]}

    def test_shared_address_added_once(self):
        result = self.reconciler.ban("speedtest")
        self.assertEqual(result.added, 2)
        self.assertEqual(sorted(self.engine.set_members("speedtest_set")), ["1.2.3.4", "5.6.7.8"])


class TestUnresolvableDomain(ReconcilerTestCase):
    domains = ("speedtest.net", "gone.invalid", "fast.com")

    def test_lenient_ban_skips_failures(self):
        result = self.reconciler.ban("speedtest")
        self.assertEqual(result.state, ENFORCED)
        self.assertEqual(set(self.engine.set_members("speedtest_set")), {"1.2.3.4", "5.6.7.8"})


class TestStrictResolution(ReconcilerTestCase):
    domains = ("speedtest.net", "gone.invalid")
    strict = True

    def test_strict_ban_fails_and_leaves_nothing(self):
        with self.assertRaises(NetworkError):
            self.reconciler.ban("speedtest")
        self.assertFalse(self.engine.set_exists("speedtest_set"))
        self.assertFalse(self.engine.chain_exists("speedtest_chain"))


class TestNothingResolves(ReconcilerTestCase):
    domains = ("gone.invalid",)

    def test_no_addresses_is_an_error(self):
        with self.assertRaises(NetworkError):
            self.reconciler.ban("speedtest")
        self.assertPaired()


class TestRepair(ReconcilerTestCase):

    def test_orphan_set_is_rebuilt_on_ban(self):
        self.engine.create_set("speedtest_set")
        self.engine.add_member("speedtest_set", "9.9.9.9")

        result = self.reconciler.ban("speedtest")

        self.assertFalse(result.skipped)
        self.assertEqual(set(self.engine.set_members("speedtest_set")), {"1.2.3.4", "5.6.7.8"})
        self.assertTrue(self.engine.chain_exists("speedtest_chain"))

    def test_orphan_chain_is_removed_on_unban(self):
        self.engine.create_chain("speedtest_chain")
        self.engine.insert_jump("OUTPUT", "speedtest_chain")

        result = self.reconciler.unban("speedtest")

        self.assertTrue(result.changed)
        self.assertFalse(self.engine.chain_exists("speedtest_chain"))
        self.assertEqual(self.engine.jump_count("speedtest_chain"), 0)

    def test_failed_chain_creation_is_repaired_next_run(self):
        self.engine.failures["create_chain"] = EngineResult.failure(REJECTED, "iptables: Memory allocation problem.")
        with self.assertRaises(FilterEngineError) as ctx:
            self.reconciler.ban("speedtest")
        self.assertIn("Memory allocation problem", str(ctx.exception))
        # no rollback: the set is left behind without its chain
        self.assertTrue(self.engine.set_exists("speedtest_set"))
        self.assertEqual(self.engine.saves, 0)

        del self.engine.failures["create_chain"]
        self.reconciler.ban("speedtest")
        self.assertPaired()
        self.assertTrue(self.engine.chain_exists("speedtest_chain"))

    def test_rejected_set_match_leaves_no_empty_chain(self):
        self.engine.failures["append_set_rule"] = EngineResult.failure(
            REJECTED, "iptables v1.8.7: Couldn't load match `set':No such file or directory")
        with self.assertRaises(FilterEngineError):
            self.reconciler.ban("speedtest")
        self.assertFalse(self.engine.chain_exists("speedtest_chain"))
        self.assertEqual(self.reporter.status("speedtest").state, "inactive")

        del self.engine.failures["append_set_rule"]
        result = self.reconciler.ban("speedtest")

        self.assertFalse(result.skipped)
        self.assertEqual(self.engine.chains[(4, "speedtest_chain")], [("speedtest_set", "dst", "DROP")])
        self.assertEqual(self.engine.jump_count("speedtest_chain"), 2)
        self.assertEqual(self.reporter.status("speedtest").state, "active")

    def test_failed_jump_leaves_no_detached_chain(self):
        self.engine.failures["insert_jump"] = EngineResult.failure(REJECTED, "iptables: Index of insertion too big.")
        with self.assertRaises(FilterEngineError):
            self.reconciler.ban("speedtest")
        self.assertFalse(self.engine.chain_exists("speedtest_chain"))
        self.assertEqual(self.engine.jump_count("speedtest_chain"), 0)

        del self.engine.failures["insert_jump"]
        self.assertFalse(self.reconciler.ban("speedtest").skipped)
        self.assertEqual(self.engine.jump_count("speedtest_chain"), 2)

    def test_unattached_chain_is_rebuilt_on_ban(self):
        # state left by a run killed before the jumps were inserted
        self.engine.create_set("speedtest_set")
        self.engine.add_member("speedtest_set", "9.9.9.9")
        self.engine.create_chain("speedtest_chain")
        self.engine.append_set_rule("speedtest_chain", "speedtest_set", "dst", "DROP")
        self.engine.insert_jump("OUTPUT", "speedtest_chain")
        self.assertEqual(self.reporter.status("speedtest").state, "inactive")

        result = self.reconciler.ban("speedtest")

        self.assertFalse(result.skipped)
        self.assertTrue(self.engine.jump_exists("OUTPUT", "speedtest_chain"))
        self.assertTrue(self.engine.jump_exists("FORWARD", "speedtest_chain"))
        self.assertEqual(set(self.engine.set_members("speedtest_set")), {"1.2.3.4", "5.6.7.8"})
        self.assertEqual(self.reporter.status("speedtest").state, "active")


class TestLocking(ReconcilerTestCase):

    def test_held_lock_blocks_reconcile(self):
        # another process holding the lock leaves <lock_path>.lock behind
        with open(f"{self.config.lock_path}.lock", "w") as f:
            f.write("")

        with self.assertRaises(LockError) as ctx:
            self.reconciler.ban("speedtest")
        self.assertIn("Another instance is already running", str(ctx.exception))
        with self.assertRaises(LockError):
            self.reconciler.unban("speedtest")
        self.assertFalse(self.engine.set_exists("speedtest_set"))
        self.assertEqual(self.engine.mutations, 0)

    def test_lock_released_after_failure(self):
        self.engine.failures["save"] = EngineResult.failure(REJECTED, "cannot write")
        with self.assertRaises(FilterEngineError):
            self.reconciler.ban("speedtest")
        self.assertFalse(lockfile.FileLock(self.config.lock_path).is_locked())


class TestIPv6(ReconcilerTestCase):
    records = {**SPEEDTEST_RECORDS, ("fast.com", "AAAA"): ["2606:4700::1"]}

    def make_reconciler(self):
        self.config = self.config.replace(ipv6=True)
        resolver = DomainResolver(ipv6=True, resolver=self.dns)
        return Reconciler(self.config, self.engine, resolver=resolver)

    def test_ban_creates_v6_pair(self):
        self.reconciler.ban("speedtest")
        self.assertEqual(self.engine.set_members("speedtest_set6"), ["2606:4700::1"])
        self.assertEqual(self.engine.sets["speedtest_set6"]["family"], 6)
        self.assertTrue(self.engine.chain_exists("speedtest_chain", family=6))

        self.reconciler.unban("speedtest")
        self.assertFalse(self.engine.set_exists("speedtest_set6"))
        self.assertFalse(self.engine.chain_exists("speedtest_chain", family=6))


if __name__ == "__main__":
    unittest.main()
