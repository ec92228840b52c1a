#!/usr/bin/env python3
"""
Filter engine access.

FilterEngine is the narrow interface the managers drive; every mutation
returns an EngineResult instead of relying on raw exit codes. IptablesEngine
implements it with the iptables/ip6tables and ipset command-line tools. Rules
are saved with netfilter-persistent, or with the *-save tools when it is not
installed; the `ipset save` dump is always written as well.
"""
import os
import abc
import contextlib
import logging
import dataclasses
from typing import List, Optional, Sequence, Tuple

from banner.core import constants
from banner.core.exceptions import FilterEngineError
from banner.utils.commands import MISSING_TOOL_RC, is_command_available, run_cmd

logger = logging.getLogger("banner.firewall")

OK = "ok"
NOT_FOUND = "not_found"
EXISTS = "exists"
REJECTED = "rejected"
MISSING_TOOL = "missing_tool"


@dataclasses.dataclass(frozen=True)
class EngineResult:
    ok: bool
    kind: str = OK
    message: str = ""
    command: Tuple[str, ...] = ()

    @classmethod
    def success(cls, command: Sequence[str] = ()) -> "EngineResult":
        return cls(True, OK, "", tuple(command))

    def raise_for_error(self, message: str) -> None:
        if not self.ok:
            raise FilterEngineError(message, command=self.command, stderr=self.message)

    @classmethod
    def failure(cls, kind: str, message: str, command: Sequence[str] = ()) -> "EngineResult":
        return cls(False, kind, message.strip(), tuple(command))


class FilterEngine(abc.ABC):
    """Primitive set/chain operations of the host packet filter.

    ``family`` is 4 or 6 and selects iptables or ip6tables. Set names are
    global across families.
    """

    @abc.abstractmethod
    def set_exists(self, name: str) -> bool: ...

    @abc.abstractmethod
    def create_set(self, name: str, family: int = 4) -> EngineResult: ...

    @abc.abstractmethod
    def set_members(self, name: str) -> List[str]: ...

    @abc.abstractmethod
    def test_member(self, name: str, address: str) -> bool: ...

    @abc.abstractmethod
    def add_member(self, name: str, address: str, comment: Optional[str] = None) -> EngineResult: ...

    @abc.abstractmethod
    def destroy_set(self, name: str) -> EngineResult: ...

    @abc.abstractmethod
    def chain_exists(self, name: str, family: int = 4) -> bool: ...

    @abc.abstractmethod
    def create_chain(self, name: str, family: int = 4) -> EngineResult: ...

    @abc.abstractmethod
    def append_set_rule(self, chain: str, set_name: str, direction: str, action: str,
                        family: int = 4) -> EngineResult: ...

    @abc.abstractmethod
    def jump_exists(self, hook: str, chain: str, family: int = 4) -> bool: ...

    @abc.abstractmethod
    def insert_jump(self, hook: str, chain: str, position: int = 1, family: int = 4) -> EngineResult: ...

    @abc.abstractmethod
    def delete_jump(self, hook: str, chain: str, family: int = 4) -> EngineResult: ...

    @abc.abstractmethod
    def flush_chain(self, name: str, family: int = 4) -> EngineResult: ...

    @abc.abstractmethod
    def delete_chain(self, name: str, family: int = 4) -> EngineResult: ...

    @abc.abstractmethod
    def save(self) -> EngineResult: ...


def classify(proc, not_found=(), exists=()) -> EngineResult:
    """Turn a finished command into an EngineResult using stderr markers."""
    if proc.returncode == 0:
        return EngineResult.success(proc.args)
    stderr = proc.stderr or ""
    if proc.returncode == MISSING_TOOL_RC:
        return EngineResult.failure(MISSING_TOOL, stderr, proc.args)
    lowered = stderr.lower()
    if any(marker in lowered for marker in not_found):
        return EngineResult.failure(NOT_FOUND, stderr, proc.args)
    if any(marker in lowered for marker in exists):
        return EngineResult.failure(EXISTS, stderr, proc.args)
    return EngineResult.failure(REJECTED, stderr or f"exit status {proc.returncode}", proc.args)


SET_MISSING = ("does not exist",)
SET_PRESENT = ("already exists", "set with the same name already exists")
MEMBER_PRESENT = ("already added",)
CHAIN_MISSING = ("no chain/target/match", "does a matching rule exist", "couldn't load target")
CHAIN_PRESENT = ("chain already exists",)


class IptablesEngine(FilterEngine):
    def __init__(self, hash_size: int = constants.DEFAULT_HASH_SIZE,
                 max_elements: int = constants.DEFAULT_MAX_ELEMENTS,
                 timeout: int = constants.DEFAULT_COMMAND_TIMEOUT,
                 ipv6: bool = False,
                 rules_v4_path: str = constants.RULES_V4_PATH,
                 rules_v6_path: str = constants.RULES_V6_PATH,
                 ipsets_path: str = constants.IPSETS_PATH):
        self.hash_size = hash_size
        self.max_elements = max_elements
        self.timeout = timeout
        self.ipv6 = ipv6
        self.rules_v4_path = rules_v4_path
        self.rules_v6_path = rules_v6_path
        self.ipsets_path = ipsets_path

    @classmethod
    def from_config(cls, cfg) -> "IptablesEngine":
        return cls(hash_size=cfg.hash_size, max_elements=cfg.max_elements,
                   timeout=cfg.command_timeout, ipv6=cfg.ipv6,
                   rules_v4_path=cfg.rules_v4_path, rules_v6_path=cfg.rules_v6_path,
                   ipsets_path=cfg.ipsets_path)

    def _run(self, cmd):
        return run_cmd(cmd, timeout=self.timeout)

    @staticmethod
    def _iptables(family: int) -> str:
        return "ip6tables" if family == 6 else "iptables"

    # ------------------------------------------------------------------
    # ipset
    # ------------------------------------------------------------------
    def set_exists(self, name):
        return self._run(["ipset", "list", "-n", name]).returncode == 0

    def create_set(self, name, family=4):
        cmd = ["ipset", "create", name, "hash:net",
               "family", "inet6" if family == 6 else "inet",
               "hashsize", str(self.hash_size), "maxelem", str(self.max_elements),
               "comment"]
        return classify(self._run(cmd), exists=SET_PRESENT)

    def set_members(self, name):
        proc = self._run(["ipset", "list", name])
        if proc.returncode != 0:
            return []
        members, in_members = [], False
        for line in proc.stdout.splitlines():
            if in_members:
                if line.strip():
                    members.append(line.strip())
            elif line.startswith("Members:"):
                in_members = True
        return members

    def test_member(self, name, address):
        return self._run(["ipset", "test", name, address]).returncode == 0

    def add_member(self, name, address, comment=None):
        cmd = ["ipset", "add", name, address]
        if comment:
            cmd += ["comment", comment]
        return classify(self._run(cmd), not_found=SET_MISSING, exists=MEMBER_PRESENT)

    def destroy_set(self, name):
        return classify(self._run(["ipset", "destroy", name]), not_found=SET_MISSING)

    # ------------------------------------------------------------------
    # iptables / ip6tables
    # ------------------------------------------------------------------
    def chain_exists(self, name, family=4):
        return self._run([self._iptables(family), "-n", "-L", name]).returncode == 0

    def create_chain(self, name, family=4):
        return classify(self._run([self._iptables(family), "-N", name]), exists=CHAIN_PRESENT)

    def append_set_rule(self, chain, set_name, direction, action, family=4):
        cmd = [self._iptables(family), "-A", chain,
               "-m", "set", "--match-set", set_name, direction, "-j", action]
        return classify(self._run(cmd), not_found=CHAIN_MISSING)

    def jump_exists(self, hook, chain, family=4):
        return self._run([self._iptables(family), "-C", hook, "-j", chain]).returncode == 0

    def insert_jump(self, hook, chain, position=1, family=4):
        cmd = [self._iptables(family), "-I", hook, str(position), "-j", chain]
        return classify(self._run(cmd), not_found=CHAIN_MISSING)

    def delete_jump(self, hook, chain, family=4):
        return classify(self._run([self._iptables(family), "-D", hook, "-j", chain]),
                        not_found=CHAIN_MISSING)

    def flush_chain(self, name, family=4):
        return classify(self._run([self._iptables(family), "-F", name]), not_found=CHAIN_MISSING)

    def delete_chain(self, name, family=4):
        return classify(self._run([self._iptables(family), "-X", name]), not_found=CHAIN_MISSING)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def save(self):
        # netfilter-persistent only saves sets with its ipset plugin, so the
        # set dump is always written next to the rules
        targets = [(["ipset", "save"], self.ipsets_path)]
        if is_command_available("netfilter-persistent"):
            result = classify(self._run(["netfilter-persistent", "save"]))
            if not result.ok:
                return result
        else:
            rules = [(["iptables-save"], self.rules_v4_path)]
            if self.ipv6:
                rules.append((["ip6tables-save"], self.rules_v6_path))
            targets = rules + targets

        for cmd, path in targets:
            proc = self._run(cmd)
            result = classify(proc)
            if not result.ok:
                return result
            try:
                write_atomic(path, proc.stdout)
            except OSError as e:
                return EngineResult.failure(REJECTED, f"cannot write {path}: {e.strerror}", cmd)
            logger.debug("Saved %s to %s", cmd[0], path)
        return EngineResult.success()


def write_atomic(path: str, content: str) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    tmp_path = f"{path}.tmp"
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_path, path)
    except OSError:
        with contextlib.suppress(OSError):
            os.remove(tmp_path)
        raise
