#!/usr/bin/env python3
import logging
from typing import Sequence

from banner.core import constants
from banner.core.exceptions import FilterEngineError, InvalidArgumentError
from banner.network.firewall_handler import EXISTS, NOT_FOUND, FilterEngine

logger = logging.getLogger("banner.rules")


class RuleInstaller:
    """Installs and removes the per-list chain and its jump rules."""

    def __init__(self, engine: FilterEngine, jump_position: int = constants.DEFAULT_JUMP_POSITION):
        self.engine = engine
        self.jump_position = jump_position

    def exists(self, name: str, family: int = 4) -> bool:
        return self.engine.chain_exists(name, family)

    def ensure_chain(self, name: str, set_name: str, action: str,
                     hooks: Sequence[str] = constants.DEFAULT_HOOKS, family: int = 4) -> bool:
        """Create ``name`` matching ``set_name`` with ``action`` and hook it in.

        An existing chain is left untouched, whatever its action. Returns
        True when the chain was created.
        """
        action = action.upper()
        if action not in constants.ACTIONS:
            raise InvalidArgumentError(f"Unknown action: {action}")
        if self.engine.chain_exists(name, family):
            logger.debug("Chain %s already exists", name)
            return False

        result = self.engine.create_chain(name, family)
        if not result.ok and result.kind != EXISTS:
            result.raise_for_error(f"Failed to create chain {name}")

        try:
            self._fill_chain(name, set_name, action, hooks, family)
        except FilterEngineError:
            logger.warning("Removing partially installed chain %s", name)
            self.remove_chain(name, family=family)
            raise

        logger.info("Installed chain %s (%s) on %s", name, action, ", ".join(hooks))
        return True

    def _fill_chain(self, name, set_name, action, hooks, family):
        directions = ["dst"]
        if "INPUT" in hooks:
            directions.append("src")
        for direction in directions:
            result = self.engine.append_set_rule(name, set_name, direction, action, family)
            result.raise_for_error(f"Failed to add {action} rule to {name}")

        # jumps go last: a chain without all of them is half-built
        for hook in hooks:
            if self.engine.jump_exists(hook, name, family):
                continue
            result = self.engine.insert_jump(hook, name, self.jump_position, family)
            result.raise_for_error(f"Failed to attach {name} to {hook}")

    def is_attached(self, name: str, hooks: Sequence[str] = constants.DEFAULT_HOOKS,
                    family: int = 4) -> bool:
        """True when ``name`` exists and every hook jumps to it."""
        if not self.engine.chain_exists(name, family):
            return False
        return all(self.engine.jump_exists(hook, name, family) for hook in hooks)

    def remove_chain(self, name: str, hooks: Sequence[str] = constants.GLOBAL_CHAINS,
                     family: int = 4) -> bool:
        """Detach, flush and delete ``name``. Returns False when it did not exist."""
        for hook in hooks:
            # a list may have been banned with more than one jump per hook
            while True:
                result = self.engine.delete_jump(hook, name, family)
                if result.ok:
                    continue
                if result.kind == NOT_FOUND:
                    break
                result.raise_for_error(f"Failed to detach {name} from {hook}")

        if not self.engine.chain_exists(name, family):
            return False

        result = self.engine.flush_chain(name, family)
        if not result.ok and result.kind != NOT_FOUND:
            result.raise_for_error(f"Failed to flush chain {name}")
        result = self.engine.delete_chain(name, family)
        if not result.ok and result.kind != NOT_FOUND:
            result.raise_for_error(f"Failed to delete chain {name}")
        logger.info("Removed chain %s", name)
        return True

    def persist(self) -> None:
        """Save the engine's rules and sets so they survive a reboot."""
        result = self.engine.save()
        result.raise_for_error("Failed to save firewall state")
        logger.debug("Saved firewall state")
