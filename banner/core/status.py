#!/usr/bin/env python3
import logging
import dataclasses
from typing import Dict, List

from banner.core.address_sets import AddressSetManager
from banner.core.config import BannerConfig
from banner.core.rules import RuleInstaller
from banner.network.firewall_handler import FilterEngine

logger = logging.getLogger("banner.status")

ACTIVE = "active"
INACTIVE = "inactive"


@dataclasses.dataclass
class ListStatus:
    list_id: str
    active: bool
    members: Dict[int, List[str]] = dataclasses.field(default_factory=dict)

    @property
    def state(self) -> str:
        return ACTIVE if self.active else INACTIVE


class StatusReporter:
    """Read-only view of which lists are enforced; never mutates the engine."""

    def __init__(self, config: BannerConfig, engine: FilterEngine):
        self.config = config
        self.sets = AddressSetManager(engine)
        self.rules = RuleInstaller(engine)

    def status(self, list_id: str) -> ListStatus:
        ban_list = self.config.get_list(list_id)
        result = ListStatus(list_id=list_id, active=False)
        for family in self.config.families:
            if not self.rules.is_attached(ban_list.chain_name(), ban_list.hooks, family):
                continue
            result.active = True
            result.members[family] = self.sets.members(ban_list.set_name(family))
        logger.debug("%s is %s", list_id, result.state)
        return result

    def status_all(self) -> List[ListStatus]:
        return [self.status(list_id) for list_id in self.config.list_ids]
