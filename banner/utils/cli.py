#!/usr/bin/env python3
"""
banner command-line interface.

    banner ban <list>       block every address of a list
    banner ban list         show the known lists and their domains
    banner unban <list>     remove the block
    banner status [list]    show which lists are enforced
    banner install | update | uninstall | version | help
"""
import sys
import logging
import argparse
from typing import Optional, Sequence

from banner.core import constants
from banner.core.config import BannerConfig, load_config
from banner.core.exceptions import BannerError, InvalidArgumentError, NetworkError
from banner.core.reconciler import Reconciler
from banner.core.status import StatusReporter
from banner.file_handlers.ban_list import BanListHandler
from banner.network.firewall_handler import FilterEngine, IptablesEngine
from banner.utils.installer import Installer, ensure_root, require_tools
from banner.utils.logger import colorize, setup_logging, use_color

logger = logging.getLogger("banner.cli")

EPILOG = f"""\
Examples:
  {constants.SCRIPT_NAME} install
  {constants.SCRIPT_NAME} ban speedtest
  {constants.SCRIPT_NAME} ban iranian --action reject
  {constants.SCRIPT_NAME} unban speedtest
  {constants.SCRIPT_NAME} ban list
  {constants.SCRIPT_NAME} status

Notes:
  - ban, unban, status, install, update and uninstall must be run as root
  - ban lists are downloaded from the repository unless configured otherwise
  - rules and sets are saved so they survive a reboot
"""


class BannerArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that reports usage errors as InvalidArgumentError (exit 1)."""

    def error(self, message):
        self.print_usage(sys.stderr)
        raise InvalidArgumentError(message)


def build_arg_parser() -> argparse.ArgumentParser:
    p = BannerArgumentParser(
        prog=constants.SCRIPT_NAME,
        description="Simple website blocking tool using iptables and ipset",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument("--config", "-c", help=f"Config file (default {constants.CONFIG_PATH})")
    p.add_argument("--verbose", "-v", action="store_true", help="Enable debug output")
    p.add_argument("--quiet", "-q", action="store_true", help="Only print errors")
    p.add_argument("--strict", action="store_true", help="Fail when any domain does not resolve")
    p.add_argument("--no-color", action="store_true", help="Disable colored output")
    sub = p.add_subparsers(dest="command", metavar="<command>")

    pb = sub.add_parser("ban", help="Block the sites of a list, or 'ban list' to show all lists")
    pb.add_argument("target", metavar="<type|list>", help="List id to ban, or 'list'")
    pb.add_argument("--action", choices=[a.lower() for a in constants.BAN_ACTIONS],
                    help="Rule action for a new ban (default from config)")

    pu = sub.add_parser("unban", help="Remove blocks for a list")
    pu.add_argument("target", metavar="<type>", help="List id to unban")

    ps = sub.add_parser("status", help="Show current ban status")
    ps.add_argument("target", metavar="<type>", nargs="?", help="Only this list")

    sub.add_parser("install", help="Install host dependencies and default configuration")
    sub.add_parser("update", help="Update to the latest version")
    sub.add_parser("uninstall", help="Remove all ban rules and the installation")
    sub.add_parser("version", help="Show the version")
    sub.add_parser("help", help="Show this help message")
    return p


def build_engine(cfg: BannerConfig) -> FilterEngine:
    return IptablesEngine.from_config(cfg)


def build_reconciler(cfg: BannerConfig, engine: FilterEngine) -> Reconciler:
    return Reconciler(cfg, engine)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
def show_ban_lists(cfg: BannerConfig, color: bool) -> None:
    logger.info("Available ban lists:")
    handler = BanListHandler(timeout=cfg.fetch_timeout)
    for ban_list in cfg.lists:
        print(f"\n{colorize(ban_list.list_id + ':', 'BLUE', color)}")
        try:
            fetched = handler.fetch(ban_list)
        except NetworkError as e:
            logger.warning("Failed to fetch list: %s", e)
            continue
        for domain in fetched.domains:
            print(domain)


def cmd_ban(args, cfg, engine, color):
    if args.target == "list":
        show_ban_lists(cfg, color)
        return
    ensure_root("ban")
    cfg.get_list(args.target)
    require_tools()
    build_reconciler(cfg, engine).ban(args.target, action=args.action)


def cmd_unban(args, cfg, engine, color):
    ensure_root("unban")
    cfg.get_list(args.target)
    require_tools()
    build_reconciler(cfg, engine).unban(args.target)


def cmd_status(args, cfg, engine, color):
    ensure_root("status")
    if args.target:
        cfg.get_list(args.target)
    reporter = StatusReporter(cfg, engine)
    logger.info("Checking ban status...")
    statuses = [reporter.status(args.target)] if args.target else reporter.status_all()
    for status in statuses:
        state = colorize(status.state, "GREEN" if status.active else "YELLOW", color)
        print(f"\n{colorize(status.list_id, 'BLUE', color)} status: {state}")
        for family, members in sorted(status.members.items()):
            if len(status.members) > 1:
                print(f"  IPv{family}:")
            if not members:
                print("  (no members)")
            for member in members:
                print(f"  {member}")


def cmd_install(args, cfg, engine, color):
    ensure_root("install")
    Installer().install()


def cmd_update(args, cfg, engine, color):
    ensure_root("update")
    Installer().update()


def cmd_uninstall(args, cfg, engine, color):
    ensure_root("uninstall")
    Installer().uninstall(build_reconciler(cfg, engine))


def cmd_version(args, cfg, engine, color):
    print(f"{constants.SCRIPT_NAME} {constants.__version__}")


COMMANDS = {
    "ban": cmd_ban,
    "unban": cmd_unban,
    "status": cmd_status,
    "install": cmd_install,
    "update": cmd_update,
    "uninstall": cmd_uninstall,
    "version": cmd_version,
}


def main(argv: Optional[Sequence[str]] = None, engine: Optional[FilterEngine] = None) -> int:
    """Run one banner command; returns the process exit status."""
    parser = build_arg_parser()
    setup_logging()
    try:
        args = parser.parse_args(argv)
    except InvalidArgumentError as e:
        logger.error("%s", e)
        return 1

    if args.command in (None, "help"):
        parser.print_help()
        return 0

    try:
        cfg = load_config(args.config)
        if args.strict:
            cfg = cfg.replace(strict_resolution=True)
        setup_logging(verbose=args.verbose, quiet=args.quiet,
                      log_file=cfg.log_file, no_color=args.no_color)
        color = use_color(no_color=args.no_color)
        COMMANDS[args.command](args, cfg, engine or build_engine(cfg), color)
    except BannerError as e:
        logger.error("%s", e)
        return 1
    except KeyboardInterrupt:
        logger.error("Interrupted")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
