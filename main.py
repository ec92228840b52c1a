#!/usr/bin/env python3
"""
Banner - Block speed-test and other site lists at the firewall.

Resolves the domains of a named list, loads the addresses into an ipset
and drops traffic to them with an iptables chain. The rules are saved so
they survive a reboot.

Usage:
    sudo python main.py ban speedtest    # Block the speedtest list
    sudo python main.py unban speedtest  # Remove the block
    sudo python main.py status           # Show which lists are blocked
"""
import sys

from banner.utils.cli import main

if __name__ == "__main__":
    sys.exit(main())
