#!/usr/bin/env python3
"""
fleet-kernel CLI
================

Command-line interface for the fleet kernel over a world snapshot.

Usage:
    fleet-kernel --snapshot world.yaml scan              # Discover and authorize
    fleet-kernel --snapshot world.yaml status            # Ledger and fleet state
    fleet-kernel --snapshot world.yaml schedule weaken.js n00dles -t 8
    fleet-kernel --snapshot world.yaml tick -n 3         # Fleet manager passes
    fleet-kernel --snapshot world.yaml path CSEC         # Route to a node
    fleet-kernel --snapshot world.yaml run               # Run in foreground

    fleet-kernel config show                             # Show configuration
    fleet-kernel config init                             # Write default config
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional

from fleet_kernel.config import KernelConfig, load_kernel_config, save_kernel_config
from fleet_kernel.daemon import KernelDaemon, build_daemon
from fleet_kernel.errors import HostError, KernelError
from fleet_kernel.models.workload import Workload, total_threads


def _dump(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _daemon(args: argparse.Namespace) -> KernelDaemon:
    if args.snapshot is None:
        raise SystemExit("error: --snapshot is required for this command")
    return build_daemon(args.snapshot, load_kernel_config(args.config))


def cmd_scan(args: argparse.Namespace) -> int:
    """Discover the network and try to authorize every node."""
    daemon = _daemon(args)
    obs = daemon.scan()

    if args.json:
        _dump(obs.to_dict())
        return 0

    print(f"Discovered {len(obs.discovered)} nodes from {daemon.observer.root}")
    for name in obs.discovered:
        node = daemon.ledger.get(name)
        if node is None:
            continue
        print(f"  {name:<24} {node.access.value:<11} {node.total_capacity:>10.0f}")
    if obs.waiting:
        print("\nWaiting on access:")
        for name, reason in obs.waiting.items():
            print(f"  {name}: {reason}")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    """Show ledger, access and fleet state."""
    daemon = _daemon(args)
    daemon.scan()
    status = daemon.get_status()

    if args.json:
        _dump(status)
        return 0

    ledger = status["ledger"]
    print(f"Nodes: {ledger['nodes']}  "
          f"Capacity: {ledger['committed']:.0f}/{ledger['total_capacity']:.0f}")
    for row in status["nodes"]:
        print(f"  {row['name']:<24} {row['kind']:<10} {row['access']:<11} "
              f"free {row['free']:>10.0f} of {row['total_capacity']:.0f}")

    if status["waiting"]:
        print("\nWaiting:")
        for line in status["waiting"].values():
            print(f"  {line}")

    fleet = status["fleet"]
    print(f"\nFleet: {len(fleet['nodes'])} purchased nodes"
          f"{' (halted)' if fleet['halted'] else ''}")
    for entry in fleet["nodes"]:
        print(f"  {entry['name']:<24} {entry['capacity']:>10}")
    print(f"Funds: {daemon.host.current_funds():.0f}")
    return 0


def cmd_schedule(args: argparse.Namespace) -> int:
    """Place a workload on the network."""
    daemon = _daemon(args)
    daemon.scan()

    ram = args.ram
    if ram is None:
        script_ram = getattr(daemon.host, "script_ram", None)
        try:
            ram = script_ram(args.script) if script_ram else None
        except HostError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
    if ram is None:
        print("Error: --ram is required for this host", file=sys.stderr)
        return 1

    workload = Workload(
        target=args.target,
        script=args.script,
        threads=args.threads,
        ram_per_thread=ram,
        args=tuple(args.args),
    )

    if args.spread:
        placements = daemon.scheduler.launch_spread(workload)
        if args.json:
            _dump([p.to_dict() for p in placements])
        else:
            for p in placements:
                print(f"{p.node}: {workload.script} x{p.threads} (handle {p.handle})")
            print(f"{total_threads(placements)}/{workload.threads} threads placed")
        return 0 if placements else 1

    result = daemon.schedule(workload, launch=not args.dry_run)
    if args.json:
        _dump(result.to_dict())
    elif result:
        print(f"{result.node}: {workload.script} x{result.threads}/{workload.threads} "
              f"({result.ram:.2f} reserved)")
    else:
        print(result.describe())
    return 0 if result else 1


def cmd_tick(args: argparse.Namespace) -> int:
    """Run fleet manager passes."""
    daemon = _daemon(args)
    results = [daemon.tick() for _ in range(args.count)]

    if args.json:
        _dump([r.to_dict() for r in results])
        return 0

    for i, r in enumerate(results, 1):
        bought = ", ".join(r.purchased) or "-"
        upgraded = ", ".join(r.upgraded) or "-"
        print(f"tick {i}: bought {bought}; upgraded {upgraded}; {r.reason or 'ok'}")
    print(f"Funds left: {daemon.host.current_funds():.0f}")
    return 0


def cmd_path(args: argparse.Namespace) -> int:
    """Print the route from one node to another."""
    daemon = _daemon(args)
    source = args.source or daemon.observer.root
    path = daemon.scanner.shortest_path(source, args.target)

    if args.json:
        _dump(path)
    elif path:
        print(" -> ".join(path))
    else:
        print(f"{args.target} is not reachable from {source}")
    return 0 if path else 1


def cmd_run(args: argparse.Namespace) -> int:
    """Run the daemon in the foreground."""
    daemon = _daemon(args)
    try:
        daemon.run()
    except KeyboardInterrupt:
        daemon.stop()
    return 0


def cmd_config_show(args: argparse.Namespace) -> int:
    """Show the effective configuration."""
    config = load_kernel_config(args.config)
    _dump(config.to_dict())
    return 0


def cmd_config_init(args: argparse.Namespace) -> int:
    """Write a default configuration file."""
    path = save_kernel_config(KernelConfig(), args.config)
    print(f"Wrote {path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fleet-kernel",
        description="Fleet kernel: discovery, placement and fleet management",
    )
    parser.add_argument("--snapshot", type=Path, default=None,
                        help="World snapshot YAML")
    parser.add_argument("--config", type=Path, default=None,
                        help="Kernel configuration YAML")
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    parser.add_argument("--log-level", default="WARNING",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Log level")

    subparsers = parser.add_subparsers(dest="command", help="Command")

    # scan
    p = subparsers.add_parser("scan", help="Discover and authorize nodes")
    p.set_defaults(func=cmd_scan)

    # status
    p = subparsers.add_parser("status", help="Show kernel status")
    p.set_defaults(func=cmd_status)

    # schedule
    p = subparsers.add_parser("schedule", help="Place a workload")
    p.add_argument("script", help="Script to run")
    p.add_argument("target", help="Target node")
    p.add_argument("--threads", "-t", type=int, default=1,
                   help="Requested thread count")
    p.add_argument("--ram", type=float, default=None,
                   help="Memory per thread (default: ask the host)")
    p.add_argument("--spread", action="store_true",
                   help="Split the threads over several nodes")
    p.add_argument("--dry-run", action="store_true",
                   help="Reserve capacity without launching")
    p.add_argument("args", nargs="*", help="Script arguments")
    p.set_defaults(func=cmd_schedule)

    # tick
    p = subparsers.add_parser("tick", help="Run fleet manager passes")
    p.add_argument("--count", "-n", type=int, default=1, help="Number of ticks")
    p.set_defaults(func=cmd_tick)

    # path
    p = subparsers.add_parser("path", help="Route between two nodes")
    p.add_argument("target", help="Destination node")
    p.add_argument("--from", dest="source", default=None,
                   help="Start node (default: home)")
    p.set_defaults(func=cmd_path)

    # run
    p = subparsers.add_parser("run", help="Run the daemon in the foreground")
    p.set_defaults(func=cmd_run)

    # config
    p = subparsers.add_parser("config", help="Configuration management")
    config_sub = p.add_subparsers(dest="config_command")

    pp = config_sub.add_parser("show", help="Show effective configuration")
    pp.set_defaults(func=cmd_config_show)

    pp = config_sub.add_parser("init", help="Write default configuration")
    pp.set_defaults(func=cmd_config_init)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        return args.func(args)
    except KernelError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
