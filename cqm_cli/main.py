"""Argument parsing and dispatch for the cqm CLI."""

from __future__ import annotations

import logging
from argparse import ArgumentParser
from typing import Sequence

from .commands import COMMANDS


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(prog="cqm", description="Converge CQ/AEM packages and OSGi configurations")
    parser.add_argument("--config", help="Settings file (default: $CQM_CONFIG or ./config/config.toml)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)
    for name, command in COMMANDS.items():
        sub = subparsers.add_parser(name, help=command.help)
        command.configure(sub)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    command = COMMANDS[args.command]()
    return command.run(args)
