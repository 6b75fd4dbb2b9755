#!/usr/bin/env python3
"""
sniwatch console

A headless operator console for the appliance's live SNI stream. It connects
to the log websocket, batches lines into the raw and domain windows, and
prints newly committed connections that pass the filter, tagged with the
owning ASN when one is registered.

Usage:
    sniwatch tail --filter "tcp+domain:youtube" --show-asn
    sniwatch variants rr1.sn-abc.googlevideo.com
    sniwatch promote rr1.sn-abc.googlevideo.com --pick 2
    sniwatch asn add AS15169 Google 142.250.0.0/15 2a00:1450::/32
    sniwatch asn lookup 142.250.74.14:443
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from sniwatch.base.config import SniWatchConfig, get_config, setup_logging
from sniwatch.base.exceptions import ConfigError
from sniwatch.clients.registrar import DomainRegistrar
from sniwatch.data.storage import JsonFileStore
from sniwatch.enrich.asn import AsnClassifier, get_asn_classifier
from sniwatch.stream.batcher import Channel, StreamBatcher
from sniwatch.stream.domains import domain_variants
from sniwatch.stream.events import ConnectionEvent, parse_lines
from sniwatch.stream.filter import apply_filter, compile_query
from sniwatch.stream.source import LineSource

logger = logging.getLogger("sniwatch.console")


def format_event(event: ConnectionEvent, classifier: Optional[AsnClassifier] = None) -> str:
    marker = " TARGET" if event.is_target else ""
    row = f"{event.timestamp}  {event.protocol.value}{marker}  {event.domain}  {event.source} -> {event.destination}"
    if classifier is not None:
        record = classifier.classify(event.destination)
        if record is not None:
            row += f"  [{record.name}]"
    return row


class ConsoleSession:
    """Wires LineSource -> StreamBatcher -> filter -> stdout."""

    def __init__(
        self,
        config: SniWatchConfig,
        query: str = "",
        *,
        raw: bool = False,
        classifier: Optional[AsnClassifier] = None,
        out=None,
    ):
        self.config = config
        self.query = compile_query(query)
        self.raw = raw
        self.classifier = classifier
        self.out = out or sys.stdout

        store = JsonFileStore(config.storage.snapshot_path)
        self.batcher = StreamBatcher.from_config(config, store)
        self.batcher.subscribe(self._on_flush)
        self.source = LineSource(
            config.stream.url,
            on_line=self.batcher.push,
            on_error=lambda _error: self.batcher.mark_error(),
            reconnect_delay=config.stream.reconnect_delay,
        )
        self.stop_task: Optional[asyncio.Task] = None

    def _on_flush(self, channel: Channel, lines: List[str]) -> None:
        if self.raw:
            if channel is Channel.LOGS:
                for line in lines:
                    print(line, file=self.out)
            return
        if channel is Channel.DOMAINS:
            for event in apply_filter(self.query, parse_lines(lines)):
                print(format_event(event, self.classifier), file=self.out)

    def replay_window(self) -> None:
        """Print what the warm-started window already holds."""
        channel = Channel.LOGS if self.raw else Channel.DOMAINS
        self._on_flush(channel, self.batcher.lines(channel))

    async def run(self) -> None:
        self.batcher.start()
        try:
            await self.source.run()
        finally:
            self.batcher.close()

    async def stop(self) -> None:
        await self.source.close()
        self.batcher.close()

    def request_stop(self) -> asyncio.Task:
        """Schedule stop() from a signal handler; repeated signals share one task."""
        if self.stop_task is None:
            self.stop_task = asyncio.get_running_loop().create_task(self.stop())
        return self.stop_task


async def _tail(args: argparse.Namespace, config: SniWatchConfig) -> int:
    classifier = get_asn_classifier(config) if args.show_asn else None
    session = ConsoleSession(config, args.filter or "", raw=args.raw, classifier=classifier)

    if args.replay:
        session.replay_window()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, session.request_stop)
        except (NotImplementedError, RuntimeError):
            pass

    logger.info(f"Streaming from {config.stream.url}")
    await session.run()
    if session.stop_task is not None:
        await session.stop_task
    return 0


def _variants(args: argparse.Namespace) -> int:
    variants = domain_variants(args.domain)
    if not variants:
        print(f"No promotable variants for {args.domain!r}", file=sys.stderr)
        return 1
    for index, variant in enumerate(variants):
        print(f"{index}: {variant}")
    return 0


async def _promote(args: argparse.Namespace, config: SniWatchConfig) -> int:
    variants = domain_variants(args.domain)
    if not variants:
        print(f"No promotable variants for {args.domain!r}", file=sys.stderr)
        return 1
    if not 0 <= args.pick < len(variants):
        print(f"--pick must be between 0 and {len(variants) - 1}", file=sys.stderr)
        return 1

    async with DomainRegistrar.from_config(config.api) as registrar:
        result = await registrar.add_domain(variants[args.pick])

    if result.ok:
        print(result.message)
        return 0
    print(f"Failed to add domain: {result.message}", file=sys.stderr)
    return 1


def _asn(args: argparse.Namespace, config: SniWatchConfig) -> int:
    classifier = get_asn_classifier(config)

    if args.asn_command == "add":
        record = classifier.register(args.id, args.name, args.prefixes)
        if record is None:
            print(f"Error: invalid ASN record {args.id!r}", file=sys.stderr)
            return 1
        print(f"{record.id}: {record.name} ({len(record.prefixes)} prefixes)")
    elif args.asn_command == "lookup":
        record = classifier.classify(args.ip)
        if record is None:
            print(f"{args.ip}: no matching ASN")
            return 1
        print(f"{args.ip}: {record.id} {record.name}")
    elif args.asn_command == "list":
        for record in classifier.all_records().values():
            print(f"{record.id}\t{record.name}\t{', '.join(record.prefixes)}")
    elif args.asn_command == "clear":
        classifier.clear()
        print("ASN table cleared")
    return 0


def build_argparser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sniwatch", description="Live SNI stream console")
    sub = parser.add_subparsers(dest="command", required=True)

    tail = sub.add_parser("tail", help="Stream connections from the appliance")
    tail.add_argument("--filter", "-f", default="", help="Query, e.g. 'tcp+domain:youtube+domain:vimeo'")
    tail.add_argument("--raw", action="store_true", help="Print raw log lines instead of parsed connections")
    tail.add_argument("--show-asn", action="store_true", help="Tag rows with the destination's ASN")
    tail.add_argument("--replay", action="store_true", help="Print the stored window before streaming")

    variants = sub.add_parser("variants", help="List promotable suffixes of a domain")
    variants.add_argument("domain")

    promote = sub.add_parser("promote", help="Add a domain variant to the manual domain list")
    promote.add_argument("domain")
    promote.add_argument("--pick", type=int, default=0, help="Index into the variant list (0 = most specific)")

    asn = sub.add_parser("asn", help="Manage the local ASN table")
    asn_sub = asn.add_subparsers(dest="asn_command", required=True)
    add = asn_sub.add_parser("add", help="Register or overwrite an ASN")
    add.add_argument("id")
    add.add_argument("name")
    add.add_argument("prefixes", nargs="+", metavar="PREFIX")
    lookup = asn_sub.add_parser("lookup", help="Classify an IP (port allowed)")
    lookup.add_argument("ip")
    asn_sub.add_parser("list", help="Show registered ASNs")
    asn_sub.add_parser("clear", help="Remove every registered ASN")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_argparser().parse_args(argv)

    try:
        config = get_config()
    except ConfigError as e:
        print(f"Configuration error: {e.message} {e.details}", file=sys.stderr)
        return 2
    setup_logging(config)

    try:
        if args.command == "tail":
            return asyncio.run(_tail(args, config))
        if args.command == "variants":
            return _variants(args)
        if args.command == "promote":
            return asyncio.run(_promote(args, config))
        if args.command == "asn":
            return _asn(args, config)
    except KeyboardInterrupt:
        return 130
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
