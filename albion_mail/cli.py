"""
Albion Mail — Command Line Entry Point

Sniffs Albion Online traffic, prints mail as it is detected, and exports
black-market CSV / mail JSON when the capture ends.

Usage (live capture needs root/admin):
    albion-mail                                  # live, auto interface
    albion-mail --iface eth0 --csv bm.csv        # export CSV on exit
    albion-mail --pcap capture.pcap --json mails.json
    albion-mail --replay captures/20260101_120000.json --print-csv
    albion-mail --list-interfaces
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from rich.console import Console
from rich.table import Table
from rich.text import Text

from albion_mail.protocol.classifier import FrameClassifier
from albion_mail.sniffer.capture import CaptureError, MailSniffer, list_interfaces
from albion_mail.sniffer.session import CaptureSession, MailNotice

log = logging.getLogger(__name__)

console = Console(stderr=True)


def _print_notice(notice: MailNotice) -> None:
    """Default mail callback: one header line plus one line per item."""
    text = Text()
    text.append("MAIL ", style="bold yellow")
    text.append(f"{notice.item_count} items ", style="bold")
    text.append(f"from {notice.datagram.src_ip}:{notice.datagram.src_port}", style="bright_black")
    console.print(text)
    for line in notice.lines:
        style = "magenta" if "@ BM" in line else "cyan"
        console.print(f"   {line}", style=style, markup=False)


def _print_summary(session: CaptureSession) -> None:
    s = session.last_summary or session.summarize()
    table = Table(title=f"Session {session.name}", show_header=False)
    table.add_column("metric", style="bold")
    table.add_column("value", justify="right")
    table.add_row("Packets", str(s.packet_count))
    table.add_row("Albion packets", str(s.mail_packet_count))
    table.add_row("Mail items", str(s.item_count))
    table.add_row("Black market items", str(s.black_market_count))
    table.add_row("Mails", str(s.mail_count))
    console.print(table)


def _export(session: CaptureSession, args: argparse.Namespace) -> None:
    if args.csv:
        out = Path(args.csv)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(session.render_csv(), encoding="utf-8")
        log.info("Wrote CSV: %s", out)
    if args.json:
        out = Path(args.json)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(session.render_json(), encoding="utf-8")
        log.info("Wrote JSON: %s", out)
    if args.print_csv:
        sys.stdout.write(session.render_csv() + "\n")
    if args.save:
        session.save(args.save)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Albion Online mail sniffer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--iface", help="Network interface to sniff on")
    source.add_argument("--pcap", help="Read packets from a pcap file instead of live capture")
    source.add_argument("--replay", help="Load a saved session JSON and export it")
    parser.add_argument("--timeout", type=int, default=0,
                        help="Capture timeout in seconds (0 = until Ctrl+C)")
    parser.add_argument("--count", type=int, default=0,
                        help="Stop after this many packets (0 = unlimited)")
    parser.add_argument("--port", type=int, action="append", dest="ports",
                        help="Game port (repeatable, replaces the defaults)")
    parser.add_argument("--server-prefix", action="append", dest="server_prefixes",
                        help="Server IP prefix (repeatable, replaces the defaults)")
    parser.add_argument("--max-datagrams", type=int, default=None,
                        help="Keep at most this many datagrams (oldest dropped)")
    parser.add_argument("--csv", help="Write black-market CSV to this file")
    parser.add_argument("--json", help="Write mail JSON to this file")
    parser.add_argument("--print-csv", action="store_true",
                        help="Write black-market CSV to stdout")
    parser.add_argument("--save", help="Save the session to this directory")
    parser.add_argument("--list-interfaces", action="store_true",
                        help="List capture interfaces and exit")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable debug logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        if args.list_interfaces:
            for i, name in enumerate(list_interfaces()):
                console.print(f"{i}: {name}")
            return 0

        classifier = FrameClassifier(ports=args.ports, server_prefixes=args.server_prefixes)

        if args.replay:
            session = CaptureSession.load(
                args.replay, classifier=classifier, max_datagrams=args.max_datagrams,
            )
            _print_summary(session)
            _export(session, args)
            return 0

        session = CaptureSession(classifier=classifier, max_datagrams=args.max_datagrams)
        session.on_mail_detected(_print_notice)

        sniffer = MailSniffer(iface=args.iface, offline=args.pcap)
        sniffer.on_packet(session.ingest)

        session.start()
        try:
            if not args.pcap:
                log.info("Listening for Albion packets, press Ctrl+C to stop")
            sniffer.start(count=args.count, timeout=args.timeout or None)
        finally:
            session.stop()
            _print_summary(session)
            _export(session, args)
    except CaptureError as e:
        log.error("%s", e)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
