"""
Capture Session — admitted datagrams plus on-demand mail export.

The session keeps every datagram the classifier admits. Item lists, mails,
CSV and JSON are recomputed from those datagrams on each call: decoding is
stateless, so the raw datagrams are the only thing worth keeping.

  session = CaptureSession()
  session.on_mail_detected(lambda n: print(n.item_count))
  session.start()
  sniffer.on_packet(session.ingest)
  ...
  session.stop()
  print(session.render_csv())
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from albion_mail.data.export import render_csv, render_json
from albion_mail.data.mail import Mail, MailItem
from albion_mail.data.normalizer import MailNormalizer
from albion_mail.protocol.classifier import FrameClassifier
from albion_mail.protocol.photon import MailResult, PhotonDecoder
from albion_mail.sniffer.capture import RawDatagram, extract_datagram

log = logging.getLogger(__name__)


@dataclass
class MailNotice:
    """Live notification for a datagram that decoded to mail."""
    datagram: RawDatagram
    item_count: int
    lines: list[str] = field(default_factory=list)
    mail: Mail | None = None


@dataclass
class SessionSummary:
    packet_count: int
    mail_packet_count: int
    item_count: int
    black_market_count: int
    mail_count: int


MailCallback = Callable[[MailNotice], None]


class CaptureSession:
    """Holds admitted datagrams for one capture and exports mail from them."""

    def __init__(
        self,
        name: str = "",
        classifier: FrameClassifier | None = None,
        decoder: PhotonDecoder | None = None,
        normalizer: MailNormalizer | None = None,
        max_datagrams: int | None = None,
    ):
        self.name = name or time.strftime("%Y%m%d_%H%M%S")
        self.classifier = classifier or FrameClassifier()
        self.decoder = decoder or PhotonDecoder()
        self.normalizer = normalizer or MailNormalizer()
        self.datagrams: deque[RawDatagram] = deque(maxlen=max_datagrams)
        # ingest sequence number of each retained datagram, parallel to datagrams
        self._sequence: deque[int] = deque(maxlen=max_datagrams)
        self._next_sequence = 0
        self.packet_count = 0       # every datagram offered while running
        self.mail_packet_count = 0  # admitted by the classifier
        self.last_summary: SessionSummary | None = None
        self._callbacks: list[MailCallback] = []
        self._running = False
        self._start_time: float = 0
        self._lock = threading.Lock()

    # ---- Session control ----

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Begin accepting datagrams."""
        self._start_time = self._start_time or time.time()
        self._running = True
        log.info("Session '%s' recording", self.name)

    def stop(self) -> SessionSummary:
        """Stop accepting datagrams and compute the session summary once."""
        self._running = False
        summary = self.summarize()
        self.last_summary = summary
        log.info(
            "Session '%s' stopped: %d packets, %d game packets",
            self.name, summary.packet_count, summary.mail_packet_count,
        )
        if summary.item_count:
            log.info("Captured %d mail items in memory", summary.item_count)
        else:
            log.warning("No mail items captured")
        return summary

    def on_mail_detected(self, callback: MailCallback) -> None:
        """Register a callback fired for each live datagram that decodes to mail."""
        self._callbacks.append(callback)

    # ---- Ingestion ----

    def ingest(self, datagram: RawDatagram) -> bool:
        """Classify a datagram and keep it if admitted. Returns the verdict."""
        if not self._running:
            return False

        self.packet_count += 1
        if not self.classifier.classify(
            datagram.src_ip,
            datagram.dst_ip,
            datagram.src_port,
            datagram.dst_port,
            datagram.payload,
        ):
            return False

        self.mail_packet_count += 1
        sequence = self._retain(datagram)
        self._notify(sequence, datagram)
        return True

    def _retain(self, datagram: RawDatagram, sequence: int | None = None) -> int:
        with self._lock:
            if sequence is None:
                sequence = self._next_sequence
            self._next_sequence = max(self._next_sequence, sequence + 1)
            self.datagrams.append(datagram)
            self._sequence.append(sequence)
        return sequence

    def feed_frame(self, frame: bytes, nbytes: int, link_type: int) -> bool:
        """Ingest a raw link-layer frame of which the first nbytes are valid."""
        datagram = extract_datagram(frame[:nbytes], link_type)
        if datagram is None:
            return False
        return self.ingest(datagram)

    def _notify(self, sequence: int, datagram: RawDatagram) -> None:
        result = self.decoder.decode(datagram.payload)
        if not isinstance(result, MailResult):
            return

        log.info("Mail detected: %d items from %s", result.item_count, datagram)
        for line in result.describe():
            log.debug("  %s", line)

        notice = MailNotice(
            datagram=datagram,
            item_count=result.item_count,
            lines=result.describe(),
            mail=self.normalizer.normalize(self.mail_payload(sequence, datagram, result)),
        )
        for cb in self._callbacks:
            try:
                cb(notice)
            except Exception:
                log.exception("Mail callback error")

    # ---- Export (recomputed from raw datagrams) ----

    def _snapshot(self) -> list[RawDatagram]:
        with self._lock:
            return list(self.datagrams)

    def _numbered_snapshot(self) -> list[tuple[int, RawDatagram]]:
        with self._lock:
            return list(zip(self._sequence, self.datagrams))

    def mail_items(self) -> list[MailItem]:
        """Every item from every retained datagram, in capture order."""
        items: list[MailItem] = []
        for datagram in self._snapshot():
            result = self.decoder.decode(datagram.payload)
            if isinstance(result, MailResult):
                items.extend(result.items)
        return items

    def black_market_items(self) -> list[MailItem]:
        return [item for item in self.mail_items() if item.black_market]

    def mail_payload(self, sequence: int, datagram: RawDatagram, result: MailResult) -> dict:
        """Normalizer input for one mail-bearing datagram; sequence is its ingest number."""
        payload = dict(result.parameters)
        payload.update({
            "id": f"{self.name}_{sequence:06d}",
            "timestamp": datagram.timestamp,
            "items": [item.to_dict() for item in result.items],
            "rawMatches": list(result.raw_matches),
            "itemCount": result.item_count,
            "text": "\n".join(result.raw_matches),
        })
        return payload

    def mails(self) -> list[Mail]:
        """Normalized mails for every mail-bearing datagram."""
        mails: list[Mail] = []
        for sequence, datagram in self._numbered_snapshot():
            result = self.decoder.decode(datagram.payload)
            if not isinstance(result, MailResult):
                continue
            mail = self.normalizer.normalize(
                self.mail_payload(sequence, datagram, result), count=False,
            )
            if mail is not None:
                mails.append(mail)
        return mails

    def render_csv(self) -> str:
        """Black-market rows as ``price,amount,item``, no header."""
        return render_csv(self.mail_items())

    def render_json(self) -> str:
        return render_json(self.mails())

    def summarize(self) -> SessionSummary:
        items = self.mail_items()
        return SessionSummary(
            packet_count=self.packet_count,
            mail_packet_count=self.mail_packet_count,
            item_count=len(items),
            black_market_count=sum(1 for item in items if item.black_market),
            mail_count=len(self.mails()),
        )

    # ---- Persistence ----

    def save(self, directory: str | Path = "captures") -> Path:
        """Save retained datagrams to JSON."""
        out_dir = Path(directory)
        out_dir.mkdir(parents=True, exist_ok=True)
        out_path = out_dir / f"{self.name}.json"

        numbered = self._numbered_snapshot()
        data = {
            "name": self.name,
            "start_time": self._start_time,
            "duration": time.time() - self._start_time if self._start_time else 0,
            "packet_count": self.packet_count,
            "mail_packet_count": self.mail_packet_count,
            "sequence": [seq for seq, _ in numbered],
            "datagrams": [d.to_dict() for _, d in numbered],
        }

        out_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        log.info("Session saved: %s (%d datagrams)", out_path, len(numbered))
        return out_path

    @classmethod
    def load(cls, path: str | Path, **kwargs) -> CaptureSession:
        """Load a saved session for export."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))

        session = cls(name=data["name"], **kwargs)
        session._start_time = data.get("start_time", 0)
        session.packet_count = data.get("packet_count", 0)
        session.mail_packet_count = data.get("mail_packet_count", 0)
        datagrams = data.get("datagrams", [])
        sequence = data.get("sequence") or range(len(datagrams))
        for seq, d in zip(sequence, datagrams):
            session._retain(RawDatagram.from_dict(d), seq)

        return session

    def summary(self) -> str:
        """Human-readable session summary."""
        s = self.last_summary or self.summarize()
        return "\n".join([
            f"Session: {self.name}",
            f"  Packets: {s.packet_count} total ({s.mail_packet_count} game)",
            f"  Retained datagrams: {len(self.datagrams)}",
            f"  Mail items: {s.item_count} ({s.black_market_count} black market)",
            f"  Mails: {s.mail_count}",
        ])
