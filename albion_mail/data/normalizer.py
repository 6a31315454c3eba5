"""
Albion Mail — Mail Normalizer

Turns a loosely-keyed decoded mail payload into a Mail. Upstream key names
are not known for sure, so every field probes a list of candidate keys and
falls back to a default.
"""

from __future__ import annotations

import itertools
import logging
import random
import string
import time
from datetime import datetime, timezone
from typing import Any, Mapping

from albion_mail.data.mail import Mail

log = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_lowercase + string.digits
_id_counter = itertools.count(1)


def generate_mail_id() -> str:
    """Time-based id with a short random suffix, unique within the process."""
    millis = int(time.time() * 1000)
    suffix = "".join(random.choices(_ID_ALPHABET, k=6))
    return f"mail_{millis}_{next(_id_counter):x}{suffix}"


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a datetime, epoch seconds, or ISO-8601 text. None if unparseable."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value, tz=timezone.utc)
        if isinstance(value, str):
            text = value.strip()
            if text.isdigit():
                return datetime.fromtimestamp(int(text), tz=timezone.utc)
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            return datetime.fromisoformat(text)
    except (ValueError, OverflowError, OSError):
        return None
    return None


class MailNormalizer:
    """Resolve canonical Mail fields from a decoded payload."""

    ID_KEYS = ("id", "mailId", "messageId")
    TIMESTAMP_KEYS = ("timestamp", "time", "date", "sentTime")
    SENDER_KEYS = ("sender", "from", "senderName")
    SUBJECT_KEYS = ("subject", "title")
    CONTENT_KEYS = ("content", "message", "body", "text")
    ATTACHMENT_KEYS = ("attachments", "items", "rewards")

    DEFAULT_SENDER = "Unknown"
    DEFAULT_SUBJECT = "No Subject"

    def __init__(self):
        self.normalized = 0
        self.dropped = 0

    def normalize(self, data: Mapping[str, Any], count: bool = True) -> Mail | None:
        """Build a Mail, or None when there is neither content nor subject.

        With count=False the normalized/dropped counters are left untouched,
        for re-normalizing payloads that were already counted once.
        """
        try:
            subject = self._field(data, self.SUBJECT_KEYS)
            content = self._field(data, self.CONTENT_KEYS) or ""

            if not content and subject is None:
                if count:
                    self.dropped += 1
                return None

            mail = Mail(
                id=self._field(data, self.ID_KEYS) or generate_mail_id(),
                timestamp=self._timestamp(data) or datetime.now(timezone.utc),
                sender=self._field(data, self.SENDER_KEYS) or self.DEFAULT_SENDER,
                subject=subject or self.DEFAULT_SUBJECT,
                content=content,
                attachments=self._attachments(data),
            )
        except Exception as e:
            log.warning("Could not normalize mail payload: %s", e)
            if count:
                self.dropped += 1
            return None

        if count:
            self.normalized += 1
        return mail

    @staticmethod
    def _field(data: Mapping[str, Any], keys: tuple[str, ...]) -> str | None:
        for key in keys:
            value = data.get(key)
            if value:
                return str(value)
        return None

    def _timestamp(self, data: Mapping[str, Any]) -> datetime | None:
        for key in self.TIMESTAMP_KEYS:
            value = data.get(key)
            if not value:
                continue
            parsed = parse_timestamp(value)
            if parsed is not None:
                return parsed
        return None

    def _attachments(self, data: Mapping[str, Any]) -> list[Any] | None:
        for key in self.ATTACHMENT_KEYS:
            value = data.get(key)
            if value and isinstance(value, (list, tuple)):
                return list(value)
        return None
