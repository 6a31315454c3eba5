"""
Albion Mail — Exporters

CSV: black-market items only, ``price,amount,item`` rows, no header.
JSON: full mail list, indented.
"""

from __future__ import annotations

import json
from typing import Iterable

from albion_mail.data.mail import Mail, MailItem


def escape_csv(value: object) -> str:
    """Quote a field if it contains a comma, double quote or newline."""
    text = value if isinstance(value, str) else str(value)
    if "," in text or '"' in text or "\n" in text:
        return '"' + text.replace('"', '""') + '"'
    return text


def csv_row(item: MailItem) -> str:
    return ",".join((str(item.price), str(item.amount), escape_csv(item.item)))


def render_csv(items: Iterable[MailItem]) -> str:
    """Render black-market items as CSV rows (other items are skipped)."""
    return "\n".join(csv_row(item) for item in items if item.black_market)


def render_json(mails: Iterable[Mail]) -> str:
    return json.dumps([m.to_dict() for m in mails], indent=2, ensure_ascii=False, default=str)
