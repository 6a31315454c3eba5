"""
Albion Mail — Mail Records

MailItem is one ``amount|ITEM|price|single[|location]`` listing.
Mail is the normalized record exported to JSON.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class MailItem:
    """A single item listing found in a mail body."""
    amount: int
    item: str            # e.g. "T4_BAG" or "T5_MAIN_SWORD@2"
    price: int
    single: int
    black_market: bool   # True when the listing had no location field

    @property
    def market(self) -> str:
        return "BM" if self.black_market else "RM"

    def describe(self) -> str:
        return f"{self.amount}x {self.item} @ {self.market} - {self.price}"

    def to_dict(self) -> dict:
        return {
            "amount": self.amount,
            "item": self.item,
            "price": self.price,
            "single": self.single,
            "black_market": self.black_market,
        }


@dataclass
class Mail:
    """A normalized in-game mail."""
    id: str
    timestamp: datetime
    sender: str
    subject: str
    content: str
    attachments: list[Any] | None = None

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "sender": self.sender,
            "subject": self.subject,
            "content": self.content,
        }
        if self.attachments is not None:
            data["attachments"] = list(self.attachments)
        return data
