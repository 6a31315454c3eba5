from .mail import Mail, MailItem
from .normalizer import MailNormalizer
from .export import render_csv, render_json, escape_csv

__all__ = [
    "Mail", "MailItem", "MailNormalizer",
    "render_csv", "render_json", "escape_csv",
]
