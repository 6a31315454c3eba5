from .capture import RawDatagram, MailSniffer, CaptureError, LinkType, extract_datagram
from .session import CaptureSession, MailNotice, SessionSummary

__all__ = [
    "RawDatagram", "MailSniffer", "CaptureError", "LinkType", "extract_datagram",
    "CaptureSession", "MailNotice", "SessionSummary",
]
