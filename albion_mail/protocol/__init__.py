from .classifier import FrameClassifier, looks_like_photon
from .photon import PhotonDecoder, MailResult, GenericResult, never_mail

__all__ = [
    "FrameClassifier", "looks_like_photon",
    "PhotonDecoder", "MailResult", "GenericResult", "never_mail",
]
