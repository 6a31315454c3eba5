"""
Albion Mail — Albion Online mail sniffer

Pipeline:
  MailSniffer → CaptureSession → FrameClassifier (admit/reject)
                               → PhotonDecoder (decode)
                               → MailNormalizer (normalize)
                               → CSV / JSON export
"""

__version__ = "0.1.0"
