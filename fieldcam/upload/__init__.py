# =============================================================================
# DISCLAIMER: This software is a proof of concept for educational purposes
# only. It records and uploads photos and video of people; obtain consent
# before capturing anyone and protect the upload credentials.
# =============================================================================
"""Upload of finished artifacts to the media backend."""

from fieldcam.upload.negotiator import UploadNegotiator

__all__ = ["UploadNegotiator"]
