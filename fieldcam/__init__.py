# =============================================================================
# DISCLAIMER: This software is a proof of concept for educational purposes
# only. It records and uploads photos and video of people; obtain consent
# before capturing anyone and protect the upload credentials.
# =============================================================================
"""Portrait capture and upload client.

Captures a photo or a bounded-length video of a subject from a local camera,
normalizes it to a 9:16 portrait frame and uploads it to the media backend.
"""

__version__ = "0.1.0"
