"""ATS DocGate - Document-gated candidate pipeline backed by Google Drive.

This package moves candidates between the stages of a hiring process only
once the documents each stage requires are attached, and keeps a Google
Drive folder per process and per candidate for those documents.
"""

__version__ = "0.1.0"
__author__ = "ATS Pro Team"

__all__ = [
    "__version__",
    "__author__",
]
