"""FarmBox: subscription lifecycle and box curation engine."""

__version__ = "2.0.0"
