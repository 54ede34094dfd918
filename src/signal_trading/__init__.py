"""AI-assisted crypto signal pipeline."""

__version__ = "0.1.0"
