"""botforge - training pipeline orchestrator for bot model customization."""

__version__ = "0.1.0"
