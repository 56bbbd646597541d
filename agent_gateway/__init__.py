"""Session orchestration, event normalization and tool approval for coding agents."""

__version__ = "0.1.0"
