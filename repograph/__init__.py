"""repograph: code knowledge-graph engine with git-aware sync."""

__version__ = "0.3.0"
