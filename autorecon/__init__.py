"""AutoRecon settlement core: run lifecycle, aggregation and maker-checker approvals."""

__version__ = "1.0.0"
