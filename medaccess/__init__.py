"""Medical-access delegation service: rotating patient codes, exchange tokens and access grants."""

__version__ = "0.3.0"
