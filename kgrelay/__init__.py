"""kgrelay — handler-module request router with per-user scheduled automation."""

__version__ = "0.1.0"
