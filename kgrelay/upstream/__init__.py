"""Downstream HTTP client shared by handler modules and the scheduled workflow."""

from kgrelay.upstream.http_client import UpstreamClient, UpstreamResponse

__all__ = ["UpstreamClient", "UpstreamResponse"]
