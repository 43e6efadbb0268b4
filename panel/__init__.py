"""Proxy panel quota monitoring and alert dispatch."""
