"""Shared secret store protocol, gateway and backends."""
