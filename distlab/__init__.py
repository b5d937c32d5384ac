"""Simulated RPC network, protobuf-style message codec and linearizability checker."""

__version__ = "0.1.0"