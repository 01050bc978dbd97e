"""Sandboxed agent runtimes: capability specs, runtime lifecycle, executor, tool-call transports and a daemon client."""

__version__ = "0.1.0"