"""Configuration, errors, wire messages and asyncio background components for a task queue."""

__version__ = "0.1.0"

__all__ = [
    "aggregator",
    "config",
    "errors",
    "forwarder",
    "healthcheck",
    "heartbeat",
    "inspector",
    "janitor",
    "lifecycle",
    "proto",
    "recoverer",
    "subscriber",
]