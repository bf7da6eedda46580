"""Top-level package for askman.

This package contains the implementation of a command line tool named
``askman`` which answers questions about command-line tools with a
validated command, using the tool's manual page as the only reference.
The core logic lives in the ``pipeline`` module: cache lookup, blocking
or streaming execution against a model provider, response validation
and a single strict retry.  Helper modules handle provider abstraction,
caching, configuration, manual page retrieval and pricing.

When this package is installed via pip you can invoke the CLI from
your shell using the ``askman`` entry point.  Alternatively you can run
``python -m askman.cli`` from this directory for local development.
"""

__all__ = [
    "cache",
    "cli",
    "config",
    "executor",
    "pipeline",
    "providers",
    "server",
    "validator",
]
