"""
Toolgate - Policy enforcement for AI-agent tool invocations.

Toolgate sits between an agent that proposes content-mutation actions
(tool calls such as posts.create or products.update) and the system that
would carry them out. It provides:
- Per-tool policy documents with versioning and rollback
- Rate limits, time windows, content filters and entity rules
- Human-approval workflows with an approval ledger
- A redacted, hash-chained audit trail in SQLite

Example usage:
    $ toolgate policy bootstrap
    $ toolgate policy test posts.create --fields '{"title": "Hello"}'
    $ toolgate audit list --status denied
"""

__version__ = "0.1.0"
__author__ = "Toolgate Contributors"

__all__ = [
    "__version__",
    "__author__",
]
