"""Order lifecycle orchestrator.

Owns the authoritative state of orders, enforces legal status transitions
and records every transition together with its outbox event so downstream
consumers observe each change exactly once (after de-duplication).
"""

__version__ = "0.1.0"
