"""State layer.

Durable record of what has been synchronized, plus the pure change policy
the orchestrator applies to freshly resolved metadata.
"""
