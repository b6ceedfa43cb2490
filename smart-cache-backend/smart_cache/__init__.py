"""Smart cache & multi-source reconciliation engine.

Decides per client/platform/period whether to serve a cached aggregate,
rebuild it from stored data or re-fetch raw campaign rows, and audits
agreement between those views.
"""

__all__: list[str] = []
