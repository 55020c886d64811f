"""Withings sync infrastructure.

Modules:
    orchestrator — SyncService: window computation, fetch, classify, write
    store        — Persistence ports (credential store, watermark query, batch writer)
    dedup        — (user_id, date) deduplication and skip-on-duplicate SQL
"""
