"""Per-bundle story cache: merge/dedup store, refresh orchestration, and reads.

The cache never parses source formats. Adapters hand it already-normalized
``CachedStory`` records; the store keys them by canonical URL, the
orchestrator decides when to refresh and fans out to adapters, and the
reader serves point-in-time snapshots that never wait on a refresh.
"""
