"""
Backend package for the SPOT tracker feed cache.

This package polls the SPOT public feed without exceeding its rate limit,
keeps the parsed location events in a local store, and mails a daily
backup of the feed. A FastAPI application exposes the cached data.
"""
