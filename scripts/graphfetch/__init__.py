"""graphfetch bulk resource fetcher.

Authenticates against Microsoft Graph, resolves one per-user resource for a
large set of identifiers, and retrieves them through the ``$batch`` endpoint
with a bounded worker pool and a shared rate-limit backoff.
"""
