"""
Satellite cache test suite

Structure:
- unit/: Unit tests for individual components (fakes for provider and channel)
- integration/: Live imagery provider checks (opt-in via SATCACHE_LIVE_TESTS=1)
"""
