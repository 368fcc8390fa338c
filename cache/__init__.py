"""
Satellite cache store

- Keeps `satelliteCache.json` (one record per course) under the cache root
- Stores `{courseId}/large_satellite.jpg` and per-hole crops beside it
"""
