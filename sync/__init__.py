"""
Sync: course-level flows and the HTTP surface

- Round start: reuse cached crops or download, crop and transfer every hole
- New hole: download if needed, crop and transfer that hole
- FastAPI app exposing the cache, download progress and transfers
"""
