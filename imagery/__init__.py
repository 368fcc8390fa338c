"""
Imagery: acquisition and per-hole crops

- Requests one 2 km x 2 km satellite image per course from an imagery provider
- Projects hole coordinates into that image and crops/re-encodes a window per hole
"""
