"""
Photo face pipeline.

Scans photo folders, builds gallery thumbnails, extracts faces with a
multi-scale detector ensemble and matches unnamed faces to named people.
All derived data lives in per-folder sidecar caches.
"""
