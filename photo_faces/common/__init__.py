"""
Common utilities for the photo face pipeline.

Contains shared functionality used across all pipeline stages:
- Reserved folder names, model paths and image extensions
- Geometry helpers (rectangles, suppression, capture regions)
- The per-folder sidecar face cache
- Folder walking helpers
"""
