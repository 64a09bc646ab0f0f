"""Infrastructure layer for media app.

This package contains integrations with external systems:
- Filesystem storage backend with atomic renames
- Object store addressing (uploads and bin namespaces)
- Thumbnail rendering (Pillow)
- Upload metadata (extension, kind, generated ids)

Keep infrastructure concerns separate from lifecycle logic.
"""
