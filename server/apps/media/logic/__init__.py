"""Business logic layer for media app.

This package contains the media lifecycle:
- Metadata index reads and compare-and-set writes
- Ingest, soft delete, restore and purge orchestration
- Retention sweeping and reconciliation of bytes against records

All lifecycle decisions are made here, separate from models (data layer)
and infrastructure (filesystem and image codec).
"""
