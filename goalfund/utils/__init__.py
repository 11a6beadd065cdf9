"""
Utility functions module.

Common utility functions for time handling shared across the system.

Time Semantics:
- All timestamps are timezone-aware UTC datetimes
- Month labels are "YYYY-MM" strings computed in UTC
- Components take an injectable clock so tests can freeze "now"
"""
