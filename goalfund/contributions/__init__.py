"""
Contribution recording.

Contributions are the money actually moved towards goals; during an
executing month they are linked to that month's execution record.
"""

from .service import ContributionService

__all__ = ["ContributionService"]
