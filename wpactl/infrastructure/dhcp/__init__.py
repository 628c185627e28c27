"""DHCP client handling."""

from .lease_manager import LeaseManager, LeaseState, MockLeaseManager

__all__ = ["LeaseManager", "LeaseState", "MockLeaseManager"]
