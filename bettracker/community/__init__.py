"""
Community module - tenant members and capper status.
"""
from bettracker.community.members import MemberDirectory

__all__ = ["MemberDirectory"]
