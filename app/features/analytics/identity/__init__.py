"""
Identity package for analytics.

Maps accounts to contact handles and decides which activity is internal
test traffic.
"""

from .resolver import AccountDirectory, TestExclusionSet, build_exclusion_set, is_excluded

__all__ = ["AccountDirectory", "TestExclusionSet", "build_exclusion_set", "is_excluded"]
