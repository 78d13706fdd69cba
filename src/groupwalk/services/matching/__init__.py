"""Walker matching."""

from .walker_matcher import WalkerMatch, WalkerMatcher, dominant_area_code

__all__ = ["WalkerMatch", "WalkerMatcher", "dominant_area_code"]
