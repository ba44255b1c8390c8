"""Session buffer admission control."""

from parley.limits.validator import LimitsValidator

__all__ = ["LimitsValidator"]
