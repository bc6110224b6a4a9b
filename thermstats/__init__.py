"""Thermal statistics package exports."""

from .helpers import SHDI, SIDI, kurtosis, multi_sapply, perc_5, perc_95, skewness  # noqa: F401
from .patches import PatchResult, get_patches  # noqa: F401
from .patch_stats import patch_stats  # noqa: F401
from .stats import get_stats, stats_by_group  # noqa: F401
from .stack import ImageStack, stack_imgs  # noqa: F401

__all__ = [
    "ImageStack",
    "PatchResult",
    "SHDI",
    "SIDI",
    "get_patches",
    "get_stats",
    "kurtosis",
    "multi_sapply",
    "patch_stats",
    "perc_5",
    "perc_95",
    "skewness",
    "stack_imgs",
    "stats_by_group",
]
