"""
Gap Detection and Overlay

Locates masked (cloud / shadow) cells in a Landsat VCF array and merges
them with an aligned MODIS VCF array.

Author: CloudFill Team
"""

import numpy as np
import logging
from typing import Sequence, Optional

logger = logging.getLogger(__name__)

# Landsat VCF codes for cloud and cloud shadow
CLOUD = 210
SHADOW = 211
DEFAULT_MASK_VALUES = (CLOUD, SHADOW)


def gap_mask(source: np.ndarray, mask_values: Sequence[float]) -> np.ndarray:
    """
    Boolean array marking cells of `source` equal to any mask value.

    Args:
        source: Gap-detection array (primary or alpha layer)
        mask_values: Sentinel values denoting gaps

    Returns:
        Boolean array with the shape of `source`
    """
    return np.isin(source, list(mask_values))


def gap_fraction(source: np.ndarray, mask_values: Sequence[float]) -> float:
    """
    Fraction of cells equal to a mask value.

    Counts are taken per mask value and summed; duplicated mask values
    are counted once per occurrence.

    Args:
        source: Gap-detection array
        mask_values: Sentinel values denoting gaps

    Returns:
        Gap fraction (0.0 for an empty array)
    """
    if source.size == 0:
        return 0.0

    count = sum(int(np.count_nonzero(source == value)) for value in mask_values)
    fraction = count / source.size

    if fraction > 1.0:
        logger.warning(f"Gap fraction {fraction:.3f} exceeds 1.0, mask values overlap: {list(mask_values)}")

    return fraction


def overlay(primary: np.ndarray, reference: np.ndarray, gaps: np.ndarray,
            reference_nodata: Optional[float] = None) -> np.ndarray:
    """
    Replace gap cells of `primary` with `reference` values.

    Gap cells where `reference` equals `reference_nodata` keep the primary
    value. Neither input is modified.

    Args:
        primary: Landsat VCF array
        reference: MODIS VCF array aligned to the primary grid
        gaps: Boolean gap mask with the primary shape
        reference_nodata: Nodata value of the aligned reference

    Returns:
        New array with the primary dtype
    """
    if not (primary.shape == reference.shape == gaps.shape):
        raise ValueError(f"Shape mismatch: primary {primary.shape}, "
                         f"reference {reference.shape}, mask {gaps.shape}")

    replace = gaps
    if reference_nodata is not None:
        replace = gaps & (reference != reference_nodata)

    result = primary.copy()
    result[replace] = reference[replace].astype(primary.dtype)
    return result
