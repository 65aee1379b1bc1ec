"""
Segment matching for the mock backend.

Works on the window hashes produced by LocalFingerprintEngine:
- Exact window-hash correspondence between query and reference
- Grouping of correspondences into diagonal runs (same time offset)
- Conversion of runs into half-open query/asset segments
"""

import logging
from typing import List, Tuple

import numpy as np

from .schemas import FingerprintType, Segment, SegmentType

logger = logging.getLogger(__name__)

# Matched modality reported for a pair of fingerprint type masks, by priority
_SEGMENT_TYPES = (
    (FingerprintType.AUDIO, SegmentType.AUDIO),
    (FingerprintType.VIDEO, SegmentType.VIDEO),
    (FingerprintType.MELODY, SegmentType.MELODY),
)


def find_runs(
    query: np.ndarray,
    reference: np.ndarray,
    min_run: int = 1
) -> List[Tuple[int, int, int]]:
    """
    Find aligned runs of equal window hashes.

    Args:
        query: Window hashes of the query (N,)
        reference: Window hashes of the reference (M,)
        min_run: Minimum run length in windows

    Returns:
        List of (query_start, asset_start, length), ordered by query_start
    """
    if len(query) == 0 or len(reference) == 0:
        return []

    # All (i, j) with query[i] == reference[j]
    qi, rj = np.nonzero(query[:, None] == reference[None, :])
    if len(qi) == 0:
        return []

    # Sort by diagonal, then by query position
    diag = rj - qi
    order = np.lexsort((qi, diag))
    qi, diag = qi[order], diag[order]

    # A run breaks where the diagonal changes or the query position jumps
    breaks = np.flatnonzero((np.diff(diag) != 0) | (np.diff(qi) != 1)) + 1
    starts = np.concatenate(([0], breaks))
    ends = np.concatenate((breaks, [len(qi)]))

    runs = []
    for s, e in zip(starts, ends):
        length = int(e - s)
        if length >= min_run:
            q_start = int(qi[s])
            runs.append((q_start, q_start + int(diag[s]), length))

    runs.sort(key=lambda r: (r[0], r[1]))
    return runs


def segment_type_for(query_types: FingerprintType,
                     reference_types: FingerprintType) -> SegmentType:
    """Pick the reported modality; UNSPECIFIED when the masks share nothing."""
    shared = query_types & reference_types
    for flag, segment_type in _SEGMENT_TYPES:
        if shared & flag:
            return segment_type
    return SegmentType.UNSPECIFIED


def match_segments(
    query: np.ndarray,
    query_types: FingerprintType,
    reference: np.ndarray,
    reference_types: FingerprintType,
    min_run: int = 1
) -> List[Segment]:
    """
    Match a query against one reference.

    Only fingerprint types present on both sides can produce segments.
    Confidence is the share of the query covered by the segment.

    Returns:
        Segments ordered by query position (empty when nothing matches)
    """
    segment_type = segment_type_for(query_types, reference_types)
    if segment_type == SegmentType.UNSPECIFIED:
        return []

    segments = []
    for q_start, a_start, length in find_runs(query, reference, min_run=min_run):
        confidence = int(round(100.0 * length / len(query)))
        segments.append(Segment(
            type=segment_type,
            query_start=q_start,
            query_end=q_start + length,
            asset_start=a_start,
            asset_end=a_start + length,
            confidence=max(1, min(100, confidence)),
        ))

    logger.debug(f"Matched {len(segments)} segments ({segment_type.value})")
    return segments
