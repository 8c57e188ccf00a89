"""dealscore — benchmark-anchored, confidence-weighted deal scoring.

Turns raw metric observations about an investment opportunity into
benchmark-relative percentiles, per-observation confidence scores, and
stage/sector-weighted dimension and global scores.
"""

__version__ = "0.1.0"
