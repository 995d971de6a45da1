"""Luigi task definitions for the hvarc pipeline.

This module contains Luigi-based task implementations for small-variant
calling, phasing, haplotagging, the downstream variant tracks, and reporting.
"""
