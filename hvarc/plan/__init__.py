"""Pure planning logic for hvarc.

This package holds the scheduling decisions that do not depend on Luigi: track
activation, contig selection, chunking, fan-in partitioning, and the per-sample
state machine.
"""
