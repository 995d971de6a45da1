"""Constants used across hvarc CLI modules."""

# Reference builds with repeat-locus catalogs for STR genotyping
STR_GENOME_BUILDS = frozenset({"hg38"})

GENOME_BUILDS = ("hg19", "hg38")

ALIGNMENT_FORMATS = ("bam", "cram")

# Memory threshold below which a warning is printed (8GB in MB)
MEMORY_THRESHOLD_MB = 8192
