"""Review reconciliation and scoring pipeline.

Subpackages, leaves first: normalization, identity, ensemble,
aggregation, pipeline.
"""
