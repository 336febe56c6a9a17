"""Citation classification & brand visibility metrics.

Pure functions, no I/O:
  1. Citation Classifier  (brand / social / earned per cited URL)
  2. Metrics Aggregator   (per-brand rollups and ranks for one scope)

Input:  TestRecord (prompt executed on one LLM platform)
Output: AggregatedMetric (one per overall / platform / topic / persona scope)
"""
