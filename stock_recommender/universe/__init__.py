"""
Candidate universe selection.

Modules
-------
scoring : FundNameFilter + composite_score() + rank_candidates() — pure
          functions, no DB or I/O.
builder : UniverseOptions + UniverseBuilder (feature table → candidates)
          + build_stub_universe() for smoke runs.
"""
