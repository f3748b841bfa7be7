"""
Recommendation contract: turns untrusted model output into a validated
``RecommendationSnapshot``.

Modules
-------
contract : ViolationKind + ContractViolation + validate_snapshot() +
           validate_snapshot_or_raise() + snapshot_to_payload() — pure
           functions, no DB or I/O.
"""
