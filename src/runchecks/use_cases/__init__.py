"""Use-case level logic.

These modules implement the run check rules (freshness tiers, submission
windows) over plain domain records.

They should be:
- deterministic
- unit-testable
- free of web/framework code
"""
