"""Session / request-lifecycle core of a proof-verification gateway."""
