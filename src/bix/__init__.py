"""BIX reward ledger and anti-abuse engine."""
