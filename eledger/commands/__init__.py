"""Command bodies for the eledger CLI. Each run_* function returns an exit code."""
