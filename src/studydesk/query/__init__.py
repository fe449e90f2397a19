"""Question decomposition, retrieval+synthesis and citation reconciliation."""
