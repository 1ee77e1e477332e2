"""Settlement ledger domain: records, status graphs, events."""
