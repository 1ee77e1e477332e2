"""Fee policies and fee arithmetic."""
