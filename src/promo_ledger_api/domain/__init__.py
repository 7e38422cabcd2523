"""Domain types shared by the ledger services and the HTTP layer."""
