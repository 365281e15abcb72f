"""Gateway and ledger clients: mocks/ for development, real_http/ for live services."""
