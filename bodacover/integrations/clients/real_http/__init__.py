"""
Real HTTP clients.

Implement the PaymentGateway / WalletLedger interfaces against live services.
Selected in bodacover/api/main.py when INTEGRATIONS_MODE=real or the
MPESA_API_URL / LEDGER_API_URL variables are set.
"""

from .ledger import RealWalletLedgerClient
from .mpesa import RealMpesaClient

__all__ = ["RealMpesaClient", "RealWalletLedgerClient"]
