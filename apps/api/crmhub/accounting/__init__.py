from crmhub.accounting.models import Account, AccountMapping, JournalEntry, JournalEntryLine, PaymentTransaction, SyncLog

__all__ = [
    "Account",
    "JournalEntry",
    "JournalEntryLine",
    "PaymentTransaction",
    "AccountMapping",
    "SyncLog",
]
