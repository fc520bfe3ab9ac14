from __future__ import annotations

from crmhub.accounting.models import Account, AccountMapping, JournalEntry, JournalEntryLine, PaymentTransaction, SyncLog
from crmhub.platform.security.repository import PermissionGatedRepository


SYNC_FIELDS = frozenset({"sync_status", "last_synced_at", "sync_error"})


class AccountRepository(PermissionGatedRepository):
    resource = "chart_of_accounts"
    model = Account
    read_only_fields = frozenset({"level", "path"}) | SYNC_FIELDS


class JournalEntryRepository(PermissionGatedRepository):
    resource = "journal_entries"
    model = JournalEntry
    read_only_fields = (
        frozenset({"entry_number", "posting_status", "posted_at", "posted_by", "voided_at", "voided_by", "reversal_of_id"})
        | SYNC_FIELDS
    )


class JournalEntryLineRepository(PermissionGatedRepository):
    resource = "journal_entry_lines"
    model = JournalEntryLine


class PaymentRepository(PermissionGatedRepository):
    resource = "payment_transactions"
    model = PaymentTransaction
    read_only_fields = (
        frozenset({"transaction_number", "converted_amount", "processed_at", "journal_entry_id", "refunded_at"})
        | SYNC_FIELDS
    )


class AccountMappingRepository(PermissionGatedRepository):
    resource = "account_mappings"
    model = AccountMapping


class SyncLogRepository(PermissionGatedRepository):
    resource = "sync_logs"
    model = SyncLog


account_repository = AccountRepository()
journal_entry_repository = JournalEntryRepository()
journal_line_repository = JournalEntryLineRepository()
payment_repository = PaymentRepository()
mapping_repository = AccountMappingRepository()
sync_log_repository = SyncLogRepository()
