"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the remote store because:
1. Users can inspect their ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- No transactions (the orchestrator handles this with careful ordering)
- Limited query capabilities (we filter in Python)
- Every read fetches the whole worksheet (fine for a personal ledger)

One worksheet per table. Row 1 holds the headers; data starts at row 2.
Money is written as Decimal strings with value_input_option="RAW" so Sheets
never reinterprets it as a float.
"""

import json
from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

import gspread
from gspread.utils import rowcol_to_a1
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from ledger_core.config import GoogleSheetsSettings, get_settings
from ledger_core.logging_config import get_logger
from ledger_core.models.finance import (
    Budget,
    BudgetPeriod,
    Transaction,
    TransactionType,
    Wallet,
    WalletDelta,
    WalletType,
)
from ledger_core.models.prediction import (
    BudgetPrediction,
    PredictionCacheEntry,
    RiskLevel,
)
from ledger_core.services.storage.interface import (
    BudgetRepository,
    ConnectionError,
    DuplicateError,
    NotFoundError,
    PersistenceError,
    PredictionCacheStorage,
    TransactionRepository,
    WalletRepository,
)

logger = get_logger(__name__)


WALLET_COLUMNS = [
    "id",
    "owner_id",
    "name",
    "type",
    "balance",
    "opening_balance",
    "color",
    "icon",
    "created_at",
]

TRANSACTION_COLUMNS = [
    "id",
    "owner_id",
    "type",
    "amount",
    "fee",
    "category_id",
    "wallet_id",
    "destination_wallet_id",
    "description",
    "occurred_at",
    "created_at",
]

BUDGET_COLUMNS = [
    "id",
    "owner_id",
    "category_id",
    "amount",
    "spent",
    "period",
]

PREDICTION_COLUMNS = [
    "cache_key",
    "owner_id",
    "language",
    "generated_at",
    "period_start",
    "period_end",
    "overall_risk",
    "summary",
    "predictions_json",
]

BALANCE_COLUMN = WALLET_COLUMNS.index("balance") + 1
SPENT_COLUMN = BUDGET_COLUMNS.index("spent") + 1


def _cell(row: list, index: int, default: str = "") -> str:
    """Cell value, tolerating short rows."""
    try:
        return row[index] if row[index] else default
    except IndexError:
        return default


def _row_range(row_number: int, width: int) -> str:
    return f"{rowcol_to_a1(row_number, 1)}:{rowcol_to_a1(row_number, width)}"


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and worksheet creation; provides retry logic
    for the initial connection.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError as e:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                ) from e
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}") from e

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(self._settings.spreadsheet_id)
            except gspread.SpreadsheetNotFound as e:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                ) from e
        return self._spreadsheet

    def get_worksheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get or create a worksheet, writing the header row on creation."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(title=title, rows=rows, cols=len(columns))
            sheet.append_row(columns)
            logger.info("worksheet_created", title=title)
        return sheet

    def get_wallets_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.wallets_sheet_name, WALLET_COLUMNS)

    def get_transactions_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(
            self._settings.transactions_sheet_name,
            TRANSACTION_COLUMNS,
            rows=5000,
        )

    def get_budgets_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.budgets_sheet_name, BUDGET_COLUMNS)

    def get_predictions_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.predictions_sheet_name, PREDICTION_COLUMNS)


class _SheetTable(ABC):
    """Shared row lookup for the single-key tables."""

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    @abstractmethod
    def _sheet(self) -> gspread.Worksheet:
        """Worksheet backing this table."""
        pass

    def _data_rows(self, sheet: gspread.Worksheet) -> list[tuple[int, list]]:
        """(row number, row) pairs for every non-empty data row."""
        all_rows = sheet.get_all_values()
        return [
            (idx, row)
            for idx, row in enumerate(all_rows[1:], start=2)  # Row 1 is header
            if row and row[0]
        ]

    def _find_row(self, sheet: gspread.Worksheet, key: str) -> Optional[tuple[int, list]]:
        for idx, row in self._data_rows(sheet):
            if row[0] == key:
                return idx, row
        return None

    def _delete_by_key(self, key: str, entity: str) -> bool:
        try:
            sheet = self._sheet()
            found = self._find_row(sheet, key)
            if found is None:
                return False
            sheet.delete_rows(found[0])
            return True
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to delete {entity}: {e}") from e


class GoogleSheetsWalletRepository(_SheetTable, WalletRepository):
    """
    Wallet rows.

    Balance deltas are resolved against one snapshot of the sheet and
    written back with a single batch_update call.
    """

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_wallets_sheet()

    def _wallet_to_row(self, wallet: Wallet) -> list:
        return [
            str(wallet.id),
            wallet.owner_id,
            wallet.name,
            wallet.type.value,
            str(wallet.balance),
            str(wallet.opening_balance),
            wallet.color or "",
            wallet.icon or "",
            wallet.created_at.isoformat(),
        ]

    def _row_to_wallet(self, row: list) -> Wallet:
        return Wallet(
            id=UUID(_cell(row, 0)),
            owner_id=_cell(row, 1),
            name=_cell(row, 2),
            type=WalletType(_cell(row, 3, WalletType.CASH.value)),
            balance=Decimal(_cell(row, 4, "0")),
            opening_balance=Decimal(_cell(row, 5, "0")),
            color=_cell(row, 6) or None,
            icon=_cell(row, 7) or None,
            created_at=datetime.fromisoformat(_cell(row, 8)),
        )

    async def get(self, wallet_id: UUID) -> Optional[Wallet]:
        try:
            found = self._find_row(self._sheet(), str(wallet_id))
            return self._row_to_wallet(found[1]) if found else None
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to get wallet: {e}") from e

    async def get_many(self, wallet_ids: Iterable[UUID]) -> dict[UUID, Wallet]:
        wanted = {str(wallet_id) for wallet_id in wallet_ids}
        try:
            return {
                wallet.id: wallet
                for wallet in (
                    self._row_to_wallet(row)
                    for _, row in self._data_rows(self._sheet())
                    if row[0] in wanted
                )
            }
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to get wallets: {e}") from e

    async def list_for_owner(self, owner_id: str) -> list[Wallet]:
        try:
            return [
                self._row_to_wallet(row)
                for _, row in self._data_rows(self._sheet())
                if _cell(row, 1) == owner_id
            ]
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to list wallets: {e}") from e

    async def insert(self, wallet: Wallet) -> Wallet:
        try:
            sheet = self._sheet()
            if self._find_row(sheet, str(wallet.id)) is not None:
                raise DuplicateError(f"Wallet already exists: {wallet.id}")
            sheet.append_row(self._wallet_to_row(wallet), value_input_option="RAW")
            return wallet
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to save wallet: {e}") from e

    async def batch_apply_deltas(self, deltas: list[WalletDelta]) -> list[Wallet]:
        try:
            sheet = self._sheet()
            rows = {row[0]: (idx, row) for idx, row in self._data_rows(sheet)}

            for delta in deltas:
                if str(delta.wallet_id) not in rows:
                    raise NotFoundError(f"Wallet not found: {delta.wallet_id}")

            balances: dict[str, Decimal] = {}
            for delta in deltas:
                key = str(delta.wallet_id)
                current = balances.get(key, Decimal(_cell(rows[key][1], 4, "0")))
                balances[key] = current + delta.delta

            sheet.batch_update(
                [
                    {
                        "range": rowcol_to_a1(rows[key][0], BALANCE_COLUMN),
                        "values": [[str(balance)]],
                    }
                    for key, balance in balances.items()
                ],
                value_input_option="RAW",
            )

            updated = []
            for delta in deltas:
                wallet = self._row_to_wallet(rows[str(delta.wallet_id)][1])
                updated.append(
                    wallet.model_copy(update={"balance": balances[str(delta.wallet_id)]})
                )
            return updated
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to apply wallet deltas: {e}") from e

    async def delete(self, wallet_id: UUID) -> bool:
        return self._delete_by_key(str(wallet_id), "wallet")


class GoogleSheetsTransactionRepository(_SheetTable, TransactionRepository):
    """Transaction rows, one per transaction, in append order."""

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_transactions_sheet()

    def _transaction_to_row(self, transaction: Transaction) -> list:
        return [
            str(transaction.id),
            transaction.owner_id,
            transaction.type.value,
            str(transaction.amount),
            str(transaction.fee),
            str(transaction.category_id) if transaction.category_id is not None else "",
            str(transaction.wallet_id),
            str(transaction.destination_wallet_id) if transaction.destination_wallet_id else "",
            transaction.description,
            transaction.occurred_at.isoformat(),
            transaction.created_at.isoformat(),
        ]

    def _row_to_transaction(self, row: list) -> Transaction:
        return Transaction(
            id=UUID(_cell(row, 0)),
            owner_id=_cell(row, 1),
            type=TransactionType(_cell(row, 2)),
            amount=Decimal(_cell(row, 3)),
            fee=Decimal(_cell(row, 4, "0")),
            category_id=int(_cell(row, 5)) if _cell(row, 5) else None,
            wallet_id=UUID(_cell(row, 6)),
            destination_wallet_id=UUID(_cell(row, 7)) if _cell(row, 7) else None,
            description=_cell(row, 8),
            occurred_at=date.fromisoformat(_cell(row, 9)),
            created_at=datetime.fromisoformat(_cell(row, 10)),
        )

    async def get(self, transaction_id: UUID) -> Optional[Transaction]:
        try:
            found = self._find_row(self._sheet(), str(transaction_id))
            return self._row_to_transaction(found[1]) if found else None
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to get transaction: {e}") from e

    async def insert(self, transaction: Transaction) -> Transaction:
        try:
            sheet = self._sheet()
            if self._find_row(sheet, str(transaction.id)) is not None:
                raise DuplicateError(f"Transaction already exists: {transaction.id}")
            sheet.append_row(self._transaction_to_row(transaction), value_input_option="RAW")
            return transaction
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to save transaction: {e}") from e

    async def update(self, transaction: Transaction) -> Transaction:
        try:
            sheet = self._sheet()
            found = self._find_row(sheet, str(transaction.id))
            if found is None:
                raise NotFoundError(f"Transaction not found: {transaction.id}")

            sheet.batch_update(
                [
                    {
                        "range": _row_range(found[0], len(TRANSACTION_COLUMNS)),
                        "values": [self._transaction_to_row(transaction)],
                    }
                ],
                value_input_option="RAW",
            )
            return transaction
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to update transaction: {e}") from e

    async def delete(self, transaction_id: UUID) -> bool:
        return self._delete_by_key(str(transaction_id), "transaction")

    async def list_transactions(
        self,
        owner_id: Optional[str] = None,
        wallet_id: Optional[UUID] = None,
        category_id: Optional[int] = None,
        transaction_type: Optional[TransactionType] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> list[Transaction]:
        try:
            rows = self._data_rows(self._sheet())
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to list transactions: {e}") from e

        transactions = []
        for idx, row in rows:
            try:
                transaction = self._row_to_transaction(row)
            except ValueError as e:
                logger.warning("transaction_row_skipped", row_number=idx, error=str(e))
                continue

            if owner_id is not None and transaction.owner_id != owner_id:
                continue
            if wallet_id is not None and wallet_id not in transaction.wallet_ids:
                continue
            if category_id is not None and transaction.category_id != category_id:
                continue
            if transaction_type is not None and transaction.type != transaction_type:
                continue
            if date_from and transaction.occurred_at < date_from:
                continue
            if date_to and transaction.occurred_at > date_to:
                continue

            transactions.append(transaction)

        return transactions


class GoogleSheetsBudgetRepository(_SheetTable, BudgetRepository):

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_budgets_sheet()

    def _budget_to_row(self, budget: Budget) -> list:
        return [
            str(budget.id),
            budget.owner_id,
            str(budget.category_id),
            str(budget.amount),
            str(budget.spent),
            budget.period.value,
        ]

    def _row_to_budget(self, row: list) -> Budget:
        return Budget(
            id=UUID(_cell(row, 0)),
            owner_id=_cell(row, 1),
            category_id=int(_cell(row, 2)),
            amount=Decimal(_cell(row, 3)),
            spent=Decimal(_cell(row, 4, "0")),
            period=BudgetPeriod(_cell(row, 5, BudgetPeriod.MONTHLY.value)),
        )

    async def get(self, budget_id: UUID) -> Optional[Budget]:
        try:
            found = self._find_row(self._sheet(), str(budget_id))
            return self._row_to_budget(found[1]) if found else None
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to get budget: {e}") from e

    async def list_for_owner(
        self,
        owner_id: str,
        category_ids: Optional[Iterable[int]] = None,
    ) -> list[Budget]:
        wanted = set(category_ids) if category_ids is not None else None
        try:
            budgets = [
                self._row_to_budget(row)
                for _, row in self._data_rows(self._sheet())
                if _cell(row, 1) == owner_id
            ]
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to list budgets: {e}") from e

        return [b for b in budgets if wanted is None or b.category_id in wanted]

    async def insert(self, budget: Budget) -> Budget:
        try:
            sheet = self._sheet()
            if self._find_row(sheet, str(budget.id)) is not None:
                raise DuplicateError(f"Budget already exists: {budget.id}")
            sheet.append_row(self._budget_to_row(budget), value_input_option="RAW")
            return budget
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to save budget: {e}") from e

    async def update_spent(self, budget_id: UUID, spent: Decimal) -> Budget:
        try:
            sheet = self._sheet()
            found = self._find_row(sheet, str(budget_id))
            if found is None:
                raise NotFoundError(f"Budget not found: {budget_id}")

            sheet.update_cell(found[0], SPENT_COLUMN, str(spent))
            return self._row_to_budget(found[1]).model_copy(update={"spent": spent})
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to update budget: {e}") from e

    async def delete(self, budget_id: UUID) -> bool:
        return self._delete_by_key(str(budget_id), "budget")


class GoogleSheetsPredictionCacheStorage(_SheetTable, PredictionCacheStorage):
    """
    Cached forecast runs, one row per (owner, cache key).

    Per-category predictions are JSON-serialized into a single cell.
    """

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_predictions_sheet()

    def _entry_to_row(self, entry: PredictionCacheEntry) -> list:
        return [
            entry.cache_key,
            entry.owner_id,
            entry.language,
            entry.generated_at.isoformat(),
            entry.period_start.isoformat(),
            entry.period_end.isoformat(),
            entry.overall_risk.value,
            entry.summary,
            json.dumps([p.model_dump(mode="json") for p in entry.predictions]),
        ]

    def _row_to_entry(self, row: list) -> PredictionCacheEntry:
        predictions_json = _cell(row, 8)
        predictions = [
            BudgetPrediction(**item)
            for item in (json.loads(predictions_json) if predictions_json else [])
        ]
        return PredictionCacheEntry(
            cache_key=_cell(row, 0),
            owner_id=_cell(row, 1),
            language=_cell(row, 2),
            generated_at=datetime.fromisoformat(_cell(row, 3)),
            period_start=date.fromisoformat(_cell(row, 4)),
            period_end=date.fromisoformat(_cell(row, 5)),
            overall_risk=RiskLevel(_cell(row, 6, RiskLevel.LOW.value)),
            summary=_cell(row, 7),
            predictions=predictions,
        )

    def _find_entry(
        self,
        sheet: gspread.Worksheet,
        owner_id: str,
        cache_key: str,
    ) -> Optional[tuple[int, list]]:
        for idx, row in self._data_rows(sheet):
            if row[0] == cache_key and _cell(row, 1) == owner_id:
                return idx, row
        return None

    async def get_entry(
        self,
        owner_id: str,
        cache_key: str,
    ) -> Optional[PredictionCacheEntry]:
        try:
            found = self._find_entry(self._sheet(), owner_id, cache_key)
            return self._row_to_entry(found[1]) if found else None
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to read prediction cache: {e}") from e

    async def put_entry(self, entry: PredictionCacheEntry) -> None:
        try:
            sheet = self._sheet()
            row = self._entry_to_row(entry)
            found = self._find_entry(sheet, entry.owner_id, entry.cache_key)
            if found is None:
                sheet.append_row(row, value_input_option="RAW")
            else:
                sheet.batch_update(
                    [{"range": _row_range(found[0], len(PREDICTION_COLUMNS)), "values": [row]}],
                    value_input_option="RAW",
                )
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to write prediction cache: {e}") from e

    async def delete_older_than(self, owner_id: str, cutoff: datetime) -> int:
        try:
            sheet = self._sheet()
            stale = [
                idx
                for idx, row in self._data_rows(sheet)
                if _cell(row, 1) == owner_id
                and datetime.fromisoformat(_cell(row, 3)) < cutoff
            ]
            # Bottom-up so earlier row numbers stay valid
            for idx in sorted(stale, reverse=True):
                sheet.delete_rows(idx)
            return len(stale)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to clean prediction cache: {e}") from e
