"""
Tests for the Google Sheets repositories.

The gspread client and worksheets are MagicMocks holding plain row lists;
nothing talks to Google.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock
from uuid import uuid4

import gspread
import pytest

from ledger_core.models import (
    Budget,
    PredictionCacheEntry,
    Transaction,
    TransactionType,
    Wallet,
    WalletDelta,
)
from ledger_core.services.storage import NotFoundError, PersistenceError
from ledger_core.services.storage.google_sheets import (
    BUDGET_COLUMNS,
    PREDICTION_COLUMNS,
    TRANSACTION_COLUMNS,
    WALLET_COLUMNS,
    GoogleSheetsBudgetRepository,
    GoogleSheetsClient,
    GoogleSheetsPredictionCacheStorage,
    GoogleSheetsTransactionRepository,
    GoogleSheetsWalletRepository,
    _SheetTable,
)


STAMP = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)


def _sheet(header, rows=()):
    sheet = MagicMock()
    sheet.get_all_values.return_value = [list(header)] + [list(r) for r in rows]
    return sheet


def _client(**sheets):
    client = MagicMock(spec=GoogleSheetsClient)
    for name, sheet in sheets.items():
        getattr(client, f"get_{name}_sheet").return_value = sheet
    return client


def _wallet(balance="100"):
    return Wallet(owner_id="u", name="Cash", balance=Decimal(balance), created_at=STAMP)


class TestWalletRepository:

    def _repo_with(self, *wallets):
        repo = GoogleSheetsWalletRepository(MagicMock())
        sheet = _sheet(WALLET_COLUMNS, [repo._wallet_to_row(w) for w in wallets])
        repo._client = _client(wallets=sheet)
        return repo, sheet

    @pytest.mark.asyncio
    async def test_row_round_trip(self):
        wallet = _wallet("12.30")
        repo, _ = self._repo_with(wallet)

        loaded = await repo.get(wallet.id)

        assert loaded == wallet
        assert loaded.balance == Decimal("12.30")

    @pytest.mark.asyncio
    async def test_batch_is_one_update_call(self):
        a, b = _wallet("1000"), _wallet("500")
        repo, sheet = self._repo_with(a, b)

        updated = await repo.batch_apply_deltas([
            WalletDelta(wallet_id=a.id, delta=Decimal("-210")),
            WalletDelta(wallet_id=b.id, delta=Decimal("200")),
        ])

        sheet.batch_update.assert_called_once_with(
            [
                {"range": "E2", "values": [["790"]]},
                {"range": "E3", "values": [["700"]]},
            ],
            value_input_option="RAW",
        )
        assert [w.balance for w in updated] == [Decimal("790"), Decimal("700")]

    @pytest.mark.asyncio
    async def test_missing_wallet_writes_nothing(self):
        a = _wallet()
        repo, sheet = self._repo_with(a)

        with pytest.raises(NotFoundError):
            await repo.batch_apply_deltas([
                WalletDelta(wallet_id=a.id, delta=Decimal("1")),
                WalletDelta(wallet_id=uuid4(), delta=Decimal("1")),
            ])
        sheet.batch_update.assert_not_called()

    @pytest.mark.asyncio
    async def test_gspread_errors_are_wrapped(self):
        a = _wallet()
        repo, sheet = self._repo_with(a)
        sheet.batch_update.side_effect = RuntimeError("quota exceeded")

        with pytest.raises(PersistenceError) as exc_info:
            await repo.batch_apply_deltas([WalletDelta(wallet_id=a.id, delta=Decimal("1"))])
        assert not isinstance(exc_info.value, NotFoundError)
        assert "quota exceeded" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_delete_removes_the_matching_row(self):
        a, b = _wallet(), _wallet()
        repo, sheet = self._repo_with(a, b)

        assert await repo.delete(b.id)
        sheet.delete_rows.assert_called_once_with(3)
        assert not await repo.delete(uuid4())


class TestTransactionRepository:

    def _transfer(self):
        return Transaction(
            owner_id="u",
            type=TransactionType.TRANSFER,
            amount=Decimal("200.00"),
            fee=Decimal("10"),
            wallet_id=uuid4(),
            destination_wallet_id=uuid4(),
            description="rent share",
            occurred_at=date(2025, 3, 14),
            created_at=STAMP,
        )

    @pytest.mark.asyncio
    async def test_round_trip_and_update_range(self):
        transfer = self._transfer()
        repo = GoogleSheetsTransactionRepository(MagicMock())
        sheet = _sheet(TRANSACTION_COLUMNS, [repo._transaction_to_row(transfer)])
        repo._client = _client(transactions=sheet)

        assert await repo.get(transfer.id) == transfer

        changed = transfer.model_copy(update={"description": "rent"})
        await repo.update(changed)
        call = sheet.batch_update.call_args
        assert call.args[0][0]["range"] == "A2:K2"
        assert call.args[0][0]["values"][0][8] == "rent"

    @pytest.mark.asyncio
    async def test_list_skips_malformed_rows(self):
        transfer = self._transfer()
        repo = GoogleSheetsTransactionRepository(MagicMock())
        broken = ["not-a-uuid", "u", "expense", "abc"]
        sheet = _sheet(TRANSACTION_COLUMNS, [broken, repo._transaction_to_row(transfer)])
        repo._client = _client(transactions=sheet)

        listed = await repo.list_transactions(wallet_id=transfer.destination_wallet_id)

        assert [t.id for t in listed] == [transfer.id]

    @pytest.mark.asyncio
    async def test_update_unknown_raises_not_found(self):
        repo = GoogleSheetsTransactionRepository(_client(transactions=_sheet(TRANSACTION_COLUMNS)))
        with pytest.raises(NotFoundError):
            await repo.update(self._transfer())


class TestBudgetRepository:

    @pytest.mark.asyncio
    async def test_update_spent_writes_one_cell(self):
        budget = Budget(owner_id="u", category_id=1, amount=Decimal("500"))
        repo = GoogleSheetsBudgetRepository(MagicMock())
        sheet = _sheet(BUDGET_COLUMNS, [repo._budget_to_row(budget)])
        repo._client = _client(budgets=sheet)

        updated = await repo.update_spent(budget.id, Decimal("42.50"))

        sheet.update_cell.assert_called_once_with(2, 5, "42.50")
        assert updated.spent == Decimal("42.50")
        assert [b.id for b in await repo.list_for_owner("u", [1])] == [budget.id]
        assert await repo.list_for_owner("u", [2]) == []


class TestPredictionCacheStorage:

    def _entry(self, owner_id, generated_at, key="k"):
        return PredictionCacheEntry(
            cache_key=key,
            owner_id=owner_id,
            language="en",
            generated_at=generated_at,
            period_start=date(2025, 3, 1),
            period_end=date(2025, 3, 31),
        )

    @pytest.mark.asyncio
    async def test_delete_older_than_goes_bottom_up(self):
        repo = GoogleSheetsPredictionCacheStorage(MagicMock())
        old = datetime(2025, 3, 1, tzinfo=timezone.utc)
        rows = [
            repo._entry_to_row(self._entry("u", old, "a")),
            repo._entry_to_row(self._entry("other", old, "b")),
            repo._entry_to_row(self._entry("u", STAMP, "c")),
            repo._entry_to_row(self._entry("u", old, "d")),
        ]
        sheet = _sheet(PREDICTION_COLUMNS, rows)
        repo._client = _client(predictions=sheet)

        removed = await repo.delete_older_than("u", datetime(2025, 3, 10, tzinfo=timezone.utc))

        assert removed == 2
        assert [c.args[0] for c in sheet.delete_rows.call_args_list] == [5, 2]

    @pytest.mark.asyncio
    async def test_put_appends_then_overwrites(self):
        repo = GoogleSheetsPredictionCacheStorage(MagicMock())
        entry = self._entry("u", STAMP)
        empty = _sheet(PREDICTION_COLUMNS)
        repo._client = _client(predictions=empty)

        await repo.put_entry(entry)
        empty.append_row.assert_called_once()

        existing = _sheet(PREDICTION_COLUMNS, [repo._entry_to_row(entry)])
        repo._client = _client(predictions=existing)
        await repo.put_entry(entry)
        existing.batch_update.assert_called_once()
        assert await repo.get_entry("u", "k") == entry


class TestSheetTable:

    def test_table_without_worksheet_cannot_be_built(self):
        class Incomplete(_SheetTable):
            pass

        with pytest.raises(TypeError):
            Incomplete(MagicMock())


class TestClient:

    def test_creates_missing_worksheet_with_header(self):
        client = GoogleSheetsClient(settings=MagicMock(wallets_sheet_name="Wallets"))
        spreadsheet = MagicMock()
        spreadsheet.worksheet.side_effect = gspread.WorksheetNotFound("Wallets")
        client._spreadsheet = spreadsheet

        sheet = client.get_wallets_sheet()

        spreadsheet.add_worksheet.assert_called_once_with(
            title="Wallets", rows=1000, cols=len(WALLET_COLUMNS)
        )
        sheet.append_row.assert_called_once_with(WALLET_COLUMNS)
