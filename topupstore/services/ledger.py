import asyncio
import os
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from dotenv import load_dotenv

from ..errors import NotFound, ValidationError
from ..utils.formatting import parse_iso, utc_now_iso
from ..utils.logger import logger
from .storage import KeyValueStorage

TRANSACTIONS_KEY = "transactions"
OUTBOX_KEY = "transaction_outbox"
STATUSES = ("pending", "processing", "success", "failed", "cancelled")
OPEN_STATUSES = {"pending", "processing"}

SettledCallback = Callable[[Dict[str, Any]], Awaitable[None]]


class TransactionLedger:
    """Purchase records plus the outbox that settles them.

    ``create`` stores a pending transaction and an outbox entry with its due
    time. A timer settles it once due; ``recover`` replays the outbox after
    a restart so settlements interrupted by shutdown still happen.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        settle_seconds: Optional[float] = None,
        on_settled: Optional[SettledCallback] = None,
    ):
        load_dotenv()
        self.storage = storage
        if settle_seconds is None:
            settle_seconds = self._to_float(os.getenv("TRANSACTION_SETTLE_SECONDS"), default=3.0)
        self.settle_seconds = max(0.0, settle_seconds)
        self.on_settled = on_settled
        self._lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

    async def _load_transactions(self) -> List[Dict[str, Any]]:
        data = await self.storage.get(TRANSACTIONS_KEY, default=[])
        if not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, dict)]

    async def _load_outbox(self) -> List[Dict[str, Any]]:
        data = await self.storage.get(OUTBOX_KEY, default=[])
        if not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, dict) and item.get("transactionId")]

    async def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        created_at = now.isoformat(timespec="microseconds")
        transaction = dict(data)
        transaction.update(
            {
                "id": f"txn-{int(now.timestamp() * 1000)}-{secrets.token_hex(2)}",
                "status": "pending",
                "createdAt": created_at,
                "updatedAt": created_at,
            }
        )
        due_at = (now + timedelta(seconds=self.settle_seconds)).isoformat(timespec="microseconds")

        async with self._lock:
            transactions = await self._load_transactions()
            transactions.append(transaction)
            await self.storage.set(TRANSACTIONS_KEY, transactions)

            outbox = await self._load_outbox()
            outbox.append({"transactionId": transaction["id"], "dueAt": due_at, "status": "success"})
            await self.storage.set(OUTBOX_KEY, outbox)

        logger.info(f"Created transaction {transaction['id']} ({transaction.get('productName')}, {transaction.get('amount')})")
        self._schedule(transaction["id"], self.settle_seconds)
        return dict(transaction)

    async def get(self, transaction_id: str) -> Dict[str, Any]:
        for transaction in await self._load_transactions():
            if transaction.get("id") == transaction_id:
                return transaction
        raise NotFound("Transaction not found")

    async def list(self, status: Optional[str] = None, query: Optional[str] = None) -> List[Dict[str, Any]]:
        status_filter = (status or "").strip().lower()
        if status_filter and status_filter != "all" and status_filter not in STATUSES:
            raise ValidationError("invalid status filter")
        needle = (query or "").strip().lower()

        rows: List[Dict[str, Any]] = []
        for transaction in await self._load_transactions():
            if status_filter and status_filter != "all" and transaction.get("status") != status_filter:
                continue
            if needle:
                haystack = [
                    str(transaction.get("id") or "").lower(),
                    str(transaction.get("userName") or "").lower(),
                    str(transaction.get("userPhone") or ""),
                    str(transaction.get("productName") or "").lower(),
                    str(transaction.get("gameId") or "").lower(),
                ]
                if not any(needle in field for field in haystack):
                    continue
            rows.append(transaction)

        rows.sort(key=lambda row: str(row.get("createdAt") or ""), reverse=True)
        return rows

    async def complete(self, transaction_id: str) -> Optional[Dict[str, Any]]:
        """Settle one outbox entry. Safe to call more than once."""
        async with self._lock:
            outbox = await self._load_outbox()
            entry = next((item for item in outbox if item.get("transactionId") == transaction_id), None)
            target_status = str(entry.get("status") if entry else "success")

            transactions = await self._load_transactions()
            settled: Optional[Dict[str, Any]] = None
            for transaction in transactions:
                if transaction.get("id") != transaction_id:
                    continue
                if transaction.get("status") in OPEN_STATUSES:
                    transaction["status"] = target_status
                    transaction["updatedAt"] = utc_now_iso()
                    settled = transaction
                break

            if settled is not None:
                await self.storage.set(TRANSACTIONS_KEY, transactions)
            if entry is not None:
                remaining = [item for item in outbox if item.get("transactionId") != transaction_id]
                await self.storage.set(OUTBOX_KEY, remaining)

        if settled is None:
            return None

        logger.info(f"Transaction {transaction_id} settled as {target_status}.")
        if self.on_settled is not None:
            try:
                await self.on_settled(dict(settled))
            except Exception as exc:
                logger.error(f"Settlement callback failed for {transaction_id}: {exc}")
        return dict(settled)

    async def recover(self) -> int:
        """Settle overdue outbox entries and reschedule the rest."""
        now = datetime.now(timezone.utc)
        settled = 0
        for entry in await self._load_outbox():
            transaction_id = str(entry["transactionId"])
            due_at = parse_iso(entry.get("dueAt")) or now
            delay = (due_at - now).total_seconds()
            if delay <= 0:
                if await self.complete(transaction_id) is not None:
                    settled += 1
            else:
                self._schedule(transaction_id, delay)

        if settled:
            logger.info(f"Recovered {settled} pending transaction settlement(s).")
        return settled

    def _schedule(self, transaction_id: str, delay: float) -> None:
        task = asyncio.get_running_loop().create_task(self._settle_later(transaction_id, delay))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _settle_later(self, transaction_id: str, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
            await self.complete(transaction_id)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"Failed to settle transaction {transaction_id}")

    async def close(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    @staticmethod
    def _to_float(value: Any, default: float) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            return default
