"""
Rental lifecycle: issuing a book opens a transaction, returning it closes the
transaction and bills it.

Billing counts started days: any partial day is a full day and a return at
the issue instant still costs one day. The rate is read from the book at
return time, not snapshotted at issue.

The engine keeps no state between calls. Concurrent requests (from any
number of processes) are serialized by conditional single-document updates:

- issue flips ``book.available`` true -> false before the transaction exists,
  so only one issuer can win a given book;
- return moves ``transaction.status`` issued -> returned, so only one
  returner can close a given transaction.

When the write that follows a won guard fails for infrastructure reasons the
write may still have landed on the server. The engine checks (or undoes it by
its known id) before reverting the guard write, and only reverts when that
leaves no open loan on an available book. If the check itself fails the book
stays unavailable and the failure is logged for manual repair.
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, Optional

from bson import ObjectId

from database import utcnow
from errors import AlreadyReturned, BookUnavailable, InvalidTime, NotFound, StoreUnavailable
from schemas import ISSUED, RETURNED, Transaction
from stores import CatalogStore, LedgerStore, UserStore

logger = logging.getLogger(__name__)

DAY = timedelta(days=1)


def rental_days(issue_date: datetime, return_date: datetime) -> int:
    """Whole days billed for a loan, rounded up, never less than one."""
    elapsed = return_date - issue_date
    if elapsed < timedelta(0):
        raise InvalidTime()
    full, rest = divmod(elapsed, DAY)
    days = full + (1 if rest else 0)
    return max(days, 1)


def compute_rent(rent_per_day: float, days: int) -> float:
    rent = Decimal(str(rent_per_day)) * days
    return float(rent.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def normalize_time(value: datetime) -> datetime:
    """Naive UTC with millisecond precision, the way dates come back from MongoDB."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


class RentalEngine:
    def __init__(
        self,
        catalog: CatalogStore,
        users: UserStore,
        ledger: LedgerStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.catalog = catalog
        self.users = users
        self.ledger = ledger
        self.clock = clock

    def is_available(self, book_id) -> bool:
        book = self.catalog.find_book_by_id(book_id)
        if book is None:
            raise NotFound(f"Book {book_id} not found")
        return bool(book.get("available", True))

    def get_transaction(self, transaction_id) -> Dict[str, Any]:
        transaction = self.ledger.find_transaction_by_id(transaction_id)
        if transaction is None:
            raise NotFound(f"Transaction {transaction_id} not found")
        return transaction

    def issue_book(self, book_id, user_id, issue_date: Optional[datetime] = None) -> Dict[str, Any]:
        book = self.catalog.find_book_by_id(book_id)
        if book is None:
            raise NotFound(f"Book {book_id} not found")
        user = self.users.find_user_by_id(user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found")

        loan = Transaction(
            book=book["_id"],
            user=user["_id"],
            issue_date=normalize_time(issue_date) if issue_date else self.clock(),
        )

        if not self.catalog.update_book_availability(book["_id"], True, False):
            logger.warning(f"Issue rejected: book {book['_id']} is already on loan")
            raise BookUnavailable(f"Book {book['_id']} is already on loan")

        transaction_id = ObjectId()
        try:
            transaction = self.ledger.create_transaction(loan, transaction_id=transaction_id)
        except StoreUnavailable:
            self._undo_issue(book["_id"], transaction_id)
            raise

        logger.info(f"Issued book {book['_id']} to user {user['_id']} as transaction {transaction['_id']}")
        return transaction

    def return_book(self, transaction_id, return_time: Optional[datetime] = None) -> Dict[str, Any]:
        transaction = self.get_transaction(transaction_id)
        if transaction["status"] != ISSUED:
            logger.warning(f"Return rejected: transaction {transaction['_id']} already returned")
            raise AlreadyReturned(f"Transaction {transaction['_id']} has already been returned")

        return_time = normalize_time(return_time) if return_time else self.clock()
        if return_time < transaction["issueDate"]:
            raise InvalidTime(
                f"Return time {return_time.isoformat()} precedes issue time "
                f"{transaction['issueDate'].isoformat()}"
            )

        book = self.catalog.find_book_by_id(transaction["book"])
        if book is None:
            raise NotFound(f"Book {transaction['book']} not found")

        days = rental_days(transaction["issueDate"], return_time)
        rent = compute_rent(book["rentPerDay"], days)

        closed = self.ledger.update_transaction_if_status(
            transaction["_id"],
            ISSUED,
            {"status": RETURNED, "returnDate": return_time, "rent": rent},
        )
        if closed is None:
            logger.warning(f"Return rejected: transaction {transaction['_id']} closed concurrently")
            raise AlreadyReturned(f"Transaction {transaction['_id']} has already been returned")

        try:
            freed = self.catalog.update_book_availability(book["_id"], False, True)
        except StoreUnavailable:
            landed = self._release_landed(book["_id"])
            if landed is False:
                self._reopen(transaction)
            if not landed:
                raise
            freed = True
        if not freed:
            # Book was already available; the loan is still closed correctly.
            logger.warning(f"Book {book['_id']} was already available when transaction {transaction['_id']} closed")

        logger.info(f"Returned transaction {transaction['_id']} after {days} day(s), rent {rent}")
        return closed

    def _undo_issue(self, book_id, transaction_id) -> None:
        try:
            self.ledger.delete_open_transaction(transaction_id)
        except StoreUnavailable:
            logger.error(f"Could not remove transaction {transaction_id}; book {book_id} left unavailable")
            return
        try:
            self.catalog.update_book_availability(book_id, False, True)
        except StoreUnavailable:
            logger.error(f"Could not release book {book_id} after failed issue")
        else:
            logger.error(f"Issue of book {book_id} rolled back")

    def _release_landed(self, book_id) -> Optional[bool]:
        """Whether a release that reported a failure was applied; None when it cannot be told."""
        try:
            book = self.catalog.find_book_by_id(book_id)
        except StoreUnavailable:
            logger.error(f"Could not check book {book_id} after failed release; transaction left returned")
            return None
        if book is not None and book.get("available", True):
            logger.warning(f"Release of book {book_id} reported a failure but was applied")
            return True
        return False

    def _reopen(self, transaction: Dict[str, Any]) -> None:
        try:
            self.ledger.update_transaction_if_status(
                transaction["_id"],
                RETURNED,
                {"status": ISSUED, "rent": transaction.get("rent", 0)},
                unset=("returnDate",),
            )
        except StoreUnavailable:
            logger.error(f"Could not reopen transaction {transaction['_id']} after failed return")
        else:
            logger.error(f"Return of transaction {transaction['_id']} rolled back")
