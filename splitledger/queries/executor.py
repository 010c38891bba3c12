"""
Transaction Query Engine

DESIGN DECISION: Listing is DETERMINISTIC and runs entirely in the database.
The filters are turned into one predicate that both the page query and the
count query share, so `total` always describes exactly the rows that could
appear on some page.

Visibility: a transaction is listed for a user when at least one of its
split rows points at an account that user owns. Friends' transactions the
user has no stake in never show up.

Ordering is newest first, with the id as tie-breaker so pages never
overlap or skip rows.
"""

from collections.abc import Mapping
from typing import Optional, Union

import structlog
from pydantic import ValidationError

from splitledger.config import LedgerSettings, get_settings
from splitledger.models.ledger import TransactionFilters, TransactionPage
from splitledger.services.errors import InvalidInputError
from splitledger.services.storage import LedgerStorageInterface, LedgerUnitOfWork


logger = structlog.get_logger(__name__)


class TransactionQueryExecutor:
    """
    Executes filtered, paginated transaction listings.

    GUARANTEES:
    - Only returns transactions the caller has a stake in
    - Every listed transaction carries its full rows and tags
    - Empty page (not an error) when nothing matches
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        settings: Optional[LedgerSettings] = None,
    ):
        self._storage = storage
        self._settings = settings or get_settings().ledger

    def parse_filters(
        self,
        filters: Union[TransactionFilters, Mapping, None],
    ) -> TransactionFilters:
        """
        Build TransactionFilters, applying the configured page size.

        Raises:
            InvalidInputError: Malformed filters or a page size over the limit
        """
        if filters is None:
            filters = {}

        if not isinstance(filters, TransactionFilters):
            data = dict(filters)
            data.setdefault("limit", self._settings.default_page_size)
            try:
                filters = TransactionFilters.model_validate(data)
            except ValidationError as e:
                raise InvalidInputError.from_validation_error(e)

        if filters.limit > self._settings.max_page_size:
            raise InvalidInputError(
                f"limit: must be at most {self._settings.max_page_size}"
            )
        return filters

    def list_transactions(
        self,
        user_id: int,
        filters: Union[TransactionFilters, Mapping, None] = None,
    ) -> TransactionPage:
        """List one page of the caller's transactions."""
        filters = self.parse_filters(filters)
        with self._storage.unit_of_work() as uow:
            return self.execute(uow, user_id, filters)

    def execute(
        self,
        uow: LedgerUnitOfWork,
        user_id: int,
        filters: TransactionFilters,
    ) -> TransactionPage:
        """Run the count and page queries inside an open unit of work."""
        total = uow.count_transactions(user_id, filters)

        transactions = []
        if total > filters.offset:
            ids = uow.find_transaction_ids(user_id, filters, filters.offset, filters.limit)
            for transaction_id in ids:
                transaction = uow.get_transaction(transaction_id)
                if transaction is not None:
                    transactions.append(transaction)

        logger.debug(
            "transactions_listed",
            user_id=user_id,
            query=self.describe(filters),
            total=total,
            returned=len(transactions),
        )

        return TransactionPage(
            page=filters.page,
            limit=filters.limit,
            total=total,
            transactions=transactions,
        )

    @staticmethod
    def describe(filters: TransactionFilters) -> str:
        """One-line human description of a filter set."""
        desc_parts = [f"page {filters.page} ({filters.limit} per page)"]
        if filters.category:
            desc_parts.append(f"category: {filters.category}")
        if filters.tags:
            desc_parts.append(f"tags: {', '.join(filters.tags)}")
        if filters.account_id is not None:
            desc_parts.append(f"account: {filters.account_id}")
        if filters.start_date or filters.end_date:
            start = filters.start_date.isoformat() if filters.start_date else "beginning"
            end = filters.end_date.isoformat() if filters.end_date else "now"
            desc_parts.append(f"from {start} to {end}")
        return " | ".join(desc_parts)
