# backend/history_query.py

"""
History Query Engine - read path over the conversion ledger

- Typed filters (numeric search, inclusive UTC date range) compiled once
  into a Mongo query
- Fixed ordering: most recent first
- 1-indexed pagination with counts computed under the same filter
- User display fields attached with one batch lookup per page
"""

import logging
import math
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict
from pymongo.errors import PyMongoError

from gauge_errors import InvalidInputError, StorageError

logger = logging.getLogger(__name__)

UNKNOWN_USER_NAME = "Unknown user"
UNKNOWN_USER_EMAIL = "N/A"

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

# Mongo encodes skip as a signed 64-bit integer
MAX_SKIP = 2 ** 63 - 1


class HistoryScope(str, Enum):
    """Which conversions a caller may list"""
    GLOBAL = "global"
    SELF = "self"


def parse_search_term(term: Optional[str]) -> Optional[Union[int, float]]:
    """Numeric search value, or None when the term is empty or not a number."""
    if term is None or not term.strip():
        return None
    try:
        value = float(term.strip())
    except ValueError:
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return int(value) if value.is_integer() else value


def parse_filter_date(raw: Optional[str], field: str) -> Optional[date]:
    """
    Parse a calendar date from a query parameter.

    Accepts YYYY-MM-DD or a full ISO-8601 timestamp; timestamps are
    converted to UTC before taking the date.
    """
    if raw is None or not raw.strip():
        return None
    text = raw.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        raise InvalidInputError(f"Invalid date for '{field}': {raw}", field=field)
    if parsed.tzinfo is not None:
        try:
            parsed = parsed.astimezone(timezone.utc)
        except OverflowError:
            # Offset pushes the instant outside the representable date range
            raise InvalidInputError(f"Invalid date for '{field}': {raw}", field=field)
    return parsed.date()


class HistoryFilter(BaseModel):
    search: Optional[Union[int, float]] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    @classmethod
    def from_query_params(
        cls,
        search: Optional[str] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None
    ) -> "HistoryFilter":
        return cls(
            search=parse_search_term(search),
            date_from=parse_filter_date(date_from, "from"),
            date_to=parse_filter_date(date_to, "to"),
        )

    def to_mongo_query(self, user_id: Optional[str] = None) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if user_id is not None:
            query["user_id"] = user_id

        if self.search is not None:
            query["$or"] = [{"value_cm": self.search}, {"volume_l": self.search}]

        created_at: Dict[str, datetime] = {}
        if self.date_from is not None:
            created_at["$gte"] = datetime.combine(self.date_from, time.min, tzinfo=timezone.utc)
        if self.date_to is not None:
            created_at["$lte"] = datetime.combine(self.date_to, time.max, tzinfo=timezone.utc)
        if created_at:
            query["created_at"] = created_at

        return query


class HistoryItem(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str
    user_id: str
    value_cm: Union[int, float]
    volume_l: Union[int, float]
    created_at: datetime
    user_name: str = UNKNOWN_USER_NAME
    user_email: str = UNKNOWN_USER_EMAIL


class HistoryPage(BaseModel):
    items: List[HistoryItem]
    current_page: int
    total_pages: int
    total_items: int

    def to_response(self) -> Dict[str, Any]:
        return {
            "data": [item.model_dump(mode="json") for item in self.items],
            "currentPage": self.current_page,
            "totalPages": self.total_pages,
            "totalItems": self.total_items,
        }


class HistoryQueryEngine:
    """Paginated, filtered, enriched listing of conversions"""

    def __init__(self, db, scope: HistoryScope = HistoryScope.GLOBAL):
        self.db = db
        self.scope = scope

    async def query(
        self,
        filters: HistoryFilter,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        user_id: Optional[str] = None
    ) -> HistoryPage:
        """
        List conversions, most recent first.

        In SELF scope, user_id is required and restricts results to that
        principal; in GLOBAL scope it is ignored.

        Raises:
            InvalidInputError: On a bad page/page_size or missing SELF user
            StorageError: If the conversions query fails
        """
        if page < 1:
            raise InvalidInputError("page must be >= 1", field="page")
        if page_size < 1 or page_size > MAX_PAGE_SIZE:
            raise InvalidInputError(f"limit must be between 1 and {MAX_PAGE_SIZE}", field="limit")

        scope_user_id = None
        if self.scope == HistoryScope.SELF:
            if not user_id:
                raise InvalidInputError("user scope requires a user id", field="user_id")
            scope_user_id = user_id

        query = filters.to_mongo_query(scope_user_id)
        skip = (page - 1) * page_size
        if skip > MAX_SKIP:
            raise InvalidInputError("page is too large", field="page")

        try:
            total_items = await self.db.conversions.count_documents(query)
            conversions = await self.db.conversions.find(query, {"_id": 0})\
                .sort("created_at", -1)\
                .skip(skip)\
                .limit(page_size)\
                .to_list(page_size)
        except PyMongoError as e:
            logger.error(f"History query failed (query={query}): {e}")
            raise StorageError("history query") from e

        items = await self._enrich(conversions)
        total_pages = (total_items + page_size - 1) // page_size if total_items > 0 else 0

        return HistoryPage(
            items=items,
            current_page=page,
            total_pages=total_pages,
            total_items=total_items,
        )

    async def _enrich(self, conversions: List[dict]) -> List[HistoryItem]:
        """Attach user name/email; unresolved users get placeholders."""
        user_ids = list({conv.get("user_id") for conv in conversions if conv.get("user_id")})

        users_by_id: Dict[str, dict] = {}
        if user_ids:
            try:
                users = await self.db.users.find(
                    {"id": {"$in": user_ids}},
                    {"_id": 0, "id": 1, "name": 1, "email": 1}
                ).to_list(len(user_ids))
                users_by_id = {user["id"]: user for user in users if user.get("id")}
            except PyMongoError as e:
                logger.warning(f"User enrichment failed for {len(user_ids)} user(s), using placeholders: {e}")

        items = []
        for conv in conversions:
            user = users_by_id.get(conv.get("user_id"), {})
            items.append(HistoryItem(
                **conv,
                user_name=user.get("name") or UNKNOWN_USER_NAME,
                user_email=user.get("email") or UNKNOWN_USER_EMAIL,
            ))
        return items
