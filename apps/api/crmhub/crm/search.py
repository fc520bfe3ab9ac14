"""Weighted full-text search over the CRM tables.

Every CRM model declares ``__search_fields__`` in three weight classes. On
Postgres the tables carry a generated ``search_vector`` (``setweight`` A/B/C)
and hits are ranked with ``ts_rank``; elsewhere candidates are narrowed with
``LIKE`` and ranked in Python with the same class weights.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from sqlalchemy import Text, cast, func, literal_column, or_, select
from sqlalchemy.orm import Session

from crmhub.crm.resources import RESOURCES, CRMResource
from crmhub.crm.schemas import SearchHit, SearchResponse
from crmhub.platform.security.actor import ActorUser, to_auth_context
from crmhub.services.common import unprocessable


logger = logging.getLogger("crmhub.crm.search")

WEIGHTS: dict[str, float] = {"A": 1.0, "B": 0.4, "C": 0.2}
CANDIDATE_LIMIT = 500

_TOKEN = re.compile(r"\w+", re.UNICODE)


def tokenize(text: str) -> list[str]:
    return [token for token in _TOKEN.findall(text.lower()) if token]


def _field_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple, set)):
        return " ".join(str(item) for item in value)
    return str(value)


def rank_record(record: Any, search_fields: dict[str, tuple[str, ...]], terms: list[str]) -> float:
    """Share of query terms found in each weight class, times the class weight, summed.

    A term matches a word when the word starts with it, like a prefix tsquery.
    """

    if not terms:
        return 0.0
    score = 0.0
    for weight_class, fields in search_fields.items():
        words: set[str] = set()
        for field in fields:
            words.update(tokenize(_field_text(getattr(record, field, None))))
        if not words:
            continue
        matched = sum(1 for term in terms if any(word.startswith(term) for word in words))
        score += WEIGHTS.get(weight_class, 0.0) * matched / len(terms)
    return round(score, 6)


class CRMSearch:
    def search(
        self,
        session: Session,
        actor_user: ActorUser,
        query: str,
        *,
        resources: list[str] | None = None,
        limit: int = 20,
    ) -> SearchResponse:
        terms = tokenize(query)
        if not terms:
            raise unprocessable("search query has no searchable terms")

        selected = [RESOURCES[name] for name in resources if name in RESOURCES] if resources else list(RESOURCES.values())
        postgres = session.get_bind().dialect.name == "postgresql"
        hits: list[SearchHit] = []
        for resource in selected:
            if not resource.public_reads and not actor_user.can(resource.permission("read")):
                continue
            if postgres:
                hits.extend(self._ts_rank_hits(session, actor_user, resource, query, limit))
            else:
                hits.extend(self._weighted_hits(session, actor_user, resource, terms, limit))

        hits.sort(key=lambda hit: hit.rank, reverse=True)
        logger.debug("crm.search", extra={"terms": len(terms), "hits": len(hits)})
        return SearchResponse(query=query, hits=hits[:limit])

    def _ts_rank_hits(
        self,
        session: Session,
        actor_user: ActorUser,
        resource: CRMResource,
        query: str,
        limit: int,
    ) -> list[SearchHit]:
        model = resource.model
        tsquery = func.plainto_tsquery("english", query)
        vector = literal_column(f"{resource.table}.search_vector")
        rank = func.ts_rank(vector, tsquery).label("rank")
        stmt = select(model, rank).where(vector.op("@@")(tsquery), model.deleted_at.is_(None))
        stmt = resource.repository.apply_scope_query(stmt, to_auth_context(actor_user))
        rows = session.execute(stmt.order_by(rank.desc()).limit(limit)).all()
        return [self._hit(resource, record, float(score)) for record, score in rows]

    def _weighted_hits(
        self,
        session: Session,
        actor_user: ActorUser,
        resource: CRMResource,
        terms: list[str],
        limit: int,
    ) -> list[SearchHit]:
        model = resource.model
        search_fields = model.__search_fields__
        columns = [getattr(model, field) for fields in search_fields.values() for field in fields]
        matches = [cast(column, Text).ilike(f"%{term}%") for column in columns for term in terms]
        if not matches:
            return []
        stmt = select(model).where(model.deleted_at.is_(None), or_(*matches))
        stmt = resource.repository.apply_scope_query(stmt, to_auth_context(actor_user))
        candidates = session.scalars(stmt.limit(CANDIDATE_LIMIT)).all()

        ranked = [(record, rank_record(record, search_fields, terms)) for record in candidates]
        ranked = [(record, score) for record, score in ranked if score > 0]
        ranked.sort(key=lambda item: item[1], reverse=True)
        return [self._hit(resource, record, score) for record, score in ranked[:limit]]

    @staticmethod
    def _hit(resource: CRMResource, record: Any, rank: float) -> SearchHit:
        title = getattr(record, resource.title_field, None)
        return SearchHit(resource=resource.name, id=record.id, title=str(title) if title is not None else None, rank=rank)


crm_search = CRMSearch()
