"""
Keyword Labs Endpoints

Typed helpers for the keyword-data endpoints the dashboard uses, built on the
paginated executor. Each provider result row holds an `items` list; the
helpers flatten those items into records.
"""

import math
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from keyword_gateway.provider.executor import PaginatedExecutor
from keyword_gateway.provider.markets import DEFAULT_LANGUAGE, build_task_body
from keyword_gateway.provider.types import ProviderCredentials

logger = logging.getLogger(__name__)

RANKED_KEYWORDS_PATH = "dataforseo_labs/google/ranked_keywords/live"
BULK_KEYWORD_DIFFICULTY_PATH = "dataforseo_labs/google/bulk_keyword_difficulty/live"
SERP_COMPETITORS_PATH = "dataforseo_labs/google/serp_competitors/live"

BULK_METRICS_BATCH_SIZE = 100
SERP_FEATURES_BATCH_SIZE = 50


@dataclass
class RankedKeyword:
    keyword: str
    position: int
    search_volume: int
    cpc: float = 0.0
    competition: float = 0.0
    keyword_difficulty: int = 0


@dataclass
class KeywordMetrics:
    keyword: str
    search_volume: int
    cpc: float
    competition: float
    keyword_difficulty: int


@dataclass
class SerpFeatures:
    keyword: str
    features: List[str] = field(default_factory=list)


def _dig(data: Any, *keys: str, default: Any = None) -> Any:
    """Walk nested dicts, returning `default` on any missing or null step."""
    for key in keys:
        if not isinstance(data, dict):
            return default
        data = data.get(key)
        if data is None:
            return default
    return data


def _items(rows: Sequence[Any]) -> Iterator[Dict[str, Any]]:
    for row in rows:
        for item in _dig(row, "items", default=[]) or []:
            if isinstance(item, dict):
                yield item


def _batches(values: Sequence[str], size: int) -> Iterator[List[str]]:
    for start in range(0, len(values), size):
        yield list(values[start:start + size])


def get_domain_ranked_keywords(
    executor: PaginatedExecutor,
    domain: str,
    market: Union[str, int, None],
    credentials: ProviderCredentials,
    limit: int = 1000,
    max_keywords: int = 500,
    language: str = DEFAULT_LANGUAGE,
    tenant_id: Optional[str] = None,
) -> List[RankedKeyword]:
    """Keywords a domain ranks for, best positions first, capped at max_keywords."""
    body = build_task_body(
        target=domain,
        market=market,
        language=language,
        load_rank_absolute=True,
        order_by=["ranked_serp_element.serp_item.rank_group,asc"],
    )
    rows = executor.fetch_paginated(
        RANKED_KEYWORDS_PATH,
        body,
        credentials,
        page_size=limit,
        max_pages=max(1, math.ceil(max_keywords / limit)),
        tenant_id=tenant_id,
        module="ranked_keywords",
    )

    keywords = [
        RankedKeyword(
            keyword=_dig(item, "keyword_data", "keyword", default=""),
            position=_dig(item, "ranked_serp_element", "serp_item", "rank_absolute", default=0),
            search_volume=_dig(item, "keyword_data", "keyword_info", "search_volume", default=0),
            cpc=_dig(item, "keyword_data", "keyword_info", "cpc", default=0.0),
            competition=_dig(item, "keyword_data", "keyword_info", "competition", default=0.0),
            keyword_difficulty=_dig(item, "keyword_data", "keyword_properties", "keyword_difficulty", default=0),
        )
        for item in _items(rows.results)
    ]
    return keywords[:max_keywords]


def get_bulk_keyword_metrics(
    executor: PaginatedExecutor,
    keywords: Sequence[str],
    market: Union[str, int, None],
    credentials: ProviderCredentials,
    language: str = DEFAULT_LANGUAGE,
    tenant_id: Optional[str] = None,
) -> List[KeywordMetrics]:
    """Volume, CPC, competition and difficulty for keywords, fetched in batches of 100."""
    metrics: List[KeywordMetrics] = []
    batches = list(_batches(keywords, BULK_METRICS_BATCH_SIZE))

    for index, batch in enumerate(batches):
        rows = executor.fetch_paginated(
            BULK_KEYWORD_DIFFICULTY_PATH,
            build_task_body(keywords=batch, market=market, language=language),
            credentials,
            page_size=BULK_METRICS_BATCH_SIZE,
            max_pages=1,
            tenant_id=tenant_id,
            module="bulk_keyword_metrics",
        )
        metrics.extend(
            KeywordMetrics(
                keyword=item.get("keyword") or "",
                search_volume=_dig(item, "keyword_info", "search_volume", default=0),
                cpc=_dig(item, "keyword_info", "cpc", default=0.0),
                competition=_dig(item, "keyword_info", "competition", default=0.0),
                keyword_difficulty=_dig(item, "keyword_properties", "keyword_difficulty", default=0),
            )
            for item in _items(rows.results)
        )

        if index + 1 < len(batches):
            executor.sleep(executor.config.inter_page_delay_sec)

    return metrics


def get_keyword_serp_features(
    executor: PaginatedExecutor,
    keywords: Sequence[str],
    market: Union[str, int, None],
    credentials: ProviderCredentials,
    language: str = DEFAULT_LANGUAGE,
    tenant_id: Optional[str] = None,
) -> List[SerpFeatures]:
    """SERP feature types per keyword, fetched in batches of 50."""
    features: List[SerpFeatures] = []
    batches = list(_batches(keywords, SERP_FEATURES_BATCH_SIZE))

    for index, batch in enumerate(batches):
        rows = executor.fetch_paginated(
            SERP_COMPETITORS_PATH,
            build_task_body(keywords=batch, market=market, language=language),
            credentials,
            page_size=SERP_FEATURES_BATCH_SIZE,
            max_pages=1,
            tenant_id=tenant_id,
            module="serp_features",
        )
        for item in _items(rows.results):
            types = [
                feature.get("type")
                for feature in _dig(item, "serp_info", "features", default=[]) or []
                if isinstance(feature, dict) and feature.get("type")
            ]
            features.append(SerpFeatures(keyword=item.get("keyword") or "", features=types))

        if index + 1 < len(batches):
            executor.sleep(executor.config.inter_page_delay_sec)

    return features
