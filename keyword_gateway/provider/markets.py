"""
Market and request-body helpers for provider tasks.
"""

from typing import Any, Dict, List, Optional, Union

# Market code -> provider location code
MARKET_LOCATION_MAP: Dict[str, int] = {
    "us": 2840,
    "uk": 2826,
    "ca": 2124,
    "au": 2036,
    "de": 2276,
    "fr": 2250,
    "es": 2724,
    "it": 2380,
    "br": 2076,
    "mx": 2484,
    "in": 2356,
    "jp": 2392,
}

DEFAULT_MARKET = "us"
DEFAULT_LANGUAGE = "en"


def resolve_location_code(market: Union[str, int, None]) -> int:
    """
    Map a market code ("us", "UK") or a raw location code to a provider location code.

    Raises:
        ValueError: If the market is unknown
    """
    if market is None:
        return MARKET_LOCATION_MAP[DEFAULT_MARKET]
    if isinstance(market, int):
        return market

    code = MARKET_LOCATION_MAP.get(market.strip().lower())
    if code is None:
        raise ValueError(f"Unknown market: {market}")
    return code


def build_task_body(
    keywords: Optional[List[str]] = None,
    target: Optional[str] = None,
    market: Union[str, int, None] = None,
    language: str = DEFAULT_LANGUAGE,
    **extra: Any,
) -> Dict[str, Any]:
    """
    Build a task body carrying either `keywords` or `target` plus location and language.

    Raises:
        ValueError: If neither or both of keywords and target are given
    """
    if (keywords is None) == (target is None):
        raise ValueError("Exactly one of keywords or target is required")

    body: Dict[str, Any] = {
        "location_code": resolve_location_code(market),
        "language_code": language,
    }
    if keywords is not None:
        body["keywords"] = list(keywords)
    else:
        body["target"] = target
    body.update(extra)
    return body
