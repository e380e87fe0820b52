"""
Rank catalog: ordered activation tiers.
Loads from Config module, changed only through update_rank_catalog().
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional
import logging

from mlm_engine.errors import InvalidCatalog, InvalidRank

logger = logging.getLogger(__name__)

INACTIVE = "inactive"


@dataclass(frozen=True)
class RankTier:
    """One activation tier of the catalog."""
    key: str
    displayName: str
    activationAmount: Decimal
    levelIncomeEnabled: bool
    globalIncomeEnabled: bool
    index: int


def _parse_catalog(raw_config: List[Dict[str, Any]]) -> List[RankTier]:
    """
    Convert raw catalog entries into RankTier objects.

    Raises:
        InvalidCatalog: If an entry is malformed, a key repeats or amounts
            do not strictly increase
    """
    if not isinstance(raw_config, list) or not raw_config:
        raise InvalidCatalog("Rank catalog must be a non-empty list")

    tiers: List[RankTier] = []
    seen = set()

    for index, rank_data in enumerate(raw_config):
        if not isinstance(rank_data, dict):
            raise InvalidCatalog(f"Rank entry #{index} must be an object")
        try:
            key = str(rank_data["key"])
            amount = Decimal(str(rank_data["activationAmount"]))
        except (KeyError, InvalidOperation) as e:
            raise InvalidCatalog(f"Invalid rank entry #{index}: {e}")

        if key == INACTIVE or key in seen:
            raise InvalidCatalog(f"Duplicate or reserved rank key '{key}'")
        seen.add(key)

        if not amount.is_finite() or amount <= 0 or amount != amount.quantize(Decimal("0.01")):
            raise InvalidCatalog(f"Rank '{key}' has invalid activation amount {amount}")

        if tiers and amount <= tiers[-1].activationAmount:
            raise InvalidCatalog(
                f"Rank '{key}' amount {amount} must exceed "
                f"'{tiers[-1].key}' amount {tiers[-1].activationAmount}"
            )

        for flag in ("levelIncome", "globalIncome"):
            if flag in rank_data and not isinstance(rank_data[flag], bool):
                raise InvalidCatalog(
                    f"Rank '{key}' flag '{flag}' must be true or false, got {rank_data[flag]!r}"
                )

        tiers.append(RankTier(
            key=key,
            displayName=rank_data.get("displayName", key),
            activationAmount=amount.quantize(Decimal("0.01")),
            levelIncomeEnabled=rank_data.get("levelIncome", True),
            globalIncomeEnabled=rank_data.get("globalIncome", False),
            index=index
        ))

    return tiers


def get_rank_catalog() -> List[RankTier]:
    """
    Get rank catalog from Config module.

    Raises:
        InvalidCatalog: If RANK_CONFIG is not loaded or malformed
    """
    from config import Config

    raw_config = Config.get(Config.RANK_CONFIG)

    if not raw_config:
        logger.error("RANK_CONFIG not loaded!")
        raise InvalidCatalog("RANK_CONFIG must be loaded before use")

    return _parse_catalog(raw_config)


# Lazy-loaded catalog cache
_RANK_CATALOG_CACHE: List[RankTier] = []


def get_rank_catalog_cached() -> List[RankTier]:
    """
    Get rank catalog with caching.
    Loads from Config on first access, then returns cached version.
    """
    global _RANK_CATALOG_CACHE

    if not _RANK_CATALOG_CACHE:
        _RANK_CATALOG_CACHE = get_rank_catalog()
        logger.info(f"Loaded rank catalog: {len(_RANK_CATALOG_CACHE)} ranks")

    return _RANK_CATALOG_CACHE


def invalidate_rank_cache() -> None:
    global _RANK_CATALOG_CACHE
    _RANK_CATALOG_CACHE = []


def update_rank_catalog(raw_config: List[Dict[str, Any]]) -> List[RankTier]:
    """
    Administrative write interface for the catalog.

    The new catalog is validated in full before it replaces the old one.
    Existing cycles and transactions keep the amounts they were created with.
    """
    from config import Config

    tiers = _parse_catalog(raw_config)
    Config.set(Config.RANK_CONFIG, [dict(entry) for entry in raw_config])
    invalidate_rank_cache()
    logger.info(f"Rank catalog updated: {[t.key for t in tiers]}")
    return tiers


# Public accessor - use this everywhere instead of reading Config directly
def RANK_CATALOG() -> List[RankTier]:
    """Get current rank catalog."""
    return get_rank_catalog_cached()


def get_rank(key: str) -> RankTier:
    """
    Look up a tier by key.

    Raises:
        InvalidRank: If the key is not in the catalog
    """
    for tier in RANK_CATALOG():
        if tier.key == key:
            return tier
    raise InvalidRank(f"Unknown rank '{key}'", {"rank": key})


def find_rank(key: str) -> Optional[RankTier]:
    for tier in RANK_CATALOG():
        if tier.key == key:
            return tier
    return None


def is_valid_rank(key: str) -> bool:
    return find_rank(key) is not None


def first_rank() -> RankTier:
    return RANK_CATALOG()[0]


def rank_index(key: str) -> int:
    """Catalog index of a rank; INACTIVE is -1."""
    if key == INACTIVE:
        return -1
    return get_rank(key).index
