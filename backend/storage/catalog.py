# storage/catalog.py
# ============================================================================
# STONE MODEL STOREFRONT: CATALOG STORE
# ============================================================================
# Product repository interface plus the seeded in-memory implementation.
# The pipeline depends on ICatalogRepository only.
# ============================================================================

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Iterable, List, Optional

import structlog

from schemas import CatalogFilter, Product, SortOrder

logger = structlog.get_logger(component="catalog")


def _ts(value: str) -> datetime:
    return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)


SEED_PRODUCTS: List[Product] = [
    Product(
        id="madonna-and-child",
        name="Madonna and Child",
        era="Renaissance Italy 15th Century",
        provenance=(
            "Carved marble relief depicting the Virgin Mary and infant Jesus. "
            "Attributed to a workshop in Florence during the height of the Renaissance. "
            "Features classical drapery and serene facial expressions characteristic of the period."
        ),
        dimensions='24" H x 18" W x 6" D',
        vertices=250000,
        file_size=15000000,
        file_url="/models/Madonna_and_Child_wit_1027185650_generate.glb",
        price=12900,
        published=True,
        thumbnail_url="/images/madonna-and-child.jpg",
        created_at=_ts("2025-01-15T10:00:00"),
        updated_at=_ts("2025-01-15T10:00:00"),
    ),
    Product(
        id="religious-marble-relief",
        name="Religious Marble Relief",
        era="Gothic Period 14th Century",
        provenance=(
            "Elaborate marble relief panel from a medieval cathedral in Northern France. "
            "Features intricate Gothic architectural elements and religious iconography. "
            "Recovered during 19th century cathedral restoration."
        ),
        dimensions='36" H x 28" W x 8" D',
        vertices=320000,
        file_size=18000000,
        file_url="/models/Religious_Marble_Reli_1027183744_generate.glb",
        price=15600,
        published=True,
        thumbnail_url="/images/religious-marble-relief.jpg",
        created_at=_ts("2025-01-16T11:30:00"),
        updated_at=_ts("2025-01-16T11:30:00"),
    ),
    Product(
        id="statue-of-grace",
        name="Statue of Grace",
        era="Baroque Period 17th Century",
        provenance=(
            "Marble sculpture from a private chapel in Rome. Depicts an angel with flowing "
            "robes and outstretched wings. Exhibits the dramatic movement and emotional "
            "intensity characteristic of Baroque sculpture."
        ),
        dimensions='48" H x 22" W x 20" D',
        vertices=280000,
        file_size=16000000,
        file_url="/models/Statue_of_Grace_1027181656_generate.glb",
        price=18900,
        published=True,
        thumbnail_url="/images/statue-of-grace.jpg",
        created_at=_ts("2025-01-14T09:15:00"),
        updated_at=_ts("2025-01-14T09:15:00"),
    ),
    Product(
        id="medieval-knight",
        name="Statue of a Medieval Knight",
        era="Medieval Period 13th Century",
        provenance=(
            "Stone effigy of a crusader knight from a Gothic cathedral in England. "
            "Features period-accurate armor and heraldic details. Originally part of a "
            "tomb monument for a noble family."
        ),
        dimensions='72" H x 24" W x 18" D',
        vertices=180000,
        file_size=9700000,
        file_url="/models/Statue_of_a_Medieval__1027180930_generate.glb",
        price=9800,
        published=True,
        thumbnail_url="/images/medieval-knight.jpg",
        created_at=_ts("2025-01-17T14:20:00"),
        updated_at=_ts("2025-01-17T14:20:00"),
    ),
    Product(
        id="warriors-majesty",
        name="Warrior's Majesty",
        era="Classical Roman 2nd Century AD",
        provenance=(
            "Marble statue of a Roman military commander discovered in archaeological "
            "excavations near Pompeii. Depicts the subject in ceremonial armor with detailed "
            "musculature and commanding pose typical of Roman imperial portraiture."
        ),
        dimensions='66" H x 28" W x 24" D',
        vertices=220000,
        file_size=12000000,
        file_url="/models/Warrior_s_Majesty_1027191655_generate.glb",
        price=14500,
        published=True,
        thumbnail_url="/images/warriors-majesty.jpg",
        created_at=_ts("2025-01-18T16:45:00"),
        updated_at=_ts("2025-01-18T16:45:00"),
    ),
    Product(
        id="classical-relief-panel",
        name="Classical Relief Panel",
        era="Hellenistic Period 3rd Century BC",
        provenance=(
            "Marble relief panel from a Greek temple in Asia Minor. Features intricate "
            "acanthus leaf patterns and mythological scenes. Part of the frieze decoration "
            "from the Temple of Athena. Museum catalog DP317611."
        ),
        dimensions='42" H x 36" W x 6" D',
        vertices=190000,
        file_size=8500000,
        file_url="/models/DP317611_jpg_1027234314_generate.glb",
        price=11200,
        published=True,
        thumbnail_url="/images/classical-relief-panel.jpg",
        created_at=_ts("2025-01-19T09:00:00"),
        updated_at=_ts("2025-01-19T09:00:00"),
    ),
    Product(
        id="ancient-funerary-stele",
        name="Ancient Funerary Stele",
        era="Archaic Greek 6th Century BC",
        provenance=(
            "Limestone funerary monument from Athens depicting a standing warrior figure. "
            "Features archaic smile and detailed armor rendition typical of early Greek "
            "sculpture. Metropolitan Museum catalog DP_18129."
        ),
        dimensions='54" H x 20" W x 10" D',
        vertices=210000,
        file_size=9400000,
        file_url="/models/DP_18129_001_jpg_1027234238_generate.glb",
        price=16800,
        published=True,
        thumbnail_url="/images/ancient-funerary-stele.jpg",
        created_at=_ts("2025-01-19T10:30:00"),
        updated_at=_ts("2025-01-19T10:30:00"),
    ),
    Product(
        id="baroque-architectural-element",
        name="Baroque Architectural Element",
        era="Italian Baroque 18th Century",
        provenance=(
            "Ornate marble architectural fragment from Palazzo Barberini in Rome. Features "
            "elaborate scrollwork, cherub heads, and floral motifs characteristic of late "
            "Baroque decoration. Catalog reference CDI47-101-23."
        ),
        dimensions='48" H x 32" W x 12" D',
        vertices=280000,
        file_size=16000000,
        file_url="/models/cdi47_101_23_jpg_1027234110_generate.glb",
        price=13900,
        published=True,
        thumbnail_url="/images/baroque-architectural-element.jpg",
        created_at=_ts("2025-01-19T11:15:00"),
        updated_at=_ts("2025-01-19T11:15:00"),
    ),
    Product(
        id="architectural-frieze",
        name="Architectural Frieze Fragment",
        era="Roman Imperial 1st Century AD",
        provenance=(
            "Marble frieze section from a Roman public building, likely a forum or basilica. "
            "Depicts processional scene with toga-clad figures and ceremonial objects. "
            "Exhibits fine detail work and classical proportions."
        ),
        dimensions='30" H x 60" W x 8" D',
        vertices=160000,
        file_size=6100000,
        file_url="/models/frieze_1_jpg_1027234347_generate.glb",
        price=10500,
        published=True,
        thumbnail_url="/images/architectural-frieze.jpg",
        created_at=_ts("2025-01-19T12:00:00"),
        updated_at=_ts("2025-01-19T12:00:00"),
    ),
]


# =============================================================================
# FILTERING
# =============================================================================

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _created_key(product: Product) -> datetime:
    created = product.created_at
    if created is None:
        return _EPOCH
    if created.tzinfo is None:
        return created.replace(tzinfo=timezone.utc)
    return created


def apply_filter(products: Iterable[Product], query: CatalogFilter) -> List[Product]:
    """Search, price window, then ordering, as the gallery applies them."""
    results = [p for p in products if p.published or not query.published_only]

    if query.search:
        needle = query.search.lower()
        results = [
            p for p in results
            if needle in p.name.lower()
            or needle in p.era.lower()
            or needle in p.provenance.lower()
        ]

    results = [
        p for p in results
        if p.price >= query.min_price
        and (query.max_price is None or p.price <= query.max_price)
    ]

    if query.sort == SortOrder.NAME:
        results.sort(key=lambda p: p.name.lower())
    elif query.sort == SortOrder.PRICE_ASC:
        results.sort(key=lambda p: p.price)
    elif query.sort == SortOrder.PRICE_DESC:
        results.sort(key=lambda p: p.price, reverse=True)
    elif query.sort == SortOrder.ERA:
        results.sort(key=lambda p: p.era.lower())
    else:
        results.sort(key=_created_key, reverse=True)

    return results


# =============================================================================
# REPOSITORY INTERFACE
# =============================================================================

class ICatalogRepository(ABC):
    """Product lookup, listing and admin writes"""

    @abstractmethod
    async def get(self, product_id: str) -> Optional[Product]:
        pass

    @abstractmethod
    async def list(self, query: Optional[CatalogFilter] = None) -> List[Product]:
        pass

    @abstractmethod
    async def upsert(self, product: Product) -> Product:
        pass


class InMemoryCatalogRepository(ICatalogRepository):
    """Read-mostly product store"""

    def __init__(self, products: Optional[Iterable[Product]] = None):
        seed = SEED_PRODUCTS if products is None else products
        self._products: dict[str, Product] = {p.id: p.model_copy() for p in seed}
        self._lock = asyncio.Lock()

    async def get(self, product_id: str) -> Optional[Product]:
        async with self._lock:
            return self._products.get(product_id)

    async def list(self, query: Optional[CatalogFilter] = None) -> List[Product]:
        async with self._lock:
            snapshot = list(self._products.values())
        return apply_filter(snapshot, query or CatalogFilter())

    async def upsert(self, product: Product) -> Product:
        # Re-validate: model_copy(update=...) elsewhere bypasses validation
        validated = Product.model_validate(product.model_dump())
        now = datetime.now(timezone.utc)

        async with self._lock:
            existing = self._products.get(validated.id)
            created_at = existing.created_at if existing else now
            stored = validated.model_copy(update={
                "created_at": created_at or now,
                "updated_at": now,
            })
            self._products[stored.id] = stored

        logger.info(
            "product_upserted",
            product_id=stored.id,
            created=existing is None,
            published=stored.published,
            price=stored.price,
        )
        return stored
