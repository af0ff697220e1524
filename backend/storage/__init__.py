# storage/__init__.py
# ============================================================================
# STONE MODEL STOREFRONT: STORAGE MODULE
# ============================================================================
# Catalog repository, purchase ledger and model asset stores
# ============================================================================

from storage.catalog import (
    ICatalogRepository,
    InMemoryCatalogRepository,
    SEED_PRODUCTS,
    apply_filter,
)
from storage.ledger import (
    IPurchaseLedger,
    InMemoryPurchaseLedger,
    PostgresPurchaseLedger,
)
from storage.assets import (
    IAssetStore,
    LocalAssetStore,
    S3AssetStore,
)

__all__ = [
    # Catalog
    "ICatalogRepository",
    "InMemoryCatalogRepository",
    "SEED_PRODUCTS",
    "apply_filter",
    # Ledger
    "IPurchaseLedger",
    "InMemoryPurchaseLedger",
    "PostgresPurchaseLedger",
    # Assets
    "IAssetStore",
    "LocalAssetStore",
    "S3AssetStore",
]
