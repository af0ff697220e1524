import pytest
from pydantic import ValidationError

from schemas import CatalogFilter, Product, SortOrder
from storage import SEED_PRODUCTS, InMemoryCatalogRepository, apply_filter


async def test_seeded_catalog_lists_all_published_products(catalog):
    products = await catalog.list()

    assert len(products) == 9
    assert all(p.published for p in products)
    madonna = await catalog.get("madonna-and-child")
    assert madonna.price == 12900
    assert madonna.file_url.endswith(".glb")


async def test_newest_first_by_default(catalog):
    products = await catalog.list()

    assert products[0].id == "architectural-frieze"
    assert products[-1].id == "statue-of-grace"


async def test_search_matches_name_era_and_provenance_case_insensitively(catalog):
    by_name = await catalog.list(CatalogFilter(search="KNIGHT"))
    by_era = await catalog.list(CatalogFilter(search="gothic"))

    assert [p.id for p in by_name] == ["medieval-knight"]
    assert "religious-marble-relief" in [p.id for p in by_era]


async def test_price_window_and_sorting(catalog):
    cheap_first = await catalog.list(CatalogFilter(sort=SortOrder.PRICE_ASC))
    dear_first = await catalog.list(CatalogFilter(sort=SortOrder.PRICE_DESC))
    window = await catalog.list(CatalogFilter(min_price=12000, max_price=15000))

    assert cheap_first[0].id == "medieval-knight"
    assert dear_first[0].id == "statue-of-grace"
    assert all(12000 <= p.price <= 15000 for p in window)
    assert {p.id for p in window} == {
        "madonna-and-child",
        "warriors-majesty",
        "baroque-architectural-element",
    }


async def test_name_sort_is_alphabetical(catalog):
    names = [p.name for p in await catalog.list(CatalogFilter(sort=SortOrder.NAME))]
    assert names == sorted(names, key=str.lower)


async def test_unpublished_products_are_hidden_unless_requested():
    draft = SEED_PRODUCTS[0].model_copy(update={"id": "draft-relief", "published": False})
    catalog = InMemoryCatalogRepository([SEED_PRODUCTS[0], draft])

    assert [p.id for p in await catalog.list()] == ["madonna-and-child"]
    everything = await catalog.list(CatalogFilter(published_only=False))
    assert {p.id for p in everything} == {"madonna-and-child", "draft-relief"}
    assert (await catalog.get("draft-relief")).published is False


def test_missing_timestamps_sort_last_for_newest():
    undated = SEED_PRODUCTS[1].model_copy(update={"id": "undated", "created_at": None})
    ordered = apply_filter([undated, SEED_PRODUCTS[0]], CatalogFilter())

    assert [p.id for p in ordered] == ["madonna-and-child", "undated"]


async def test_upsert_sets_timestamps_and_keeps_created_at():
    catalog = InMemoryCatalogRepository([])
    product = SEED_PRODUCTS[0].model_copy(update={"created_at": None, "updated_at": None})

    first = await catalog.upsert(product)
    second = await catalog.upsert(first.model_copy(update={"price": 13900}))

    assert first.created_at is not None
    assert second.created_at == first.created_at
    assert second.updated_at >= first.updated_at
    assert (await catalog.get(product.id)).price == 13900


async def test_upsert_revalidates_products():
    catalog = InMemoryCatalogRepository([])
    bad = SEED_PRODUCTS[0].model_copy(update={"price": 50})

    with pytest.raises(ValidationError):
        await catalog.upsert(bad)


@pytest.mark.parametrize("field,value", [
    ("id", "Bad Id"),
    ("price", 99),
    ("price", 100001),
    ("fileUrl", "/assets/model.obj"),
    ("dimensions", "large"),
])
def test_product_schema_rejects_out_of_range_values(field, value):
    data = SEED_PRODUCTS[0].model_dump(by_alias=True)
    data[field] = value

    with pytest.raises(ValidationError):
        Product.model_validate(data)
