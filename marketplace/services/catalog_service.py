"""Read-only lookups for products, sellers, chapters, stewards, listings and members."""

from marketplace.database import get_db
from marketplace.models.schemas import (
    Chapter,
    FraternityMember,
    Product,
    Seller,
    Steward,
    StewardListing,
    from_row,
)


def _fetch_one(sql: str, params: tuple):
    db = get_db()
    try:
        return db.execute(sql, params).fetchone()
    finally:
        db.close()


def get_product(product_id: int) -> Product | None:
    return from_row(Product, _fetch_one("SELECT * FROM products WHERE id = ?", (product_id,)))


def get_seller(seller_id: int) -> Seller | None:
    return from_row(Seller, _fetch_one("SELECT * FROM sellers WHERE id = ?", (seller_id,)))


def get_seller_by_stripe_account(account_id: str) -> Seller | None:
    return from_row(
        Seller,
        _fetch_one("SELECT * FROM sellers WHERE stripe_account_id = ?", (account_id,)),
    )


def get_chapter(chapter_id: int) -> Chapter | None:
    return from_row(Chapter, _fetch_one("SELECT * FROM chapters WHERE id = ?", (chapter_id,)))


def get_steward(steward_id: int) -> Steward | None:
    return from_row(Steward, _fetch_one("SELECT * FROM stewards WHERE id = ?", (steward_id,)))


def get_listing(listing_id: int) -> StewardListing | None:
    return from_row(
        StewardListing,
        _fetch_one("SELECT * FROM steward_listings WHERE id = ?", (listing_id,)),
    )


def get_member(member_id: int) -> FraternityMember | None:
    return from_row(
        FraternityMember,
        _fetch_one("SELECT * FROM fraternity_members WHERE id = ?", (member_id,)),
    )


def get_products_by_seller(seller_id: int) -> list[Product]:
    db = get_db()
    try:
        rows = db.execute(
            "SELECT * FROM products WHERE seller_id = ? ORDER BY id", (seller_id,)
        ).fetchall()
    finally:
        db.close()
    return [from_row(Product, row) for row in rows]
