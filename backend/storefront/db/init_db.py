from __future__ import annotations

from storefront.db.models import Base
from storefront.db.session import engine


def init_db() -> None:
    """Create catalog, discount and coupon tables that do not exist yet."""
    Base.metadata.create_all(bind=engine)


if __name__ == "__main__":
    init_db()
    print("Storefront pricing tables initialized.")
