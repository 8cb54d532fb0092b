import asyncio
import logging
from decimal import Decimal

from sqlalchemy import select

from app.db.session import AsyncSessionLocal
from app.models.loan_product import LoanProduct

logger = logging.getLogger(__name__)


DEFAULT_PRODUCTS = [
    {
        "name": "Personal Loan",
        "description": "Quick personal loans for any purpose",
        "min_amount": Decimal("1000"),
        "max_amount": Decimal("50000"),
        "interest_rate": Decimal("8.5"),
        "min_duration_months": 6,
        "max_duration_months": 60,
    },
    {
        "name": "Business Loan",
        "description": "Loans for small business expansion",
        "min_amount": Decimal("5000"),
        "max_amount": Decimal("100000"),
        "interest_rate": Decimal("7.5"),
        "min_duration_months": 12,
        "max_duration_months": 120,
    },
    {
        "name": "Education Loan",
        "description": "Finance your education",
        "min_amount": Decimal("2000"),
        "max_amount": Decimal("75000"),
        "interest_rate": Decimal("6.5"),
        "min_duration_months": 12,
        "max_duration_months": 120,
    },
    {
        "name": "Emergency Loan",
        "description": "Quick cash for emergencies",
        "min_amount": Decimal("500"),
        "max_amount": Decimal("10000"),
        "interest_rate": Decimal("12.0"),
        "min_duration_months": 1,
        "max_duration_months": 12,
    },
    {
        "name": "Home Improvement Loan",
        "description": "Upgrade your living space",
        "min_amount": Decimal("3000"),
        "max_amount": Decimal("75000"),
        "interest_rate": Decimal("7.0"),
        "min_duration_months": 12,
        "max_duration_months": 360,
    },
]


async def init_db() -> None:
    """
    Seed the database with the default loan products.
    """
    async with AsyncSessionLocal() as session:
        result = await session.execute(select(LoanProduct.name))
        existing = set(result.scalars().all())
        missing = [product for product in DEFAULT_PRODUCTS if product["name"] not in existing]
        if not missing:
            logger.info("Loan products already seeded")
            return
        session.add_all(LoanProduct(is_active=True, **product) for product in missing)
        await session.commit()
        logger.info("Seeded %s loan products", len(missing))

if __name__ == "__main__":
    asyncio.run(init_db())
