from fastapi import APIRouter, Depends

from app.api import deps
from app.models.loan_product import LoanProduct
from app.schemas.loan import LoanProductDTO
from app.services.context import Actor, EngineContext

router = APIRouter(prefix="/loan-products", tags=["loan-products"])


@router.get("", response_model=list[LoanProductDTO], summary="List active loan products")
async def list_loan_products(
    actor: Actor = Depends(deps.get_current_actor),
    ctx: EngineContext = Depends(deps.get_engine_context),
) -> list[LoanProductDTO]:
    products = await ctx.store.list(LoanProduct, is_active=True)
    products.sort(key=lambda product: product.name)
    return [LoanProductDTO.model_validate(product) for product in products]
