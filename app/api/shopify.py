from fastapi import APIRouter, Depends, HTTPException, Query
from app.dependecies import get_catalog, get_user_id
from app.models.schemas import ProductSearchRequest, StorefrontCartAddRequest
from app.services.shopify import ShopifyClient, format_products_for_chat

router = APIRouter(prefix="/api/shopify", tags=["shopify"], dependencies=[Depends(get_user_id)])


@router.post("/search")
async def search_products(
    request: ProductSearchRequest,
    catalog: ShopifyClient = Depends(get_catalog),
):
    query = request.query.strip()
    if not query:
        raise HTTPException(status_code=400, detail="Search query is required")

    products = await catalog.search_products(query, request.limit)
    return {
        "success": True,
        "data": {
            "products": products,
            "count": len(products),
            "formattedResponse": format_products_for_chat(products),
        },
    }


@router.get("/product/{handle}")
async def get_product(
    handle: str,
    catalog: ShopifyClient = Depends(get_catalog),
):
    product = await catalog.get_product_by_handle(handle)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"success": True, "data": product}


@router.get("/featured")
async def featured_products(
    limit: int = Query(default=10, ge=1, le=50),
    catalog: ShopifyClient = Depends(get_catalog),
):
    products = await catalog.get_featured_products(limit)
    return {
        "success": True,
        "data": {
            "products": products,
            "count": len(products),
            "formattedResponse": format_products_for_chat(products),
        },
    }


@router.post("/cart/create")
async def create_storefront_cart(catalog: ShopifyClient = Depends(get_catalog)):
    return {"success": True, "data": await catalog.create_cart()}


@router.post("/cart/add")
async def add_to_storefront_cart(
    request: StorefrontCartAddRequest,
    catalog: ShopifyClient = Depends(get_catalog),
):
    cart = await catalog.add_to_cart(request.cart_id, request.variant_id, request.quantity)
    return {"success": True, "data": cart}


# Cart ids are gids that contain slashes.
@router.get("/cart/{cart_id:path}")
async def get_storefront_cart(
    cart_id: str,
    catalog: ShopifyClient = Depends(get_catalog),
):
    cart = await catalog.get_cart(cart_id)
    if cart is None:
        raise HTTPException(status_code=404, detail="Cart not found")
    return {"success": True, "data": cart}


@router.get("/order/{order_name}")
async def get_order_status(
    order_name: str,
    catalog: ShopifyClient = Depends(get_catalog),
):
    order = await catalog.get_order_status(order_name)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return {"success": True, "data": order}
