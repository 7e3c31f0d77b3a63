from fastapi import APIRouter, Depends
from app.dependecies import get_db_path, get_user_id
from app.models import database as db
from app.models.schemas import CartAddRequest, CartUpdateRequest

router = APIRouter(prefix="/api", tags=["cart"])


@router.get("/cart")
async def get_cart(
    user_id: str = Depends(get_user_id),
    db_path: str = Depends(get_db_path),
):
    items = await db.cart_items(db_path, user_id)
    return {
        "success": True,
        "data": {
            "items": items,
            "total": sum(item.total for item in items),
            "count": len(items),
        },
    }


@router.get("/cart/count")
async def get_cart_count(
    user_id: str = Depends(get_user_id),
    db_path: str = Depends(get_db_path),
):
    return {"success": True, "data": await db.cart_summary(db_path, user_id)}


@router.post("/cart/add")
async def add_to_cart(
    request: CartAddRequest,
    user_id: str = Depends(get_user_id),
    db_path: str = Depends(get_db_path),
):
    item, updated = await db.upsert_cart_item(
        db_path,
        user_id,
        product_id=request.product_id,
        product_name=request.product_name,
        price=request.price,
        quantity=request.quantity,
        description=request.description,
        image_url=request.image_url,
        product_url=request.product_url,
    )
    summary = await db.cart_summary(db_path, user_id)
    return {
        "success": True,
        "data": item,
        "cartTotal": summary["total"],
        "cartCount": summary["count"],
        "message": "Item quantity updated in cart" if updated else "Item added to cart",
    }


@router.put("/cart/{item_id}")
async def update_cart_item(
    item_id: str,
    request: CartUpdateRequest,
    user_id: str = Depends(get_user_id),
    db_path: str = Depends(get_db_path),
):
    item = await db.set_cart_item_quantity(db_path, user_id, item_id, request.quantity)
    summary = await db.cart_summary(db_path, user_id)
    return {"success": True, "data": item, "cartTotal": summary["total"], "cartCount": summary["count"]}


@router.delete("/cart/{item_id}")
async def remove_cart_item(
    item_id: str,
    user_id: str = Depends(get_user_id),
    db_path: str = Depends(get_db_path),
):
    await db.delete_cart_item(db_path, user_id, item_id)
    summary = await db.cart_summary(db_path, user_id)
    return {
        "success": True,
        "message": "Item removed from cart",
        "cartTotal": summary["total"],
        "cartCount": summary["count"],
    }


@router.delete("/cart")
async def clear_cart(
    user_id: str = Depends(get_user_id),
    db_path: str = Depends(get_db_path),
):
    await db.clear_cart(db_path, user_id)
    return {"success": True, "message": "Cart cleared"}


@router.get("/purchases")
async def list_purchases(
    user_id: str = Depends(get_user_id),
    db_path: str = Depends(get_db_path),
):
    return {"success": True, "data": await db.purchase_history(db_path, user_id)}


@router.post("/checkout")
async def checkout(
    user_id: str = Depends(get_user_id),
    db_path: str = Depends(get_db_path),
):
    result = await db.checkout(db_path, user_id)
    return {"success": True, "data": {**result, "message": "Checkout completed successfully"}}
