from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse, Response

from dongnegage.api.schemas.storefront import ProductDetailPage, StorefrontPage
from dongnegage.api.services import og_image_service, storefront_service
from dongnegage.api.services.shop_service import get_active_shop_by_slug
from dongnegage.core.database import GetDBDep

router = APIRouter(prefix="/shops/{slug}", tags=["Storefront"])


@router.get("", response_model=StorefrontPage)
def get_shop_page(slug: str, db: GetDBDep):
    page = storefront_service.get_storefront(db, slug)
    if not page:
        raise HTTPException(status_code=404, detail="가게를 찾을 수 없습니다")
    return page


@router.get("/products/{product_id}", response_model=ProductDetailPage)
def get_product_page(slug: str, product_id: int, db: GetDBDep):
    page = storefront_service.get_product_detail(db, slug, product_id)
    if not page:
        raise HTTPException(status_code=404, detail="상품을 찾을 수 없습니다")
    return page


@router.get("/manifest")
def get_manifest(slug: str):
    return JSONResponse(
        content=storefront_service.build_manifest(slug),
        media_type="application/manifest+json",
        headers={"Cache-Control": "public, max-age=3600"},
    )


@router.get("/opengraph-image")
def get_opengraph_image(slug: str, db: GetDBDep):
    shop = get_active_shop_by_slug(db, slug)
    image = og_image_service.render_og_image(
        shop.name if shop else None,
        shop.description if shop else None,
    )
    return Response(content=image, media_type="image/png",
                    headers={"Cache-Control": "public, max-age=3600"})
