import logging
import os

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from storefront.routes.coupons_r import router as coupons_router
from storefront.routes.discount_engine_r import router as discount_engine_router
from storefront.routes.discounts_r import router as discounts_router

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

app = FastAPI(
    title="MedEasy Storefront API",
    version="0.1.0",
    description="Catalog pricing: discount rules, campaign prices and coupons.",
)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(_: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Validation error", "details": jsonable_encoder(exc.errors())},
    )


@app.get("/health")
def health_check():
    return {"status": "ok"}


app.include_router(discount_engine_router)
app.include_router(discounts_router)
app.include_router(coupons_router)
