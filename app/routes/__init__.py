from fastapi import APIRouter
from .stock_routes import router as stock_router
from .request_routes import router as request_router
from .donation_routes import router as donation_router


router = APIRouter()

router.include_router(stock_router)
router.include_router(request_router)
router.include_router(donation_router)
