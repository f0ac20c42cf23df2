"""SiteStock — API v1 router aggregation."""
from fastapi import APIRouter

from sitestock.api.v1.endpoints import purchase_requests, stock, stock_requests

api_router = APIRouter()

api_router.include_router(stock.router, prefix="/stock", tags=["stock"])
api_router.include_router(stock_requests.router, prefix="/stock-requests", tags=["stock-requests"])
api_router.include_router(purchase_requests.router, prefix="/purchase-requests", tags=["purchase-requests"])
