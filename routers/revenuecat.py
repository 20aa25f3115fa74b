"""
revenuecat.py
Offerings and product catalogue for the mobile paywall
"""
from fastapi import APIRouter, Depends
from auth import get_current_user
from models import User
from services.revenuecat import fetch_offerings, configured_products

router = APIRouter()


@router.get("/api/revenuecat/offerings")
async def get_offerings(current_user: User = Depends(get_current_user)):
    offerings = await fetch_offerings()
    return {"success": True, "data": offerings}


@router.get("/api/revenuecat/products")
def get_products(current_user: User = Depends(get_current_user)):
    return {"success": True, "data": {"products": configured_products()}}
