"""
API routers package
"""

from app.routers.qr_codes import router as qr_codes_router
from app.routers.checkin import router as checkin_router
