from app.business.vendors.api import router
from app.business.vendors.models import Vendor, VendorHistory
from app.business.vendors.service import VendorService, vendor_service

__all__ = ["router", "Vendor", "VendorHistory", "VendorService", "vendor_service"]
