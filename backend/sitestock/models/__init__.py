"""SiteStock — SQLAlchemy models."""
from sitestock.models.audit import AuditLog
from sitestock.models.project import Project, ProjectMember
from sitestock.models.purchase_request import PurchasePriority, PurchaseRequest, PurchaseStatus
from sitestock.models.stock import MovementType, PriceHistory, StockItem, StockMovement, StockStatus
from sitestock.models.stock_request import StockRequest, StockRequestDelivery, StockRequestStatus
from sitestock.models.tenant import Tenant, User

__all__ = [
    "Tenant", "User",
    "Project", "ProjectMember",
    "StockItem", "StockMovement", "PriceHistory", "StockStatus", "MovementType",
    "StockRequest", "StockRequestDelivery", "StockRequestStatus",
    "PurchaseRequest", "PurchaseStatus", "PurchasePriority",
    "AuditLog",
]
