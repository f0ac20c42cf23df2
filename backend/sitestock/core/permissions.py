"""SiteStock — Permission codes and the role matrix.

Use these constants everywhere; no raw permission strings in route or service files.
"""
PERM_WAREHOUSE_VIEW = "stock.warehouse.view"
PERM_WAREHOUSE_EDIT = "stock.warehouse.edit"
PERM_FINANCIAL_VIEW = "stock.financial.view"
PERM_FINANCIAL_EDIT = "stock.financial.edit"
PERM_REQUEST_CREATE = "stock.request.create"

# Notification audiences
WAREHOUSE_GROUP = [PERM_WAREHOUSE_VIEW, PERM_WAREHOUSE_EDIT]
FINANCE_GROUP = [PERM_FINANCIAL_VIEW, PERM_FINANCIAL_EDIT]

PERMISSION_MATRIX: dict[str, set[str]] = {
    "ADMIN": {
        PERM_WAREHOUSE_VIEW, PERM_WAREHOUSE_EDIT,
        PERM_FINANCIAL_VIEW, PERM_FINANCIAL_EDIT,
        PERM_REQUEST_CREATE,
    },
    "WAREHOUSE": {PERM_WAREHOUSE_VIEW, PERM_WAREHOUSE_EDIT, PERM_REQUEST_CREATE},
    "FINANCIAL": {PERM_FINANCIAL_VIEW, PERM_FINANCIAL_EDIT, PERM_WAREHOUSE_VIEW},
    "SITE": {PERM_REQUEST_CREATE, PERM_WAREHOUSE_VIEW},
}
