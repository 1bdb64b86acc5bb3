from fastapi import APIRouter

from fuelpos.app.api.v1.endpoints import (
    alerts,
    audit,
    auth,
    invoices,
    owners,
    reports,
    shifts,
    stations,
    transactions,
    trucks,
    users,
)

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(users.router, prefix="/users", tags=["users"])
api_router.include_router(stations.router, prefix="/stations", tags=["stations"])
# Station-scoped and shift-scoped routes carry their own full paths
api_router.include_router(shifts.router, tags=["shifts"])
api_router.include_router(transactions.router, tags=["transactions"])
api_router.include_router(owners.router, prefix="/owners", tags=["owners"])
api_router.include_router(trucks.router, prefix="/trucks", tags=["trucks"])
api_router.include_router(invoices.router, prefix="/invoices", tags=["invoices"])
api_router.include_router(reports.router, prefix="/reports", tags=["reports"])
api_router.include_router(alerts.router, prefix="/alerts", tags=["alerts"])
api_router.include_router(audit.router, prefix="/audit-logs", tags=["audit"])
