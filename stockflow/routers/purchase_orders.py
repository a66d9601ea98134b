from fastapi import APIRouter, Depends, Query, status

from stockflow.core.errors import StockflowError
from stockflow.dependencies import get_sync_service, require_auth
from stockflow.routers.errors import http_error
from stockflow.schemas.purchase_order import CreatePurchaseOrderRequest

router = APIRouter(prefix="/purchase-orders", tags=["Purchase Orders"])


@router.get("/suggestions")
def reorder_suggestions(service=Depends(get_sync_service)):
    suggestions = service.get_reorder_suggestions()
    return {
        "suggestions": suggestions,
        "total_vendors": len(suggestions),
        "total_amount": round(sum(item.total_amount for item in suggestions), 2),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_purchase_order(
    payload: CreatePurchaseOrderRequest,
    service=Depends(get_sync_service),
    _auth=Depends(require_auth),
):
    try:
        return service.create_purchase_order(payload.suggestion, payload.created_by, payload.notes)
    except StockflowError as exc:
        raise http_error(exc) from exc


@router.get("/drafts")
def draft_orders(
    limit: int = Query(50, ge=1, le=200),
    service=Depends(get_sync_service),
):
    return {"orders": service.list_draft_orders(limit)}


@router.post("/{po_id}/submit")
def submit_purchase_order(
    po_id: int,
    service=Depends(get_sync_service),
    _auth=Depends(require_auth),
):
    try:
        return service.submit_purchase_order(po_id)
    except StockflowError as exc:
        raise http_error(exc) from exc
