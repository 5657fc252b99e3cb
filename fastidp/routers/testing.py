from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter

from fastidp.services.applications import mark_test_completed

# Only mounted when ENABLE_TEST_ENDPOINTS is set.
router = APIRouter(prefix="/api/_test", tags=["testing"])


@router.post("/applications/{application_id}/complete")
def complete_application(application_id: str) -> Dict[str, Any]:
    item = mark_test_completed(application_id)
    return {
        "success": True,
        "applicationId": application_id,
        "paymentStatus": item.get("payment_status"),
    }
