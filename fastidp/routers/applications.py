from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter

from fastidp.errors import DuplicateApplicationError
from fastidp.models import SaveApplicationReq
from fastidp.services.applications import application_exists, create_application, validate_application
from fastidp.services.fulfillment import FulfillmentRouter
from fastidp.services.pricing import get_pricing_engine
from fastidp.services.uploads import is_data_url, store_application_files

router = APIRouter(prefix="/api", tags=["applications"])


def _collect_files(body: SaveApplicationReq) -> Dict[str, List[Dict[str, Any]]]:
    files = {cat: [f.model_dump() for f in uploads] for cat, uploads in body.file_data.items() if uploads}
    signature = body.form_data.get("signature")
    if is_data_url(signature) and "signature" not in files:
        files["signature"] = [{"name": "signature.png", "data": signature}]
    return files


@router.post("/save-application")
def save_application(body: SaveApplicationReq) -> Dict[str, Any]:
    files = _collect_files(body)
    form_data = {k: v for k, v in body.form_data.items() if not (k == "signature" and is_data_url(v))}

    validate_application(body.application_id, form_data, files.keys())
    engine = get_pricing_engine()
    quote = engine.quote_form(form_data)

    application_id = body.application_id
    # uploads are keyed by id; never overwrite another application's documents
    if application_exists(application_id):
        raise DuplicateApplicationError(application_id)
    file_refs = store_application_files(application_id, files)

    item = create_application(
        application_id,
        form_data,
        file_refs,
        engine=engine,
        fulfillment=FulfillmentRouter(engine.config),
        quote=quote,
    )
    return {
        "success": True,
        "applicationId": application_id,
        "fulfillmentType": item["fulfillment_type"],
        "pricing": quote.to_dict(),
    }
