from __future__ import annotations

import base64
import json
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from fastidp.errors import DuplicateApplicationError, ProviderError, ValidationError
from fastidp.models import SaveApplicationReq
from fastidp.routers import applications as routes

PNG = "data:image/png;base64," + base64.b64encode(b"\x89PNG fake image").decode()


def body(**overrides):
    payload = {
        "applicationId": "app_42",
        "formData": {
            "email": "jane@example.com",
            "firstName": "Jane",
            "lastName": "Doe",
            "selectedPermits": ["International Driving Permit", "IAPD (Brazil / Uruguay only)"],
            "processingOption": "fast",
            "shippingCategory": "international",
            "internationalFullAddress": "12 Rue Cler\n75007 Paris\nFrance",
            "signature": PNG,
        },
        "fileData": {
            "driversLicense": [{"name": "license front.png", "type": "image/png", "data": PNG}],
            "passportPhoto": [{"name": "me.png", "type": "image/png", "data": PNG}],
        },
    }
    payload.update(overrides)
    return SaveApplicationReq.model_validate(payload)


@pytest.fixture
def s3(monkeypatch):
    client = MagicMock()
    monkeypatch.setattr("fastidp.services.uploads.s3", client)
    return client


def test_save_application_persists_pending_record(applications_table, s3):
    resp = routes.save_application(body())

    assert resp["success"] is True
    assert resp["applicationId"] == "app_42"
    assert resp["fulfillmentType"] == "automated"
    # 4000 permits + 14800 tier, 7.75% tax
    assert resp["pricing"]["subtotalCents"] == 18800
    assert resp["pricing"]["taxCents"] == 1457
    assert resp["pricing"]["totalCents"] == 20257

    stored = applications_table.items["app_42"]
    assert stored["payment_status"] == "pending"
    assert set(stored["file_urls"]) == {"driversLicense", "passportPhoto", "signature"}
    license_ref = stored["file_urls"]["driversLicense"][0]
    assert license_ref["path"] == "applications/app_42/driversLicense/1-license_front.png"
    assert license_ref["type"] == "image/png"
    assert license_ref["name"] == "license front.png"
    # the signature image lives in storage, not in the form snapshot
    assert "signature" not in json.loads(stored["form_data"])
    assert s3.put_object.call_count == 3


def test_save_application_validation_happens_before_uploads(applications_table, s3):
    payload = body()
    payload.form_data["firstName"] = ""
    with pytest.raises(ValidationError) as exc:
        routes.save_application(payload)
    assert exc.value.extra["field"] == "firstName"
    s3.put_object.assert_not_called()
    assert applications_table.items == {}


def test_save_application_requires_documents(applications_table, s3):
    with pytest.raises(ValidationError) as exc:
        routes.save_application(body(fileData={"driversLicense": [{"name": "a.png", "data": PNG}]}))
    assert exc.value.extra["field"] == "passportPhoto"
    s3.put_object.assert_not_called()


def test_upload_failure_persists_nothing(applications_table, s3):
    s3.put_object.side_effect = ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")
    with pytest.raises(ProviderError) as exc:
        routes.save_application(body())
    assert exc.value.code == "UPLOAD_FAILED"
    assert applications_table.items == {}


def test_duplicate_application_is_rejected_before_uploads(applications_table, s3):
    routes.save_application(body())
    s3.reset_mock()
    with pytest.raises(DuplicateApplicationError):
        routes.save_application(body())
    s3.put_object.assert_not_called()


def test_unsupported_document_type_is_rejected(applications_table, s3):
    pdf_as_exe = "data:application/x-msdownload;base64," + base64.b64encode(b"MZ").decode()
    payload = body(fileData={
        "driversLicense": [{"name": "a.exe", "data": pdf_as_exe}],
        "passportPhoto": [{"name": "me.png", "data": PNG}],
    })
    with pytest.raises(ValidationError) as exc:
        routes.save_application(payload)
    assert exc.value.code == "INVALID_FILE"
    assert applications_table.items == {}
