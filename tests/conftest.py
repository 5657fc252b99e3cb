from __future__ import annotations

import copy
import os
import re
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest
import stripe
from botocore.exceptions import ClientError

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Settings are read once at import time.
os.environ.setdefault("AWS_REGION", "us-east-1")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_123")
os.environ.setdefault("STRIPE_PUBLISHABLE_KEY", "pk_test_123")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("EASYPOST_API_KEY", "ep_test_123")
os.environ.setdefault("UPLOADS_BUCKET", "fastidp-test-uploads")


def conditional_failure(operation: str) -> ClientError:
    return ClientError(
        {"Error": {"Code": "ConditionalCheckFailedException", "Message": "The conditional request failed"}},
        operation,
    )


_EXISTS = re.compile(r"^attribute_exists\((\S+)\)$")
_NOT_EXISTS = re.compile(r"^attribute_not_exists\((\S+)\)$")
_EQUALS = re.compile(r"^(\S+) = (:\S+)$")


def _condition_holds(expr: str, item: Optional[Dict[str, Any]], names: Dict[str, str], values: Dict[str, Any]) -> bool:
    for clause in expr.split(" AND "):
        clause = clause.strip()
        m = _EXISTS.match(clause)
        if m:
            if item is None or names.get(m.group(1), m.group(1)) not in item:
                return False
            continue
        m = _NOT_EXISTS.match(clause)
        if m:
            if item is not None and names.get(m.group(1), m.group(1)) in item:
                return False
            continue
        m = _EQUALS.match(clause)
        if m:
            attr = names.get(m.group(1), m.group(1))
            if item is None or item.get(attr) != values[m.group(2)]:
                return False
            continue
        raise AssertionError(f"unsupported condition clause: {clause}")
    return True


class FakeApplicationsTable:
    """Just enough of a boto3 Table for the applications store."""

    def __init__(self) -> None:
        self.items: Dict[str, Dict[str, Any]] = {}
        self.update_calls: List[Dict[str, Any]] = []

    def get_item(self, *, Key: Dict[str, str], **_: Any) -> Dict[str, Any]:
        item = self.items.get(Key["application_id"])
        return {"Item": copy.deepcopy(item)} if item else {}

    def put_item(self, *, Item: Dict[str, Any], ConditionExpression: Optional[str] = None, **_: Any) -> None:
        current = self.items.get(Item["application_id"])
        if ConditionExpression and not _condition_holds(ConditionExpression, current, {}, {}):
            raise conditional_failure("PutItem")
        self.items[Item["application_id"]] = copy.deepcopy(Item)

    def query(
        self,
        *,
        IndexName: str,
        ExpressionAttributeValues: Dict[str, Any],
        Limit: Optional[int] = None,
        **_: Any,
    ) -> Dict[str, List[Dict[str, Any]]]:
        assert IndexName == "stripe_session_id-index"
        sid = ExpressionAttributeValues[":sid"]
        found = [copy.deepcopy(i) for i in self.items.values() if i.get("stripe_session_id") == sid]
        return {"Items": found[:Limit] if Limit else found}

    def update_item(
        self,
        *,
        Key: Dict[str, str],
        UpdateExpression: str,
        ExpressionAttributeValues: Optional[Dict[str, Any]] = None,
        ExpressionAttributeNames: Optional[Dict[str, str]] = None,
        ConditionExpression: Optional[str] = None,
        **_: Any,
    ) -> None:
        names = ExpressionAttributeNames or {}
        values = ExpressionAttributeValues or {}
        self.update_calls.append({"Key": Key, "UpdateExpression": UpdateExpression, "ConditionExpression": ConditionExpression})
        current = self.items.get(Key["application_id"])
        if ConditionExpression and not _condition_holds(ConditionExpression, current, names, values):
            raise conditional_failure("UpdateItem")

        item = copy.deepcopy(current) if current is not None else {"application_id": Key["application_id"]}
        set_part, _, remove_part = UpdateExpression.partition(" REMOVE ")
        for assignment in set_part.replace("SET ", "", 1).split(","):
            lhs, rhs = assignment.split("=", 1)
            item[names.get(lhs.strip(), lhs.strip())] = copy.deepcopy(values[rhs.strip()])
        for attr in remove_part.split(",") if remove_part else []:
            item.pop(names.get(attr.strip(), attr.strip()), None)
        self.items[Key["application_id"]] = item


@pytest.fixture
def applications_table(monkeypatch):
    table = FakeApplicationsTable()
    tables_stub = type("TablesStub", (), {"applications": table})()
    monkeypatch.setattr("fastidp.services.applications.T", tables_stub)
    return table


@pytest.fixture
def stripe_mock(monkeypatch):
    mock = MagicMock()
    # keep the real exception classes so except clauses still match
    mock.StripeError = stripe.StripeError
    mock.SignatureVerificationError = stripe.SignatureVerificationError
    monkeypatch.setattr("fastidp.services.payments.stripe", mock)
    monkeypatch.setattr("fastidp.services.coupons.stripe", mock)
    return mock


@pytest.fixture
def automation_mock(monkeypatch):
    mock = MagicMock(return_value=True)
    monkeypatch.setattr("fastidp.services.applications.notify_order_completed", mock)
    return mock
