from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .aws import ddb
from .settings import S

@dataclass(frozen=True)
class Tables:
    applications: Any

T = Tables(
    applications=ddb.Table(S.applications_table_name),
)
