"""
Vulnerability model as handed over by the ingestion pipeline
"""
from datetime import datetime
from enum import Enum
from typing import List
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class Severity(str, Enum):
    """CVE severity levels"""
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class Vulnerability(BaseModel):
    """Vulnerability record (read-only inside the alert engine)"""
    cve_id: str
    title: str = ""
    description: str = ""
    severity: Severity
    cvss_score: float = Field(0.0, ge=0.0, le=10.0)
    published_date: datetime
    affected_software: List[str] = []
    tags: List[str] = []
    references: List[str] = []
    exploit_available: bool = False
    patch_available: bool = False
    kev: bool = False

    class Config:
        populate_by_name = True
        alias_generator = to_camel
        frozen = True
