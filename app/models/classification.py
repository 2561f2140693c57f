"""Pydantic models for rendered pages and page classification."""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PageRole(str, Enum):
    """Legal role of a critical page within a packet."""
    MAIN_CONTRACT = "main_contract"
    COUNTER_OFFER = "counter_offer"
    ADDENDUM = "addendum"
    BROKER_INFO = "broker_info"


class Party(str, Enum):
    """Which side authored a counter-offer or addendum."""
    BUYER = "buyer"
    SELLER = "seller"


class PageImage(BaseModel):
    """One rasterized page of a packet."""

    model_config = ConfigDict(frozen=True)

    page_number: int
    data: bytes = Field(repr=False)
    resolution: int
    media_type: str = "image/png"


class PageRoleLabel(BaseModel):
    """Classifier verdict for a single critical page."""

    page_number: int
    form_code: str = "UNKNOWN"
    form_page: Optional[int] = None
    role: PageRole
    party: Optional[Party] = None
    label: str = ""
    footer_text: Optional[str] = None
    confidence: float = 0.0

    @property
    def dedupe_key(self) -> tuple:
        """Pages sharing this key are versions of the same form page."""
        return (self.role.value, self.form_code.upper(), self.form_page)


class PackageMetadata(BaseModel):
    detected_form_codes: List[str] = Field(default_factory=list)
    sample_footers: List[str] = Field(default_factory=list)
    total_detected_pages: int = 0
    has_multiple_forms: bool = False


class ClassificationResult(BaseModel):
    """Packet-level classification: which pages matter and what they are."""

    critical_page_numbers: List[int] = Field(default_factory=list)
    page_labels: Dict[int, PageRoleLabel] = Field(default_factory=dict)
    package_metadata: PackageMetadata = Field(default_factory=PackageMetadata)
    failed_batches: int = 0
