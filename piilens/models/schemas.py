"""Pydantic data models for the PII detection pipeline."""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class PIIType(str, enum.Enum):
    """Categories of personally identifiable information."""
    CREDIT_CARD = "credit_card"
    ADDRESS = "address"
    STREET_SIGN = "street_sign"
    PHONE = "phone"
    EMAIL = "email"
    SSN = "ssn"
    LICENSE_PLATE = "license_plate"
    NAME = "name"
    DRIVERS_LICENSE = "drivers_license"
    ID_CARD = "id_card"
    ZIP_CODE = "zip_code"
    BARCODE = "barcode"
    DOCUMENT_ID = "document_id"
    NUMERICAL_DATA = "numerical_data"
    SENSITIVE_DATA = "sensitive_data"
    PASSPORT_NUMBER = "passport_number"
    MEDICAL_INFO = "medical_info"
    FINANCIAL_DATA = "financial_data"
    BIOMETRIC_DATA = "biometric_data"
    IP_ADDRESS = "ip_address"
    MAC_ADDRESS = "mac_address"
    VEHICLE_VIN = "vehicle_vin"
    INSURANCE_NUMBER = "insurance_number"
    BANK_ACCOUNT = "bank_account"
    TAX_ID = "tax_id"
    STUDENT_ID = "student_id"
    EMPLOYEE_ID = "employee_id"
    PATIENT_ID = "patient_id"
    PRESCRIPTION_DATA = "prescription_data"
    HEALTH_INSURANCE = "health_insurance"
    CRYPTO_WALLET = "crypto_wallet"
    SOCIAL_MEDIA_HANDLE = "social_media_handle"
    DATE_OF_BIRTH = "date_of_birth"


class DetectionSource(str, enum.Enum):
    """Which detection layer produced the match."""
    PATTERN = "pattern"
    VISION = "vision"
    LLM = "llm"
    SPECIALIZED = "specialized"


class RegionType(str, enum.Enum):
    """Coarse label attached to a region by the vision collaborator."""
    TEXT_REGION = "text_region"
    DOCUMENT = "document"
    FACE = "face"


class ObscuringTechnique(str, enum.Enum):
    """How a detection's text is transformed for output."""
    REDACTION = "redaction"
    MASKING = "masking"
    ANONYMIZATION = "anonymization"
    ENCRYPTION = "encryption"
    HASHING = "hashing"
    TOKENIZATION = "tokenization"


class PIIErrorType(str, enum.Enum):
    """Error taxonomy shared by every layer."""
    INITIALIZATION = "initialization"
    PROCESSING = "processing"
    LLM = "llm"
    VISION = "vision"
    OCR = "ocr"
    CONFIGURATION = "configuration"
    VALIDATION = "validation"


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------

class BBox(BaseModel):
    """Corner-based box used by OCR lines (pixels from top-left)."""
    x0: float
    y0: float
    x1: float
    y1: float

    @property
    def width(self) -> float:
        return self.x1 - self.x0

    @property
    def height(self) -> float:
        return self.y1 - self.y0


class BoundingBox(BaseModel):
    """Origin + size box attached to every detection."""
    model_config = ConfigDict(frozen=True)

    x: float = 0.0
    y: float = 0.0
    width: float = Field(default=0.0, ge=0.0)
    height: float = Field(default=0.0, ge=0.0)


# ---------------------------------------------------------------------------
# Collaborator input
# ---------------------------------------------------------------------------

class OCRLine(BaseModel):
    """One recognised text line and its position on the image."""
    text: str
    bbox: BBox


class OCRResult(BaseModel):
    """Output of the OCR collaborator: full text plus ordered lines."""
    text: str = ""
    lines: list[OCRLine] = []

    @model_validator(mode="after")
    def _derive_text(self) -> "OCRResult":
        if not self.text and self.lines:
            self.text = "\n".join(line.text for line in self.lines)
        return self

    @classmethod
    def empty(cls) -> "OCRResult":
        return cls(text="", lines=[])


class VisionRegion(BaseModel):
    """A rectangle reported by the vision collaborator."""
    type: RegionType
    confidence: float
    bounding_box: BoundingBox


# ---------------------------------------------------------------------------
# Detections
# ---------------------------------------------------------------------------

def clamp_confidence(value: float) -> float:
    """Clamp *value* into the closed unit interval."""
    return max(0.0, min(1.0, float(value)))


class Detection(BaseModel):
    """A single PII finding.  Immutable; identity is ``(type, text)``."""
    model_config = ConfigDict(frozen=True)

    type: PIIType
    text: str
    confidence: float
    bounding_box: BoundingBox = Field(default_factory=BoundingBox)
    line: int = 0
    source: DetectionSource
    verified: bool = False

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, v: Any) -> float:
        return clamp_confidence(v)

    @property
    def key(self) -> tuple[PIIType, str]:
        return (self.type, self.text)


class PIIError(BaseModel):
    """A recorded (usually recoverable) failure inside a pipeline run."""
    model_config = ConfigDict(frozen=True)

    type: PIIErrorType
    message: str
    layer: Optional[str] = None
    details: dict[str, Any] = {}
    recoverable: bool = True
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class LayerResult(BaseModel):
    """Output of one layer invocation; consumed only by the orchestrator."""
    model_config = ConfigDict(frozen=True)

    layer: str
    detections: list[Detection] = []
    success: bool = True
    error: Optional[PIIError] = None
    confidence: float = 0.0           # mean confidence, 0 when empty
    processing_time: float = 0.0      # milliseconds
    provider: Optional[str] = None    # LLM layers only


class DetectionStats(BaseModel):
    """Summary counters over a list of detections."""
    total: int = 0
    by_type: dict[str, int] = {}
    by_source: dict[str, int] = {}
    average_confidence: float = 0.0
    high_confidence_count: int = 0


class DetectionMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_lines: int = 0
    total_characters: int = 0
    detection_sources: dict[str, int] = {}
    layer_contributions: dict[str, int] = {}
    cross_validation_score: float = 0.0


# ---------------------------------------------------------------------------
# Obscuring
# ---------------------------------------------------------------------------

class ObscuringResult(BaseModel):
    """Obscured representation of one detection."""
    model_config = ConfigDict(frozen=True)

    original_text: str
    obscured_text: str
    technique: ObscuringTechnique
    reversible: bool = False
    metadata: dict[str, Any] = {}


class TokenMapping(BaseModel):
    """A reversible obscured value and the original it stands for.

    Ciphertexts are registered with ``original_text=None``; the key, not
    the map, recovers them.
    """
    token_string: str
    original_text: Optional[str] = None
    pii_type: PIIType
    technique: ObscuringTechnique = ObscuringTechnique.TOKENIZATION
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DetectionResult(BaseModel):
    """Top-level output of a pipeline run.  Never mutated after construction."""
    model_config = ConfigDict(frozen=True)

    success: bool
    detections: list[Detection] = []
    errors: list[PIIError] = []
    processing_time: float = 0.0      # milliseconds
    metadata: DetectionMetadata = Field(default_factory=DetectionMetadata)
    obscured: list[ObscuringResult] = []


# ---------------------------------------------------------------------------
# API request / response
# ---------------------------------------------------------------------------

class DetectRequest(BaseModel):
    """Image source: a file path, URL or data URI understood by the OCR engine."""
    image_source: str


class DetectTextRequest(BaseModel):
    text: str


class ObscureRequest(BaseModel):
    detection: Detection
    technique: Optional[ObscuringTechnique] = None


class BatchObscureRequest(BaseModel):
    detections: list[Detection]
    technique: Optional[ObscuringTechnique] = None


class RevealRequest(BaseModel):
    obscured_text: str
    technique: ObscuringTechnique


class RevealResponse(BaseModel):
    found: bool
    original_text: Optional[str] = None


class DetokenizeRequest(BaseModel):
    text: str


class DetokenizeResponse(BaseModel):
    original_text: str
    tokens_replaced: int
    unresolved_tokens: list[str] = []


class CacheStatsResponse(BaseModel):
    size: int
    ttl_seconds: float
    hits: int
    misses: int


class TokenStatsResponse(BaseModel):
    size: int
    counter: int


class StatsResponse(BaseModel):
    cache: CacheStatsResponse
    tokens: TokenStatsResponse
    providers: list[dict[str, Any]] = []
