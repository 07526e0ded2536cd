"""Enhancement pass and quality scoring for preview records."""

from __future__ import annotations

import re
from typing import Dict, Optional, Tuple

from .models import PreviewRecord, content_hash

WHITESPACE_RE = re.compile(r"\s+")
ELLIPSIS = "..."

SERVICE_CATEGORIES: Dict[str, str] = {
    "LAMBDA": "Compute",
    "EC2": "Compute",
    "ECS": "Containers",
    "EKS": "Containers",
    "S3": "Storage",
    "DYNAMODB": "Database",
    "RDS": "Database",
    "CLOUDFORMATION": "Management",
    "CLOUDWATCH": "Management",
    "IAM": "Security",
}
DEFAULT_CATEGORY = "Other"

# Checked in order; first substring hit wins.
DOCUMENTATION_TYPES: Tuple[Tuple[str, str], ...] = (
    ("/userguide/", "User Guide"),
    ("/api/", "API Reference"),
    ("/cli/", "CLI Reference"),
    ("/getting-started/", "Getting Started"),
)
DEFAULT_DOCUMENTATION_TYPE = "Documentation"

DEFAULT_ICON_BASE_URL = "https://aws-icons.s3.amazonaws.com"


def quality_score(record: PreviewRecord) -> int:
    """Additive 0-100 completeness score, computed from scratch."""
    score = 0
    if record.title:
        score += 30
        if 10 <= len(record.title) < 60:
            score += 10
    if record.description:
        score += 25
        if 50 <= len(record.description) < 200:
            score += 10
    if record.image_url:
        score += 20
    if record.site_name:
        score += 10
    if record.is_first_party_official:
        score += 5
    return min(score, 100)


def optimize_description(description: Optional[str], max_length: int) -> Optional[str]:
    """Collapse whitespace and cap the length with an ellipsis."""
    if description is None:
        return None
    cleaned = WHITESPACE_RE.sub(" ", description).strip()
    if len(cleaned) > max_length:
        cleaned = cleaned[: max_length - len(ELLIPSIS)] + ELLIPSIS
    return cleaned


def upgrade_image_url(image_url: Optional[str]) -> Optional[str]:
    if image_url and image_url[:7].lower() == "http://":
        return "https://" + image_url[7:]
    return image_url


def documentation_type(url: str) -> str:
    for pattern, label in DOCUMENTATION_TYPES:
        if pattern in url:
            return label
    return DEFAULT_DOCUMENTATION_TYPE


def service_enhancements(
    service_name: str, url: str, icon_base_url: str = DEFAULT_ICON_BASE_URL
) -> Dict[str, str]:
    key = service_name.upper()
    return {
        "category": SERVICE_CATEGORIES.get(key, DEFAULT_CATEGORY),
        "icon": f"{icon_base_url.rstrip('/')}/{key.lower()}.png",
        "documentation_type": documentation_type(url),
    }


def enhance_record(
    record: PreviewRecord,
    *,
    max_description_length: int = 300,
    icon_base_url: str = DEFAULT_ICON_BASE_URL,
) -> PreviewRecord:
    """Return an enhanced copy of *record*; the input is left untouched."""
    description = optimize_description(record.description, max_description_length)

    enhancements = None
    if record.is_first_party_official and record.official_service_name:
        enhancements = service_enhancements(
            record.official_service_name, record.url, icon_base_url
        )

    enhanced = record.model_copy(
        update={
            "description": description or None,
            "image_url": upgrade_image_url(record.image_url),
            "service_enhancements": enhancements,
            "content_hash": content_hash(record.url, record.title, description or None),
        }
    )
    enhanced.quality_score = 0 if enhanced.is_error else quality_score(enhanced)
    return enhanced
