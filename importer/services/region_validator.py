"""
Region Validation.

Tests proposed content-region selectors against several pages of the same
structural group:

- success_rate = pages where the selector matched / pages tested
- density_score (content regions only) rewards text and semantic tags and
  penalizes links:  text_len / divisor + weight * semantic_tags - penalty * anchors
  averaged over the pages where the selector matched

Invariants: is_invalid <=> success_rate == 0, is_brittle <=> success_rate < 1.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from bs4 import BeautifulSoup, Tag
from django.conf import settings

from importer.utils.html import parse_html, safe_select

logger = logging.getLogger(__name__)

SEMANTIC_TAGS = ["p", "h1", "h2", "h3", "h4", "h5", "h6", "li", "article", "section"]


@dataclass
class ValidationSample:
    """One group member a selector is tested against."""

    item_id: int
    url: str
    html: str
    _soup: Optional[BeautifulSoup] = field(default=None, repr=False)

    @property
    def soup(self) -> BeautifulSoup:
        if self._soup is None:
            self._soup = parse_html(self.html)
        return self._soup


@dataclass
class RegionValidation:
    """Validation outcome of one region selector."""

    success_rate: float
    density_score: float = 0.0
    is_low_density: bool = False
    failed_urls: List[str] = field(default_factory=list)
    tested: int = 0

    @property
    def is_brittle(self) -> bool:
        return self.success_rate < 1.0

    @property
    def is_invalid(self) -> bool:
        return self.success_rate == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success_rate": self.success_rate,
            "density_score": self.density_score,
            "is_brittle": self.is_brittle,
            "is_low_density": self.is_low_density,
            "is_invalid": self.is_invalid,
            "failed_urls": list(self.failed_urls),
            "tested": self.tested,
        }


def is_content_region(region: Dict[str, Any]) -> bool:
    return region.get("key") == "content" or region.get("type") == "richtext"


class RegionValidator:
    """
    Validates region selectors against group members.

    Density weights and threshold default to the IMPORTER_DENSITY_* settings.
    """

    def __init__(
        self,
        text_divisor: Optional[float] = None,
        semantic_weight: Optional[float] = None,
        link_penalty: Optional[float] = None,
        low_density_threshold: Optional[float] = None,
    ):
        self.text_divisor = text_divisor or getattr(settings, "IMPORTER_DENSITY_TEXT_DIVISOR", 200)
        self.semantic_weight = (
            semantic_weight if semantic_weight is not None
            else getattr(settings, "IMPORTER_DENSITY_SEMANTIC_WEIGHT", 2)
        )
        self.link_penalty = (
            link_penalty if link_penalty is not None
            else getattr(settings, "IMPORTER_DENSITY_LINK_PENALTY", 3)
        )
        self.low_density_threshold = (
            low_density_threshold if low_density_threshold is not None
            else getattr(settings, "IMPORTER_LOW_DENSITY_THRESHOLD", 5)
        )

    def density_score(self, element: Tag) -> float:
        text_length = len(element.get_text(strip=True))
        semantic = len(element.find_all(SEMANTIC_TAGS))
        anchors = len(element.find_all("a"))
        return (
            text_length / self.text_divisor
            + self.semantic_weight * semantic
            - self.link_penalty * anchors
        )

    def validate_region(
        self, region: Dict[str, Any], samples: Iterable[ValidationSample]
    ) -> RegionValidation:
        """
        Validate one region against the given samples.

        Args:
            region: Region dict with at least ``selector`` (``key``/``type``
                decide whether density is scored)
            samples: Group members to test

        Returns:
            RegionValidation; success_rate is 0.0 when there are no samples
        """
        samples = list(samples)
        selector = region.get("selector") or ""
        scored = is_content_region(region)

        matched = 0
        total_density = 0.0
        failed_urls: List[str] = []

        for sample in samples:
            elements = safe_select(sample.soup, selector)
            if not elements:
                failed_urls.append(sample.url)
                continue
            matched += 1
            if scored:
                total_density += self.density_score(elements[0])

        tested = len(samples)
        success_rate = round(matched / tested, 4) if tested else 0.0
        average_density = total_density / matched if matched else 0.0

        return RegionValidation(
            success_rate=success_rate,
            density_score=round(average_density, 1),
            is_low_density=scored and average_density < self.low_density_threshold,
            failed_urls=failed_urls,
            tested=tested,
        )

    def validate_regions(
        self, regions: List[Dict[str, Any]], samples: Iterable[ValidationSample]
    ) -> List[Dict[str, Any]]:
        """
        Validate every region, attaching the result under ``validation``.

        Returns:
            New region dicts with ``validation`` set
        """
        samples = list(samples)
        validated = []
        for region in regions:
            result = self.validate_region(region, samples)
            validated.append({**region, "validation": result.to_dict()})
        return validated


def validation_report(regions: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Entries for every region that did not match all tested pages."""
    report = []
    for region in regions:
        validation = region.get("validation") or {}
        if validation.get("success_rate", 0) < 1.0:
            report.append({
                "field": region.get("key"),
                "selector": region.get("selector"),
                "success_rate": validation.get("success_rate", 0),
                "failed_urls": validation.get("failed_urls", []),
            })
    return report
