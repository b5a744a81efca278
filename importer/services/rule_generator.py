"""
Region Inference Engine (RuleGenerator).

Infers content-region selectors per structural group with one model call
per attempt, and validates them against other pages of the group before
trusting them. Each group runs an explicit state machine:

    PROPOSING -> VALIDATING -> ACCEPTED
                            -> RETRYING -> PROPOSING   (untried sample + feedback)
                            -> EXHAUSTED               (max attempts reached)

Exhausted groups keep their best attempt as ``best_effort``; groups where
no attempt produced a single region are recorded ``unresolved``. Groups
run concurrently under a semaphore and never affect each other.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from asgiref.sync import sync_to_async
from bs4 import BeautifulSoup, Tag
from django.conf import settings
from django.db import transaction

from importer.models import ImportedSite, SiteStatus, StagedItem, StagedItemStatus
from importer.services.ai_client import (
    LayoutAnalysis,
    LayoutAnalysisClient,
    LayoutAnalysisError,
    get_layout_client,
)
from importer.services.grouper import StructuralGroup, group_site
from importer.services.region_validator import (
    RegionValidator,
    ValidationSample,
    validation_report,
)
from importer.utils.html import parse_html

logger = logging.getLogger(__name__)

_MARKUP_RE = re.compile(r"<[a-zA-Z][^>]*>")
_COMBINATOR_RE = re.compile(r"\s*[>+~\s]\s*")
_PSEUDO_RE = re.compile(r"::?[a-zA-Z-]+(\([^)]*\))?")
_NON_WORD_RE = re.compile(r"[^a-z0-9]+")
_CSS_IDENT_RE = re.compile(r"^-?[A-Za-z_][\w-]*$")


class RuleGenerationError(Exception):
    """Rule generation cannot start for the site."""


class InferenceState(str, Enum):
    PROPOSING = "proposing"
    VALIDATING = "validating"
    RETRYING = "retrying"
    ACCEPTED = "accepted"
    EXHAUSTED = "exhausted"


class RuleSetStatus(str, Enum):
    ACCEPTED = "accepted"
    BEST_EFFORT = "best_effort"
    UNRESOLVED = "unresolved"


# Region construction


def region_key(selector: str) -> str:
    """
    Derive a snake_case field key from a selector.

    Uses the last compound of the first selector in a list: its id, else its
    first class, else its first attribute name, else its tag.
    """
    first = selector.split(",")[0].strip()
    parts = [p for p in _COMBINATOR_RE.split(first) if p]
    compound = _PSEUDO_RE.sub("", parts[-1] if parts else first)

    candidate = ""
    id_match = re.search(r"#([\w-]+)", compound)
    class_match = re.search(r"\.([\w-]+)", compound)
    attr_match = re.search(r"\[([\w-]+)", compound)
    tag_match = re.match(r"[a-zA-Z][\w-]*", compound)
    if id_match:
        candidate = id_match.group(1)
    elif class_match:
        candidate = class_match.group(1)
    elif attr_match:
        candidate = attr_match.group(1)
    elif tag_match:
        candidate = tag_match.group(0)

    key = _NON_WORD_RE.sub("_", candidate.lower()).strip("_")
    return key or "region"


def _unique_key(key: str, used: set) -> str:
    unique = key
    suffix = 2
    while unique in used:
        unique = f"{key}_{suffix}"
        suffix += 1
    used.add(unique)
    return unique


def _same_image(src: str, media_url: str) -> bool:
    if not src or not media_url:
        return False
    if src == media_url:
        return True
    src_path = urlparse(src).path
    media_path = urlparse(media_url).path
    return bool(src_path) and src_path == media_path


def _identifiable_selector(element: Tag) -> Optional[str]:
    element_id = element.get("id")
    if element_id and _CSS_IDENT_RE.match(element_id):
        return f"#{element_id}"
    classes = [c for c in (element.get("class") or []) if _CSS_IDENT_RE.match(c)]
    if classes:
        return f"{element.name}.{'.'.join(classes)}"
    return None


def images_selector(soup: BeautifulSoup, media: List[str]) -> str:
    """
    Selector for the group's images: ``img`` scoped to the nearest
    identifiable common ancestor of the sample's media images.
    """
    images = [
        img for img in soup.find_all("img")
        if any(_same_image(img.get("src", ""), m) for m in media)
    ]
    if not images:
        return "img"

    common = None
    for ancestor in images[0].parents:
        if all(ancestor in img.parents for img in images[1:]):
            common = ancestor
            break

    node = common
    while isinstance(node, Tag) and node.name not in ("body", "html", "[document]"):
        scope = _identifiable_selector(node)
        if scope:
            return f"{scope} img"
        node = node.parent
    return "img"


def build_regions(analysis: LayoutAnalysis, sample_html: str) -> List[Dict[str, Any]]:
    """
    Translate a layout analysis into region dicts.
    """
    used: set = set()
    regions = []
    for selector, value in analysis.content.items():
        key = _unique_key(region_key(selector), used)
        regions.append({
            "key": key,
            "label": key.replace("_", " ").title(),
            "type": "richtext" if _MARKUP_RE.search(value or "") else "text",
            "selector": selector,
            "attr": None,
            "multiple": False,
        })

    if analysis.media:
        key = _unique_key("images", used)
        regions.append({
            "key": key,
            "label": "Images",
            "type": "image",
            "selector": images_selector(parse_html(sample_html), analysis.media),
            "attr": "src",
            "multiple": True,
        })
    return regions


def selector_map_for(regions: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Flat key -> selector map; image/multiple regions keep their attr spec.
    """
    selector_map: Dict[str, Any] = {}
    for region in regions:
        if region.get("attr") or region.get("multiple"):
            selector_map[region["key"]] = {
                "selector": region["selector"],
                "attr": region.get("attr"),
                "multiple": bool(region.get("multiple")),
                "type": region.get("type"),
            }
        else:
            selector_map[region["key"]] = region["selector"]
    return selector_map


def item_type_for(page_type: str, dominant_type: str) -> str:
    if page_type == "product" or dominant_type == "product":
        return "product"
    if page_type == "other":
        return "other"
    return "page"


# Per-group state


@dataclass
class Member:
    item_id: int
    url: str
    cleaned_html: str
    page_type: str = "page"

    def as_sample(self) -> ValidationSample:
        return ValidationSample(item_id=self.item_id, url=self.url, html=self.cleaned_html)


@dataclass
class Attempt:
    """One propose/validate round."""

    number: int
    sample_id: int
    sample_url: str
    analysis: Optional[LayoutAnalysis] = None
    regions: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def failing_regions(self) -> int:
        return sum(1 for r in self.regions if r["validation"]["success_rate"] < 1.0)

    @property
    def mean_success_rate(self) -> float:
        if not self.regions:
            return 0.0
        return sum(r["validation"]["success_rate"] for r in self.regions) / len(self.regions)

    @property
    def fully_validated(self) -> bool:
        return bool(self.regions) and self.failing_regions == 0

    def summary(self) -> Dict[str, Any]:
        return {
            "number": self.number,
            "sample_url": self.sample_url,
            "regions": len(self.regions),
            "failing_regions": self.failing_regions,
            "mean_success_rate": round(self.mean_success_rate, 4),
            "error": self.error,
        }


@dataclass
class GroupAnalysis:
    """State of one structural group moving through inference."""

    group: StructuralGroup
    state: InferenceState = InferenceState.PROPOSING
    attempts: List[Attempt] = field(default_factory=list)
    tried_sample_ids: List[int] = field(default_factory=list)
    feedback: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None

    def best_attempt(self) -> Optional[Attempt]:
        """Fewest failing regions, then higher mean success rate, then earliest."""
        candidates = [a for a in self.attempts if a.regions]
        if not candidates:
            return None
        return min(
            candidates,
            key=lambda a: (a.failing_regions, -a.mean_success_rate, a.number),
        )

    @property
    def status(self) -> RuleSetStatus:
        best = self.best_attempt()
        if best is None:
            return RuleSetStatus.UNRESOLVED
        if best.fully_validated:
            return RuleSetStatus.ACCEPTED
        return RuleSetStatus.BEST_EFFORT

    @property
    def item_type(self) -> str:
        best = self.best_attempt()
        page_type = best.analysis.page_type if best and best.analysis else ""
        return item_type_for(page_type, self.group.dominant_type)

    def to_ruleset_entry(self) -> Dict[str, Any]:
        best = self.best_attempt()
        entry: Dict[str, Any] = {
            "status": self.status.value,
            "attempts": len(self.attempts),
            "attempt_history": [a.summary() for a in self.attempts],
            "group_size": self.group.count,
            "sample_url": self.group.sample_url,
            "error": None,
        }
        if best is None:
            entry.update({
                "page_type": None,
                "regions": [],
                "selector_map": {},
                "validation_report": [],
                "confidence": 0.0,
                "summary": "",
                "error": self.error or "No attempt produced any region",
            })
            return entry

        entry.update({
            "page_type": best.analysis.page_type,
            "regions": best.regions,
            "selector_map": selector_map_for(best.regions),
            "validation_report": validation_report(best.regions),
            "confidence": best.analysis.confidence,
            "summary": best.analysis.summary,
            "sample_url": best.sample_url,
            "navigation": best.analysis.navigation,
        })
        return entry


# Persistence (sync, run through sync_to_async)


def _load_members(site_id, structural_hash: str) -> List[Member]:
    rows = (
        StagedItem.objects.filter(
            site_id=site_id,
            structural_hash=structural_hash,
            status=StagedItemStatus.COMPLETED,
        )
        .order_by("id")
        .values_list("id", "url", "cleaned_html", "metadata")
    )
    return [
        Member(
            item_id=item_id,
            url=url,
            cleaned_html=cleaned_html or "",
            page_type=(metadata or {}).get("type") or "page",
        )
        for item_id, url, cleaned_html, metadata in rows
    ]


def _save_group_entry(site_id, structural_hash: str, entry: Dict[str, Any], item_type: Optional[str]):
    with transaction.atomic():
        site = ImportedSite.objects.select_for_update().get(pk=site_id)
        ruleset = dict(site.ruleset or {})
        ruleset[structural_hash] = entry
        site.ruleset = ruleset
        site.save(update_fields=["ruleset", "updated_at"])
        if item_type:
            StagedItem.objects.filter(site_id=site_id, structural_hash=structural_hash).update(
                item_type=item_type
            )


def _set_site_status(site_id, status: str, message: str = "") -> int:
    """Move the site to ``status`` unless it was cancelled; returns rows updated."""
    return ImportedSite.objects.filter(pk=site_id).exclude(status=SiteStatus.CANCELLED).update(
        status=status, status_message=message
    )


def _is_cancelled(site_id) -> bool:
    return ImportedSite.objects.filter(pk=site_id, status=SiteStatus.CANCELLED).exists()


class RuleGenerator:
    """
    Generates and validates the rule set of one site.

    Usage:
        ruleset = await RuleGenerator(site).run()
    """

    def __init__(
        self,
        site: ImportedSite,
        client: Optional[LayoutAnalysisClient] = None,
        validator: Optional[RegionValidator] = None,
        max_attempts: Optional[int] = None,
        sample_size: Optional[int] = None,
        concurrency: Optional[int] = None,
    ):
        """
        Initialize the generator.

        Args:
            site: Site whose staged items are analyzed
            client: Layout model client (default from settings, DB-cached)
            validator: Region validator (default from settings)
            max_attempts: Attempts per group (default IMPORTER_MAX_ATTEMPTS)
            sample_size: Members validated per attempt (default IMPORTER_VALIDATION_SAMPLE_SIZE)
            concurrency: Groups analyzed at once (default IMPORTER_INFERENCE_CONCURRENCY)
        """
        self.site = site
        self.client = client or get_layout_client()
        self.validator = validator or RegionValidator()
        self.max_attempts = max(1, max_attempts or getattr(settings, "IMPORTER_MAX_ATTEMPTS", 3))
        self.sample_size = max(1, sample_size or getattr(settings, "IMPORTER_VALIDATION_SAMPLE_SIZE", 5))
        self.concurrency = max(1, concurrency or getattr(settings, "IMPORTER_INFERENCE_CONCURRENCY", 2))

    async def run(self) -> Dict[str, Any]:
        """
        Analyze every structural group of the site.

        Returns:
            The site's rule set (structural hash -> entry)

        Raises:
            RuleGenerationError: when the site has no groupable pages
        """
        site_id = self.site.pk
        groups = await sync_to_async(group_site)(self.site)
        if not groups:
            raise RuleGenerationError("Site has no crawled pages to analyze")

        logger.info(f"Generating rules for site {site_id}: {len(groups)} structural groups")
        started = await sync_to_async(_set_site_status)(
            site_id, SiteStatus.GENERATING_RULES, f"Analyzing {len(groups)} structural groups"
        )
        if not started:
            logger.info(f"Rule generation for site {site_id} skipped: site was cancelled")
            await sync_to_async(self.site.refresh_from_db)()
            return self.site.ruleset

        semaphore = asyncio.Semaphore(self.concurrency)

        async def guarded(group: StructuralGroup) -> Optional[GroupAnalysis]:
            async with semaphore:
                if await sync_to_async(_is_cancelled)(site_id):
                    return None
                return await self._run_group(group)

        analyses = await asyncio.gather(*(guarded(g) for g in groups))
        completed = [a for a in analyses if a is not None]

        counts = {status: 0 for status in RuleSetStatus}
        for analysis in completed:
            counts[analysis.status] += 1
        message = (
            f"{counts[RuleSetStatus.ACCEPTED]} accepted, "
            f"{counts[RuleSetStatus.BEST_EFFORT]} best effort, "
            f"{counts[RuleSetStatus.UNRESOLVED]} unresolved"
        )
        await sync_to_async(_set_site_status)(site_id, SiteStatus.RULES_GENERATED, message)
        logger.info(f"Rule generation finished for site {site_id}: {message}")

        await sync_to_async(self.site.refresh_from_db)()
        return self.site.ruleset

    async def _run_group(self, group: StructuralGroup) -> GroupAnalysis:
        """Analyze one group; any failure is recorded as unresolved."""
        try:
            analysis = await self.analyze_group(group)
        except Exception as e:
            logger.exception(f"Rule generation failed for group {group.structural_hash[:8]}: {e}")
            analysis = GroupAnalysis(group=group, error=str(e))

        entry = analysis.to_ruleset_entry()
        item_type = analysis.item_type if analysis.best_attempt() else None
        await sync_to_async(_save_group_entry)(
            self.site.pk, group.structural_hash, entry, item_type
        )
        return analysis

    async def analyze_group(self, group: StructuralGroup) -> GroupAnalysis:
        """
        Run the propose/validate state machine for one group.

        Returns:
            GroupAnalysis in state ACCEPTED or EXHAUSTED
        """
        members = await sync_to_async(_load_members)(self.site.pk, group.structural_hash)
        analysis = GroupAnalysis(group=group)
        if not members:
            analysis.error = "Group has no completed members"
            analysis.state = InferenceState.EXHAUSTED
            return analysis

        sample = members[0]
        attempt: Optional[Attempt] = None

        while analysis.state not in (InferenceState.ACCEPTED, InferenceState.EXHAUSTED):
            if analysis.state == InferenceState.PROPOSING:
                attempt = await self._propose(analysis, sample)
                if attempt.regions:
                    analysis.state = InferenceState.VALIDATING
                else:
                    analysis.state = self._after_failure(analysis)

            elif analysis.state == InferenceState.VALIDATING:
                self._validate(attempt, sample, members)
                if attempt.fully_validated:
                    analysis.state = InferenceState.ACCEPTED
                else:
                    analysis.feedback.extend(self._feedback_for(attempt))
                    analysis.state = self._after_failure(analysis)

            elif analysis.state == InferenceState.RETRYING:
                sample = self._next_sample(analysis, members, sample)
                analysis.state = InferenceState.PROPOSING

        logger.info(
            f"Group {group.structural_hash[:8]} ({group.count} pages): "
            f"{analysis.status.value} after {len(analysis.attempts)} attempt(s)"
        )
        return analysis

    async def _propose(self, analysis: GroupAnalysis, sample: Member) -> Attempt:
        attempt = Attempt(
            number=len(analysis.attempts) + 1,
            sample_id=sample.item_id,
            sample_url=sample.url,
        )
        analysis.attempts.append(attempt)
        if sample.item_id not in analysis.tried_sample_ids:
            analysis.tried_sample_ids.append(sample.item_id)

        try:
            attempt.analysis = await self.client.infer(
                sample.cleaned_html,
                url=sample.url,
                page_type_hint=sample.page_type,
                feedback=list(analysis.feedback) or None,
            )
        except LayoutAnalysisError as e:
            logger.warning(f"Layout analysis failed for {sample.url} (attempt {attempt.number}): {e}")
            attempt.error = str(e)
            analysis.error = str(e)
            return attempt

        attempt.regions = build_regions(attempt.analysis, sample.cleaned_html)
        if not attempt.regions:
            attempt.error = "Model proposed no content regions"
            analysis.error = attempt.error
        return attempt

    def _validate(self, attempt: Attempt, sample: Member, members: List[Member]):
        others = [m for m in members if m.item_id != sample.item_id][: self.sample_size]
        targets = others or [sample]
        attempt.regions = self.validator.validate_regions(
            attempt.regions, [m.as_sample() for m in targets]
        )

    def _after_failure(self, analysis: GroupAnalysis) -> InferenceState:
        if len(analysis.attempts) >= self.max_attempts:
            return InferenceState.EXHAUSTED
        return InferenceState.RETRYING

    @staticmethod
    def _feedback_for(attempt: Attempt) -> List[Dict[str, Any]]:
        feedback = []
        for region in attempt.regions:
            validation = region["validation"]
            if validation["success_rate"] >= 1.0:
                continue
            tested = validation.get("tested") or 0
            matched = tested - len(validation["failed_urls"])
            feedback.append({
                "key": region["key"],
                "selector": region["selector"],
                "reason": f"matched {matched} of {tested} pages",
                "failed_urls": list(validation["failed_urls"]),
            })
        return feedback

    @staticmethod
    def _next_sample(analysis: GroupAnalysis, members: List[Member], current: Member) -> Member:
        for member in members:
            if member.item_id not in analysis.tried_sample_ids:
                return member
        return current


async def generate_rules(site: ImportedSite, client: Optional[LayoutAnalysisClient] = None) -> Dict[str, Any]:
    """Generate the rule set of a site with settings-configured limits."""
    return await RuleGenerator(site, client=client).run()
