"""
Rule Store.

Persisted RuleSet entries (``ImportedSite.ruleset``) and named
MigrationRules (``ImportedSite.config["migration_rules"]``).
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from django.db import transaction

from importer.models import ImportedSite, StagedItem, StagedItemStatus
from importer.services.region_validator import (
    RegionValidator,
    ValidationSample,
    validation_report,
)
from importer.services.rule_generator import selector_map_for

logger = logging.getLogger(__name__)

MIGRATION_RULE_KEYS = ("name", "structural_hash", "template_id", "selector_map")


class RuleStoreError(Exception):
    """Invalid rule store operation."""


class RuleNotFound(RuleStoreError):
    """No RuleSet entry, region or MigrationRule with that key."""


def get_ruleset(site: ImportedSite) -> Dict[str, Any]:
    return dict(site.ruleset or {})


def get_rule_entry(site: ImportedSite, structural_hash: str) -> Dict[str, Any]:
    entry = (site.ruleset or {}).get(structural_hash)
    if entry is None:
        raise RuleNotFound(f"No rules for structural group {structural_hash}")
    return entry


def save_rule_entry(site: ImportedSite, structural_hash: str, entry: Dict[str, Any]) -> Dict[str, Any]:
    """Write one RuleSet entry, keeping the other groups untouched."""
    with transaction.atomic():
        locked = ImportedSite.objects.select_for_update().get(pk=site.pk)
        ruleset = dict(locked.ruleset or {})
        ruleset[structural_hash] = entry
        locked.ruleset = ruleset
        locked.save(update_fields=["ruleset", "updated_at"])
    site.ruleset = ruleset
    return entry


def _group_samples(site: ImportedSite, structural_hash: str, limit: Optional[int] = None) -> List[ValidationSample]:
    queryset = (
        StagedItem.objects.filter(site=site, structural_hash=structural_hash)
        .exclude(status=StagedItemStatus.PENDING)
        .order_by("id")
        .values_list("id", "url", "cleaned_html")
    )
    if limit:
        queryset = queryset[:limit]
    return [
        ValidationSample(item_id=item_id, url=url, html=cleaned_html or "")
        for item_id, url, cleaned_html in queryset
    ]


def override_region_selector(
    site: ImportedSite,
    structural_hash: str,
    key: str,
    selector: str,
    validator: Optional[RegionValidator] = None,
    sample_limit: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Replace one region's selector and re-validate it against the group.

    Args:
        site: Owning site
        structural_hash: Group whose entry is edited
        key: Region key
        selector: New CSS selector
        validator: Region validator (default from settings)
        sample_limit: Members tested (default: the whole group)

    Returns:
        The updated RuleSet entry

    Raises:
        RuleNotFound: unknown group or region key
        RuleStoreError: empty selector
    """
    selector = (selector or "").strip()
    if not selector:
        raise RuleStoreError("Selector must not be empty")

    entry = dict(get_rule_entry(site, structural_hash))
    regions = [dict(r) for r in entry.get("regions", [])]
    region = next((r for r in regions if r.get("key") == key), None)
    if region is None:
        raise RuleNotFound(f"No region {key!r} in group {structural_hash}")

    validator = validator or RegionValidator()
    samples = _group_samples(site, structural_hash, sample_limit)
    region["selector"] = selector
    region["validation"] = validator.validate_region(region, samples).to_dict()

    entry["regions"] = [region if r.get("key") == key else r for r in regions]
    entry["selector_map"] = selector_map_for(entry["regions"])
    entry["validation_report"] = validation_report(entry["regions"])
    entry["overridden"] = sorted(set(entry.get("overridden", [])) | {key})

    logger.info(
        f"Region {key} of group {structural_hash[:8]} overridden with {selector!r}: "
        f"success rate {region['validation']['success_rate']}"
    )
    return save_rule_entry(site, structural_hash, entry)


# Migration rules


def list_migration_rules(site: ImportedSite) -> List[Dict[str, Any]]:
    return site.migration_rules


def get_migration_rule(site: ImportedSite, rule_id: str) -> Dict[str, Any]:
    for rule in site.migration_rules:
        if rule.get("id") == rule_id:
            return rule
    raise RuleNotFound(f"Migration rule {rule_id} not found")


def _save_migration_rules(site: ImportedSite, rules: List[Dict[str, Any]]):
    with transaction.atomic():
        locked = ImportedSite.objects.select_for_update().get(pk=site.pk)
        config = dict(locked.config or {})
        config["migration_rules"] = rules
        locked.config = config
        locked.save(update_fields=["config", "updated_at"])
    site.config = config


def upsert_migration_rule(site: ImportedSite, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Create or replace a MigrationRule by id.

    A uuid is generated when ``data`` carries no id.

    Returns:
        The stored rule
    """
    rule = {key: data.get(key) for key in MIGRATION_RULE_KEYS}
    rule["id"] = str(data.get("id") or uuid.uuid4())
    rule["name"] = rule["name"] or "Untitled rule"
    rule["selector_map"] = rule["selector_map"] or {}

    rules = site.migration_rules
    for index, existing in enumerate(rules):
        if existing.get("id") == rule["id"]:
            rules[index] = rule
            break
    else:
        rules.append(rule)

    _save_migration_rules(site, rules)
    logger.info(f"Saved migration rule {rule['id']} ({rule['name']}) for site {site.pk}")
    return rule


def delete_migration_rule(site: ImportedSite, rule_id: str):
    """
    Raises:
        RuleNotFound: when the rule does not exist
    """
    rules = site.migration_rules
    remaining = [r for r in rules if r.get("id") != rule_id]
    if len(remaining) == len(rules):
        raise RuleNotFound(f"Migration rule {rule_id} not found")
    _save_migration_rules(site, remaining)
    logger.info(f"Deleted migration rule {rule_id} for site {site.pk}")
