"""
Structural Grouper.

Groups a site's completed StagedItems by structural hash. Each group is
one page template; its sample is the earliest staged member.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List

from importer.models import ImportedSite, StagedItem, StagedItemStatus

logger = logging.getLogger(__name__)


@dataclass
class StructuralGroup:
    """Pages sharing one DOM skeleton."""

    structural_hash: str
    sample_id: int
    count: int = 0
    product_count: int = 0
    dominant_type: str = "page"
    member_ids: List[int] = field(default_factory=list)
    sample_url: str = ""

    def to_dict(self) -> Dict:
        return {
            "structural_hash": self.structural_hash,
            "sample_id": self.sample_id,
            "sample_url": self.sample_url,
            "count": self.count,
            "product_count": self.product_count,
            "dominant_type": self.dominant_type,
        }


def group_site(site: ImportedSite) -> List[StructuralGroup]:
    """
    Group completed items of a site by structural hash.

    Items with a blank hash (unparsable pages, feed items) are skipped.
    Read-only: nothing is written.

    Returns:
        Groups ordered by size, largest first (ties by sample id)
    """
    rows = (
        StagedItem.objects.filter(site=site, status=StagedItemStatus.COMPLETED)
        .exclude(structural_hash="")
        .order_by("id")
        .values_list("id", "url", "structural_hash", "metadata")
    )

    groups: Dict[str, StructuralGroup] = {}
    type_counts: Dict[str, Counter] = {}
    for item_id, url, hash_value, metadata in rows:
        group = groups.get(hash_value)
        if group is None:
            group = StructuralGroup(structural_hash=hash_value, sample_id=item_id, sample_url=url)
            groups[hash_value] = group
            type_counts[hash_value] = Counter()

        item_type = (metadata or {}).get("type") or "page"
        group.count += 1
        group.member_ids.append(item_id)
        if item_type == "product":
            group.product_count += 1
        type_counts[hash_value][item_type] += 1

    for hash_value, group in groups.items():
        group.dominant_type = type_counts[hash_value].most_common(1)[0][0]

    result = sorted(groups.values(), key=lambda g: (-g.count, g.sample_id))
    logger.debug(f"Grouped site {site.pk} into {len(result)} structural groups")
    return result
