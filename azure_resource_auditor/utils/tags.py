"""Tag serialization and tag-variant resolution"""

import re
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Sequence, Tuple


UNKNOWN = "Unknown"


@dataclass(frozen=True)
class TagVariation:
    """A canonical tag name and the spellings accepted for it"""
    canonical_name: str
    variations: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def names(self) -> Tuple[str, ...]:
        return (self.canonical_name,) + tuple(self.variations)


# Resolution order for the resource creator. Groups are tried in order and the first hit wins.
CREATOR_TAG_VARIATIONS = (
    TagVariation("CreatedBy", ("created-by", "createdBy", "created_by", "Created-By")),
    TagVariation("Owner", ("owner", "Creator", "creator", "Author", "author")),
    TagVariation("DeployedBy", ("deployed-by", "deployedBy", "deployed_by")),
)

ENVIRONMENT_TAG_VARIATIONS = (TagVariation("Environment", ("environment", "Env", "env")),)
PROJECT_TAG_VARIATIONS = (TagVariation("Project", ("project", "ProjectName", "project-name")),)
COST_CENTER_TAG_VARIATIONS = (TagVariation("CostCenter", ("cost-center", "Department", "department")),)


def normalize_tag_name(tag_name: str) -> str:
    """Normalize tag name by removing separators and case"""
    return re.sub(r'[-_\s]+', '', tag_name.lower())


def resolve_tag(tags: Optional[Mapping[str, str]], variations: Sequence[TagVariation]) -> Optional[str]:
    """Return the value of the first matching tag variant, or None

    Each group is checked for an exact key match before falling back to a
    case and separator insensitive match, so an exact CreatedBy never loses
    to a loosely spelled Owner and vice versa.
    """
    if not tags:
        return None

    normalized = {}
    for key, value in tags.items():
        normalized.setdefault(normalize_tag_name(key), value)

    for variation in variations:
        for name in variation.names:
            value = tags.get(name)
            if value:
                return value
        for name in variation.names:
            value = normalized.get(normalize_tag_name(name))
            if value:
                return value
    return None


def resolve_creator(tags: Optional[Mapping[str, str]]) -> str:
    return resolve_tag(tags, CREATOR_TAG_VARIATIONS) or UNKNOWN


def format_tags(tags: Optional[Mapping[str, str]]) -> str:
    """Serialize tags as key=value pairs joined by ';'"""
    if not tags:
        return ""
    return ";".join(f"{key}={'' if value is None else value}" for key, value in sorted(tags.items()))


def parse_tags(text: Optional[str]) -> Dict[str, str]:
    """Inverse of format_tags; entries without '=' are ignored"""
    tags: Dict[str, str] = {}
    if not text:
        return tags
    for pair in text.split(";"):
        key, sep, value = pair.partition("=")
        if sep and key.strip():
            tags[key.strip()] = value.strip()
    return tags

