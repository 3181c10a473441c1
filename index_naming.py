import re
from datetime import date, datetime
from enum import Enum
from typing import List, NamedTuple, Optional

INDEX_BASE = "jaeger"
SEQUENCE_WIDTH = 6


class Family(Enum):
    SPAN = "span"
    SERVICE = "service"
    DEPENDENCIES = "dependencies"
    SPAN_ARCHIVE = "span-archive"


class Kind(Enum):
    DAILY = "daily"
    ROLLOVER = "rollover"
    STATIC_ARCHIVE = "static-archive"
    ALIAS = "alias"
    UNKNOWN = "unknown"


MAIN_FAMILIES = (Family.SPAN, Family.SERVICE, Family.DEPENDENCIES)

# span-archive must be tried before span
_NAME_PATTERN = re.compile(
    rf"^{INDEX_BASE}-(?P<family>span-archive|span|service|dependencies)"
    r"(?:-(?:(?P<date>\d{4}-\d{2}-\d{2})|(?P<sequence>\d{6,})|(?P<alias>read|write)))?$"
)


class IndexInfo(NamedTuple):
    name: str
    kind: Kind
    family: Optional[Family] = None
    day: Optional[date] = None
    sequence: Optional[int] = None


def prefix_with_separator(prefix: str) -> str:
    return f"{prefix}-" if prefix else ""


def index_pattern(prefix: str) -> str:
    """Wildcard covering every index this tooling may own under the prefix"""
    return f"{prefix_with_separator(prefix)}{INDEX_BASE}-*"


def family_base(family: Family, prefix: str = "") -> str:
    return f"{prefix_with_separator(prefix)}{INDEX_BASE}-{family.value}"


def write_alias(family: Family, prefix: str = "") -> str:
    return f"{family_base(family, prefix)}-write"


def read_alias(family: Family, prefix: str = "") -> str:
    return f"{family_base(family, prefix)}-read"


def static_archive_index(prefix: str = "") -> str:
    return family_base(Family.SPAN_ARCHIVE, prefix)


def rollover_index(family: Family, sequence: int, prefix: str = "") -> str:
    return f"{family_base(family, prefix)}-{sequence:0{SEQUENCE_WIDTH}d}"


def first_index(family: Family, prefix: str = "", static_archive: bool = False) -> str:
    if static_archive and family == Family.SPAN_ARCHIVE:
        return static_archive_index(prefix)
    return rollover_index(family, 1, prefix)


def next_index(current: str, prefix: str = "") -> str:
    """Name of the successor of a write target; a static archive rolls to sequence 1"""
    info = classify(current, prefix)
    if info.kind == Kind.ROLLOVER:
        return rollover_index(info.family, info.sequence + 1, prefix)
    if info.kind == Kind.STATIC_ARCHIVE:
        return rollover_index(Family.SPAN_ARCHIVE, 1, prefix)
    raise ValueError(f"Index {current} is not a rollover target under prefix '{prefix}'")


def families_for(archive: bool) -> List[Family]:
    return [Family.SPAN_ARCHIVE] if archive else list(MAIN_FAMILIES)


def classify(name: str, prefix: str = "") -> IndexInfo:
    """
    Classify an index or alias name owned by the given prefix.

    Names outside the prefix, system indices and anything that does not match a
    known shape come back as Kind.UNKNOWN and must never be acted upon.
    """
    unknown = IndexInfo(name, Kind.UNKNOWN)
    scope = prefix_with_separator(prefix)
    if not name.startswith(scope):
        return unknown

    match = _NAME_PATTERN.match(name[len(scope):])
    if not match:
        return unknown

    family = Family(match.group("family"))
    if match.group("date"):
        try:
            day = datetime.strptime(match.group("date"), "%Y-%m-%d").date()
        except ValueError:
            return unknown
        return IndexInfo(name, Kind.DAILY, family, day=day)
    if match.group("sequence"):
        return IndexInfo(name, Kind.ROLLOVER, family, sequence=int(match.group("sequence")))
    if match.group("alias"):
        return IndexInfo(name, Kind.ALIAS, family)
    if family == Family.SPAN_ARCHIVE:
        return IndexInfo(name, Kind.STATIC_ARCHIVE, family)
    return unknown
