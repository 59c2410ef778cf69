"""
Base utilities for XML parsing.

Provides common functions for parsing Tally XML responses including:
- XML sanitization
- Streaming element iteration
- Date, numeric, quantity and boolean coercion
- Synthetic GUIDs for records Tally exports without one
"""
from __future__ import annotations
import hashlib
import io
import re
from datetime import datetime, date
from typing import Iterator, Optional, Sequence
from lxml import etree
from loguru import logger


def sanitize_xml(xml_text: str) -> str:
    """
    Remove invalid XML characters and fix common issues.

    Tally emits control-character references such as ``&#4;`` and bare
    ampersands in names; both make strict parsers fail.
    """
    if not xml_text:
        return xml_text

    xml_text = xml_text.replace("\x00", "")

    # &#0; through &#31; except tab, newline and CR
    xml_text = re.sub(r"&#([0-8]|1[12]|1[4-9]|2[0-9]|3[01]);", "", xml_text)
    xml_text = re.sub(r"&#x([0-8bBcCeEfF]|1[0-9a-fA-F]);", "", xml_text)

    # XML 1.0 only allows #x9 | #xA | #xD | [#x20-#xD7FF] | [#xE000-#xFFFD]
    xml_text = re.sub("[\x01-\x08\x0b\x0c\x0e-\x1f\uFFFE\uFFFF]", "", xml_text)

    xml_text = re.sub(r"&(?!(amp|lt|gt|apos|quot|#\d+|#x[\da-fA-F]+);)", "&amp;", xml_text)
    return xml_text


def iter_elements(xml_text: str | None, tags: str | Sequence[str]) -> Iterator[etree._Element]:
    """
    Stream complete elements with the given tag(s) out of a Tally response.

    Each element is yielded once fully parsed (children included) and cleared
    afterwards, so memory stays flat on large exports. Empty input yields
    nothing.
    """
    if not xml_text or not xml_text.strip():
        return

    if isinstance(tags, str):
        tags = (tags,)

    data = sanitize_xml(xml_text).encode("utf-8")
    context = etree.iterparse(
        io.BytesIO(data), events=("end",), tag=tuple(tags), recover=True, huge_tree=True
    )
    try:
        for _, elem in context:
            yield elem
            elem.clear(keep_tail=True)
    except etree.XMLSyntaxError as e:
        logger.error(f"Unparseable Tally XML ({len(xml_text)} chars): {e}")


def parse_tally_date(s: str | None) -> Optional[date]:
    """
    Parse Tally date string to Python date.

    Tally uses multiple date formats:
    - YYYYMMDD (most common)
    - YYYY-MM-DD
    - DD-MMM-YYYY (e.g., "01-Apr-2024")

    Returns None for empty or unparseable strings.
    """
    if not s:
        return None

    s = str(s).strip()
    if not s or s.lower() in ("null", "none", "ñ"):
        return None

    formats = [
        "%Y%m%d",
        "%Y-%m-%d",
        "%d-%b-%Y",
        "%d/%m/%Y",
        "%d-%m-%Y",
    ]
    for fmt in formats:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue

    logger.warning(f"Could not parse date: {s}")
    return None


def format_tally_date(s: str | None) -> Optional[str]:
    """Convert a Tally date (usually ``YYYYMMDD``) to ISO ``YYYY-MM-DD``."""
    parsed = parse_tally_date(s)
    return parsed.isoformat() if parsed else None


def parse_float(s: str | None, default: float = 0.0) -> float:
    """
    Parse Tally numeric string to float.

    Handles:
    - Comma separators (1,234.56)
    - Parentheses for negatives ((1234.56))
    - Currency symbols
    - Dr/Cr suffixes (Cr is negative)
    """
    if s is None:
        return default
    if isinstance(s, (int, float)):
        return float(s)

    s = str(s).strip()
    if not s or s.lower() in ("null", "none", "ñ"):
        return default

    is_negative = s.startswith("(") and s.endswith(")")
    if is_negative:
        s = s[1:-1]

    s = re.sub(r"[,₹$€£¥\s]", "", s)

    if s.endswith("Dr"):
        s = s[:-2]
    elif s.endswith("Cr"):
        s = s[:-2]
        is_negative = not is_negative

    try:
        val = float(s)
        return -val if is_negative else val
    except ValueError:
        logger.warning(f"Could not parse float: {s}")
        return default


def parse_int(s: str | None, default: int = 0) -> int:
    """Parse Tally integer string."""
    if s is None:
        return default

    s = str(s).strip().replace(",", "").replace(" ", "")
    if not s or s.lower() in ("null", "none", "ñ"):
        return default

    try:
        return int(float(s))
    except ValueError:
        logger.warning(f"Could not parse int: {s}")
        return default


def parse_bool(s: str | None, default: bool = False) -> bool:
    """
    Parse Tally boolean string.

    Tally uses Yes/No in object exports and 1/0 in TDL report output.
    """
    if s is None:
        return default
    if isinstance(s, bool):
        return s

    s = str(s).strip().lower()
    if s in ("yes", "true", "1", "y"):
        return True
    elif s in ("no", "false", "0", "n", ""):
        return False

    return default


def parse_quantity(qty_str: str | None) -> float:
    """
    Parse Tally quantity string which may include a unit suffix.
    E.g., "10 Nos" -> 10.0, "-2.5 kg" -> -2.5
    """
    if not qty_str:
        return 0.0

    match = re.match(r"\s*([-\d.,]+)", str(qty_str))
    if match:
        return parse_float(match.group(1))
    return 0.0


def synthetic_guid(*parts) -> str:
    """
    Deterministic stand-in GUID for records exported without one.

    The same inputs always give the same GUID, so re-running a sync upserts
    onto the rows it created last time instead of duplicating them.
    """
    key = "|".join("" if p is None else str(p) for p in parts)
    return "gen-" + hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]


def text(element: etree._Element | None, tag: str, default: str | None = None) -> str | None:
    """
    Safely extract text from a direct child element.

    Returns stripped text content or default.
    """
    if element is None:
        return default

    child = element.find(tag)
    if child is None or child.text is None:
        return default

    return child.text.strip() or default


def attr(element: etree._Element | None, name: str, default: str | None = None) -> str | None:
    """Safely extract an attribute from an XML element."""
    if element is None:
        return default

    val = element.get(name)
    if val is None:
        return default

    return val.strip() or default


def first_value(element: etree._Element, *names: str, default: str | None = None) -> str | None:
    """
    First non-empty value among attributes and child tags.

    Tally puts NAME/GUID in attributes for some exports and in child tags for
    others; callers list every spelling they accept.
    """
    for name in names:
        val = attr(element, name) or text(element, name)
        if val:
            return val
    return default


def extract_alter_id(element: etree._Element) -> int | None:
    """
    Extract ALTERID from element, handling space-separated format.

    Tally sometimes formats ALTERID with spaces (e.g., "1 234" instead of "1234").
    """
    alter_id_text = first_value(element, "ALTERID")
    if not alter_id_text:
        return None

    try:
        return int(alter_id_text.replace(" ", "").replace(",", ""))
    except ValueError:
        return None
