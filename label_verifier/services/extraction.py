"""Structured field parsing from recognized label text.

Every field is an independent best-effort heuristic:
1. Line-noise filtering (decorative elements misread as text)
2. Dictionary matching for class/type, appellation, varietal
3. Ordered regex lists for alcohol content, net contents, vintage
4. Anchor capture for the government warning
5. Positional rules for name/address and brand name

A heuristic that finds nothing yields None. Nothing here raises on bad text.
"""

import re
from typing import Optional, List, Iterable, Tuple
import logging

from ..models import ParsedLabelFields

logger = logging.getLogger(__name__)


GOVERNMENT_WARNING_TEXT = (
    "GOVERNMENT WARNING: (1) According to the Surgeon General, women should not drink "
    "alcoholic beverages during pregnancy because of the risk of birth defects. "
    "(2) Consumption of alcoholic beverages impairs your ability to drive a car or "
    "operate machinery, and may cause health problems."
)

GOVERNMENT_WARNING_PREFIX = "GOVERNMENT WARNING"

KNOWN_CLASS_TYPES = [
    # Spirits
    "Kentucky Straight Bourbon Whiskey", "Straight Bourbon Whiskey", "Bourbon Whiskey",
    "Tennessee Whiskey", "Straight Rye Whiskey", "Rye Whiskey",
    "Single Malt Scotch Whisky", "Blended Scotch Whisky", "Irish Whiskey",
    "Canadian Whisky", "Vodka", "London Dry Gin", "Gin",
    "Silver Tequila", "Reposado Tequila", "Anejo Tequila", "Blanco Tequila", "Tequila",
    "White Rum", "Gold Rum", "Dark Rum", "Aged Rum", "Rum",
    "Brandy", "Cognac", "Mezcal",
    # Wine
    "Red Wine", "White Wine", "Rose Wine", "Sparkling Wine", "Dessert Wine", "Table Wine",
    "Pinot Noir", "Cabernet Sauvignon", "Chardonnay", "Sauvignon Blanc",
    "Merlot", "Zinfandel", "Riesling", "Champagne", "Prosecco",
    # Malt beverages
    "India Pale Ale", "Pale Ale", "American Pale Ale", "Imperial IPA", "Double IPA",
    "Stout", "Imperial Stout", "Porter", "Lager", "Pilsner",
    "Wheat Beer", "Belgian Ale", "Amber Ale", "Brown Ale", "Hefeweizen",
    "Sour Ale", "Hard Seltzer", "Malt Beverage", "Flavored Malt Beverage",
]

KNOWN_APPELLATIONS = [
    "Napa Valley", "Sonoma County", "Sonoma Coast", "Russian River Valley",
    "Alexander Valley", "Dry Creek Valley", "Paso Robles", "Santa Barbara County",
    "Santa Ynez Valley", "Sta. Rita Hills", "Willamette Valley", "Columbia Valley",
    "Walla Walla Valley", "Finger Lakes", "Long Island", "Lodi",
    "Central Coast", "North Coast", "Monterey County", "Anderson Valley",
    "Carneros", "Los Carneros", "Temecula Valley", "Sierra Foothills",
    "Lake County", "Mendocino County", "Livermore Valley", "Santa Cruz Mountains",
    "Red Mountain", "Yakima Valley",
]

KNOWN_VARIETALS = [
    "Cabernet Sauvignon", "Chardonnay", "Pinot Noir", "Merlot",
    "Sauvignon Blanc", "Zinfandel", "Syrah", "Pinot Grigio", "Pinot Gris",
    "Riesling", "Malbec", "Tempranillo", "Sangiovese", "Grenache",
    "Mourvedre", "Viognier", "Gewurztraminer", "Chenin Blanc",
    "Semillon", "Petit Verdot", "Cabernet Franc", "Petite Sirah",
    "Muscat", "Moscato", "Nebbiolo", "Barbera", "Gruner Veltliner",
    "Albarino", "Torrontes", "Verdejo",
]

# Alcohol statements, most specific first
ALCOHOL_PATTERNS = [
    re.compile(r"(\d+\.?\d*)\s*%\s*Alc[.,]?\s*[/\\]?\s*Vol[.,]?(\s*\(\d+\s*Proof\))?", re.IGNORECASE),
    re.compile(r"(\d+\.?\d*)\s*%\s*ABV", re.IGNORECASE),
    re.compile(r"Alc\.?\s*(\d+\.?\d*)\s*%\s*(?:by\s+)?Vol(?:ume)?\.?", re.IGNORECASE),
    re.compile(r"Alcohol\s*(\d+\.?\d*)\s*%\s*(?:by\s+)?Vol(?:ume)?\.?", re.IGNORECASE),
    re.compile(r"(\d+\.?\d*)\s*%\s*Alcohol", re.IGNORECASE),
    re.compile(r"ABV\s*(\d+\.?\d*)\s*%", re.IGNORECASE),
    re.compile(r"(\d+\.?\d*)\s*Proof", re.IGNORECASE),
]

# 0Z is a common OCR misread of OZ
NET_CONTENTS_PATTERN = re.compile(
    r"(\d+(?:\.\d+)?)\s*(m[Ll]|c[Ll]|(?:FL\.?\s*)?[O0]Z|L(?:ITERS?|ITRES?)?)\b\.?",
    re.IGNORECASE,
)

YEAR_LINE = re.compile(r"^(?:19|20)\d{2}$")
VINTAGE_PHRASE = re.compile(r"\bVintage\s+((?:19|20)\d{2})\b", re.IGNORECASE)
BARE_YEAR = re.compile(r"\b(?:19|20)\d{2}\b")

MEASUREMENT_PATTERN = re.compile(r"\d+\.?\d*\s*(%|mL|cL|L|FL|[O0]Z|Proof)", re.IGNORECASE)
# A line that starts with a volume or ABV statement; "1234 Lincoln Ave" is not one
MEASUREMENT_LINE = re.compile(
    r"^\d+(?:\.\d+)?\s*(?:%|m[Ll]|c[Ll]|L(?:ITERS?|ITRES?)?|FL\.?\s*[O0]Z|[O0]Z|Proof)(?![A-Za-z])",
    re.IGNORECASE,
)

ZIP_PATTERN = re.compile(r"\b[A-Z]{2}\s+\d{5}\b")
STREET_PATTERN = re.compile(r"\d+\s+\w+\s+(Street|St|Road|Rd|Ave|Lane|Ln|Blvd|Dr|Way)\b", re.IGNORECASE)

WARNING_ANCHOR = re.compile(r"[\"']?\s*GOVERNMENT\s*WARNING", re.IGNORECASE)
WARNING_END_PATTERNS = [
    re.compile(r"\n\s*\n"),
    re.compile(r"\n[A-Z][a-z]+.*(?:Distiller|Winery|Brewing|Bottled|Product of)"),
    re.compile(r"\n[^\n]*\b[A-Z]{2}\s+\d{5}\b"),
]
WARNING_MIN_LENGTH = 50  # end markers inside the first 50 chars are ignored
HEALTH_PROBLEMS = re.compile(r"health\s+problems\.?", re.IGNORECASE)

COUNTRY_PATTERNS = [
    re.compile(r"Product[ \t]+of[ \t]+([A-Za-z][A-Za-z \t]*?)[ \t]*(?:[.,;\d]|$)", re.IGNORECASE | re.MULTILINE),
    re.compile(r"Imported[ \t]+(?:from|by)[ \t]+([A-Za-z][A-Za-z \t]*?)[ \t]*(?:[.,;\d]|$)", re.IGNORECASE | re.MULTILINE),
    re.compile(r"Made[ \t]+in[ \t]+([A-Za-z][A-Za-z \t]*?)[ \t]*(?:[.,;\d]|$)", re.IGNORECASE | re.MULTILINE),
]

BUSINESS_PATTERNS = [
    re.compile(r"Distiller(?:y|ies)", re.IGNORECASE),
    re.compile(r"Winery", re.IGNORECASE),
    re.compile(r"Brewing\s*Co", re.IGNORECASE),
    re.compile(r"Bottled\s+by", re.IGNORECASE),
    re.compile(r"Produced\s+by", re.IGNORECASE),
]

BUSINESS_SUFFIX = re.compile(r"\b(Distiller(?:y|ies)|Winery|Brewing|Brewery|Vineyards?|Cellars?)\b", re.IGNORECASE)
PRODUCER_PHRASE = re.compile(r"\b(Bottled|Produced|Distilled|Brewed|Imported|Made|Vinted)\s+(?:and\s+\w+\s+)?by\b", re.IGNORECASE)

LEADING_DECORATION = re.compile(r"^[—\-–|_'\"]")
DECORATION_EDGES = re.compile(r"^[^A-Za-z0-9]+|[^A-Za-z0-9.']+$")
BRAND_CAPS_LINE = re.compile(r"^[A-Z][A-Z'&\s]{4,}$")


def normalize_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def is_artifact_line(line: str) -> bool:
    """
    True if a line looks like an OCR artifact rather than real label text.

    Artifacts come from decorative elements (rules, borders, flourishes)
    misread as characters, e.g. "EE ———", "||||", "RR RRRRRREEEE".
    Year lines, measurements and the warning anchor line are always kept.
    """
    stripped = line.strip()
    if not stripped:
        return True

    if YEAR_LINE.match(stripped):
        return False
    if MEASUREMENT_PATTERN.search(stripped):
        return False
    if WARNING_ANCHOR.search(stripped):
        return False

    alpha_only = re.sub(r"[^a-zA-Z]", "", stripped).lower()
    unique_alpha = set(alpha_only)
    if len(unique_alpha) <= 2:
        return True
    # Long strings with very low character diversity, unless they read as prose
    words = [w for w in re.findall(r"[a-zA-Z]{3,}", stripped) if len(set(w.lower())) > 2]
    if len(words) < 3 and len(alpha_only) > 10 and len(unique_alpha) < len(alpha_only) / 5:
        return True
    if not re.search(r"[a-zA-Z]{3,}", stripped):
        return True

    alpha_count = sum(1 for c in stripped if c.isascii() and c.isalpha())
    return alpha_count / len(stripped) < 0.4


def _phrase_pattern(candidate: str) -> re.Pattern:
    words = [re.escape(w) for w in candidate.split()]
    return re.compile(r"(?<![A-Za-z])" + r"\s+".join(words) + r"(?![A-Za-z])", re.IGNORECASE)


def find_best_match(text: str, candidates: Iterable[str]) -> Optional[str]:
    """
    Dictionary lookup, longest candidate first.

    Matches are word-bounded and case-insensitive; the matched text is
    returned as it appears in the source, whitespace-collapsed.
    """
    for candidate in sorted(candidates, key=len, reverse=True):
        match = _phrase_pattern(candidate).search(text)
        if match:
            return normalize_whitespace(match.group(0))
    return None


def clean_lines(raw_text: str) -> List[str]:
    """
    Strip each line and drop artifact lines.

    Blank lines survive as block boundaries (runs collapsed to one);
    leading and trailing blanks are removed.
    """
    lines: List[str] = []
    for line in raw_text.replace("\r\n", "\n").replace("\r", "\n").split("\n"):
        stripped = line.strip()
        if not stripped:
            if lines and lines[-1] != "":
                lines.append("")
            continue
        if is_artifact_line(stripped):
            logger.debug(f"Dropped artifact line: {stripped!r}")
            continue
        lines.append(stripped)

    while lines and lines[-1] == "":
        lines.pop()
    return lines


class FieldParser:
    """Recovers the ten label fields from raw recognized text."""

    def parse(self, raw_text: str) -> ParsedLabelFields:
        """
        Parse label fields from raw text.

        Args:
            raw_text: Line-structured text from the recognizer

        Returns:
            ParsedLabelFields, with None for every field not found
        """
        lines = clean_lines(raw_text or "")
        cleaned = "\n".join(lines)
        flat = normalize_whitespace(cleaned)

        class_type = find_best_match(cleaned, KNOWN_CLASS_TYPES)

        fields = ParsedLabelFields(
            brand_name=self._extract_brand_name(lines, class_type),
            class_type=class_type,
            alcohol_content=self._extract_alcohol_content(flat),
            net_contents=self._extract_net_contents(flat),
            name_address=self._extract_name_address(lines),
            government_warning=self._extract_government_warning(cleaned),
            country_of_origin=self._extract_country_of_origin(cleaned),
            appellation=find_best_match(cleaned, KNOWN_APPELLATIONS),
            varietal=find_best_match(cleaned, KNOWN_VARIETALS),
            vintage_date=self._extract_vintage_date(lines, flat),
        )

        found = [name for name, value in fields.model_dump().items() if value]
        logger.debug(f"Parsed {len(found)}/10 fields: {found}")
        return fields

    def _extract_alcohol_content(self, text: str) -> Optional[str]:
        for pattern in ALCOHOL_PATTERNS:
            match = pattern.search(text)
            if match:
                return match.group(0).strip()
        return None

    def _extract_net_contents(self, text: str) -> Optional[str]:
        match = NET_CONTENTS_PATTERN.search(text)
        if not match:
            return None
        value = match.group(0).strip()
        return value.replace("0Z", "OZ").replace("0z", "oz")

    def _extract_government_warning(self, text: str) -> Optional[str]:
        """
        Capture the warning from its anchor to the first end marker.

        End markers: a blank line, a producer line, an address line. The
        text is then cut after "health problems" and closed with a period.
        """
        anchor = WARNING_ANCHOR.search(text)
        if not anchor:
            return None

        remaining = text[anchor.start():]
        end_idx = len(remaining)
        for pattern in WARNING_END_PATTERNS:
            match = pattern.search(remaining, WARNING_MIN_LENGTH)
            if match:
                end_idx = min(end_idx, match.start())

        extracted = normalize_whitespace(remaining[:end_idx]).lstrip("\"' ")

        # Trailing OCR noise after the closing phrase
        closing = HEALTH_PROBLEMS.search(extracted)
        if closing:
            extracted = extracted[:closing.end()]
            if not extracted.endswith("."):
                extracted += "."

        return extracted or None

    def _extract_country_of_origin(self, text: str) -> Optional[str]:
        for pattern in COUNTRY_PATTERNS:
            match = pattern.search(text)
            if match:
                country = normalize_whitespace(match.group(1))
                if country:
                    return country
        return None

    def _extract_vintage_date(self, lines: List[str], flat: str) -> Optional[str]:
        for line in lines:
            if YEAR_LINE.match(line):
                return line

        match = VINTAGE_PHRASE.search(flat)
        if match:
            return match.group(1)

        match = BARE_YEAR.search(flat)
        return match.group(0) if match else None

    def _warning_span(self, lines: List[str]) -> Tuple[int, int]:
        """
        Line index range (inclusive) of the government warning block.

        The block runs from the anchor line until a blank or short line, or
        an address line that is not the warning's own closing line.
        Returns (-1, -1) when there is no warning.
        """
        start = next(
            (i for i, line in enumerate(lines) if re.search(r"GOVERNMENT\s*WARNING", line, re.IGNORECASE)),
            -1,
        )
        if start < 0:
            return -1, -1

        end = start
        for j in range(start + 1, len(lines)):
            line = lines[j]
            if len(line) < 10:
                break
            if ZIP_PATTERN.search(line) and not HEALTH_PROBLEMS.search(line):
                break
            end = j
        return start, end

    def _extract_name_address(self, lines: List[str]) -> Optional[str]:
        gov_start, gov_end = self._warning_span(lines)

        def in_warning(i: int) -> bool:
            return gov_start <= i <= gov_end and gov_start >= 0

        for i, line in enumerate(lines):
            if not line or in_warning(i):
                continue
            if ZIP_PATTERN.search(line):
                parts = [line]
                if i > 0:
                    prev = lines[i - 1]
                    if (prev and not in_warning(i - 1)
                            and not MEASUREMENT_LINE.match(prev)
                            and not any(p.match(prev) for p in ALCOHOL_PATTERNS)
                            and not YEAR_LINE.match(prev)):
                        parts.insert(0, prev)
                return ", ".join(parts)

        # Fallback: business-entity line plus up to two lines of the same block
        for i, line in enumerate(lines):
            if not line or in_warning(i):
                continue
            if any(p.search(line) for p in BUSINESS_PATTERNS):
                parts = [line]
                for j in range(i + 1, min(len(lines), i + 3)):
                    if not lines[j] or in_warning(j):
                        break
                    parts.append(lines[j])
                return ", ".join(parts)

        return None

    def _is_known_field(self, line: str) -> bool:
        """True if a line carries some field other than the brand."""
        if any(p.match(line) for p in ALCOHOL_PATTERNS):
            return True
        if re.match(r"^\d+\.?\d*\s*(%|Proof)", line, re.IGNORECASE):
            return True
        if NET_CONTENTS_PATTERN.match(line):
            return True
        if YEAR_LINE.match(line):
            return True
        if re.search(r"GOVERNMENT\s*WARNING|Surgeon\s*General", line, re.IGNORECASE):
            return True
        if re.search(r"birth\s*defects|impairs|health\s*problems", line, re.IGNORECASE):
            return True
        if re.search(r"Product\s+of|Imported|Made\s+in", line, re.IGNORECASE):
            return True
        if ZIP_PATTERN.search(line) or STREET_PATTERN.search(line):
            return True
        # Producer lines; a bare "X DISTILLERY" heading is usually the brand itself
        if PRODUCER_PHRASE.search(line):
            return True
        if BUSINESS_SUFFIX.search(line) and re.search(r"[,\d]", line):
            return True

        norm = normalize_whitespace(line).lower()
        if any(norm == a.lower() for a in KNOWN_APPELLATIONS):
            return True
        if any(norm == v.lower() for v in KNOWN_VARIETALS):
            return True
        return False

    def _brand_warning_span(self, lines: List[str]) -> Tuple[int, int]:
        """Warning block for brand purposes: anchor through the closing line."""
        start = next(
            (i for i, line in enumerate(lines) if re.search(r"GOVERNMENT\s*WARNING", line, re.IGNORECASE)),
            -1,
        )
        if start < 0:
            return -1, -1

        end = start
        for j in range(start, len(lines)):
            if not lines[j]:
                break
            end = j
            if HEALTH_PROBLEMS.search(lines[j]):
                break
        return start, end

    def _extract_brand_name(self, lines: List[str], class_type: Optional[str]) -> Optional[str]:
        """
        Brand name heuristics.

        Pass 1: first significant line that is not another field. A line
        identical to the class/type is skipped; one that contains it further
        in keeps only the part before it.
        Pass 2: an all-caps multi-word line.
        """
        gov_start, gov_end = self._brand_warning_span(lines)
        class_lower = class_type.lower() if class_type else None

        def in_warning(i: int) -> bool:
            return gov_start >= 0 and gov_start <= i <= gov_end

        for i, line in enumerate(lines):
            if len(line) < 2 or in_warning(i):
                continue
            if is_artifact_line(line) or LEADING_DECORATION.match(line):
                continue
            if self._is_known_field(line):
                continue

            normalized = normalize_whitespace(line)
            if class_lower and class_lower in normalized.lower():
                if normalized.lower() == class_lower:
                    continue
                ct_idx = normalized.lower().index(class_lower)
                if ct_idx > 0:
                    brand = normalized[:ct_idx].strip(" ,-–—:;")
                    if brand:
                        return brand
                    continue

            return normalized

        for i, line in enumerate(lines):
            if not line or in_warning(i) or is_artifact_line(line):
                continue
            if self._is_known_field(line):
                continue
            normalized = normalize_whitespace(DECORATION_EDGES.sub("", line))
            if " " not in normalized:
                continue
            if class_lower and normalized.lower() == class_lower:
                continue
            if BRAND_CAPS_LINE.match(normalized):
                logger.debug(f"Brand from all-caps line: {normalized!r}")
                return normalized

        return None
