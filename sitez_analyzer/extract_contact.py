from __future__ import annotations

import re
from typing import Iterable

from bs4.element import Tag

from .html_utils import ParsedPage, clean_text, jsonld_types
from .models import BusinessHours, ContactForm, ContactRecord, Document, GeoLocation, PhoneNumber, PostalAddress
from .patterns import (
    PRIORITY_MARKUP,
    PRIORITY_STRUCTURED,
    PRIORITY_TEXT,
    ExtractionPattern,
    regex_matcher,
    run_patterns,
)

_EMAIL_RE = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
_EMAIL_FULL_RE = re.compile(r"^[A-Z0-9._%+-]+@[A-Z0-9-]+(?:\.[A-Z0-9-]+)*\.[A-Z]{2,}$", re.IGNORECASE)
_OBFUSCATED_EMAIL_RE = re.compile(
    r"([A-Z0-9._%+-]+)\s*[\[\(\{]\s*at\s*[\]\)\}]\s*([A-Z0-9-]+(?:\s*[\[\(\{]\s*dot\s*[\]\)\}]\s*[A-Z0-9-]+)+)",
    re.IGNORECASE,
)
_DOT_TOKEN_RE = re.compile(r"\s*[\[\(\{]\s*dot\s*[\]\)\}]\s*", re.IGNORECASE)
_ASSET_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp", ".css", ".js")

_US_PHONE_RE = re.compile(r"(?<![\d+])(\+?1[-.\s]?)?\(?([2-9][0-9]{2})\)?[-.\s]?([0-9]{3})[-.\s]?([0-9]{4})(?!\d)")
_INTL_PHONE_RE = re.compile(r"(?<![\w+])\+[1-9]\d{0,3}(?:[-.\s]?\(?\d{1,4}\)?){2,5}(?!\d)")
_US_DISPLAY_RE = re.compile(r"^1?(\d{3})(\d{3})(\d{4})$")
TOLL_FREE_PREFIXES = {"800", "888", "877", "866", "855", "844", "833", "822"}

_STREET_SUFFIX = (
    r"(?:Street|St|Avenue|Ave|Road|Rd|Boulevard|Blvd|Lane|Ln|Drive|Dr|Court|Ct|Place|Pl|Way|"
    r"Circle|Cir|Parkway|Pkwy|Close|Crescent|Square)"
)
_US_ADDRESS_RE = re.compile(
    r"\b\d{1,6}\s+[A-Za-z0-9 .'-]{1,60}?\s+" + _STREET_SUFFIX
    + r"\.?(?:\s*,?\s*(?:Suite|Ste|Unit|#)\s*[\w-]+)?\s*,?\s*[A-Za-z .]{2,40},\s*[A-Z]{2}\s*\d{5}(?:-\d{4})?\b"
)
_GENERIC_ADDRESS_RE = re.compile(r"\b\d{1,6}\s+[A-Za-z0-9 .'-]{1,60}?\s+" + _STREET_SUFFIX + r"\b\.?")
_PO_BOX_RE = re.compile(r"\bP\.?\s?O\.?\s*Box\s*\d+\b", re.IGNORECASE)

_DAY = r"(Monday|Tuesday|Wednesday|Thursday|Friday|Saturday|Sunday|Mon|Tue|Wed|Thu|Fri|Sat|Sun)"
_TIME = r"(\d{1,2}:\d{2}\s*(?:AM|PM)?|\d{1,2}\s*(?:AM|PM))"
_DAY_SPAN = _DAY + r"(?:\s*(?:-|–|to|through|thru)\s*" + _DAY + r")?"
_HOURS_RANGE_RE = re.compile(_DAY_SPAN + r"\s*:?\s*" + _TIME + r"\s*[-–]\s*" + _TIME, re.IGNORECASE)
_HOURS_CLOSED_RE = re.compile(_DAY_SPAN + r"\s*:?\s*(Closed)\b", re.IGNORECASE)
_DAY_NAMES = {
    "mon": "Monday", "tue": "Tuesday", "wed": "Wednesday", "thu": "Thursday",
    "fri": "Friday", "sat": "Saturday", "sun": "Sunday",
}
_WEEK = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

_FORM_KEYWORDS = (
    "contact", "inquiry", "enquiry", "message", "feedback", "support",
    "get in touch", "reach out", "email us", "send message",
)
_FORM_FIELDS = ("email", "name", "message", "subject", "phone")
_CAPTCHA_HINTS = ("recaptcha", "hcaptcha", "captcha", "turnstile")


# -- emails -------------------------------------------------------------------

def _clean_email(raw: str) -> str | None:
    value = (raw or "").strip().strip(".,;:<>()[]\"'").lower()
    if not _EMAIL_FULL_RE.match(value) or ".." in value:
        return None
    if value.endswith(_ASSET_SUFFIXES):
        return None
    return value


def _mailto_links(page: ParsedPage) -> Iterable[str]:
    for a in page.soup.find_all("a", href=True):
        href = str(a.get("href")).strip()
        if href.lower().startswith("mailto:"):
            target = href[7:].split("?", 1)[0]
            for part in target.split(","):
                yield part


def _obfuscated_emails(page: ParsedPage) -> Iterable[str]:
    for m in _OBFUSCATED_EMAIL_RE.finditer(page.text):
        domain = _DOT_TOKEN_RE.sub(".", m.group(2))
        yield f"{m.group(1)}@{domain}"


def _jsonld_values(page: ParsedPage, key: str) -> Iterable[str]:
    for node in page.jsonld:
        value = node.get(key)
        if isinstance(value, str):
            yield value
        elif isinstance(value, list):
            yield from (v for v in value if isinstance(v, str))


def _jsonld_emails(page: ParsedPage) -> Iterable[str]:
    for value in _jsonld_values(page, "email"):
        yield value[7:] if value.lower().startswith("mailto:") else value


EMAIL_PATTERNS = (
    ExtractionPattern("email", "mailto", PRIORITY_MARKUP, _mailto_links, _clean_email),
    ExtractionPattern("email", "obfuscated", PRIORITY_TEXT, _obfuscated_emails, _clean_email),
    ExtractionPattern("email", "text", PRIORITY_TEXT + 1, regex_matcher(_EMAIL_RE), _clean_email),
    ExtractionPattern("email", "structured_data", PRIORITY_TEXT + 10, _jsonld_emails, _clean_email),
)


# -- phones -------------------------------------------------------------------

def _clean_phone(raw: str) -> str | None:
    cleaned = re.sub(r"[^\d+]", "", raw or "")
    if cleaned.count("+") > 1 or ("+" in cleaned and not cleaned.startswith("+")):
        return None
    digits = cleaned.lstrip("+")
    if not 10 <= len(digits) <= 15:
        return None
    return cleaned


def _phone_key(cleaned: str) -> str:
    digits = cleaned.lstrip("+")
    if len(digits) == 11 and digits.startswith("1"):
        return digits[1:]
    return digits


def format_phone(cleaned: str) -> tuple[str, str, bool]:
    """Return ``(display, type, toll_free)`` for a cleaned phone number."""
    digits = cleaned.lstrip("+")
    is_plus = cleaned.startswith("+")
    if not is_plus or digits.startswith("1"):
        m = _US_DISPLAY_RE.match(digits)
        if m:
            area = m.group(1)
            return f"({area}) {m.group(2)}-{m.group(3)}", "us", area in TOLL_FREE_PREFIXES
    return f"+{digits}", "international", False


def _tel_links(page: ParsedPage) -> Iterable[str]:
    for a in page.soup.find_all("a", href=True):
        href = str(a.get("href")).strip()
        if href.lower().startswith(("tel:", "callto:")):
            yield href.split(":", 1)[1]


PHONE_PATTERNS = (
    ExtractionPattern("phone", "tel", PRIORITY_MARKUP, _tel_links, _clean_phone, _phone_key),
    ExtractionPattern(
        "phone", "structured_data", PRIORITY_STRUCTURED,
        lambda page: _jsonld_values(page, "telephone"), _clean_phone, _phone_key,
    ),
    ExtractionPattern("phone", "us_format", PRIORITY_TEXT, regex_matcher(_US_PHONE_RE), _clean_phone, _phone_key),
    ExtractionPattern(
        "phone", "international", PRIORITY_TEXT + 1, regex_matcher(_INTL_PHONE_RE), _clean_phone, _phone_key,
    ),
)


# -- addresses ----------------------------------------------------------------

_ADDRESS_PARTS = ("streetAddress", "addressLocality", "addressRegion", "postalCode", "addressCountry")


def _jsonld_addresses(page: ParsedPage) -> Iterable[str]:
    for node in page.jsonld:
        if "PostalAddress" in jsonld_types(node):
            parts = []
            for k in _ADDRESS_PARTS:
                v = node.get(k)
                if isinstance(v, dict):
                    v = v.get("name")
                if isinstance(v, str) and v.strip():
                    parts.append(v.strip())
            if parts:
                yield ", ".join(parts)
        addr = node.get("address")
        if isinstance(addr, str):
            yield addr


def _address_elements(page: ParsedPage) -> Iterable[str]:
    for tag in page.soup.find_all("address"):
        yield tag.get_text(", ", strip=True)


def _clean_address(raw: str) -> str | None:
    value = clean_text(raw).strip(" ,.")
    value = re.sub(r"(,\s*){2,}", ", ", value)
    if len(value) < 8 or len(value) > 250:
        return None
    return value


def _address_key(value: str) -> str:
    return re.sub(r"[^a-z0-9]", "", value.lower())


ADDRESS_PATTERNS = (
    ExtractionPattern("address", "structured_data", PRIORITY_MARKUP, _jsonld_addresses, _clean_address, _address_key),
    ExtractionPattern("address", "address_element", PRIORITY_STRUCTURED, _address_elements, _clean_address, _address_key),
    ExtractionPattern("address", "us_format", PRIORITY_TEXT, regex_matcher(_US_ADDRESS_RE), _clean_address, _address_key),
    ExtractionPattern(
        "address", "generic", PRIORITY_TEXT + 1, regex_matcher(_GENERIC_ADDRESS_RE), _clean_address, _address_key,
    ),
    ExtractionPattern("address", "po_box", PRIORITY_TEXT + 2, regex_matcher(_PO_BOX_RE), _clean_address, _address_key),
)


# -- forms --------------------------------------------------------------------

def _field_names(form: Tag) -> list[str]:
    names: list[str] = []
    for field in form.find_all(["input", "textarea", "select"]):
        ftype = str(field.get("type") or "").lower()
        if ftype in ("hidden", "submit", "button", "image", "reset"):
            continue
        label = str(field.get("name") or field.get("id") or field.get("placeholder") or ftype or field.name)
        label = label.strip().lower()
        if label and label not in names:
            names.append(label)
    return names


def _matched_fields(form: Tag, names: list[str]) -> set[str]:
    found: set[str] = set()
    for key in _FORM_FIELDS:
        if any(key in n for n in names):
            found.add(key)
    if form.find("input", attrs={"type": "email"}) is not None:
        found.add("email")
    if form.find("input", attrs={"type": "tel"}) is not None:
        found.add("phone")
    if form.find("textarea") is not None:
        found.add("message")
    return found


def analyze_form(form: Tag) -> ContactForm | None:
    """Describe ``form`` if it looks like a contact form, else ``None``."""
    markup = str(form).lower()
    names = _field_names(form)
    matched = _matched_fields(form, names)

    keyword_hit = any(k in markup for k in _FORM_KEYWORDS)
    if not keyword_hit and len(matched) < 2:
        return None
    # keyword hits still need at least one contact field
    if not matched:
        return None

    has_validation = form.find(attrs={"required": True}) is not None or "validate" in markup
    has_captcha = any(h in markup for h in _CAPTCHA_HINTS)

    score = sum(20 for k in ("name", "email", "message") if k in matched)
    if has_validation:
        score += 20
    if has_captcha:
        score += 20

    return ContactForm(
        action=str(form.get("action")) if form.get("action") else None,
        method=str(form.get("method") or "get").lower(),
        fields=names,
        has_validation=has_validation,
        has_captcha=has_captcha,
        form_score=min(100, score),
    )


# -- hours / location ---------------------------------------------------------

def _day_name(raw: str) -> str:
    return _DAY_NAMES.get(raw[:3].lower(), raw.capitalize())


def _day_span(first: str, last: str | None) -> list[str]:
    """Days covered by "Mon - Fri"; wraps past Sunday."""
    start = _day_name(first)
    if last is None or start not in _WEEK:
        return [start]
    end = _day_name(last)
    if end not in _WEEK:
        return [start]
    i, j = _WEEK.index(start), _WEEK.index(end)
    return [_WEEK[(i + k) % 7] for k in range((j - i) % 7 + 1)]


def _business_hours(page: ParsedPage) -> list[BusinessHours]:
    out: dict[str, BusinessHours] = {}
    text = page.text
    for m in _HOURS_RANGE_RE.finditer(text):
        opens, closes = clean_text(m.group(3)), clean_text(m.group(4))
        for day in _day_span(m.group(1), m.group(2)):
            if day not in out:
                out[day] = BusinessHours(day=day, opens=opens, closes=closes)
    for m in _HOURS_CLOSED_RE.finditer(text):
        for day in _day_span(m.group(1), m.group(2)):
            if day not in out:
                out[day] = BusinessHours(day=day, closed=True)
    return [out[d] for d in _WEEK if d in out]


def _coords(raw: str) -> tuple[float, float] | None:
    parts = [p for p in re.split(r"[;,\s]+", raw or "") if p]
    if len(parts) != 2:
        return None
    try:
        lat, lon = float(parts[0]), float(parts[1])
    except ValueError:
        return None
    if not (-90 <= lat <= 90 and -180 <= lon <= 180):
        return None
    return lat, lon


def _location(page: ParsedPage) -> GeoLocation | None:
    loc = GeoLocation()
    for name in ("geo.position", "ICBM"):
        coords = _coords(page.meta(name=name))
        if coords:
            loc.latitude, loc.longitude = coords
            loc.source = "meta"
            break

    if loc.latitude is None:
        for node in page.jsonld:
            geo = node.get("geo")
            if isinstance(geo, dict) and "latitude" in geo and "longitude" in geo:
                coords = _coords(f"{geo.get('latitude')},{geo.get('longitude')}")
                if coords:
                    loc.latitude, loc.longitude = coords
                    loc.source = "structured_data"
                    break

    for frame in page.soup.find_all("iframe", src=True):
        src = str(frame.get("src"))
        if "google.com/maps" in src or "maps.google." in src:
            resolved = page.absolute(src)
            if resolved and resolved not in loc.map_embeds:
                loc.map_embeds.append(resolved)

    if loc.latitude is None and not loc.map_embeds:
        return None
    return loc


def extract(doc: Document) -> ContactRecord:
    page = ParsedPage(doc.html, doc.final_url)

    emails = run_patterns(EMAIL_PATTERNS, page)

    phones: list[PhoneNumber] = []
    for match in run_patterns(PHONE_PATTERNS, page):
        display, kind, toll_free = format_phone(match.value)
        phones.append(PhoneNumber(raw=match.value, formatted=display, type=kind, toll_free=toll_free, source=match.source))

    addresses = [PostalAddress(value=m.value, source=m.source) for m in run_patterns(ADDRESS_PATTERNS, page)]

    forms = [f for f in (analyze_form(form) for form in page.soup.find_all("form")) if f is not None]

    return ContactRecord(
        emails=[m.value for m in emails],
        email_sources={m.value: m.source for m in emails},
        phones=phones,
        addresses=addresses,
        forms=forms,
        business_hours=_business_hours(page),
        location=_location(page),
    )
