"""Adapters around third-party intelligence providers.

Each adapter turns one upstream response into a local record. Adapters do
not rate limit or cache; ``intelligence.IntelligenceGateway`` wraps them.
"""
from __future__ import annotations

import re
import socket
import ssl
import time
from datetime import datetime, timezone
from typing import Any

import httpx
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric import dsa, ec, rsa

from .errors import ProviderUnavailable
from .logging_utils import get_logger
from .models import (
    Document,
    HeaderCheck,
    PerformanceRecord,
    ReputationRecord,
    SecurityHeadersRecord,
    SslRecord,
    Technology,
    TechnologyRecord,
)

log = get_logger("providers")


def _clamp_score(score: float) -> int:
    return max(0, min(100, int(round(score))))


def _get_json(client: httpx.Client, provider: str, url: str, timeout: float, **kwargs: Any) -> Any:
    res = client.get(url, timeout=timeout, **kwargs)
    if res.status_code == 429:
        raise ProviderUnavailable(provider, "rate_limited", f"{provider} returned HTTP 429")
    if res.status_code in (401, 403):
        raise ProviderUnavailable(provider, "unauthorized", f"{provider} rejected credentials (HTTP {res.status_code})")
    if res.status_code < 200 or res.status_code >= 300:
        raise ProviderUnavailable(provider, "error", f"{provider} returned HTTP {res.status_code}")
    try:
        return res.json()
    except ValueError:
        raise ProviderUnavailable(provider, "error", f"{provider} returned invalid JSON")


# -- SSL ----------------------------------------------------------------------

SSL_LABS_GRADE_SCORES: dict[str, int] = {
    "A+": 100, "A": 90, "A-": 85, "B": 70, "C": 50, "D": 30, "F": 10, "T": 5, "M": 5,
}

SSL_LABS_VULNERABILITIES: dict[str, str] = {
    "vulnBeast": "BEAST",
    "heartbleed": "Heartbleed",
    "openSslCcs": "OpenSSL CCS Injection",
    "openSSLLuckyMinus20": "Lucky Minus 20",
    "poodle": "POODLE",
    "freak": "FREAK",
    "logjam": "Logjam",
    "drownVulnerable": "DROWN",
}


class SslLabsProvider:
    name = "ssl_labs"
    endpoint = "https://api.ssllabs.com/api/v3/analyze"

    def fetch(self, client: httpx.Client, host: str, timeout: float) -> SslRecord:
        data = _get_json(
            client, self.name, self.endpoint, timeout,
            params={"host": host, "fromCache": "on", "maxAge": "24", "all": "done"},
        )
        status = str(data.get("status") or "")
        if status != "READY":
            # IN_PROGRESS / DNS / ERROR: nothing gradeable yet
            raise ProviderUnavailable(self.name, "pending", f"SSL Labs assessment status {status or 'unknown'}")

        endpoints = data.get("endpoints") or []
        if not endpoints:
            raise ProviderUnavailable(self.name, "error", "SSL Labs returned no endpoints")
        endpoint = endpoints[0]
        grade = endpoint.get("grade")
        details = endpoint.get("details") or {}

        vulns = []
        for key, label in SSL_LABS_VULNERABILITIES.items():
            value = details.get(key)
            # openSslCcs / openSSLLuckyMinus20 are numeric codes where 2+ means vulnerable
            if value is True or (isinstance(value, int) and not isinstance(value, bool) and value >= 2):
                vulns.append(label)

        protocols = details.get("protocols") or []
        protocol = None
        if protocols:
            best = protocols[-1]
            protocol = f"{best.get('name', 'TLS')}v{best.get('version', '')}".strip("v")

        cert: dict[str, Any] = {}
        certs = data.get("certs") or []
        if certs and isinstance(certs[0], dict):
            cert = certs[0]
        not_after = cert.get("notAfter")
        days = None
        expires_at = None
        if isinstance(not_after, (int, float)):
            expiry = datetime.fromtimestamp(not_after / 1000, tz=timezone.utc)
            expires_at = expiry.isoformat()
            days = int((expiry - datetime.now(timezone.utc)).total_seconds() // 86400)

        score = SSL_LABS_GRADE_SCORES.get(str(grade), 0) if grade else 0
        return SslRecord(
            provider=self.name,
            score=score,
            grade=grade,
            valid=bool(grade) and grade not in ("T", "M", "F"),
            issuer=cert.get("issuerSubject"),
            subject=cert.get("subject"),
            expires_at=expires_at,
            days_to_expiry=days,
            key_type=cert.get("keyAlg"),
            key_bits=cert.get("keySize"),
            protocol=protocol,
            vulnerabilities=vulns,
        )


def _join_rdns(rdns: Any) -> str | None:
    if not rdns:
        return None
    return ", ".join("=".join(x) for rdn in rdns for x in rdn)


def _key_thresholds(key_type: str | None) -> tuple[int, int]:
    # elliptic-curve keys are far shorter than RSA keys of equal strength
    if key_type in ("EC", "ECDSA"):
        return 256, 160
    return 2048, 1024


def certificate_key(der: bytes | None) -> tuple[str | None, int | None]:
    """Public key algorithm and size of a DER-encoded certificate."""
    if not der:
        return None, None
    try:
        cert = x509.load_der_x509_certificate(der)
        key = cert.public_key()
    except (ValueError, UnsupportedAlgorithm) as e:
        log.debug("could not read certificate key: %s", e)
        return None, None
    if isinstance(key, rsa.RSAPublicKey):
        key_type = "RSA"
    elif isinstance(key, ec.EllipticCurvePublicKey):
        key_type = "EC"
    elif isinstance(key, dsa.DSAPublicKey):
        key_type = "DSA"
    else:
        key_type = type(key).__name__
    return key_type, getattr(key, "key_size", None)


def score_direct_tls(record: SslRecord) -> int:
    """Point allocation for a certificate read straight off the handshake."""
    if not record.valid:
        return 0
    score = 20
    if record.days_to_expiry is not None:
        if record.days_to_expiry > 30:
            score += 20
        elif record.days_to_expiry > 0:
            score += 10

    if record.key_bits is not None:
        strong, acceptable = _key_thresholds(record.key_type)
        if record.key_bits >= strong:
            score += 30
        elif record.key_bits >= acceptable:
            score += 15
    elif record.protocol in ("TLSv1.3", "TLSv1.2"):
        score += 30
    elif record.protocol:
        score += 15

    if record.handshake_ms is not None:
        if record.handshake_ms < 2000:
            score += 30
        elif record.handshake_ms < 5000:
            score += 20
        elif record.handshake_ms < 10000:
            score += 10

    score -= 10 * len(record.vulnerabilities)
    return _clamp_score(score)


class DirectTlsProbe:
    """Fallback SSL check: one TLS handshake on port 443."""

    name = "tls"

    def fetch(self, host: str, timeout: float, port: int = 443) -> SslRecord:
        ctx = ssl.create_default_context()
        start = time.perf_counter()
        try:
            with socket.create_connection((host, port), timeout=timeout) as sock:
                with ctx.wrap_socket(sock, server_hostname=host) as ssock:
                    cert = ssock.getpeercert()
                    der = ssock.getpeercert(binary_form=True)
                    protocol = ssock.version()
        except ssl.SSLCertVerificationError as e:
            return SslRecord(
                provider=self.name, score=0, valid=False,
                vulnerabilities=[f"Certificate verification failed: {e.verify_message or e}"],
            )
        except ssl.SSLError as e:
            return SslRecord(provider=self.name, score=0, valid=False, vulnerabilities=[f"TLS handshake failed: {e}"])
        except ConnectionRefusedError:
            return SslRecord(provider=self.name, score=0, valid=False, vulnerabilities=["HTTPS not offered"])
        except (socket.timeout, TimeoutError):
            raise ProviderUnavailable(self.name, "timeout", f"TLS handshake with {host} timed out")
        except OSError as e:
            raise ProviderUnavailable(self.name, "error", f"TLS connection to {host} failed: {e}")
        handshake_ms = int((time.perf_counter() - start) * 1000)
        return tls_record(self.name, cert, der, protocol, handshake_ms)


def tls_record(provider: str, cert: dict[str, Any] | None, der: bytes | None,
               protocol: str | None, handshake_ms: int | None) -> SslRecord:
    """Build and score a record from what a completed handshake exposed."""
    not_after = cert.get("notAfter") if cert else None
    days = None
    expires_at = None
    if not_after:
        try:
            dt = datetime.strptime(not_after, "%b %d %H:%M:%S %Y %Z").replace(tzinfo=timezone.utc)
            expires_at = dt.isoformat()
            days = int((dt - datetime.now(timezone.utc)).total_seconds() // 86400)
        except ValueError:
            days = None
    key_type, key_bits = certificate_key(der)

    vulns = []
    if days is not None and days < 30:
        vulns.append(f"Certificate expires in {days} days")
    if protocol and protocol not in ("TLSv1.2", "TLSv1.3"):
        vulns.append(f"Outdated protocol {protocol}")
    if key_bits is not None and key_bits < _key_thresholds(key_type)[0]:
        vulns.append(f"Weak key size: {key_bits} bits")

    record = SslRecord(
        provider=provider,
        valid=bool(cert),
        issuer=_join_rdns(cert.get("issuer")) if cert else None,
        subject=_join_rdns(cert.get("subject")) if cert else None,
        expires_at=expires_at,
        days_to_expiry=days,
        key_type=key_type,
        key_bits=key_bits,
        protocol=protocol,
        handshake_ms=handshake_ms,
        vulnerabilities=vulns,
    )
    return record.model_copy(update={"score": score_direct_tls(record)})


# -- reputation -----------------------------------------------------------------

THREAT_KEYWORDS: dict[str, tuple[str, ...]] = {
    "malware": ("malware", "trojan", "virus", "backdoor", "rootkit"),
    "phishing": ("phishing", "phish", "scam", "fraud"),
    "suspicious": ("suspicious", "unwanted", "adware", "pup"),
    "spam": ("spam", "spammer"),
    "exploit": ("exploit", "vulnerability", "injection"),
}


def categorize_threat(result: str) -> str:
    lowered = (result or "").lower()
    for category, keywords in THREAT_KEYWORDS.items():
        if any(k in lowered for k in keywords):
            return category
    return "other"


def risk_level(threat_score: int) -> str:
    if threat_score >= 75:
        return "high"
    if threat_score >= 50:
        return "medium"
    if threat_score >= 25:
        return "low"
    return "clean"


class VirusTotalProvider:
    name = "virustotal"
    endpoint = "https://www.virustotal.com/vtapi/v2/url/report"
    requires_key = True

    def __init__(self, api_key: str | None):
        self.api_key = api_key

    def fetch(self, client: httpx.Client, url: str, timeout: float) -> dict[str, Any]:
        if not self.api_key:
            raise ProviderUnavailable(self.name, "no_api_key")
        data = _get_json(client, self.name, self.endpoint, timeout, params={"apikey": self.api_key, "resource": url})
        code = data.get("response_code")
        if code != 1:
            raise ProviderUnavailable(self.name, "not_scanned", "URL not present in VirusTotal database")

        categories: list[str] = []
        for result in (data.get("scans") or {}).values():
            if isinstance(result, dict) and result.get("detected") and result.get("result"):
                cat = categorize_threat(str(result["result"]))
                if cat not in categories:
                    categories.append(cat)

        positives = int(data.get("positives") or 0)
        total = int(data.get("total") or 0)
        return {
            "positives": positives,
            "total": total,
            "scan_date": data.get("scan_date"),
            "threat_categories": categories,
            "risk": _clamp_score(positives / total * 100) if total > 0 else 0,
        }


class UrlscanProvider:
    name = "urlscan"
    endpoint = "https://urlscan.io/api/v1/search/"
    requires_key = False

    def __init__(self, api_key: str | None):
        self.api_key = api_key

    def fetch(self, client: httpx.Client, host: str, timeout: float) -> dict[str, Any]:
        headers = {"API-Key": self.api_key} if self.api_key else {}
        data = _get_json(
            client, self.name, self.endpoint, timeout,
            params={"q": f"domain:{host}", "size": 10}, headers=headers,
        )
        results = data.get("results")
        if not isinstance(results, list):
            raise ProviderUnavailable(self.name, "error", "urlscan response missing results")

        malicious = suspicious = 0
        for item in results:
            overall = ((item or {}).get("verdicts") or {}).get("overall") or {}
            if overall.get("malicious"):
                malicious += 1
            if overall.get("suspicious"):
                suspicious += 1

        total_scans = int(data.get("total") or len(results) or 0)
        verdict = "clean"
        if malicious:
            verdict = "malicious"
        elif suspicious:
            verdict = "suspicious"

        reputation = 50 + {"clean": 30, "suspicious": -20, "malicious": -40}[verdict]
        risk = _clamp_score((malicious * 2 + suspicious) / total_scans * 100) if total_scans else 0
        return {
            "total_scans": total_scans,
            "malicious_count": malicious,
            "suspicious_count": suspicious,
            "verdict": verdict,
            "reputation": reputation,
            "risk": risk,
        }


def blend_reputation(vt: dict[str, Any] | None, urlscan: dict[str, Any] | None,
                     weights: tuple[float, float] = (0.6, 0.4)) -> ReputationRecord:
    """Weighted sum of provider risk contributions, capped at 100."""
    providers: list[str] = []
    threat = 0.0
    details: dict[str, Any] = {}
    categories: list[str] = []
    if vt is not None:
        providers.append("virustotal")
        threat += vt["risk"] * weights[0]
        details["virustotal"] = vt
        categories.extend(vt.get("threat_categories") or [])
    if urlscan is not None:
        providers.append("urlscan")
        threat += urlscan["risk"] * weights[1]
        details["urlscan"] = urlscan
        if urlscan["verdict"] != "clean" and urlscan["verdict"] not in categories:
            categories.append(urlscan["verdict"])

    threat_score = min(100, _clamp_score(threat))
    security = 100 - threat_score
    return ReputationRecord(
        providers=providers,
        threat_score=threat_score,
        risk_level=risk_level(threat_score),
        security_score=security,
        reputation_score=urlscan["reputation"] if urlscan is not None else security,
        threat_categories=categories,
        details=details,
    )


# -- technology -----------------------------------------------------------------

class BuiltWithProvider:
    name = "builtwith"
    endpoint = "https://api.builtwith.com/v19/api.json"
    requires_key = True

    def __init__(self, api_key: str | None):
        self.api_key = api_key

    def fetch(self, client: httpx.Client, host: str, timeout: float) -> TechnologyRecord:
        if not self.api_key:
            raise ProviderUnavailable(self.name, "no_api_key")
        data = _get_json(client, self.name, self.endpoint, timeout, params={"KEY": self.api_key, "LOOKUP": host})
        results = data.get("Results") or []
        if not results:
            raise ProviderUnavailable(self.name, "error", "BuiltWith returned no results")

        techs: dict[str, Technology] = {}
        for path in ((results[0] or {}).get("Result") or {}).get("Paths") or []:
            for t in path.get("Technologies") or []:
                name = str(t.get("Name") or "").strip()
                if not name or name in techs:
                    continue
                cats = [str(c) for c in (t.get("Categories") or []) if c]
                tag = str(t.get("Tag") or "").strip()
                if tag and tag not in cats:
                    cats.insert(0, tag)
                techs[name] = Technology(name=name, categories=cats or ["Other"])
        return _technology_record(self.name, list(techs.values()))


def _technology_record(provider: str, techs: list[Technology]) -> TechnologyRecord:
    grouped: dict[str, list[str]] = {}
    for t in techs:
        for c in t.categories or ["Other"]:
            grouped.setdefault(c, [])
            if t.name not in grouped[c]:
                grouped[c].append(t.name)
    return TechnologyRecord(provider=provider, technologies=techs, categories=grouped)


_FINGERPRINTS: list[tuple[str, str, re.Pattern]] = [
    ("WordPress", "CMS", re.compile(r"wp-content/|wp-includes/|<meta[^>]+generator[^>]+wordpress", re.I)),
    ("Joomla", "CMS", re.compile(r"/media/system/js/|<meta[^>]+generator[^>]+joomla|/components/com_[a-z0-9_]+", re.I)),
    ("Drupal", "CMS", re.compile(r"/sites/(?:default|all)/|drupal-settings-json|<meta[^>]+generator[^>]+drupal", re.I)),
    ("Shopify", "Ecommerce", re.compile(r"cdn\.shopify\.com|myshopify\.com", re.I)),
    ("WooCommerce", "Ecommerce", re.compile(r"wp-content/plugins/woocommerce", re.I)),
    ("Wix", "CMS", re.compile(r"static\.wixstatic\.com|<meta[^>]+generator[^>]+wix", re.I)),
    ("Squarespace", "CMS", re.compile(r"static1\.squarespace\.com|squarespace-cdn", re.I)),
    ("Next.js", "Web frameworks", re.compile(r"_next/static|__NEXT_DATA__", re.I)),
    ("Nuxt.js", "Web frameworks", re.compile(r"/_nuxt/", re.I)),
    ("Laravel", "Web frameworks", re.compile(r"laravel_session|/vendor/laravel", re.I)),
    ("React", "JavaScript libraries", re.compile(r"data-reactroot|react(?:\.production)?(?:\.min)?\.js", re.I)),
    ("Vue.js", "JavaScript libraries", re.compile(r"vue(?:\.runtime)?(?:\.min)?\.js|data-v-[0-9a-f]{6,}", re.I)),
    ("Angular", "JavaScript frameworks", re.compile(r"ng-version=|angular(?:\.min)?\.js", re.I)),
    ("jQuery", "JavaScript libraries", re.compile(r"jquery[-.]?(?:\d[\w.\-]*)?(?:\.min)?\.js", re.I)),
    ("Bootstrap", "UI frameworks", re.compile(r"bootstrap(?:\.bundle)?(?:\.min)?\.(?:css|js)", re.I)),
    ("Tailwind CSS", "UI frameworks", re.compile(r"tailwind(?:css)?(?:\.min)?\.css|cdn\.tailwindcss\.com", re.I)),
    ("Google Analytics", "Analytics", re.compile(r"google-analytics\.com/|gtag/js\?id=|googletagmanager\.com/gtag", re.I)),
    ("Google Tag Manager", "Tag managers", re.compile(r"googletagmanager\.com/gtm\.js", re.I)),
    ("Cloudflare", "CDN", re.compile(r"cdnjs\.cloudflare\.com|/cdn-cgi/", re.I)),
]

_META_GENERATOR = re.compile(r"<meta[^>]+name=[\"']generator[\"'][^>]+content=[\"']([^\"']+)[\"']", re.I)
_SERVER_TOKEN = re.compile(r"([A-Za-z][A-Za-z0-9_-]*)(?:/([0-9][\w.\-]*))?")


def fingerprint_technologies(doc: Document) -> TechnologyRecord:
    """Detect technologies from the already-fetched page and its headers."""
    html = doc.html[:250_000]
    techs: dict[str, Technology] = {}

    for name, category, pattern in _FINGERPRINTS:
        if name not in techs and pattern.search(html):
            techs[name] = Technology(name=name, categories=[category])

    m = _META_GENERATOR.search(html)
    if m:
        gen = m.group(1).strip()
        gm = re.match(r"([A-Za-z][\w .\-]*?)\s+v?(\d[\w.\-]*)$", gen)
        gen_name, version = (gm.group(1), gm.group(2)) if gm else (gen, None)
        existing = next((t for t in techs.values() if t.name.lower() == gen_name.lower()), None)
        if existing is not None:
            existing.version = existing.version or version
        else:
            techs[gen_name] = Technology(name=gen_name, categories=["CMS"], version=version)

    headers = {k.lower(): v for k, v in doc.headers.items()}
    server = headers.get("server", "")
    sm = _SERVER_TOKEN.match(server.strip()) if server else None
    if sm:
        name = sm.group(1)
        label = {"nginx": "Nginx", "apache": "Apache", "cloudflare": "Cloudflare", "microsoft-iis": "IIS"}.get(
            name.lower(), name
        )
        if label not in techs:
            techs[label] = Technology(name=label, categories=["Web servers"], version=sm.group(2))
    powered = headers.get("x-powered-by", "")
    for token in [p.strip() for p in powered.split(",") if p.strip()]:
        pm = _SERVER_TOKEN.match(token)
        if pm and pm.group(1) not in techs:
            techs[pm.group(1)] = Technology(name=pm.group(1), categories=["Programming languages"], version=pm.group(2))
    if "strict-transport-security" in headers and "HSTS" not in techs:
        techs["HSTS"] = Technology(name="HSTS", categories=["Security"])

    return _technology_record("heuristic", list(techs.values()))


# -- security headers -------------------------------------------------------------

# header -> (weight, critical)
SECURITY_HEADERS: dict[str, tuple[float, bool]] = {
    "strict-transport-security": (0.25, True),
    "content-security-policy": (0.20, True),
    "x-frame-options": (0.15, True),
    "x-content-type-options": (0.15, True),
    "x-xss-protection": (0.10, False),
    "referrer-policy": (0.10, False),
    "permissions-policy": (0.05, False),
}

HEADER_LEVEL_SCORES: dict[str, int] = {"excellent": 100, "good": 80, "fair": 60, "poor": 20}

_MAX_AGE_RE = re.compile(r"max-age=(\d+)")
_SECURE_REFERRER_POLICIES = ("no-referrer", "no-referrer-when-downgrade", "strict-origin", "strict-origin-when-cross-origin")


def evaluate_header(name: str, value: str) -> str:
    """Rate one header value as excellent, good, fair or poor."""
    v = value.strip().lower()
    if name == "strict-transport-security":
        m = _MAX_AGE_RE.search(v)
        max_age = int(m.group(1)) if m else 0
        if max_age >= 31536000 and "includesubdomains" in v:
            return "excellent" if "preload" in v else "good"
        return "fair" if max_age >= 86400 else "poor"
    if name == "content-security-policy":
        unsafe = "'unsafe-inline'" in v or "'unsafe-eval'" in v
        if "default-src 'self'" in v or "script-src 'self'" in v:
            return "good" if unsafe else "excellent"
        return "poor" if unsafe else "fair"
    if name == "x-frame-options":
        if v == "deny":
            return "excellent"
        return "good" if v == "sameorigin" else "poor"
    if name == "x-content-type-options":
        return "excellent" if v == "nosniff" else "poor"
    if name == "x-xss-protection":
        if "1; mode=block" in v:
            return "excellent"
        return {"1": "good", "0": "fair"}.get(v, "poor")
    if name == "referrer-policy":
        if v == "no-referrer":
            return "excellent"
        return "good" if v in _SECURE_REFERRER_POLICIES else "fair"
    return "fair"


def grade_security_headers(headers: dict[str, str]) -> SecurityHeadersRecord:
    """Weighted grade of the response's security headers; needs no network."""
    lowered = {k.lower(): v for k, v in headers.items()}
    record = SecurityHeadersRecord()
    weighted = total = 0.0
    for name, (weight, critical) in SECURITY_HEADERS.items():
        total += weight
        value = lowered.get(name)
        if not value:
            record.missing.append(name)
            if critical:
                record.missing_critical.append(name)
            continue
        level = evaluate_header(name, value)
        points = HEADER_LEVEL_SCORES[level]
        record.present.append(name)
        record.checks[name] = HeaderCheck(value=value, level=level, score=points)
        weighted += points * weight
    record.score = _clamp_score(weighted / total) if total else 0
    return record


# -- performance ----------------------------------------------------------------

PAGESPEED_METRICS: dict[str, str] = {
    "first-contentful-paint": "fcp",
    "largest-contentful-paint": "lcp",
    "cumulative-layout-shift": "cls",
    "speed-index": "speed_index",
    "interactive": "tti",
    "total-blocking-time": "tbt",
}


class PageSpeedProvider:
    name = "pagespeed"
    endpoint = "https://www.googleapis.com/pagespeedonline/v5/runPagespeed"
    requires_key = False

    def __init__(self, api_key: str | None):
        self.api_key = api_key

    def fetch_strategy(self, client: httpx.Client, url: str, strategy: str, timeout: float) -> dict[str, Any]:
        params: dict[str, Any] = {"url": url, "strategy": strategy, "category": "performance"}
        if self.api_key:
            params["key"] = self.api_key
        data = _get_json(client, self.name, self.endpoint, timeout, params=params)
        lighthouse = data.get("lighthouseResult")
        if not isinstance(lighthouse, dict):
            raise ProviderUnavailable(self.name, "error", "PageSpeed response missing lighthouseResult")
        return parse_lighthouse(lighthouse)


def parse_lighthouse(lighthouse: dict[str, Any]) -> dict[str, Any]:
    perf = ((lighthouse.get("categories") or {}).get("performance") or {}).get("score")
    audits = lighthouse.get("audits") or {}

    metrics: dict[str, dict[str, Any]] = {}
    for audit_id, key in PAGESPEED_METRICS.items():
        audit = audits.get(audit_id)
        if isinstance(audit, dict):
            metrics[key] = {
                "value": audit.get("numericValue"),
                "display": audit.get("displayValue"),
                "score": audit.get("score"),
            }

    opportunities = []
    for audit_id, audit in audits.items():
        if not isinstance(audit, dict):
            continue
        details = audit.get("details") or {}
        if details.get("type") != "opportunity":
            continue
        score = audit.get("score")
        if score is not None and score >= 0.9:
            continue
        opportunities.append({
            "id": audit_id,
            "title": audit.get("title"),
            "savings_ms": details.get("overallSavingsMs") or 0,
        })
    opportunities.sort(key=lambda o: o["savings_ms"], reverse=True)

    return {
        "score": _clamp_score(float(perf) * 100) if isinstance(perf, (int, float)) else None,
        "metrics": metrics,
        "opportunities": opportunities[:5],
    }


def combine_pagespeed(mobile: dict[str, Any] | None, desktop: dict[str, Any] | None) -> PerformanceRecord:
    m_score = mobile.get("score") if mobile else None
    d_score = desktop.get("score") if desktop else None
    if m_score is not None and d_score is not None:
        overall = _clamp_score(0.6 * m_score + 0.4 * d_score)
    elif m_score is not None:
        overall = m_score
    else:
        overall = d_score
    primary = mobile or desktop or {}
    return PerformanceRecord(
        score=overall,
        mobile_score=m_score,
        desktop_score=d_score,
        metrics=primary.get("metrics") or {},
        opportunities=primary.get("opportunities") or [],
    )
