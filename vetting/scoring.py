"""Digital presence heuristics.

Pure functions: URL classification, five-factor confidence, per-platform
scores (0-12), the overall candidate score (0-100) and risk assessment. All
network access lives in :mod:`vetting.discovery`.
"""
from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from typing import Any
from urllib.parse import urlparse

# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass
class Classification:
    platform_type: str
    platform_name: str
    category: str


# Visible text below this many characters reads as a parked or placeholder page
ACTIVE_MIN_TEXT = 200


@dataclass
class PageSignals:
    """What a page probe learned about a discovered URL (all optional)."""
    reachable: bool = False
    title: str = ""
    has_email: bool = False
    has_phone: bool = False
    has_contact_link: bool = False
    has_logo: bool = False
    has_disclaimer: bool = False
    text_length: int = 0

    @property
    def activity_status(self) -> str:
        """``active`` for a reachable page with real content, otherwise ``inactive``."""
        if self.reachable and self.text_length >= ACTIVE_MIN_TEXT:
            return "active"
        return "inactive"

    @property
    def contact_methods(self) -> dict[str, bool]:
        methods = {"email": self.has_email, "phone": self.has_phone, "contact_page": self.has_contact_link}
        return {k: v for k, v in methods.items() if v}


@dataclass
class PlatformScores:
    presence: float
    consistency: float
    quality: float
    accessibility: float
    total: int
    grade: str


@dataclass
class PlatformResult:
    entity_type: str
    entity_name: str
    platform_name: str
    platform_url: str | None
    category: str = "other"
    confidence_score: float | None = None
    discovery_method: str | None = None
    activity_status: str | None = "unknown"
    score_presence: float | None = None
    score_consistency: float | None = None
    score_quality: float | None = None
    score_accessibility: float | None = None
    total_score: int | None = None
    grade: str | None = None
    contact_methods: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class OpponentAudit:
    name: str
    party: str | None
    platform_count: int = 0
    overall_score: int | None = None
    grade: str | None = None
    platforms: list[PlatformResult] = field(default_factory=list)
    audit_failed: bool = False
    failure_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        if not self.audit_failed:
            out.pop("failure_reason")
        return out


@dataclass
class ScoreBreakdown:
    digital_presence: float = 0
    campaign_consistency: float = 0
    communication_quality: float = 0
    voter_accessibility: float = 0
    competitive_positioning: float = 0
    total: int = 0
    grade: str = "F"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Risk:
    category: str
    severity: str
    score: int
    description: str
    mitigation: str
    platform_url: str | None = None


@dataclass
class RiskAssessment:
    overall_score: int
    overall_severity: str
    risks: list[Risk]
    critical_count: int = 0
    high_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Platform classification
# ---------------------------------------------------------------------------

_PLATFORMS: list[tuple[re.Pattern[str], str, str, str]] = [
    (re.compile(p, re.I), t, n, c) for p, t, n, c in [
        # political
        (r"ballotpedia\.org", "ballotpedia", "Ballotpedia", "political_platform"),
        (r"votesmart\.org", "votesmart", "VoteSmart", "political_platform"),
        (r"opensecrets\.org", "opensecrets", "OpenSecrets", "political_platform"),
        (r"fec\.gov", "fec", "FEC", "political_platform"),
        (r"govtrack\.us", "govtrack", "GovTrack", "political_platform"),
        (r"congress\.gov", "congress-gov", "Congress.gov", "political_platform"),
        (r"followthemoney\.org", "followthemoney", "FollowTheMoney", "political_platform"),
        (r"vote411\.org", "vote411", "Vote411", "political_platform"),
        (r"isidewith\.com", "isidewith", "iSideWith", "political_platform"),
        # social
        (r"facebook\.com/(?!marketplace|groups)", "facebook", "Facebook", "social_media"),
        (r"twitter\.com", "twitter", "Twitter/X", "social_media"),
        (r"(?<![a-z0-9])x\.com", "twitter", "X (Twitter)", "social_media"),
        (r"instagram\.com", "instagram", "Instagram", "social_media"),
        (r"tiktok\.com", "tiktok", "TikTok", "social_media"),
        (r"threads\.net", "threads", "Threads", "social_media"),
        (r"nextdoor\.com", "nextdoor", "Nextdoor", "social_media"),
        (r"truthsocial\.com", "truthsocial", "Truth Social", "social_media"),
        (r"rumble\.com", "rumble", "Rumble", "social_media"),
        # professional
        (r"linkedin\.com/in/", "linkedin-personal", "LinkedIn (Personal)", "professional_network"),
        (r"linkedin\.com/company/", "linkedin-company", "LinkedIn (Company)", "professional_network"),
        (r"linkedin\.com", "linkedin", "LinkedIn", "professional_network"),
        # content
        (r"youtube\.com/(?:@|c/|channel/|user/)", "youtube", "YouTube", "content_platform"),
        (r"youtu\.be", "youtube", "YouTube", "content_platform"),
        (r"medium\.com", "medium", "Medium", "content_platform"),
        (r"substack\.com", "substack", "Substack", "content_platform"),
        (r"podcasts\.apple\.com", "apple-podcasts", "Apple Podcasts", "content_platform"),
        (r"spotify\.com/show", "spotify-podcast", "Spotify Podcast", "content_platform"),
        # news
        (r"patch\.com", "patch", "Patch", "news_media"),
        (r"localnews", "local-news", "Local News", "news_media"),
        # events / link hubs
        (r"eventbrite\.com", "eventbrite", "Eventbrite", "other"),
        (r"meetup\.com", "meetup", "Meetup", "other"),
        (r"calendly\.com", "calendly", "Calendly", "other"),
        (r"linktree", "linktree", "Linktree", "other"),
    ]
]

KNOWN_PLATFORM_DOMAINS = frozenset({
    "linkedin.com", "facebook.com", "twitter.com", "x.com", "instagram.com",
    "youtube.com", "medium.com", "substack.com", "tiktok.com", "threads.net",
    "ballotpedia.org", "votesmart.org", "opensecrets.org", "fec.gov",
    "govtrack.us", "congress.gov", "patch.com", "eventbrite.com",
    "meetup.com", "calendly.com", "truthsocial.com", "rumble.com",
    "nextdoor.com",
})

_CAMPAIGN_KEYWORDS = ("campaign", "elect", "vote", "for", "committee")
_TLD_RE = re.compile(r"\.(com|org|net|io|co|us|info|gov)$", re.I)


def _hostname(url: str) -> str:
    parsed = urlparse(url if url.startswith(("http://", "https://")) else f"https://{url}")
    return (parsed.hostname or "").lower()


def _domain_label(hostname: str) -> str:
    bare = _TLD_RE.sub("", hostname)
    return " ".join(w[:1].upper() + w[1:] for w in re.split(r"[.-]", bare) if w)


def classify_url(url: str | None) -> Classification | None:
    """Map a URL onto a known platform, a campaign site or a plain website."""
    if not url or not isinstance(url, str):
        return None
    normalized = url.lower().strip()
    if not normalized.startswith(("http://", "https://")) and "." not in normalized:
        return None

    for pattern, ptype, name, category in _PLATFORMS:
        if pattern.search(normalized):
            return Classification(ptype, name, category)

    hostname = _hostname(normalized)
    if not hostname or any(d in hostname for d in KNOWN_PLATFORM_DOMAINS):
        return None
    clean = hostname.removeprefix("www.")
    is_campaign = any(kw in clean or kw in normalized for kw in _CAMPAIGN_KEYWORDS)
    return Classification(
        "campaign-website" if is_campaign else "custom-website",
        _domain_label(clean),
        "campaign_website" if is_campaign else "website",
    )


# ---------------------------------------------------------------------------
# Confidence (0-1)
# ---------------------------------------------------------------------------

_DOMAIN_AUTHORITY = {
    "ballotpedia.org": 0.1, "votesmart.org": 0.1, "opensecrets.org": 0.1,
    "fec.gov": 0.1, "govtrack.us": 0.1, "congress.gov": 0.1,
    "linkedin.com": 0.1, "facebook.com": 0.1, "twitter.com": 0.1, "x.com": 0.1,
    "instagram.com": 0.09, "youtube.com": 0.09, "tiktok.com": 0.08,
    "patch.com": 0.07, "medium.com": 0.07, "substack.com": 0.07,
}

_POLITICAL_TERMS = (
    "campaign", "candidate", "election", "vote", "elect",
    "republican", "democrat", "libertarian", "conservative", "progressive",
    "district", "precinct", "ballot", "endorsement",
)

HIGH_CONFIDENCE = 0.7
MEDIUM_CONFIDENCE = 0.5
LOW_CONFIDENCE = 0.3


def _name_match(text: str, name: str) -> float:
    parts = name.lower().split()
    if not parts:
        return 0.0
    if "".join(parts) in text or "-".join(parts) in text:
        return 0.4
    if len(parts) >= 2:
        first, last = parts[0], parts[-1]
        if first in text and last in text:
            return 0.35
        if last in text:
            return 0.2
        if first in text:
            return 0.1
    return 0.0


def _office_match(text: str, office: str | None, state: str | None) -> float:
    score = 0.0
    if office:
        office_lower = office.lower()
        if office_lower in text:
            score += 0.2
        elif any(kw in text for kw in office_lower.split() if len(kw) > 3):
            score += 0.1
    if state and len(state) == 2 and re.search(rf"[^a-z]{re.escape(state.lower())}[^a-z]", f" {text} "):
        score += 0.1
    return min(0.3, score)


def _location_match(text: str, state: str | None) -> float:
    if state and state.lower() in text:
        return 0.15
    return 0.0


def _domain_authority(url: str) -> float:
    hostname = _hostname(url)
    for domain, score in _DOMAIN_AUTHORITY.items():
        if domain in hostname:
            return score
    if hostname.endswith(".gov"):
        return 0.09
    if hostname.endswith(".org"):
        return 0.06
    if hostname.endswith(".com"):
        return 0.05
    return 0.03


def _content_signals(text: str) -> float:
    hits = sum(1 for term in _POLITICAL_TERMS if term in text)
    return min(0.05, hits * 0.015)


def confidence_factors(
    url: str, title: str, name: str, office: str | None, state: str | None,
) -> dict[str, float]:
    text = f"{url.lower()} {(title or '').lower()}"
    return {
        "name_match": _name_match(text, name),
        "office_match": _office_match(text, office, state),
        "location_match": _location_match(text, state),
        "domain_authority": _domain_authority(url),
        "content_signals": _content_signals(text),
    }


def calculate_confidence(
    url: str, title: str, name: str, office: str | None, state: str | None,
) -> float:
    """How sure we are that *url* belongs to *name*, clamped to [0, 1]."""
    return max(0.0, min(1.0, sum(confidence_factors(url, title, name, office, state).values())))


def confidence_level(score: float) -> str:
    if score >= HIGH_CONFIDENCE:
        return "HIGH"
    if score >= MEDIUM_CONFIDENCE:
        return "MEDIUM"
    if score >= LOW_CONFIDENCE:
        return "LOW"
    return "NONE"


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

PLATFORM_GRADES = ((11, "A"), (9, "B"), (7, "C"), (5, "D"), (0, "F"))
OVERALL_GRADES = (
    (97, "A+"), (93, "A"), (90, "A-"),
    (87, "B+"), (83, "B"), (80, "B-"),
    (77, "C+"), (73, "C"), (70, "C-"),
    (67, "D+"), (63, "D"), (0, "F"),
)


def grade_for(score: float, thresholds=OVERALL_GRADES) -> str:
    for minimum, grade in thresholds:
        if score >= minimum:
            return grade
    return "F"


def score_platform(
    *,
    has_profile: bool = True,
    is_active: bool = False,
    recently_active: bool = False,
    naming_consistent: bool = False,
    messaging_consistent: bool = False,
    has_logo: bool = False,
    content_quality: str = "fair",
    professional: bool = False,
    has_contact_info: bool = False,
    has_email: bool = False,
    has_phone: bool = False,
    has_website: bool = False,
) -> PlatformScores:
    """Score one platform on four 0-3 axes; total 0-12."""
    presence = float(has_profile) + (1 if is_active else 0.5 if recently_active else 0) + float(has_logo)
    presence = min(3.0, presence)

    consistency = min(3.0, float(naming_consistent) + float(messaging_consistent) + float(has_logo))

    quality = {"good": 2, "fair": 1}.get(content_quality, 0) + float(professional)
    quality = min(3.0, quality)

    contact_count = sum((has_email, has_phone, has_website))
    accessibility = float(has_contact_info) + (contact_count >= 2) + (contact_count >= 3)
    accessibility = min(3.0, accessibility)

    total = round(presence + consistency + quality + accessibility)
    return PlatformScores(presence, consistency, quality, accessibility, total, grade_for(total, PLATFORM_GRADES))


def score_discovered(confidence: float, signals: PageSignals | None = None) -> PlatformScores:
    """Heuristic platform score from discovery confidence plus an optional page probe."""
    signals = signals or PageSignals()
    return score_platform(
        has_profile=True,
        is_active=False,
        recently_active=signals.reachable and signals.text_length > 500,
        naming_consistent=confidence > 0.5,
        messaging_consistent=confidence > 0.4,
        has_logo=signals.has_logo,
        content_quality="good" if confidence > 0.6 else "fair",
        professional=confidence > 0.5,
        has_contact_info=signals.has_email or signals.has_phone or signals.has_contact_link,
        has_email=signals.has_email,
        has_phone=signals.has_phone,
        has_website=signals.has_contact_link,
    )


def _avg(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def score_overall(platforms: list[PlatformResult], opponents: list[OpponentAudit]) -> ScoreBreakdown:
    """Overall 0-100 score across five 20-point dimensions for the candidate."""
    own = [p for p in platforms if p.entity_type == "candidate"]
    count = len(own)
    if not count:
        return ScoreBreakdown()

    presence = min(1, count / 10) * 10
    presence += sum(1 for p in own if p.activity_status == "active") / count * 6
    presence += sum(1 for p in own if (p.total_score or 0) > 0) / count * 4
    presence = min(20, presence)

    consistency = min(20, _avg([p.score_consistency or 0 for p in own]) / 3 * 20)
    quality = min(20, _avg([p.score_quality or 0 for p in own]) / 3 * 20)
    accessibility = min(20, _avg([p.score_accessibility or 0 for p in own]) / 3 * 20)

    positioning = 10.0
    if opponents:
        avg_opp_platforms = _avg([o.platform_count for o in opponents])
        if count > avg_opp_platforms:
            positioning += 5
        elif count == avg_opp_platforms:
            positioning += 2
        avg_opp_score = _avg([o.overall_score or 0 for o in opponents])
        own_avg = _avg([p.total_score or 0 for p in own])
        if own_avg > avg_opp_score:
            positioning += 5
        elif own_avg >= avg_opp_score * 0.9:
            positioning += 2
    positioning = min(20, positioning)

    total = round(presence + consistency + quality + accessibility + positioning)
    return ScoreBreakdown(
        digital_presence=round(presence, 1),
        campaign_consistency=round(consistency, 1),
        communication_quality=round(quality, 1),
        voter_accessibility=round(accessibility, 1),
        competitive_positioning=round(positioning, 1),
        total=total,
        grade=grade_for(total),
    )


# ---------------------------------------------------------------------------
# Risk assessment
# ---------------------------------------------------------------------------

RISK_WEIGHTS = {
    "security": 0.30,
    "consistency": 0.25,
    "abandonment": 0.20,
    "reputation": 0.15,
    "compliance": 0.10,
}
SEVERITY_THRESHOLDS = ((80, "CRITICAL"), (60, "HIGH"), (40, "MEDIUM"), (20, "LOW"), (0, "NONE"))


def severity_for(score: float) -> str:
    for threshold, level in SEVERITY_THRESHOLDS:
        if score >= threshold:
            return level
    return "NONE"


def assess_risks(platforms: list[PlatformResult]) -> RiskAssessment:
    own = [p for p in platforms if p.entity_type == "candidate"]
    risks: list[Risk] = []
    scores = dict.fromkeys(RISK_WEIGHTS, 0)

    def add(risk: Risk) -> None:
        risks.append(risk)
        scores[risk.category] = min(100, scores[risk.category] + risk.score)

    for p in own:
        if p.platform_url and p.platform_url.startswith("http://"):
            add(Risk("security", "HIGH", 25, f"{p.platform_name} does not use HTTPS",
                     "Enable SSL/HTTPS to protect visitor data", p.platform_url))

    has_website = any(p.category in ("campaign_website", "website") for p in own)
    if own and not has_website:
        add(Risk("security", "MEDIUM", 15, "No dedicated campaign website detected",
                 "Create a campaign website to control messaging and collect supporter info"))

    consistency = [p.score_consistency for p in own if p.score_consistency]
    if consistency:
        avg = _avg(consistency)
        if avg < 1:
            add(Risk("consistency", "HIGH", 30, "Severe messaging inconsistency across platforms",
                     "Standardize campaign branding, logo, and messaging across all platforms"))
        elif avg < 2:
            add(Risk("consistency", "MEDIUM", 15, "Moderate messaging inconsistency detected",
                     "Review and align platform bios, images, and campaign messaging"))

    inactive = sum(1 for p in own if p.activity_status in ("inactive", "abandoned"))
    if inactive:
        heavy = inactive >= 3
        add(Risk("abandonment", "HIGH" if heavy else "MEDIUM", 40 if heavy else 20,
                 f"{inactive} inactive or abandoned platform(s) found",
                 "Reactivate important accounts or deactivate to prevent voter confusion"))

    # Low content quality stands in for reputation until content analysis exists
    low_quality = sum(1 for p in own if p.score_quality is not None and p.score_quality <= 1)
    if low_quality >= 2:
        add(Risk("reputation", "MEDIUM", 20, f"{low_quality} platform(s) have low content quality scores",
                 "Improve content quality and professionalism on all public-facing platforms"))

    no_contact = sum(1 for p in own if not p.contact_methods)
    if own and no_contact > len(own) / 2:
        add(Risk("compliance", "MEDIUM", 20, "Most platforms lack visible contact or disclosure information",
                 "Add FEC-required paid-for-by disclaimers and contact info on all campaign materials"))

    overall = round(sum(scores[c] * w for c, w in RISK_WEIGHTS.items()))
    return RiskAssessment(
        overall_score=overall,
        overall_severity=severity_for(overall),
        risks=risks,
        critical_count=sum(1 for r in risks if r.severity == "CRITICAL"),
        high_count=sum(1 for r in risks if r.severity == "HIGH"),
    )
