"""Tests for digital presence classification, confidence, scoring and risks."""
from __future__ import annotations

from vetting.scoring import (
    OpponentAudit, PageSignals, PlatformResult, assess_risks, calculate_confidence, classify_url,
    confidence_factors, confidence_level, grade_for, score_discovered, score_overall, score_platform,
    PLATFORM_GRADES,
)


def _platform(name="Facebook", url="https://facebook.com/janedoe", category="social_media", **kw) -> PlatformResult:
    base = dict(
        entity_type="candidate", entity_name="Jane Doe", platform_name=name, platform_url=url,
        category=category, score_presence=2, score_consistency=2, score_quality=2,
        score_accessibility=1, total_score=7, grade="C", contact_methods={"email": True},
    )
    return PlatformResult(**{**base, **kw})


class TestClassifyUrl:
    def test_known_platforms(self):
        assert classify_url("https://www.facebook.com/janedoe").platform_type == "facebook"
        assert classify_url("https://x.com/janedoe").platform_name == "X (Twitter)"
        assert classify_url("https://ballotpedia.org/Jane_Doe").category == "political_platform"
        assert classify_url("https://linkedin.com/in/janedoe").platform_type == "linkedin-personal"

    def test_campaign_site(self):
        found = classify_url("https://janedoeforsenate.com")
        assert found.category == "campaign_website"
        assert found.platform_type == "campaign-website"

    def test_plain_website(self):
        found = classify_url("https://janedoe.net/about")
        assert found.category == "website"
        assert found.platform_name == "Janedoe"

    def test_rejects_garbage(self):
        assert classify_url(None) is None
        assert classify_url("") is None
        assert classify_url("not a url") is None

    def test_facebook_groups_are_not_profiles(self):
        assert classify_url("https://facebook.com/groups/123") is None


class TestConfidence:
    def test_strong_match(self):
        score = calculate_confidence(
            "https://ballotpedia.org/Jane_Doe", "Jane Doe - State Senate candidate, TX",
            "Jane Doe", "State Senate", "TX",
        )
        assert score >= 0.7
        assert confidence_level(score) == "HIGH"

    def test_unrelated(self):
        score = calculate_confidence("https://example.io/cats", "Cat pictures", "Jane Doe", "Mayor", "TX")
        assert score < 0.3
        assert confidence_level(score) == "NONE"

    def test_factors_and_clamp(self):
        factors = confidence_factors("https://janedoe.com", "", "Jane Doe", None, None)
        assert factors["name_match"] == 0.4
        assert factors["office_match"] == 0
        assert 0 <= calculate_confidence("https://janedoe.com", "", "Jane Doe", None, None) <= 1


class TestPlatformScore:
    def test_bounds(self):
        low = score_platform(has_profile=False, content_quality="poor")
        assert low.total == 0
        assert low.grade == "F"
        high = score_platform(
            is_active=True, naming_consistent=True, messaging_consistent=True, has_logo=True,
            content_quality="good", professional=True, has_contact_info=True,
            has_email=True, has_phone=True, has_website=True,
        )
        assert high.total == 12
        assert high.grade == "A"

    def test_discovered_uses_signals(self):
        bare = score_discovered(0.8)
        probed = score_discovered(0.8, PageSignals(reachable=True, has_email=True, has_phone=True, text_length=900))
        assert probed.accessibility > bare.accessibility
        assert probed.presence > bare.presence

    def test_grades(self):
        assert grade_for(97) == "A+"
        assert grade_for(62) == "F"
        assert grade_for(9, PLATFORM_GRADES) == "B"


class TestOverallScore:
    def test_no_platforms(self):
        breakdown = score_overall([], [])
        assert breakdown.total == 0
        assert breakdown.grade == "F"

    def test_opponent_positioning(self):
        own = [_platform(), _platform("Website", "https://janedoe.com", "website")]
        weak = OpponentAudit(name="Bob", party="D", platform_count=1, overall_score=3)
        strong = OpponentAudit(name="Sue", party="L", platform_count=5, overall_score=11)
        assert score_overall(own, [weak]).competitive_positioning == 20
        assert score_overall(own, [strong]).competitive_positioning == 10
        assert score_overall(own, []).competitive_positioning == 10

    def test_ignores_opponent_rows(self):
        own = [_platform()]
        mixed = own + [_platform(entity_type="opponent", entity_name="Bob")]
        assert score_overall(own, []).total == score_overall(mixed, []).total
        assert 0 <= score_overall(own, []).total <= 100


class TestActivityStatus:
    def test_from_probe_signals(self):
        assert PageSignals(reachable=True, text_length=900).activity_status == "active"
        assert PageSignals(reachable=True, text_length=40).activity_status == "inactive"
        assert PageSignals(reachable=False).activity_status == "inactive"

    def test_active_platforms_raise_presence(self):
        unknown = score_overall([_platform()], [])
        active = score_overall([_platform(activity_status="active")], [])
        assert active.digital_presence > unknown.digital_presence


class TestRisks:
    def test_http_and_missing_website(self):
        risks = assess_risks([_platform(url="http://facebook.com/janedoe")])
        categories = [r.category for r in risks.risks]
        assert categories.count("security") == 2
        assert risks.high_count >= 1

    def test_clean_profile(self):
        risks = assess_risks([
            _platform(),
            _platform("Website", "https://janedoe.com", "campaign_website"),
        ])
        assert risks.risks == []
        assert risks.overall_score == 0
        assert risks.overall_severity == "NONE"

    def test_no_contact_is_compliance_risk(self):
        risks = assess_risks([
            _platform(contact_methods={}),
            _platform("Website", "https://janedoe.com", "website", contact_methods={}),
        ])
        assert any(r.category == "compliance" for r in risks.risks)

    def test_inactive_candidate_platform_is_abandonment_risk(self):
        risks = assess_risks([
            _platform(),
            _platform("Website", "https://janedoe.com", "campaign_website", activity_status="inactive"),
        ])
        assert [r.category for r in risks.risks] == ["abandonment"]
        assert risks.risks[0].severity == "MEDIUM"

    def test_opponent_abandoned_overall_unaffected(self):
        risks = assess_risks([_platform(entity_type="opponent", activity_status="abandoned")])
        assert risks.risks == []


def test_opponent_audit_to_dict_hides_reason_when_ok():
    assert "failure_reason" not in OpponentAudit(name="Bob", party=None).to_dict()
    failed = OpponentAudit(name="Bob", party=None, audit_failed=True, failure_reason="timeout").to_dict()
    assert failed["failure_reason"] == "timeout"
