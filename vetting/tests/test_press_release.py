"""Tests for press release drafting."""
from __future__ import annotations

import json
from datetime import datetime
from types import SimpleNamespace

from vetting.models import Post
from vetting.press_release import build_content, build_draft, build_slug, build_title, create_post
from vetting.utils import slugify

DECIDED = datetime(2026, 3, 4, 15, 30)


def _vetting(**kw):
    base = dict(
        id="0f1e2d3c-aaaa-bbbb-cccc-111122223333", candidate_name="Jane Doe",
        candidate_office="State Senate", candidate_state="TX", candidate_district="District 5",
    )
    return SimpleNamespace(**{**base, **kw})


class TestTitle:
    def test_endorse(self):
        assert build_title("endorse", "Jane Doe", "State Senate") == "RLC Endorses Jane Doe for State Senate"

    def test_do_not_endorse(self):
        assert build_title("do_not_endorse", "Jane Doe", "Mayor") == "RLC Does Not Endorse Jane Doe for Mayor"

    def test_no_position(self):
        assert "Takes No Position" in build_title("no_position", "Jane Doe", "Mayor")

    def test_unknown_result_uses_fallback(self):
        assert build_title("weird", "Jane Doe", None) == "RLC Endorsement Decision: Jane Doe for Office"

    def test_custom_org(self):
        assert build_title("endorse", "A B", "C", org_short_name="XYZ").startswith("XYZ Endorses")


class TestContent:
    def test_escapes_candidate_fields(self):
        content = build_content(
            "endorse", "<script>alert(1)</script>", "Council & Mayor", "TX", None, DECIDED,
        )
        assert "<script>" not in content
        assert "&lt;script&gt;" in content
        assert "Council &amp; Mayor" in content

    def test_long_date_and_draft_note(self):
        content = build_content("endorse", "Jane Doe", "State Senate", "TX", "District 5", DECIDED)
        assert "March 4, 2026" in content
        assert "(TX, District 5)" in content
        assert content.endswith("Please edit the content before publishing.</em></p>")


class TestSlug:
    def test_slug_shape(self):
        slug = build_slug("José O'Neil", "0f1e2d3c-aaaa", DECIDED)
        assert slug == "press-release-jose-o-neil-0f1e2d3c-2026-03-04"

    def test_slugify(self):
        assert slugify("  Hello,  World!! ") == "hello-world"
        assert slugify("") == ""


class TestDraft:
    def test_build_draft(self):
        draft = build_draft(_vetting(), "endorse", DECIDED)
        assert draft.title == "RLC Endorses Jane Doe for State Senate"
        assert draft.excerpt == draft.title
        assert draft.status == "draft"
        assert draft.content_type == "press_release"
        assert draft.tags == ["press-release", "endorsement", "tx"]
        assert draft.categories == ["press-release", "endorsement"]

    def test_create_post(self, session):
        post_id = create_post(session, build_draft(_vetting(candidate_state=None), "no_position", DECIDED))
        session.commit()
        post = session.get(Post, post_id)
        assert post.status == "draft"
        assert json.loads(post.tags_json) == ["press-release", "endorsement"]
        assert post.slug.startswith("press-release-jane-doe-0f1e2d3c")
