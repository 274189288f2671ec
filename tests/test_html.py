"""Tests for HTML policy extraction and script injection."""

from __future__ import annotations

from retrocsp.retrofit.plans import NavigateToPlan, StrictDynamicPlan
from retrocsp.utils.html import (
    collect_policy_text,
    extract_meta_policies,
    inject_head_scripts,
    neutralize_meta_refresh,
    render_bootstrap_script,
    render_script_tag,
    strip_meta_illegal_directives,
)

META_PAGE = (
    "<html><head>"
    "<meta http-equiv=\"Content-Security-Policy\" content=\"script-src 'self'; frame-ancestors 'none'\">"
    "<title>x</title></head></html>"
)


class TestStripMetaIllegalDirectives:
    def test_strips_illegal(self):
        text = "script-src 'self'; report-uri /r; sandbox; FRAME-ANCESTORS 'none'"
        assert strip_meta_illegal_directives(text) == "script-src 'self'"

    def test_keeps_legal(self):
        assert strip_meta_illegal_directives("script-src  'self' ;img-src *") == "script-src 'self'; img-src *"


class TestExtractMetaPolicies:
    def test_removes_tag(self):
        html, policies = extract_meta_policies(META_PAGE)
        assert policies == ["script-src 'self'"]
        assert html == "<html><head><title>x</title></head></html>"

    def test_case_insensitive_and_single_quotes(self):
        page = "<META HTTP-EQUIV='content-security-policy' CONTENT='img-src *'>"
        html, policies = extract_meta_policies(page)
        assert policies == ["img-src *"]
        assert html == ""

    def test_document_order(self):
        page = (
            "<meta http-equiv=\"Content-Security-Policy\" content=\"img-src *\">"
            "<meta http-equiv=\"Content-Security-Policy\" content=\"script-src 'none'\">"
        )
        _, policies = extract_meta_policies(page)
        assert policies == ["img-src *", "script-src 'none'"]

    def test_commented_out_tag_ignored(self):
        page = "<!-- <meta http-equiv=\"Content-Security-Policy\" content=\"script-src 'none'\"> -->"
        html, policies = extract_meta_policies(page)
        assert policies == []
        assert html == page

    def test_other_meta_untouched(self):
        page = "<meta charset=\"utf-8\"><meta name=\"viewport\" content=\"width=device-width\">"
        html, policies = extract_meta_policies(page)
        assert policies == []
        assert html == page


class TestCollectPolicyText:
    def test_meta_before_header(self):
        html, text = collect_policy_text(["img-src *"], META_PAGE)
        assert text == "script-src 'self', img-src *"
        assert "Content-Security-Policy" not in html

    def test_headers_only(self):
        _, text = collect_policy_text(["img-src *", "script-src 'self'"], "<html></html>")
        assert text == "img-src *, script-src 'self'"

    def test_no_policy(self):
        html, text = collect_policy_text([], "<html></html>")
        assert text is None
        assert html == "<html></html>"


class TestNeutralizeMetaRefresh:
    def test_content_renamed(self):
        page = "<meta http-equiv=\"refresh\" content=\"5; url=/next\">"
        assert neutralize_meta_refresh(page) == "<meta http-equiv=\"refresh\" refresh-target=\"5; url=/next\">"

    def test_javascript_refresh_untouched(self):
        page = "<meta http-equiv=\"refresh\" content=\"0;url=javascript:alert(1)\">"
        assert neutralize_meta_refresh(page) == page

    def test_commented_refresh_untouched(self):
        page = "<!--<meta http-equiv=\"refresh\" content=\"0;url=/x\">-->"
        assert neutralize_meta_refresh(page) == page

    def test_other_meta_untouched(self):
        page = "<meta name=\"description\" content=\"hello\">"
        assert neutralize_meta_refresh(page) == page


class TestBootstrapScript:
    def test_plan_payload(self):
        assert render_bootstrap_script(StrictDynamicPlan(nonce="abc")) == (
            '(window.__retroCSP=window.__retroCSP||[]).push({"kind":"strict-dynamic","nonce":"abc"});'
        )

    def test_camel_case_keys(self):
        script = render_bootstrap_script(NavigateToPlan(navigate_to_directives=[["'self'"]]))
        assert '"navigateToDirectives":[["\'self\'"]]' in script

    def test_script_close_escaped(self):
        script = render_bootstrap_script(NavigateToPlan(navigate_to_directives=[["https://a.test/</script>"]]))
        assert "</script>" not in script
        assert "<\\/script>" in script


class TestInjectHeadScripts:
    def test_script_tag(self):
        assert render_script_tag("x()", "abc") == '<script nonce="abc">x()</script>'
        assert render_script_tag("x()", None) == "<script>x()</script>"

    def test_first_children_of_head(self):
        result = inject_head_scripts('<html><head lang="en"><title>t</title></head></html>', "abc", ["a()", "b()"])
        assert result == (
            '<html><head lang="en">'
            '\n\t<script nonce="abc">a()</script>'
            '\n\t<script nonce="abc">b()</script>'
            "<title>t</title></head></html>"
        )

    def test_header_element_is_not_head(self):
        result = inject_head_scripts("<html><body><header>h</header></body></html>", "abc", ["a()"])
        assert result.startswith('<html>\n\t<script nonce="abc">a()</script><body>')

    def test_after_doctype(self):
        result = inject_head_scripts("<!DOCTYPE html><p>x</p>", None, ["a()"])
        assert result == "<!DOCTYPE html>\n\t<script>a()</script><p>x</p>"

    def test_document_start(self):
        result = inject_head_scripts("<p>x</p>", "abc", ["a()"])
        assert result.endswith('<script nonce="abc">a()</script><p>x</p>')

    def test_nothing_to_inject(self):
        assert inject_head_scripts("<p>x</p>", "abc", []) == "<p>x</p>"
