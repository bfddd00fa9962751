import hashlib

import pytest

from veo.engine import Engine, default_config
from veo.rules import RuleLoadError
from veo.types import (
    STATIC_CONTENT_TYPES,
    STATIC_FILE_EXTENSIONS,
    EngineConfig,
    FingerprintRule,
    HTTPResponse,
)

RULES_YAML = """\
nginx:
  dsl:
    - "contains(body, 'nginx')"
apache:
  dsl:
    - "server('Apache')"
admin:
  dsl:
    - "contains(body, 'admin')"
  path:
    - /admin
    - /login
  header: "X-Test: yes"
"""


class Recorder:
    def __init__(self):
        self.match_calls = []
        self.no_match_calls = []

    def format_match(self, matches, response, *tags):
        self.match_calls.append((list(matches), response))

    def format_no_match(self, response):
        self.no_match_calls.append(response)

    def should_output(self, url, fingerprint_names):
        return True


class FakeClient:
    def __init__(self, body, status=200):
        self.body = body
        self.status = status
        self.requested = []

    def make_request(self, url):
        self.requested.append(url)
        return self.body, self.status


def make_engine(tmp_path, **config):
    rules = tmp_path / "finger.yaml"
    rules.write_text(RULES_YAML, encoding="utf-8")
    recorder = Recorder()
    engine = Engine(EngineConfig(output_formatter=recorder, **config))
    engine.load_rules(rules)
    return engine, recorder


def response(body="", **kwargs):
    kwargs.setdefault("url", "https://example.com/index")
    kwargs.setdefault("status_code", 200)
    kwargs.setdefault("content_type", "text/html")
    return HTTPResponse(body=body, **kwargs)


def test_default_config_values():
    config = default_config()
    assert config.rules_path == "config/fingerprint/"
    assert config.max_concurrency == 20
    assert config.max_body_size == 1024 * 1024
    assert config.enable_filtering is True
    assert config.log_matches is True


def test_engine_without_config_uses_defaults():
    engine = Engine(None)
    assert engine.config.rules_path == "config/fingerprint/"


def test_engine_fills_static_defaults():
    engine = Engine(EngineConfig())
    assert engine.config.static_extensions == list(STATIC_FILE_EXTENSIONS)
    assert engine.config.static_content_types == list(STATIC_CONTENT_TYPES)


def test_match_rule_or_reports_matching_expression():
    engine = Engine(EngineConfig())
    rule = FingerprintRule(name="cms", dsl=["contains(body, 'wordpress')", "contains(body, 'joomla')"])
    ctx = engine.create_context(response("powered by Joomla"))
    match = engine.match_rule(rule, ctx)
    assert match.rule_name == "cms"
    assert match.technology == "cms"
    assert match.dsl_matched == "contains(body, 'joomla')"
    assert match.url == "https://example.com/index"


def test_match_rule_and_requires_every_expression():
    engine = Engine(EngineConfig())
    rule = FingerprintRule(name="both", condition=" AND ", dsl=["contains(body, 'foo')", "status_code == 200"])
    match = engine.match_rule(rule, engine.create_context(response("foo")))
    assert match.dsl_matched == "AND(contains(body, 'foo') && status_code == 200)"
    assert engine.match_rule(rule, engine.create_context(response("bar"))) is None


def test_match_rule_without_dsl_is_none():
    engine = Engine(EngineConfig())
    assert engine.match_rule(FingerprintRule(name="empty"), engine.create_context(response("x"))) is None


def test_unknown_condition_falls_back_to_or():
    engine = Engine(EngineConfig())
    rule = FingerprintRule(name="r", condition="xor", dsl=["contains(body, 'nope')", "contains(body, 'yes')"])
    match = engine.match_rule(rule, engine.create_context(response("yes")))
    assert match.dsl_matched == "contains(body, 'yes')"


def test_snippet_captured_only_when_enabled():
    rule = FingerprintRule(name="r", dsl=["contains(body, 'marker')"])
    on = Engine(EngineConfig(show_snippet=True))
    off = Engine(EngineConfig())
    body = "before marker after"
    assert "marker" in on.match_rule(rule, on.create_context(response(body))).snippet
    assert off.match_rule(rule, off.create_context(response(body))).snippet == ""


def test_create_context_derives_base_url_and_copies_headers():
    engine = Engine(EngineConfig())
    resp = response(
        "body text",
        method="GET",
        response_headers={"Server": ["nginx"], "Empty": []},
    )
    ctx = engine.create_context(resp)
    assert ctx.base_url == "https://example.com"
    assert ctx.headers == {"Server": ["nginx"]}
    assert ctx.body == "body text"
    assert ctx.method == "GET"
    assert ctx.engine is engine
    ctx.headers["Server"].append("other")
    assert resp.response_headers["Server"] == ["nginx"]


def test_create_context_keeps_explicit_base_url():
    engine = Engine(EngineConfig())
    ctx = engine.create_context(response(), None, "http://other.example.com")
    assert ctx.base_url == "http://other.example.com"


def test_analyze_passive_matches_and_reports(tmp_path):
    engine, recorder = make_engine(tmp_path)
    matches = engine.analyze_response_passive(response("served by nginx", server="Apache/2.4"))
    assert sorted(m.rule_name for m in matches) == ["apache", "nginx"]
    assert len(recorder.match_calls) == 1
    stats = engine.stats()
    assert stats.total_requests == 1
    assert stats.matched_requests == 1
    assert stats.last_match_time is not None
    assert len(engine.matches()) == 2


def test_no_match_is_reported_only_when_asked(tmp_path):
    engine, recorder = make_engine(tmp_path)
    assert engine.analyze_response_passive(response("plain")) == []
    assert len(recorder.no_match_calls) == 1
    assert engine.analyze_response_with_client_no_no_match(response("plain"), None) == []
    assert len(recorder.no_match_calls) == 1


def test_silent_analysis_does_not_report(tmp_path):
    engine, recorder = make_engine(tmp_path)
    matches = engine.analyze_response_with_client_silent(response("nginx"), object())
    assert [m.rule_name for m in matches] == ["nginx"]
    assert recorder.match_calls == []
    assert recorder.no_match_calls == []


def test_large_body_is_filtered(tmp_path):
    engine, recorder = make_engine(tmp_path, enable_filtering=True, max_body_size=4)
    assert engine.analyze_response_passive(response("nginx nginx")) == []
    stats = engine.stats()
    assert stats.filtered_requests == 1
    assert stats.total_requests == 0
    assert len(recorder.no_match_calls) == 1


@pytest.mark.parametrize("enabled, expected", [(True, []), (False, ["nginx"])])
def test_static_file_filter(tmp_path, enabled, expected):
    engine, _ = make_engine(tmp_path, enable_filtering=True, static_file_filter_enabled=enabled)
    matches = engine.analyze_response_passive(response("nginx", url="https://example.com/logo.PNG"))
    assert [m.rule_name for m in matches] == expected


def test_static_content_type_filter(tmp_path):
    engine, _ = make_engine(tmp_path, enable_filtering=True, content_type_filter_enabled=True)
    assert engine.analyze_response_passive(response("nginx", content_type="Video/mp4")) == []
    assert engine.stats().filtered_requests == 1


def test_icon_rule_uses_client(tmp_path):
    icon = b"icon-bytes"
    digest = hashlib.md5(icon).hexdigest()
    rules = tmp_path / "icons.yaml"
    rules.write_text(f"favicon:\n  dsl:\n    - \"icon('/favicon.ico', '{digest}')\"\n", encoding="utf-8")
    engine = Engine(EngineConfig())
    engine.load_rules(rules)
    client = FakeClient(icon.decode())

    assert engine.analyze_response_passive(response("x")) == []
    matches = engine.analyze_response_with_client(response("x"), client)
    assert [m.rule_name for m in matches] == ["favicon"]
    assert client.requested == ["https://example.com/favicon.ico"]
    assert [r.name for r in engine.icon_rules()] == ["favicon"]


def test_check_icon_match_mismatch_and_failure():
    engine = Engine(EngineConfig())
    assert engine.check_icon_match("https://example.com/a.ico", "0" * 32, FakeClient("data")) is False
    assert engine.check_icon_match("https://example.com/b.ico", "0" * 32, FakeClient("", status=404)) is None


def test_rule_counts(tmp_path):
    engine, _ = make_engine(tmp_path)
    assert engine.rules_count() == 3
    assert engine.has_path_rules() is True
    assert engine.path_rules_count() == 2
    assert engine.header_rules_count() == 1
    assert engine.icon_rules() == []
    assert engine.loaded_summary() == "finger.yaml:3"


def test_stats_returns_copy(tmp_path):
    engine, _ = make_engine(tmp_path)
    engine.analyze_response_passive(response("nginx"))
    snapshot = engine.stats()
    snapshot.total_requests = 100
    assert engine.stats().total_requests == 1


def test_load_rules_missing_path_raises(tmp_path):
    engine = Engine(EngineConfig())
    with pytest.raises(RuleLoadError):
        engine.load_rules(tmp_path / "missing.yaml")