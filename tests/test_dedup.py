from veo.dedup import Deduplicator


def test_deduplicator_source_cases():
    d = Deduplicator()
    url1 = "http://example.com"
    fps1 = ["CMS"]

    assert d.should_output(url1, fps1) is True
    assert d.should_output(url1, fps1) is False

    fps2 = ["CMS", "Framework"]
    assert d.should_output(url1, fps2) is True

    d.clear()
    assert d.should_output(url1, ["CMS"]) is True
    assert d.should_output(url1, ["CMS", "CMS"]) is False

    d.clear()
    assert len(d) == 0
    assert d.should_output(url1, fps1) is True


def test_name_order_does_not_matter():
    d = Deduplicator()
    assert d.should_output("http://example.com/a", ["B", "A"]) is True
    assert d.should_output("http://example.com/a", ["A", "B"]) is False


def test_query_string_is_ignored():
    d = Deduplicator()
    assert d.should_output("http://example.com/a?x=1", ["CMS"]) is True
    assert d.should_output("http://example.com/a?x=2", ["CMS"]) is False


def test_different_paths_are_distinct():
    d = Deduplicator()
    assert d.should_output("http://example.com/a", None) is True
    assert d.should_output("http://example.com/b", None) is True
    assert len(d) == 2


def test_names_are_trimmed():
    d = Deduplicator()
    assert d.should_output("http://example.com", [" CMS "]) is True
    assert d.should_output("http://example.com", ["CMS"]) is False


def test_no_names_differs_from_names():
    d = Deduplicator()
    assert d.should_output("http://example.com", []) is True
    assert d.should_output("http://example.com", ["CMS"]) is True
    assert d.should_output("http://example.com", None) is False