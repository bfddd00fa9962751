import pytest

from veo.rules import RuleLoadError, RuleManager

FINGER_YAML = """\
nginx:
  dsl:
    - "server('nginx')"
apache:
  dsl:
    - "contains(body, 'Apache')"
  path: /server-status
"""


def write(directory, name, content):
    path = directory / name
    path.write_text(content, encoding="utf-8")
    return path


def test_load_single_file(tmp_path):
    path = write(tmp_path, "finger.yaml", FINGER_YAML)
    manager = RuleManager()
    manager.load_rules(path)
    assert len(manager) == 2
    assert sorted(rule.name for rule in manager.rules_snapshot()) == ["apache", "nginx"]
    assert manager.loaded_summary() == "finger.yaml:2"
    rule = next(r for r in manager.rules_snapshot() if r.name == "nginx")
    assert rule.id == "nginx"
    assert rule.dsl == ["server('nginx')"]


def test_load_directory_only_yaml_in_name_order(tmp_path):
    write(tmp_path, "b.YAML", "two:\n  dsl: [\"title('b')\"]\n")
    write(tmp_path, "a.yaml", "one:\n  dsl: [\"title('a')\"]\n")
    write(tmp_path, "c.txt", "three:\n  dsl: [\"title('c')\"]\n")
    (tmp_path / "d.yaml").mkdir()
    manager = RuleManager()
    manager.load_rules(str(tmp_path))
    assert manager.loaded_summary() == "a.yaml:1 b.YAML:1"
    assert sorted(rule.name for rule in manager.rules_snapshot()) == ["one", "two"]


def test_missing_path_raises(tmp_path):
    with pytest.raises(RuleLoadError):
        RuleManager().load_rules(tmp_path / "nope.yaml")


def test_directory_without_yaml_raises(tmp_path):
    write(tmp_path, "notes.txt", "x")
    with pytest.raises(RuleLoadError):
        RuleManager().load_rules(tmp_path)


def test_broken_files_are_skipped(tmp_path):
    write(tmp_path, "good.yaml", FINGER_YAML)
    write(tmp_path, "bad.yaml", "nginx: [unclosed\n")
    write(tmp_path, "list.yaml", "- just\n- a list\n")
    manager = RuleManager()
    manager.load_rules(tmp_path)
    assert manager.loaded_summary() == "good.yaml:2"
    assert len(manager) == 2


def test_sensitive_file_sets_category(tmp_path):
    write(
        tmp_path,
        "Sensitive_rules.yaml",
        "leak:\n  dsl: [\"contains(body, 'key')\"]\n"
        "tagged:\n  dsl: [\"contains(body, 'x')\"]\n  category: custom\n",
    )
    manager = RuleManager()
    manager.load_rules(tmp_path)
    categories = {rule.name: rule.category for rule in manager.rules_snapshot()}
    assert categories == {"leak": "sensitive", "tagged": "custom"}


def test_path_rules(tmp_path):
    write(
        tmp_path,
        "paths.yaml",
        FINGER_YAML + "multi:\n  dsl: [\"title('m')\"]\n  path:\n    - /a\n    - ' '\n    - /b\n",
    )
    manager = RuleManager()
    manager.load_rules(tmp_path)
    assert manager.has_path_rules()
    assert sorted(rule.name for rule in manager.path_rules()) == ["apache", "multi"]
    assert manager.path_rules_count() == 3
    multi = next(r for r in manager.path_rules() if r.name == "multi")
    assert multi.paths == ["/a", "/b"]


def test_no_path_rules(tmp_path):
    write(tmp_path, "plain.yaml", "nginx:\n  dsl: [\"server('nginx')\"]\n")
    manager = RuleManager()
    manager.load_rules(tmp_path)
    assert not manager.has_path_rules()
    assert manager.path_rules_count() == 0
    assert manager.path_rules() == []


def test_header_rules(tmp_path):
    write(
        tmp_path,
        "headers.yaml",
        FINGER_YAML + "api:\n  dsl: [\"contains(body, 'ok')\"]\n  header: 'X-Test: yes'\n",
    )
    manager = RuleManager()
    manager.load_rules(tmp_path)
    assert manager.header_rules_count() == 1
    rules = manager.header_rules()
    assert [rule.name for rule in rules] == ["api"]
    assert rules[0].header_map() == {"X-Test": "yes"}


def test_icon_rules(tmp_path):
    write(
        tmp_path,
        "icons.yaml",
        FINGER_YAML + "fav:\n  dsl:\n    - \"title('x')\"\n    - \"icon('/favicon.ico', 'abc')\"\n",
    )
    manager = RuleManager()
    manager.load_rules(tmp_path)
    assert [rule.name for rule in manager.icon_rules()] == ["fav"]


def test_duplicate_rule_is_overridden(tmp_path):
    write(tmp_path, "a.yaml", "nginx:\n  dsl: [\"server('first')\"]\n")
    write(tmp_path, "b.yaml", "nginx:\n  dsl: [\"server('second')\"]\n")
    manager = RuleManager()
    manager.load_rules(tmp_path)
    assert len(manager) == 1
    assert manager.rules_snapshot()[0].dsl == ["server('second')"]
    assert manager.loaded_summary() == "a.yaml:1 b.yaml:1"


def test_null_rule_is_skipped(tmp_path):
    write(tmp_path, "r.yaml", "empty: ~\nreal:\n  dsl: [\"title('r')\"]\n")
    manager = RuleManager()
    manager.load_rules(tmp_path)
    assert [rule.name for rule in manager.rules_snapshot()] == ["real"]
    assert manager.loaded_summary() == "r.yaml:1"


def test_snapshot_is_a_copy(tmp_path):
    manager = RuleManager()
    manager.load_rules(write(tmp_path, "finger.yaml", FINGER_YAML))
    snapshot = manager.rules_snapshot()
    snapshot.clear()
    assert len(manager.rules_snapshot()) == 2