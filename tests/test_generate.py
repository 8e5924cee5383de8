"""
tests.test_generate
-------------------
Tests for collection assembly and host-list export.
"""

import json

import pytest

from httpsify import generate
from httpsify.simple import load_simple_rules

RULESET_XML = """\
<ruleset name="Shared">
    <target host="shared.org" />
    <target host="*.wild.org" />
    <rule from="^http://shared\\.org/" to="https://secure.shared.org/" />
    <rule from="^http:" to="https:" />
</ruleset>
"""

SIMPLE_XML = """\
<ruleset name="Plain">
    <target host="plain.org" />
    <target host="*.plainwild.org" />
    <rule from="^http:" to="https:" />
</ruleset>
"""

PRELOAD = {
    "entries": [
        {"name": "shared.org", "mode": "force-https"},
        {"name": "hsts.example", "mode": "force-https", "include_subdomains": True},
        {"name": "report-only.example"},
    ]
}


@pytest.fixture
def sources(tmp_path):
    rules_dir = tmp_path / "rules"
    rules_dir.mkdir()
    (rules_dir / "shared.xml").write_text(RULESET_XML, encoding="utf-8")
    (rules_dir / "plain.xml").write_text(SIMPLE_XML, encoding="utf-8")
    preload = tmp_path / "preload.json"
    preload.write_text("// header\n" + json.dumps(PRELOAD), encoding="utf-8")
    return rules_dir, preload


class TestBuildCollection:
    """Assembly tests."""

    def test_preload_wins_on_collision(self, sources):
        rules_dir, preload = sources
        collection = generate.build_collection(rules_dir, preload_file=preload)
        assert "shared.org" not in collection.targets
        assert collection.rewrite("http://shared.org/x") == ("https://shared.org/x", True)
        assert collection.rewrite("http://a.wild.org/") == ("https://a.wild.org/", True)

    def test_skip_hsts(self, sources):
        rules_dir, _ = sources
        collection = generate.build_collection(rules_dir, skip_hsts=True)
        assert collection.rewrite("http://shared.org/x") == ("https://secure.shared.org/x", True)
        assert collection.simple_hosts() == ["plain.org"]

    def test_hsts_only(self, sources):
        _, preload = sources
        collection = generate.build_collection(None, preload_file=preload)
        assert collection.simple_hosts() == ["shared.org"]
        assert collection.simple_subdomain_hosts() == ["hsts.example"]

    def test_loader_errors_propagate(self, tmp_path):
        with pytest.raises(generate.everywhere.RulesetLoadError):
            generate.build_collection(tmp_path / "missing", skip_hsts=True)


class TestMain:
    """CLI tests."""

    def test_writes_host_lists(self, sources, tmp_path):
        rules_dir, preload = sources
        domains = tmp_path / "out" / "domains.txt"
        subdomains = tmp_path / "out" / "subdomains.txt"
        code = generate.main(
            [
                "--rules", str(rules_dir),
                "--preload-file", str(preload),
                "--domains-out", str(domains),
                "--subdomains-out", str(subdomains),
            ]
        )
        assert code == 0
        assert domains.read_text(encoding="utf-8") == "plain.org\nshared.org\n"
        assert subdomains.read_text(encoding="utf-8") == "hsts.example\nplainwild.org\n"

        reloaded = load_simple_rules(domains, subdomains)
        assert reloaded.rewrite("http://x.hsts.example/") == ("https://x.hsts.example/", True)
        assert reloaded.rewrite("http://plain.org/") == ("https://plain.org/", True)

    def test_fatal_on_loader_error(self, tmp_path, capsys):
        code = generate.main(
            [
                "--rules", str(tmp_path / "missing"),
                "--skip-hsts",
                "--domains-out", str(tmp_path / "d.txt"),
                "--subdomains-out", str(tmp_path / "s.txt"),
            ]
        )
        assert code == 1
        assert "[FATAL]" in capsys.readouterr().err
        assert not (tmp_path / "d.txt").exists()

    def test_missing_arguments(self):
        with pytest.raises(SystemExit) as exc:
            generate.main(["--rules", "x"])
        assert exc.value.code == 2

    def test_write_hosts_file_sorts(self, tmp_path):
        target = tmp_path / "hosts.txt"
        assert generate.write_hosts_file({"b.org", "a.org"}, target) == 2
        assert target.read_text(encoding="utf-8") == "a.org\nb.org\n"
