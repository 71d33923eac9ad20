"""
Smoke-run tests (python -m sheaf_gluing).

These tests verify:
1. Every standard atlas passes under each flavor it supports
2. Reports are JSON-serialisable and carry the expected numbers
"""

import json

import pytest

from sheaf_gluing.__main__ import _examples_for, main, run_smoke
from sheaf_gluing.categories import Flavor
from sheaf_gluing.config import ENV_FLAVOR
from sheaf_gluing.standard_atlases import EXAMPLES


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv(ENV_FLAVOR, raising=False)


class TestRunSmoke:
    def test_projective_line_report(self):
        report = run_smoke("projective-line", Flavor.PRESHEAFED)
        assert report["points"] == 6
        assert report["global_sections"] == 6
        assert report["holds"]
        assert set(report["pullback"]) == {"0,0", "0,1", "1,0", "1,1"}

    def test_report_is_reproducible(self):
        assert run_smoke("doubled-origin", Flavor.SHEAFED) == run_smoke("doubled-origin", Flavor.SHEAFED)


class TestMain:
    def test_single_example(self):
        assert main(["--example", "doubled-origin", "--flavor", "presheafed"]) == 0

    @pytest.mark.parametrize("flavor", ["presheafed", "sheafed", "locally_ringed"])
    def test_all_examples(self, flavor):
        assert main(["--flavor", flavor]) == 0

    def test_flavor_from_environment(self, monkeypatch, capsys):
        monkeypatch.setenv(ENV_FLAVOR, "LOCALLY_RINGED")
        assert main(["--json"]) == 0
        reports = json.loads(capsys.readouterr().out)
        assert {r["flavor"] for r in reports} == {"LOCALLY_RINGED"}
        assert "three-point" not in {r["example"] for r in reports}

    def test_json_output(self, capsys):
        assert main(["--example", "three-point", "--json"]) == 0
        reports = json.loads(capsys.readouterr().out)
        assert len(reports) == 1
        assert reports[0]["points"] == 1
        assert reports[0]["jointly_surjective"]["holds"] is True


class TestRegistry:
    def test_three_point_has_no_algebraic_variant(self):
        assert EXAMPLES["three-point"].supports_algebraic is False
        assert all(EXAMPLES[n].supports_algebraic for n in EXAMPLES if n != "three-point")

    def test_locally_ringed_skips_scalar_only_atlases(self):
        assert "three-point" not in _examples_for(Flavor.LOCALLY_RINGED, "all")
        assert "three-point" in _examples_for(Flavor.PRESHEAFED, "all")
        assert _examples_for(Flavor.LOCALLY_RINGED, "three-point") == []

    def test_algebraic_build_of_scalar_only_atlas_is_refused(self):
        with pytest.raises(ValueError, match="no algebraic variant"):
            EXAMPLES["three-point"].build(algebraic=True)
