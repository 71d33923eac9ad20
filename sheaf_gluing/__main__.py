#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
Smoke run: ``python -m sheaf_gluing``

标准验收指标 (strict):
- every chart inclusion certified an open immersion
- every overlap certified a pullback
- charts jointly surjective
- two runs produce identical reports (reproducible digests)
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional, Sequence

from .builder import GluedSpaceBuilder
from .categories import Flavor
from .config import GluingConfig
from .standard_atlases import EXAMPLES

_logger = logging.getLogger("sheaf_gluing")


def _configure_smoke_logging() -> None:
    """健康日志输出：只在未配置 handler 时注入默认配置，避免污染宿主应用。"""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=logging.INFO,
            format="[%(levelname)s] %(name)s: %(message)s",
        )
    root.setLevel(logging.INFO)


def _examples_for(flavor: Flavor, requested: str) -> List[str]:
    names = list(EXAMPLES) if requested == "all" else [requested]
    if flavor.requires_local_stalks:
        names = [n for n in names if EXAMPLES[n].supports_algebraic]
    return names


def run_smoke(example: str, flavor: Flavor) -> Dict[str, Any]:
    glue = EXAMPLES[example].build(algebraic=flavor.requires_local_stalks)
    glued = GluedSpaceBuilder(glue, GluingConfig(flavor=flavor)).build()
    X = glued.space
    report: Dict[str, Any] = {
        "example": example,
        "flavor": flavor.name,
        "points": len(X.space),
        "global_sections": X.sections(X.points).dimension,
        "open_immersion": {},
        "pullback": {},
    }
    for i in glue.indices:
        cert = glued.is_open_immersion(i)
        report["open_immersion"][str(i)] = {"holds": cert.holds, "digest": cert.digest}
        for j in glue.indices:
            cert = glued.is_pullback(i, j)
            report["pullback"][f"{i},{j}"] = {"holds": cert.holds, "digest": cert.digest}
    cert = glued.jointly_surjective()
    report["jointly_surjective"] = {"holds": cert.holds, "digest": cert.digest}
    report["holds"] = (
        all(v["holds"] for v in report["open_immersion"].values())
        and all(v["holds"] for v in report["pullback"].values())
        and cert.holds
    )
    return report


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="python -m sheaf_gluing", description="Gluing smoke run")
    parser.add_argument("--example", choices=["all"] + list(EXAMPLES), default="all")
    parser.add_argument("--flavor", choices=[f.value for f in Flavor], default=None,
                        help="default: SHEAF_GLUING_FLAVOR or presheafed")
    parser.add_argument("--json", action="store_true", help="print the reports as JSON")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)
    _configure_smoke_logging()
    flavor = Flavor(args.flavor) if args.flavor else GluingConfig.from_env().flavor
    _logger.info("sheaf_gluing smoke: START (flavor=%s)", flavor.name)

    reports = []
    for name in _examples_for(flavor, args.example):
        first = run_smoke(name, flavor)
        second = run_smoke(name, flavor)
        if first != second:
            _logger.error("REJECT %s: report is not reproducible", name)
            return 2
        _logger.info(
            "%s %s | points=%d global_sections=%d",
            "ACCEPT" if first["holds"] else "REJECT", name, first["points"], first["global_sections"],
        )
        reports.append(first)

    if args.json:
        print(json.dumps(reports, indent=2, sort_keys=True, ensure_ascii=False))
    ok = all(r["holds"] for r in reports)
    _logger.info("sheaf_gluing smoke: %s", "PASS" if ok else "FAIL")
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
