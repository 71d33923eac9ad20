#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
验证器与证书: Verifiers and Certificates

1. OpenImmersionVerifier  - ι(i) is an open embedding and ι(i)^# is invertible
                            on every open of U(i)
2. IntersectionVerifier   - V(i,j) with f(i,j), f(j,i)∘t(i,j) is the pullback
                            of ι(i), ι(j)
3. SurjectivityChecker    - every point of X has a preimage in some chart

Each verifier returns a frozen certificate: ``holds``, the named checks, and a
SHA-256 commitment over a deterministic serialisation (float / complex / set
are rejected).  Certificates are truthy iff they hold.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from fractions import Fraction
from typing import TYPE_CHECKING, Any, Dict, Hashable, List, Tuple

from .categories import CategoricalError
from .spaces import (
    SpaceHom,
    canonical_repr,
    compose,
    format_open,
    lift_through_open_immersion,
    pullback_of_open_immersions,
)

if TYPE_CHECKING:
    from .builder import GluedSpace

_logger = logging.getLogger(__name__)


# ============================================================================
# Section 0: 异常定义
# ============================================================================

class PullbackLiftError(CategoricalError):
    """A competing cone has no factorisation through V(i,j)."""
    pass


# =============================================================================
# 证书哈希: 确定性承诺
# =============================================================================

def _sha256_hex_of_dict(d: Dict[str, Any]) -> str:
    """
    计算字典的 SHA-256 哈希 (确定性序列化).
    禁止 float/complex/set 以保证确定性.
    """
    def _serialize(obj: Any) -> str:
        if obj is None:
            return "null"
        if isinstance(obj, bool):
            return "true" if obj else "false"
        if isinstance(obj, int):
            return f"int:{obj}"
        if isinstance(obj, str):
            return f"str:{obj}"
        if isinstance(obj, Fraction):
            return f"frac:{obj.numerator}/{obj.denominator}"
        if isinstance(obj, (list, tuple)):
            return f"list:[{','.join(_serialize(x) for x in obj)}]"
        if isinstance(obj, dict):
            items = sorted(obj.items(), key=lambda kv: str(kv[0]))
            return f"dict:{{{','.join(f'{_serialize(k)}:{_serialize(v)}' for k, v in items)}}}"
        if isinstance(obj, float):
            raise TypeError(f"float forbidden in certificate: {obj}")
        if isinstance(obj, complex):
            raise TypeError(f"complex forbidden in certificate: {obj}")
        if isinstance(obj, (set, frozenset)):
            raise TypeError(f"set forbidden in certificate: {obj}")
        raise TypeError(f"unsupported type in certificate: {type(obj).__name__}")

    return hashlib.sha256(_serialize(d).encode("utf-8")).hexdigest()


Check = Tuple[str, bool, str]


@dataclass(frozen=True)
class _Certificate:
    kind: str
    subject: str
    holds: bool
    checks: Tuple[Check, ...]
    digest: str

    def __bool__(self) -> bool:
        return self.holds

    def failures(self) -> List[Check]:
        return [c for c in self.checks if not c[1]]

    def body(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "subject": self.subject,
            "holds": self.holds,
            "checks": [list(c) for c in self.checks],
        }

    def to_dict(self) -> Dict[str, Any]:
        out = self.body()
        out["digest"] = self.digest
        return out


@dataclass(frozen=True)
class OpenImmersionCertificate(_Certificate):
    opens_checked: int = 0

    def body(self) -> Dict[str, Any]:
        out = super().body()
        out["opens_checked"] = self.opens_checked
        return out


@dataclass(frozen=True)
class PullbackCertificate(_Certificate):
    pass


@dataclass(frozen=True)
class SurjectivityCertificate(_Certificate):
    witnesses: Tuple[Tuple[str, str, str], ...] = ()

    def body(self) -> Dict[str, Any]:
        out = super().body()
        out["witnesses"] = [list(w) for w in self.witnesses]
        return out


def _seal(cls, kind: str, subject: str, checks: List[Check], **extra) -> Any:
    holds = all(ok for _, ok, _ in checks)
    draft = cls(kind=kind, subject=subject, holds=holds, checks=tuple(checks), digest="", **extra)
    return cls(kind=kind, subject=subject, holds=holds, checks=tuple(checks),
               digest=_sha256_hex_of_dict(draft.body()), **extra)


# ============================================================================
# Section 1: 开浸入验证
# ============================================================================

class OpenImmersionVerifier:
    def __init__(self, glued: "GluedSpace"):
        self.glued = glued
        self._memo: Dict[Hashable, OpenImmersionCertificate] = {}

    def verify(self, i: Hashable) -> OpenImmersionCertificate:
        if i in self._memo:
            return self._memo[i]
        base = self.glued.iota(i).base
        checks: List[Check] = [
            ("injective", base.is_injective(), ""),
            ("open_map", base.is_open_map(), ""),
        ]
        opens = self.glued.glue.chart(i).space.opens()
        if base.is_open_embedding():
            ok, detail = True, ""
            for U in opens:
                try:
                    self.glued.inverter.inversion(i, U)
                except CategoricalError as e:
                    ok, detail = False, str(e)
                    _logger.warning("ι(%r) is not an open immersion: %s", i, e)
                    break
            checks.append(("sections_bijective", ok, detail))
        else:
            checks.append(("sections_bijective", False, "skipped: not an open embedding"))
        cert = _seal(OpenImmersionCertificate, "open_immersion", f"ι({canonical_repr(i)})", checks,
                     opens_checked=len(opens))
        self._memo[i] = cert
        return cert


# ============================================================================
# Section 2: 交集 (拉回) 验证
# ============================================================================

class IntersectionVerifier:
    """V(i,j) ≅ U(i) ×_X U(j), compared against the canonical open-subspace pullback."""

    def __init__(self, glued: "GluedSpace"):
        self.glued = glued
        self._memo: Dict[Tuple[Hashable, Hashable], PullbackCertificate] = {}

    def verify(self, i: Hashable, j: Hashable) -> PullbackCertificate:
        key = (i, j)
        if key in self._memo:
            return self._memo[key]
        glued, glue = self.glued, self.glued.glue
        f_ij, leg = glue.f(i, j), glue.second_leg(i, j)
        iota_i, iota_j = glued.iota(i), glued.iota(j)
        checks: List[Check] = [("square_commutes", glued.overlap_square_commutes(i, j), "")]

        image = iota_i.base.image(f_ij.base.image(glue.overlap(i, j).points))
        meet = iota_i.base.image(glue.chart(i).points) & iota_j.base.image(glue.chart(j).points)
        checks.append((
            "image_is_intersection", image == meet,
            "" if image == meet else f"{format_open(image)} vs {format_open(meet)}",
        ))

        try:
            canonical = pullback_of_open_immersions(iota_i, iota_j, name=f"U{i!r}×_X U{j!r}")
            to_canonical = lift_through_open_immersion(f_ij, canonical.fst)
            from_canonical = lift_through_open_immersion(canonical.fst, f_ij)
            diff = (compose(from_canonical, to_canonical).difference(glue.overlap(i, j).identity())
                    or compose(to_canonical, from_canonical).difference(canonical.space.identity()))
            checks.append(("comparison_iso", diff is None, diff or ""))
            diff = compose(leg, from_canonical).difference(canonical.snd)
            checks.append(("second_leg_agrees", diff is None, diff or ""))
        except CategoricalError as e:
            _logger.warning("pullback check (%r, %r) failed: %s", i, j, e)
            checks.append(("comparison_iso", False, str(e)))

        cert = _seal(PullbackCertificate, "pullback",
                     f"V({canonical_repr(i)},{canonical_repr(j)})", checks)
        self._memo[key] = cert
        return cert

    def lift(self, i: Hashable, j: Hashable, a: SpaceHom, b: SpaceHom) -> SpaceHom:
        glued, glue = self.glued, self.glued.glue
        diff = compose(glued.iota(i), a).difference(compose(glued.iota(j), b))
        if diff is not None:
            raise PullbackLiftError(f"maps do not form a cone over X: {diff}")
        try:
            lifted = lift_through_open_immersion(a, glue.f(i, j), name=f"lift→V({i!r},{j!r})")
        except CategoricalError as e:
            raise PullbackLiftError(f"first leg does not land in V({i!r},{j!r}): {e}") from e
        diff = compose(glue.second_leg(i, j), lifted).difference(b)
        if diff is not None:
            raise PullbackLiftError(f"second leg disagrees after lifting: {diff}")
        return lifted


# ============================================================================
# Section 3: 满射性
# ============================================================================

class SurjectivityChecker:
    def __init__(self, glued: "GluedSpace"):
        self.glued = glued
        self._cert = None

    def witnesses(self) -> Dict[Hashable, Tuple[Hashable, Hashable]]:
        """x ↦ (i, y) with ι(i)(y) = x, first chart in index order."""
        found: Dict[Hashable, Tuple[Hashable, Hashable]] = {}
        for i in self.glued.glue.indices:
            m = self.glued.chart_maps[i]
            for y in m.source.points_sorted():
                found.setdefault(m(y), (i, y))
        return found

    def verify(self) -> SurjectivityCertificate:
        if self._cert is not None:
            return self._cert
        X = self.glued.space.space
        found = self.witnesses()
        missing = [x for x in X.points_sorted() if x not in found]
        checks: List[Check] = [
            ("every_point_covered", not missing, "" if not missing else f"uncovered: {format_open(missing)}"),
        ]
        back = all(self.glued.chart_maps[i](y) == x for x, (i, y) in found.items())
        checks.append(("witnesses_map_back", back, ""))
        witnesses = tuple(
            (canonical_repr(x), canonical_repr(found[x][0]), canonical_repr(found[x][1])) for x in X.points_sorted() if x in found
        )
        self._cert = _seal(SurjectivityCertificate, "jointly_surjective", self.glued.glue.name, checks,
                           witnesses=witnesses)
        return self._cert
