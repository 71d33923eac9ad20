#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
粘合空间构造器: Glued Space Builder

Topology
--------
X is the coequalizer of

    L, R : ⊔_{(i,j)} V(i,j)  ⇉  ⊔_i U(i)
    L = f(i,j)            on the (i,j) summand, landing in summand i
    R = f(j,i) ∘ t(i,j)   on the (i,j) summand, landing in summand j

so a point of X is an equivalence class of pairs (i, y), y ∈ U(i), and
ι(i)(y) is the class of (i, y).

Algebraic data
--------------
O_X(W) is the limit of the overlap diagram of W:

    ("chart", j)      : O_{U(j)}(ι_j⁻¹ W)
    ("overlap", j, k) : O_{V(j,k)}(f_jk⁻¹ ι_j⁻¹ W)
    ("chart", j) → ("overlap", j, k)  via f(j,k)^#
    ("chart", k) → ("overlap", j, k)  via (f(k,j) ∘ t(j,k))^#

Under flavors that enforce the sheaf condition, vertices over the empty open
carry terminal data and are pruned; the diagram then only touches the charts
that actually meet W.

Flavor
------
The construction is the same for every flavor.  The builder checks the
capability set of the category up front (CapabilityMismatchError), then the
data-level conditions the flavor adds: sheaf condition on charts and overlaps,
local stalks and local structure maps.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Hashable, Iterable, Mapping, Optional, Tuple

from .categories import (
    Cone,
    Diagram,
    Flavor,
    Morphism,
    require_capabilities,
)
from .config import GluingConfig
from .glue_data import GlueAxiom, GlueData, GlueDataViolation
from .section_inverter import SectionInverter
from .spaces import (
    Coequalizer,
    ContinuousMap,
    Coproduct,
    FiniteSpace,
    OpenSet,
    Presheaf,
    SpaceHom,
    StructuredSpace,
    check_sheaf_condition,
    coequalize,
    compose,
    disjoint_union,
    format_open,
)
from .verifiers import (
    IntersectionVerifier,
    OpenImmersionCertificate,
    OpenImmersionVerifier,
    PullbackCertificate,
    SurjectivityCertificate,
    SurjectivityChecker,
)

_logger = logging.getLogger(__name__)


# ============================================================================
# Section 1: 粘合预层
# ============================================================================

class GluedPresheaf(Presheaf):
    """O_X(W) = lim (overlap diagram of W)."""

    def __init__(
        self,
        space: FiniteSpace,
        glue: GlueData,
        chart_maps: Mapping[Hashable, ContinuousMap],
        prune: bool,
        name: str = "",
    ):
        super().__init__(space, glue.category, name=name or f"O[{glue.name}]")
        self.glue = glue
        self.chart_maps = dict(chart_maps)
        self.prune = prune
        self._limit_memo: Dict[OpenSet, Tuple[Diagram, Cone]] = {}

    def chart_preimage(self, j: Hashable, W: Iterable[Hashable]) -> OpenSet:
        return self.chart_maps[j].preimage(W)

    def overlap_preimage(self, j: Hashable, k: Hashable, W: Iterable[Hashable]) -> OpenSet:
        return self.glue.f(j, k).preimage(self.chart_preimage(j, W))

    def _build_diagram(self, W: OpenSet) -> Diagram:
        glue = self.glue
        diagram = Diagram()
        live = []
        for j in glue.indices:
            pre = self.chart_preimage(j, W)
            if self.prune and not pre:
                continue
            live.append(j)
            diagram.add_vertex(("chart", j), glue.chart(j).sections(pre))
        for j in live:
            pre_j = self.chart_preimage(j, W)
            for k in live:
                if k == j:
                    continue
                pre_jk = glue.f(j, k).preimage(pre_j)
                if self.prune and not pre_jk:
                    continue
                key = ("overlap", j, k)
                diagram.add_vertex(key, glue.overlap(j, k).sections(pre_jk))
                diagram.add_edge(("chart", j), key, glue.f(j, k).app(pre_j))
                diagram.add_edge(("chart", k), key, glue.second_leg(j, k).app(self.chart_preimage(k, W)))
        return diagram

    def limit(self, W: Iterable[Hashable]) -> Tuple[Diagram, Cone]:
        W = self.space.require_open(W, f"sections of '{self.name}'")
        entry = self._limit_memo.get(W)
        if entry is None:
            diagram = self._build_diagram(W)
            entry = (diagram, self.category.limit(diagram))
            self._limit_memo[W] = entry
            _logger.debug("%s: limit over %s has %d vertices", self.name, format_open(W), len(diagram))
        return entry

    def _compute_sections(self, W: OpenSet) -> Any:
        return self.limit(W)[1].apex

    def chart_leg(self, j: Hashable, W: Iterable[Hashable]) -> Morphism:
        """O_X(W) → O_{U(j)}(ι_j⁻¹W); the unique map to terminal data if pruned."""
        _, cone = self.limit(W)
        leg = cone.legs.get(("chart", j))
        if leg is not None:
            return leg
        empty = self.glue.chart(j).sections(self.chart_preimage(j, W))
        return self.category.terminal_morphism(cone.apex, empty)

    def _compute_restriction(self, W: OpenSet, V: OpenSet) -> Morphism:
        glue = self.glue
        _, source = self.limit(W)
        diagram_v, target = self.limit(V)
        legs = {}
        for key in diagram_v.vertices:
            if key[0] == "chart":
                j = key[1]
                res = glue.chart(j).presheaf.restriction(self.chart_preimage(j, W), self.chart_preimage(j, V))
            else:
                _, j, k = key
                res = glue.overlap(j, k).presheaf.restriction(
                    self.overlap_preimage(j, k, W), self.overlap_preimage(j, k, V)
                )
            legs[key] = self.category.compose(res, source.legs[key])
        return self.category.lift(target, Cone(apex=source.apex, legs=legs))


# ============================================================================
# Section 2: 粘合空间 (输出契约)
# ============================================================================

class GluedSpace:
    """X together with ι: J → Hom(U(i), X) and the certified queries."""

    def __init__(
        self,
        glue: GlueData,
        config: GluingConfig,
        space: StructuredSpace,
        charts_coproduct: Coproduct,
        coequalizer: Coequalizer,
        chart_maps: Mapping[Hashable, ContinuousMap],
    ):
        self.glue = glue
        self.config = config
        self.space = space
        self.charts_coproduct = charts_coproduct
        self.coequalizer = coequalizer
        self.chart_maps = dict(chart_maps)
        self._iota: Dict[Hashable, SpaceHom] = {}
        self.inverter = SectionInverter(self, cache=config.cache_sections, verify=config.verify_obligations)
        self._immersion_verifier = OpenImmersionVerifier(self)
        self._intersection_verifier = IntersectionVerifier(self)
        self._surjectivity_checker = SurjectivityChecker(self)

    @property
    def presheaf(self) -> GluedPresheaf:
        return self.space.presheaf

    @property
    def flavor(self) -> Flavor:
        return self.config.flavor

    def iota(self, i: Hashable) -> SpaceHom:
        hom = self._iota.get(i)
        if hom is None:
            if i not in self.chart_maps:
                raise KeyError(f"{i!r} is not an index of {self.glue!r}")
            presheaf = self.presheaf
            hom = SpaceHom(
                self.glue.chart(i), self.space, self.chart_maps[i],
                lambda W, i=i: presheaf.chart_leg(i, W), name=f"ι({i!r})",
            )
            self._iota[i] = hom
        return hom

    def overlap_square_commutes(self, i: Hashable, j: Hashable) -> bool:
        """ι(i) ∘ f(i,j) = ι(j) ∘ t(i,j) ∘ f(j,i)"""
        left = compose(self.iota(i), self.glue.f(i, j))
        right = compose(self.iota(j), self.glue.second_leg(i, j))
        diff = left.difference(right)
        if diff is not None:
            _logger.debug("overlap square (%r, %r) fails: %s", i, j, diff)
        return diff is None

    def section_isomorphism(self, i: Hashable, U: Iterable[Hashable]) -> Morphism:
        """O_{U(i)}(U) → O_X(ι(i)(U)), inverse to ι(i)^#."""
        return self.inverter.invert(i, U)

    def is_open_immersion(self, i: Hashable) -> OpenImmersionCertificate:
        return self._immersion_verifier.verify(i)

    def is_pullback(self, i: Hashable, j: Hashable) -> PullbackCertificate:
        return self._intersection_verifier.verify(i, j)

    def pullback_lift(self, i: Hashable, j: Hashable, a: SpaceHom, b: SpaceHom) -> SpaceHom:
        """Universal map T → V(i,j) for a cone a: T → U(i), b: T → U(j) over X."""
        return self._intersection_verifier.lift(i, j, a, b)

    def jointly_surjective(self) -> SurjectivityCertificate:
        return self._surjectivity_checker.verify()

    def desc_points(self, maps: Mapping[Hashable, ContinuousMap], target: FiniteSpace, name: str = "") -> ContinuousMap:
        """Topological universal property: X → target from maps U(i) → target agreeing on overlaps."""
        h = self.charts_coproduct.desc(maps, target, name=name)
        return self.coequalizer.desc(h, name=name)

    def __repr__(self):
        return f"GluedSpace('{self.glue.name}', {len(self.space.space)} points, {self.flavor.name})"


# ============================================================================
# Section 3: 构造器
# ============================================================================

class GluedSpaceBuilder:
    """GlueData → GluedSpace, staged: topology first, sections lazily."""

    def __init__(self, glue: GlueData, config: Optional[GluingConfig] = None):
        self.glue = glue
        self.config = config if config is not None else GluingConfig()

    def build(self) -> GluedSpace:
        glue, config = self.glue, self.config
        require_capabilities(glue.category, config.flavor)
        if config.validate_on_build:
            glue.validate()
        self._check_flavor_conditions()

        charts_coproduct = disjoint_union({i: glue.chart(i).space for i in glue.indices}, name=f"⊔U[{glue.name}]")
        pairs = [(i, j) for i in glue.indices for j in glue.indices]
        overlaps_coproduct = disjoint_union({ij: glue.overlap(*ij).space for ij in pairs}, name=f"⊔V[{glue.name}]")
        left = overlaps_coproduct.desc(
            {(i, j): glue.f(i, j).base.then(charts_coproduct.injections[i]) for i, j in pairs},
            charts_coproduct.space, name="L",
        )
        right = overlaps_coproduct.desc(
            {(i, j): glue.second_leg(i, j).base.then(charts_coproduct.injections[j]) for i, j in pairs},
            charts_coproduct.space, name="R",
        )
        coeq = coequalize(left, right, name=f"X[{glue.name}]")
        chart_maps = {
            i: charts_coproduct.injections[i].then(coeq.projection) for i in glue.indices
        }
        for i, m in chart_maps.items():
            m.name = f"ι({i!r})"

        presheaf = GluedPresheaf(coeq.space, glue, chart_maps, prune=config.flavor.enforces_sheaf_condition)
        space = StructuredSpace(coeq.space, presheaf, name=coeq.space.name)
        _logger.info(
            "Glued '%s': %d charts, %d points in X (flavor=%s)",
            glue.name, len(glue.indices), len(coeq.space), config.flavor.name,
        )
        return GluedSpace(glue, config, space, charts_coproduct, coeq, chart_maps)

    def _check_flavor_conditions(self) -> None:
        glue, flavor = self.glue, self.config.flavor
        if flavor.enforces_sheaf_condition:
            for i in glue.indices:
                check_sheaf_condition(glue.chart(i).presheaf)
                for j in glue.indices:
                    check_sheaf_condition(glue.overlap(i, j).presheaf)
        if flavor.requires_local_stalks:
            cat = glue.category
            for i in glue.indices:
                chart = glue.chart(i)
                for p in chart.space.points_sorted():
                    if not cat.is_local(chart.stalk(p)):
                        raise GlueDataViolation(GlueAxiom.STRUCTURE, (i,), f"stalk of U({i!r}) at {p!r} is not local")
            for i in glue.indices:
                for j in glue.indices:
                    for label, hom in (("f", glue.f(i, j)), ("t", glue.t(i, j))):
                        for p in hom.source.space.points_sorted():
                            stalk_map = hom.stalk_map(p)
                            if not cat.is_algebra_hom(stalk_map):
                                raise GlueDataViolation(
                                    GlueAxiom.STRUCTURE, (i, j),
                                    f"{label}({i!r},{j!r}) is not an algebra homomorphism at {p!r}",
                                )
                            if not cat.is_local_hom(stalk_map):
                                raise GlueDataViolation(
                                    GlueAxiom.STRUCTURE, (i, j),
                                    f"{label}({i!r},{j!r}) is not a local homomorphism at {p!r}",
                                )
