#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
截面反演器: Section Inverter

For a chart i and an open U ⊆ U(i), let W = ι(i)(U).  The restriction

    ι(i)^#_W : O_X(W) → O_{U(i)}(U)

is the leg of the limit cone of O_X(W) at ("chart", i).  Its inverse is
obtained from the universal property of that limit, applied to the cone with
apex O_{U(i)}(U) whose components are

    chart j :        f(j,i)^{#,-1}_{S'} ∘ t(j,i)^#_S ∘ f(i,j)^#_U
                     S  = f(i,j)⁻¹ U ⊆ V(i,j)
                     S' = t(j,i)⁻¹ S  ⊆ V(j,i),  f(j,i)(S') = ι_j⁻¹ W
    overlap (j,k) :  f(j,k)^# ∘ (chart j component)

The partial inverse f(j,i)^{#,-1} exists because f(j,i) is an open immersion.

Obligations, discharged once per (i, U) and cached:
1. naturality: every diagram edge commutes with the components (fails exactly
   when the cocycle law fails on the triples that meet U)
2. left inverse:  ι(i)^#_W ∘ s = id
3. right inverse: s ∘ ι(i)^#_W = id

工程红线:
- 禁止静默降级: an obligation that does not hold raises; it never yields
  "some" map.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, FrozenSet, Hashable, Iterable, List, Set, Tuple

from .categories import CategoricalError, Cone, DiagramEdge, LimitComputationError, Morphism
from .spaces import OpenSet, format_open

if TYPE_CHECKING:
    from .builder import GluedSpace

_logger = logging.getLogger(__name__)


# ============================================================================
# Section 0: 异常定义
# ============================================================================

class SectionInversionError(CategoricalError):
    """The candidate inverse exists but is not a two-sided inverse."""
    def __init__(self, chart: Hashable, open_set: FrozenSet[Hashable], details: str):
        self.chart = chart
        self.open_set = open_set
        self.details = details
        super().__init__(f"Section inversion for chart {chart!r} over {format_open(open_set)} failed: {details}")


class NaturalityObligationError(CategoricalError):
    """Component maps do not form a cone over the overlap diagram."""
    def __init__(self, chart: Hashable, open_set: FrozenSet[Hashable], edges: List[DiagramEdge]):
        self.chart = chart
        self.open_set = open_set
        self.edges = list(edges)
        shown = ", ".join(f"{e.source!r}→{e.target!r}" for e in self.edges[:4])
        more = f" (+{len(self.edges) - 4} more)" if len(self.edges) > 4 else ""
        super().__init__(
            f"Naturality obligation fails for chart {chart!r} over {format_open(open_set)} "
            f"on edges {shown}{more}; the cocycle law does not hold on this open"
        )


@dataclass(frozen=True)
class SectionInverse:
    """Both directions of the section isomorphism for (chart, U)."""
    chart: Hashable
    open_set: FrozenSet[Hashable]
    image: FrozenSet[Hashable]
    restriction: Morphism   # O_X(image) → O_{U(i)}(open_set)
    inverse: Morphism       # O_{U(i)}(open_set) → O_X(image)


# ============================================================================
# Section 1: 反演器
# ============================================================================

class SectionInverter:
    """Memoised section isomorphisms O_{U(i)}(U) ≅ O_X(ι(i)(U))."""

    def __init__(self, glued: "GluedSpace", cache: bool = True, verify: bool = True):
        self.glued = glued
        self.cache = cache
        self.verify = verify
        self._memo: Dict[Tuple[Hashable, OpenSet], SectionInverse] = {}
        self._discharged: Set[Tuple[Hashable, OpenSet]] = set()

    @property
    def category(self):
        return self.glued.glue.category

    def image_of(self, i: Hashable, U: Iterable[Hashable]) -> OpenSet:
        glue = self.glued.glue
        U = glue.chart(i).space.require_open(U, f"section inversion on chart {i!r}")
        W = self.glued.chart_maps[i].image(U)
        if not self.glued.space.space.is_open(W):
            raise SectionInversionError(i, U, f"image {format_open(W)} is not open in X")
        return W

    def component(self, i: Hashable, U: Iterable[Hashable], j: Hashable) -> Morphism:
        """O_{U(i)}(U) → O_{U(j)}(ι_j⁻¹ ι_i U)"""
        glue = self.glued.glue
        cat = self.category
        U = frozenset(U)
        f_ij, t_ji, f_ji = glue.f(i, j), glue.t(j, i), glue.f(j, i)
        S = f_ij.preimage(U)
        S_prime = t_ji.preimage(S)
        expected = self.glued.presheaf.chart_preimage(j, self.image_of(i, U))
        if f_ji.base.image(S_prime) != expected:
            raise SectionInversionError(
                i, U,
                f"overlap with chart {j!r} does not cover ι_j⁻¹ι_i(U) = {format_open(expected)}; "
                "points are identified through a chain of overlaps",
            )
        return cat.compose_all(f_ji.inv_app(S_prime), t_ji.app(S), f_ij.app(U))

    def cone(self, i: Hashable, U: Iterable[Hashable]) -> Cone:
        """Cone with apex O_{U(i)}(U) over the overlap diagram of ι(i)(U)."""
        glue = self.glued.glue
        cat = self.category
        U = frozenset(U)
        W = self.image_of(i, U)
        diagram, _ = self.glued.presheaf.limit(W)
        legs: Dict[Hashable, Morphism] = {}
        for key in diagram.vertices:
            if key[0] == "chart":
                legs[key] = self.component(i, U, key[1])
        for key in diagram.vertices:
            if key[0] == "overlap":
                _, j, k = key
                edge = glue.f(j, k).app(self.glued.presheaf.chart_preimage(j, W))
                legs[key] = cat.compose(edge, legs[("chart", j)])
        return Cone(apex=glue.chart(i).sections(U), legs=legs)

    def inversion(self, i: Hashable, U: Iterable[Hashable]) -> SectionInverse:
        U = self.glued.glue.chart(i).space.require_open(U, f"section inversion on chart {i!r}")
        key = (i, U)
        if self.cache and key in self._memo:
            _logger.debug("section inverse cache hit: chart %r over %s", i, format_open(U))
            return self._memo[key]

        cat = self.category
        W = self.image_of(i, U)
        diagram, limit_cone = self.glued.presheaf.limit(W)
        if self.glued.chart_maps[i].preimage(W) != U:
            raise SectionInversionError(i, U, "ι(i) is not injective over U")

        cone = self.cone(i, U)
        if key not in self._discharged:
            defects = cat.cone_defects(cone, diagram)
            if defects:
                raise NaturalityObligationError(i, U, defects)
        try:
            inverse = cat.lift(limit_cone, cone)
        except LimitComputationError as e:
            raise NaturalityObligationError(i, U, list(diagram.edges)) from e
        restriction = self.glued.presheaf.chart_leg(i, W)

        if self.verify and key not in self._discharged:
            self._check_two_sided(i, U, restriction, inverse, limit_cone)
        self._discharged.add(key)
        _logger.debug("section inverse discharged: chart %r over %s", i, format_open(U))

        result = SectionInverse(chart=i, open_set=U, image=W, restriction=restriction, inverse=inverse)
        if self.cache:
            self._memo[key] = result
        return result

    def invert(self, i: Hashable, U: Iterable[Hashable]) -> Morphism:
        return self.inversion(i, U).inverse

    def _check_two_sided(self, i, U, restriction: Morphism, inverse: Morphism, limit_cone: Cone) -> None:
        cat = self.category
        left = cat.compose(restriction, inverse)
        if not cat.equal(left, cat.identity(inverse.source)):
            raise SectionInversionError(i, U, "left inverse law fails: ι^# ∘ s ≠ id")
        right = cat.compose(inverse, restriction)
        if not cat.equal(right, cat.identity(restriction.source)):
            # name the vertex where the round trip is visible
            for vertex, leg in limit_cone.legs.items():
                if not cat.equal(cat.compose(leg, right), leg):
                    raise SectionInversionError(
                        i, U, f"right inverse law fails at vertex {vertex!r}: s ∘ ι^# ≠ id"
                    )
            raise SectionInversionError(i, U, "right inverse law fails: s ∘ ι^# ≠ id")

    def is_discharged(self, i: Hashable, U: Iterable[Hashable]) -> bool:
        return (i, frozenset(U)) in self._discharged
