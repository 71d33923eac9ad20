"""
标准图册 (Standard Atlases)

Small, fully exact gluing problems used by the smoke run and the tests.

The finite line L has a generic point η and closed points 0, 1, 2, 1/2:

    U_η = {η},   U_c = {η, c}

Two structure sheaves are provided on L:
- vector sheaf:  F_c = Q², F_η = Q, generization (a, b) ↦ a
- algebra sheaf: F_c = Q[ε]/(ε²), F_η = Q, generization ε ↦ 0

Atlases:
- single_chart      J = {0}, X ≅ U(0)
- doubled_origin    two lines glued along L \\ {0} by the identity
- projective_line   two lines glued along L \\ {0} by c ↦ 1/c
- three_point       three one-point charts with scalar transitions; the
                    cocycle law holds iff s01 · s12 · s20 = 1
- empty             J = ∅
"""

from __future__ import annotations

from dataclasses import dataclass
from fractions import Fraction
from typing import Callable, Dict, Hashable, Mapping, Optional, Tuple

from .categories import AlgebraObject, RationalAlgebras, RationalVectorSpaces
from .glue_data import GlueData
from .spaces import ContinuousMap, FiniteSpace, Presheaf, SpaceHom, StructuredSpace

GENERIC = "η"
CLOSED_POINTS: Tuple[Fraction, ...] = (Fraction(0), Fraction(1), Fraction(2), Fraction(1, 2))
ORIGIN = Fraction(0)


def line_space(name: str = "L") -> FiniteSpace:
    minimal = {GENERIC: {GENERIC}}
    for c in CLOSED_POINTS:
        minimal[c] = {GENERIC, c}
    return FiniteSpace(minimal, name=name)


def vector_line(name: str = "L") -> StructuredSpace:
    cat = RationalVectorSpaces()
    space = line_space(name)
    plane, line = cat.obj(2), cat.obj(1)
    stalks: Dict[Hashable, object] = {GENERIC: line}
    generizations = {}
    for c in CLOSED_POINTS:
        stalks[c] = plane
        generizations[(c, GENERIC)] = cat.morphism(plane, line, [[1, 0]], name=f"res[{c}]")
    presheaf = Presheaf.from_stalks(space, cat, stalks, generizations, name=f"F[{name}]")
    return StructuredSpace(space, presheaf, name=name)


def algebra_line(name: str = "L") -> StructuredSpace:
    cat = RationalAlgebras()
    space = line_space(name)
    dual, rationals = AlgebraObject.dual_numbers(), AlgebraObject.rationals()
    stalks: Dict[Hashable, object] = {GENERIC: rationals}
    generizations = {}
    for c in CLOSED_POINTS:
        stalks[c] = dual
        generizations[(c, GENERIC)] = cat.morphism(dual, rationals, [[1, 0]], name=f"ε↦0[{c}]")
    presheaf = Presheaf.from_stalks(space, cat, stalks, generizations, name=f"O[{name}]")
    return StructuredSpace(space, presheaf, name=name)


def _line(algebraic: bool, name: str) -> StructuredSpace:
    return algebra_line(name) if algebraic else vector_line(name)


def _punctured(i: Hashable, j: Hashable) -> frozenset:
    return frozenset({GENERIC} | set(CLOSED_POINTS)) - {ORIGIN}


# ============================================================================
# Atlases
# ============================================================================

def single_chart(algebraic: bool = False) -> GlueData:
    chart = _line(algebraic, "U0")
    return GlueData.from_open_subsets(
        (0,), chart.category, {0: chart}, overlap_opens={}, name="single-chart",
    )


def doubled_origin(algebraic: bool = False) -> GlueData:
    charts = {0: _line(algebraic, "U0"), 1: _line(algebraic, "U1")}
    return GlueData.from_open_subsets(
        (0, 1), charts[0].category, charts, overlap_opens=_punctured, name="doubled-origin",
    )


def _inversion(twist: bool) -> Callable[[Hashable, Hashable, StructuredSpace, StructuredSpace], Optional[SpaceHom]]:
    """t(0,1): c ↦ 1/c on L \\ {0}; t(1,0) is its inverse."""

    def _transition(i, j, source: StructuredSpace, target: StructuredSpace) -> Optional[SpaceHom]:
        if (i, j) != (0, 1):
            return None
        cat = source.category
        base = ContinuousMap(
            source.space, target.space,
            lambda p: p if p == GENERIC else 1 / p, name="c↦1/c",
        )
        stalk_maps = {}
        for p in source.space.points_sorted():
            stalk = source.presheaf.parent.stalks[p]
            if p == GENERIC or not twist:
                stalk_maps[p] = cat.identity(stalk)
            else:
                stalk_maps[p] = cat.morphism(stalk, stalk, [[1, 0], [0, -1]], name="twist")
        return SpaceHom.from_stalk_maps(source, target, base, stalk_maps, name="t(0,1)")

    return _transition


def projective_line(algebraic: bool = False, twist: bool = False) -> GlueData:
    charts = {0: _line(algebraic, "U0"), 1: _line(algebraic, "U1")}
    return GlueData.from_open_subsets(
        (0, 1), charts[0].category, charts, overlap_opens=_punctured,
        transition=_inversion(twist), name="projective-line" + ("-twisted" if twist else ""),
    )


DEFAULT_SCALARS: Dict[Tuple[int, int], Fraction] = {
    (0, 1): Fraction(2), (1, 2): Fraction(3), (2, 0): Fraction(1, 6),
}


def point_chart(name: str) -> StructuredSpace:
    cat = RationalVectorSpaces()
    space = FiniteSpace({"*": {"*"}}, name=name)
    presheaf = Presheaf.from_stalks(space, cat, {"*": cat.obj(1)}, {}, name=f"F[{name}]")
    return StructuredSpace(space, presheaf, name=name)


def three_point(scalars: Optional[Mapping[Tuple[int, int], object]] = None) -> GlueData:
    """Three copies of a point, every pair overlapping fully.

    ``scalars[(i, j)]`` is the factor by which t(i,j) acts on the stalk Q;
    pairs not listed get the inverse of the reverse pair.
    """
    table = dict(DEFAULT_SCALARS if scalars is None else scalars)
    charts = {i: point_chart(f"P{i}") for i in range(3)}

    def _transition(i, j, source: StructuredSpace, target: StructuredSpace) -> Optional[SpaceHom]:
        if (i, j) not in table:
            return None
        cat = source.category
        base = ContinuousMap(source.space, target.space, {"*": "*"}, name="id")
        stalk = cat.obj(1)
        scale = cat.morphism(stalk, stalk, [[table[(i, j)]]], name=f"×{table[(i, j)]}")
        return SpaceHom.from_stalk_maps(source, target, base, {"*": scale}, name=f"t({i},{j})")

    return GlueData.from_open_subsets(
        (0, 1, 2), RationalVectorSpaces(), charts,
        overlap_opens=lambda i, j: {"*"}, transition=_transition, name="three-point",
    )


def empty(algebraic: bool = False) -> GlueData:
    cat = RationalAlgebras() if algebraic else RationalVectorSpaces()
    return GlueData.from_open_subsets((), cat, {}, overlap_opens={}, name="empty")


@dataclass(frozen=True)
class Example:
    """A registered atlas; ``supports_algebraic`` means the factory takes ``algebraic=``."""
    factory: Callable[..., GlueData]
    supports_algebraic: bool = True

    def build(self, algebraic: bool = False) -> GlueData:
        if self.supports_algebraic:
            return self.factory(algebraic=algebraic)
        if algebraic:
            raise ValueError(f"{self.factory.__name__} has no algebraic variant")
        return self.factory()


EXAMPLES: Dict[str, Example] = {
    "single-chart": Example(single_chart),
    "doubled-origin": Example(doubled_origin),
    "projective-line": Example(projective_line),
    # scales the unit, which no algebra map does
    "three-point": Example(three_point, supports_algebraic=False),
    "empty": Example(empty),
}
