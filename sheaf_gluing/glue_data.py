#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
粘合数据: Glue Data

GlueData records the input of a gluing problem:

    J                      index set (a finite sequence; lookups stay lazy)
    U(i)                   chart, a StructuredSpace
    V(i,j)                 overlap space
    f(i,j): V(i,j) → U(i)  open immersion
    t(i,j): V(i,j) → V(j,i) transition isomorphism
    t'(i,j,k): V(i,j)×_{U(i)}V(i,k) → V(j,k)×_{U(j)}V(j,i)

Every lookup may be a Mapping or a callable; values are fetched on first use
and memoised.  ``validate`` checks the axioms for the index tuples it is given
and remembers which tuples it has already verified, so repeated validation of
a growing family only pays for the new tuples.

Axioms (GlueAxiom):
- STRUCTURE             endpoints and categories line up; f, t are natural
- IMMERSION_OPEN        f(i,j) is an open immersion
- SELF_OVERLAP_ISO      f(i,i) is an isomorphism
- TRANSITION_IDENTITY   t(i,i) = id
- TRANSITION_INVERSE    t(j,i) ∘ t(i,j) = id
- TRIPLE_FACTORIZATION  snd ∘ t'(i,j,k) = t(i,j) ∘ fst
- COCYCLE               t'(k,i,j) ∘ t'(j,k,i) ∘ t'(i,j,k) = id
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Dict, Hashable, Iterable, Mapping, Optional, Sequence, Set, Tuple

from .categories import AlgebraicCategory, CategoricalError, Morphism
from .spaces import (
    ContinuousMap,
    OpenImmersionError,
    PullbackCone,
    SpaceHom,
    StructuredSpace,
    compose,
    format_open,
    lift_through_open_immersion,
    pullback_of_open_immersions,
)

_logger = logging.getLogger(__name__)


# ============================================================================
# Section 0: 异常定义
# ============================================================================

class GlueAxiom(Enum):
    STRUCTURE = "structure"
    IMMERSION_OPEN = "immersion_open"
    SELF_OVERLAP_ISO = "self_overlap_iso"
    TRANSITION_IDENTITY = "transition_identity"
    TRANSITION_INVERSE = "transition_inverse"
    TRIPLE_FACTORIZATION = "triple_factorization"
    COCYCLE = "cocycle"


class GlueDataViolation(CategoricalError):
    """The first failing axiom, with the offending index tuple."""
    def __init__(self, axiom: GlueAxiom, indices: Tuple[Hashable, ...], details: str):
        self.axiom = axiom
        self.indices = tuple(indices)
        self.details = details
        super().__init__(f"GlueData axiom {axiom.name} fails at {self.indices!r}: {details}")


# ============================================================================
# Section 1: 惰性查找表
# ============================================================================

class _Lookup:
    """Mapping-or-callable, memoised."""

    def __init__(self, source: Any, label: str):
        self.label = label
        self._source = source
        self._memo: Dict[Tuple[Hashable, ...], Any] = {}

    def __call__(self, *key: Hashable) -> Any:
        if key in self._memo:
            return self._memo[key]
        if isinstance(self._source, Mapping):
            lookup_key = key[0] if len(key) == 1 else key
            try:
                value = self._source[lookup_key]
            except KeyError:
                raise GlueDataViolation(GlueAxiom.STRUCTURE, key, f"no {self.label} for {key!r}") from None
        else:
            value = self._source(*key)
        if value is None:
            raise GlueDataViolation(GlueAxiom.STRUCTURE, key, f"{self.label} lookup returned None")
        self._memo[key] = value
        return value


def identity_transition(source: StructuredSpace, target: StructuredSpace, name: str = "",
                        indices: Tuple[Hashable, ...] = ()) -> SpaceHom:
    """Identity transition between two overlaps carrying the same points and data.

    The section objects and the restriction maps on both sides must agree;
    the component at every open is the identity matrix.
    """
    if source.points != target.points:
        raise GlueDataViolation(GlueAxiom.STRUCTURE, indices, "identity transition needs equal point sets")
    cat = source.category
    opens = source.space.opens()
    for W in opens:
        if source.sections(W) != target.sections(W):
            raise GlueDataViolation(
                GlueAxiom.STRUCTURE, indices,
                f"identity transition: sections over {format_open(W)} differ",
            )
    for W in opens:
        for V in opens:
            if V < W and not cat.equal(source.presheaf.restriction(W, V), target.presheaf.restriction(W, V)):
                raise GlueDataViolation(
                    GlueAxiom.STRUCTURE, indices,
                    f"identity transition: restriction {format_open(W)} → {format_open(V)} differs",
                )
    base = ContinuousMap(source.space, target.space, {p: p for p in source.points}, name="id")

    def _app(W):
        ident = cat.identity(target.sections(W))
        return Morphism(target.sections(W), source.sections(W), ident.matrix, name="id")

    return SpaceHom(source, target, base, _app, name=name or f"id[{source.name}→{target.name}]")


# ============================================================================
# Section 2: GlueData
# ============================================================================

class GlueData:
    """Immutable gluing input.  See module docstring for the axioms."""

    def __init__(
        self,
        indices: Sequence[Hashable],
        category: AlgebraicCategory,
        charts: Any,
        overlaps: Any,
        immersions: Any,
        transitions: Any,
        triple_maps: Any = None,
        name: str = "",
    ):
        self.indices: Tuple[Hashable, ...] = tuple(indices)
        if len(set(self.indices)) != len(self.indices):
            raise GlueDataViolation(GlueAxiom.STRUCTURE, self.indices, "index set has duplicates")
        self.category = category
        self.name = name or "glue"
        self._charts = _Lookup(charts, "chart")
        self._overlaps = _Lookup(overlaps, "overlap")
        self._immersions = _Lookup(immersions, "immersion")
        self._transitions = _Lookup(transitions, "transition")
        self._triples = _Lookup(triple_maps, "triple map") if triple_maps is not None else None
        self._derived_triples: Dict[Tuple[Hashable, Hashable, Hashable], SpaceHom] = {}
        self._pullbacks: Dict[Tuple[Hashable, Hashable, Hashable], PullbackCone] = {}
        self._second_legs: Dict[Tuple[Hashable, Hashable], SpaceHom] = {}
        self._verified: Set[Tuple[Hashable, ...]] = set()

    # -- lookups -----------------------------------------------------------

    def chart(self, i: Hashable) -> StructuredSpace:
        return self._charts(i)

    def overlap(self, i: Hashable, j: Hashable) -> StructuredSpace:
        return self._overlaps(i, j)

    def f(self, i: Hashable, j: Hashable) -> SpaceHom:
        return self._immersions(i, j)

    def t(self, i: Hashable, j: Hashable) -> SpaceHom:
        return self._transitions(i, j)

    def second_leg(self, i: Hashable, j: Hashable) -> SpaceHom:
        """V(i,j) → U(j), i.e. f(j,i) ∘ t(i,j)."""
        key = (i, j)
        leg = self._second_legs.get(key)
        if leg is None:
            leg = compose(self.f(j, i), self.t(i, j))
            self._second_legs[key] = leg
        return leg

    def pullback(self, i: Hashable, j: Hashable, k: Hashable) -> PullbackCone:
        """V(i,j) ×_{U(i)} V(i,k), realised inside V(i,j)."""
        key = (i, j, k)
        pb = self._pullbacks.get(key)
        if pb is None:
            pb = pullback_of_open_immersions(self.f(i, j), self.f(i, k), name=f"V{i!r}{j!r}×V{i!r}{k!r}")
            self._pullbacks[key] = pb
        return pb

    def t_prime(self, i: Hashable, j: Hashable, k: Hashable) -> SpaceHom:
        if self._triples is not None:
            return self._triples(i, j, k)
        key = (i, j, k)
        tp = self._derived_triples.get(key)
        if tp is None:
            tp = self._derive_triple(i, j, k)
            self._derived_triples[key] = tp
        return tp

    def _derive_triple(self, i: Hashable, j: Hashable, k: Hashable) -> SpaceHom:
        """t'(i,j,k) as the unique lift of t(i,j) ∘ fst through the target pullback.

        With this choice the TRIPLE_FACTORIZATION square commutes by
        construction; only the cocycle law carries content.
        """
        source = self.pullback(i, j, k)
        target = self.pullback(j, k, i)
        into_uj = compose(self.second_leg(i, j), source.fst)
        try:
            into_vjk = lift_through_open_immersion(into_uj, self.f(j, k))
            return lift_through_open_immersion(
                into_vjk, target.fst, name=f"t'({i!r},{j!r},{k!r})"
            )
        except OpenImmersionError as e:
            raise GlueDataViolation(
                GlueAxiom.TRIPLE_FACTORIZATION, (i, j, k),
                f"t({i!r},{j!r}) does not carry the triple overlap into V({j!r},{k!r}): {e}",
            ) from e

    # -- validation --------------------------------------------------------

    def validate(self, indices: Optional[Iterable[Hashable]] = None) -> None:
        """Check every axiom over the requested indices (default: all of J)."""
        idx = tuple(indices) if indices is not None else self.indices
        for i in idx:
            for j in idx:
                self._check_pair(i, j)
        for i in idx:
            for j in idx:
                for k in idx:
                    self._check_triple(i, j, k)
        _logger.debug("GlueData '%s' validated over %d indices", self.name, len(idx))

    def _fail(self, axiom: GlueAxiom, indices: Tuple[Hashable, ...], details: str) -> None:
        _logger.debug("GlueData '%s': %s fails at %r", self.name, axiom.name, indices)
        raise GlueDataViolation(axiom, indices, details)

    def _check_endpoints(self, hom: SpaceHom, source: StructuredSpace, target: StructuredSpace,
                         label: str, indices: Tuple[Hashable, ...]) -> None:
        if hom.source.points != source.points or hom.target.points != target.points:
            self._fail(GlueAxiom.STRUCTURE, indices, f"{label} has the wrong source or target")
        if hom.category is not self.category and hom.category.name != self.category.name:
            self._fail(GlueAxiom.STRUCTURE, indices, f"{label} lives in category {hom.category.name}")

    def _check_pair(self, i: Hashable, j: Hashable) -> None:
        key = ("pair", i, j)
        if key in self._verified:
            return
        ij = (i, j)
        U_i, V_ij, V_ji = self.chart(i), self.overlap(i, j), self.overlap(j, i)
        f_ij, t_ij, t_ji = self.f(i, j), self.t(i, j), self.t(j, i)
        self._check_endpoints(f_ij, V_ij, U_i, f"f({i!r},{j!r})", ij)
        self._check_endpoints(t_ij, V_ij, V_ji, f"t({i!r},{j!r})", ij)
        self._check_endpoints(t_ji, V_ji, V_ij, f"t({j!r},{i!r})", ij)
        for label, hom in ((f"f({i!r},{j!r})", f_ij), (f"t({i!r},{j!r})", t_ij)):
            problems = hom.verify_naturality()
            if problems:
                self._fail(GlueAxiom.STRUCTURE, ij, f"{label} is not natural: {problems[0]}")

        defect = f_ij.open_immersion_defect()
        if defect is not None:
            self._fail(GlueAxiom.IMMERSION_OPEN, ij, defect)

        if i == j:
            if not f_ij.is_iso():
                self._fail(GlueAxiom.SELF_OVERLAP_ISO, ij, "f(i,i) is not an isomorphism")
            diff = t_ij.difference(V_ij.identity())
            if diff is not None:
                self._fail(GlueAxiom.TRANSITION_IDENTITY, ij, diff)

        diff = compose(t_ji, t_ij).difference(V_ij.identity())
        if diff is not None:
            self._fail(GlueAxiom.TRANSITION_INVERSE, ij, f"t(j,i) ∘ t(i,j) ≠ id: {diff}")
        self._verified.add(key)

    def _check_triple(self, i: Hashable, j: Hashable, k: Hashable) -> None:
        key = ("triple", i, j, k)
        if key in self._verified:
            return
        ijk = (i, j, k)
        source = self.pullback(i, j, k)
        target = self.pullback(j, k, i)
        tp = self.t_prime(i, j, k)
        for (a, b, c), hom in (((i, j, k), tp), ((j, k, i), self.t_prime(j, k, i)),
                               ((k, i, j), self.t_prime(k, i, j))):
            self._check_endpoints(hom, self.pullback(a, b, c).space, self.pullback(b, c, a).space,
                                  f"t'({a!r},{b!r},{c!r})", ijk)

        diff = compose(target.snd, tp).difference(compose(self.t(i, j), source.fst))
        if diff is not None:
            self._fail(GlueAxiom.TRIPLE_FACTORIZATION, ijk, diff)

        loop = compose(self.t_prime(k, i, j), compose(self.t_prime(j, k, i), tp))
        diff = loop.difference(source.space.identity())
        if diff is not None:
            self._fail(GlueAxiom.COCYCLE, ijk, f"t'(k,i,j) ∘ t'(j,k,i) ∘ t'(i,j,k) ≠ id: {diff}")
        self._verified.add(key)

    def is_verified(self, *indices: Hashable) -> bool:
        if len(indices) == 2:
            return ("pair",) + indices in self._verified
        if len(indices) == 3:
            return ("triple",) + indices in self._verified
        raise ValueError("is_verified takes an index pair or triple")

    # -- constructors ------------------------------------------------------

    @classmethod
    def from_open_subsets(
        cls,
        indices: Sequence[Hashable],
        category: AlgebraicCategory,
        charts: Any,
        overlap_opens: Any,
        transition: Optional[Callable[[Hashable, Hashable, StructuredSpace, StructuredSpace], Optional[SpaceHom]]] = None,
        name: str = "",
    ) -> "GlueData":
        """Overlaps as open subspaces of the charts.

        ``overlap_opens(i, j)`` (or ``overlap_opens[(i, j)]``) is the open of
        U(i) that overlaps U(j); it is consulted only for i ≠ j.  V(i,i) is the
        whole chart and t(i,i) is the identity.  ``transition(i, j, V_ij, V_ji)``
        returns t(i,j); returning None means "the inverse of t(j,i)".  Without a
        ``transition`` every t(i,j) is ``identity_transition``.
        """
        chart_lookup = _Lookup(charts, "chart")
        opens_lookup = _Lookup(overlap_opens, "overlap open")
        restricted: Dict[Tuple[Hashable, Hashable], Tuple[StructuredSpace, SpaceHom]] = {}
        transitions: Dict[Tuple[Hashable, Hashable], SpaceHom] = {}

        def _restricted(i, j):
            key = (i, j)
            if key not in restricted:
                U = chart_lookup(i)
                W = U.points if i == j else frozenset(opens_lookup(i, j))
                if not U.space.is_open(W):
                    raise GlueDataViolation(
                        GlueAxiom.IMMERSION_OPEN, key, f"{format_open(W)} is not open in chart {i!r}"
                    )
                restricted[key] = U.restrict(W, name=f"V({i!r},{j!r})")
            return restricted[key]

        def _transition(i, j):
            key = (i, j)
            if key in transitions:
                return transitions[key]
            V_ij, V_ji = _restricted(i, j)[0], _restricted(j, i)[0]
            if i == j:
                t = V_ij.identity()
            elif transition is None:
                t = identity_transition(V_ij, V_ji, name=f"t({i!r},{j!r})", indices=key)
            else:
                t = transition(i, j, V_ij, V_ji)
                if t is None:
                    back = transitions.get((j, i))
                    if back is None:
                        back = transition(j, i, V_ji, V_ij)
                        if back is None:
                            raise GlueDataViolation(
                                GlueAxiom.STRUCTURE, key, "neither t(i,j) nor t(j,i) was supplied"
                            )
                        transitions[(j, i)] = back
                    t = back.inverse()
            transitions[key] = t
            return t

        return cls(
            indices,
            category,
            charts=chart_lookup,
            overlaps=lambda i, j: _restricted(i, j)[0],
            immersions=lambda i, j: _restricted(i, j)[1],
            transitions=_transition,
            name=name,
        )

    def __repr__(self):
        return f"GlueData('{self.name}', |J|={len(self.indices)}, {self.category.name})"
