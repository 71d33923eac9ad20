#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
结构空间: Finite Structured Spaces

A *structured space* is a finite topological space together with a presheaf
valued in an algebraic category (see ``categories``).  Finite spaces are
Alexandrov spaces: every point p has a smallest open neighbourhood U_p, and
the opens are exactly the unions of those.  All constructions below are
phrased through that basis, so nothing ever enumerates the power set of the
points.

核心组件:
1. FiniteSpace / ContinuousMap       - 拓扑层 (minimal-open basis)
2. disjoint_union / coequalize       - 拓扑余极限 (coproduct + quotient)
3. Presheaf (lazy, memoised)         - W ↦ O(W), (W ⊇ V) ↦ res
4. check_sheaf_condition             - O(W) ≅ lim_{p∈W} O(U_p)
5. StructuredSpace / SpaceHom        - 结构空间与态射 (f, f^#)
6. open-immersion calculus           - inv_app, lift, pullback

工程红线:
- 禁止伪函子: presheaf identity/composition laws are checkable on demand
- 禁止静默降级: a map that is not an open immersion raises, it is never
  "treated as one"
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import (
    Any, Callable, Dict, FrozenSet, Hashable, Iterable, List, Mapping, Optional, Sequence, Tuple,
)

from .categories import (
    AlgebraicCategory,
    CategoricalError,
    Cone,
    Diagram,
    HasLimits,
    LimitComputationError,
    Morphism,
    NotIsomorphismError,
)

_logger = logging.getLogger(__name__)

OpenSet = FrozenSet[Hashable]


# ============================================================================
# Section 0: 异常定义
# ============================================================================

class TopologyError(CategoricalError):
    """Malformed finite topology, or a set that should be open is not."""
    pass


class ContinuityError(CategoricalError):
    """A point map is not continuous (or not total)."""
    pass


class PresheafLawViolation(CategoricalError):
    """预层函子律违反: res(W,W) ≠ id or res(V,U)∘res(W,V) ≠ res(W,U)."""
    def __init__(self, presheaf_name: str, law: str, details: str):
        self.presheaf_name = presheaf_name
        self.law = law
        self.details = details
        super().__init__(f"Presheaf '{presheaf_name}' violates {law} law: {details}")


class SheafConditionViolation(CategoricalError):
    """层条件违反: O(W) → lim_{p∈W} O(U_p) is not an isomorphism."""
    def __init__(self, object_id: str, details: str):
        self.object_id = object_id
        self.details = details
        super().__init__(f"Sheaf condition violated at object '{object_id}': {details}")


class OpenImmersionError(CategoricalError):
    """A map used as an open immersion is not one."""
    pass


# ============================================================================
# Section 1: 工具函数
# ============================================================================

def canonical_repr(p: Any) -> str:
    """repr with set members sorted, so glued points render the same in every process."""
    if isinstance(p, (frozenset, set)):
        return "{" + ", ".join(sorted(canonical_repr(x) for x in p)) + "}"
    if isinstance(p, tuple):
        inner = ", ".join(canonical_repr(x) for x in p)
        return f"({inner},)" if len(p) == 1 else f"({inner})"
    return repr(p)


def _stable_sorted(items: Iterable[Hashable]) -> List[Hashable]:
    return sorted(items, key=canonical_repr)


def format_open(W: Iterable[Hashable]) -> str:
    return "{" + ", ".join(canonical_repr(p) for p in _stable_sorted(W)) + "}"


# ============================================================================
# Section 2: 有限拓扑空间
# ============================================================================

class FiniteSpace:
    """有限 (Alexandrov) 拓扑空间, given by minimal open neighbourhoods.

    Axioms checked at construction:
    - p ∈ U_p
    - q ∈ U_p ⇒ U_q ⊆ U_p
    """

    def __init__(self, minimal_opens: Mapping[Hashable, Iterable[Hashable]], name: str = ""):
        self.name = name
        self._minimal: Dict[Hashable, OpenSet] = {p: frozenset(U) for p, U in minimal_opens.items()}
        self.points: FrozenSet[Hashable] = frozenset(self._minimal)
        self._order: Tuple[Hashable, ...] = tuple(_stable_sorted(self.points))
        self._opens: Optional[Tuple[OpenSet, ...]] = None
        self._validate()

    def _validate(self) -> None:
        for p, U in self._minimal.items():
            if p not in U:
                raise TopologyError(f"{self.name or 'space'}: point {p!r} not in its minimal open")
            stray = U - self.points
            if stray:
                raise TopologyError(f"{self.name or 'space'}: minimal open of {p!r} has foreign points {format_open(stray)}")
            for q in U:
                if not self._minimal[q] <= U:
                    raise TopologyError(
                        f"{self.name or 'space'}: U_{q!r} ⊄ U_{p!r} although {q!r} ∈ U_{p!r}"
                    )

    # -- constructors -------------------------------------------------------

    @classmethod
    def empty(cls, name: str = "∅") -> "FiniteSpace":
        return cls({}, name=name)

    @classmethod
    def discrete(cls, points: Iterable[Hashable], name: str = "") -> "FiniteSpace":
        return cls({p: {p} for p in points}, name=name)

    @classmethod
    def from_opens(cls, points: Iterable[Hashable], opens: Iterable[Iterable[Hashable]], name: str = "") -> "FiniteSpace":
        """Topology generated by ``opens`` (the whole space is always open)."""
        pts = frozenset(points)
        open_sets = [frozenset(O) for O in opens] + [pts]
        minimal = {}
        for p in pts:
            U = pts
            for O in open_sets:
                if p in O:
                    U = U & O
            minimal[p] = U
        return cls(minimal, name=name)

    # -- queries ------------------------------------------------------------

    def minimal_open(self, p: Hashable) -> OpenSet:
        try:
            return self._minimal[p]
        except KeyError:
            raise TopologyError(f"{p!r} is not a point of {self!r}") from None

    def points_sorted(self) -> Tuple[Hashable, ...]:
        return self._order

    def is_open(self, S: Iterable[Hashable]) -> bool:
        S = frozenset(S)
        if not S <= self.points:
            return False
        return all(self._minimal[p] <= S for p in S)

    def require_open(self, S: Iterable[Hashable], context: str = "") -> OpenSet:
        S = frozenset(S)
        if not self.is_open(S):
            raise TopologyError(f"{context + ': ' if context else ''}{format_open(S)} is not open in {self!r}")
        return S

    def open_hull(self, S: Iterable[Hashable]) -> OpenSet:
        """Smallest open set containing S."""
        out = set()
        for p in S:
            out |= self.minimal_open(p)
        return frozenset(out)

    def opens(self) -> Tuple[OpenSet, ...]:
        """All open sets, by size then by point reprs.  Memoised."""
        if self._opens is None:
            found = {frozenset()}
            frontier = [frozenset()]
            while frontier:
                nxt = []
                for O in frontier:
                    for p in self._order:
                        if p in O:
                            continue
                        candidate = O | self._minimal[p]
                        if candidate not in found:
                            found.add(candidate)
                            nxt.append(candidate)
                frontier = nxt
            self._opens = tuple(sorted(found, key=lambda s: (len(s), [canonical_repr(p) for p in _stable_sorted(s)])))
        return self._opens

    def subspace(self, open_set: Iterable[Hashable], name: str = "") -> "FiniteSpace":
        S = self.require_open(open_set, "subspace")
        return FiniteSpace({p: self._minimal[p] for p in S}, name=name or f"{self.name}|{format_open(S)}")

    def __contains__(self, p: Hashable) -> bool:
        return p in self.points

    def __len__(self) -> int:
        return len(self.points)

    def __repr__(self):
        return f"FiniteSpace('{self.name}', {len(self.points)} points)"


class ContinuousMap:
    """连续映射 between finite spaces.  Continuity: f(U_p) ⊆ U_{f(p)}."""

    def __init__(
        self,
        source: FiniteSpace,
        target: FiniteSpace,
        mapping: Any,
        name: str = "",
    ):
        self.source = source
        self.target = target
        self.name = name
        lookup = mapping if callable(mapping) and not isinstance(mapping, Mapping) else mapping.__getitem__
        self._map: Dict[Hashable, Hashable] = {}
        for p in source.points_sorted():
            try:
                self._map[p] = lookup(p)
            except KeyError:
                raise ContinuityError(f"map '{name}' is undefined at {p!r}") from None
        self._inverse: Optional[Dict[Hashable, Hashable]] = None
        self._validate()

    def _validate(self) -> None:
        for p, y in self._map.items():
            if y not in self.target.points:
                raise ContinuityError(f"map '{self.name}' sends {p!r} to {y!r}, not a point of {self.target!r}")
        for p in self.source.points_sorted():
            image = self.image(self.source.minimal_open(p))
            if not image <= self.target.minimal_open(self._map[p]):
                raise ContinuityError(f"map '{self.name}' is not continuous at {p!r}")

    @classmethod
    def identity(cls, space: FiniteSpace) -> "ContinuousMap":
        return cls(space, space, {p: p for p in space.points}, name="id")

    @classmethod
    def inclusion(cls, subspace: FiniteSpace, space: FiniteSpace) -> "ContinuousMap":
        return cls(subspace, space, {p: p for p in subspace.points}, name="incl")

    def __call__(self, p: Hashable) -> Hashable:
        return self._map[p]

    def as_dict(self) -> Dict[Hashable, Hashable]:
        return dict(self._map)

    def preimage(self, W: Iterable[Hashable]) -> OpenSet:
        W = frozenset(W)
        return frozenset(p for p, y in self._map.items() if y in W)

    def image(self, S: Iterable[Hashable]) -> FrozenSet[Hashable]:
        return frozenset(self._map[p] for p in S)

    def is_injective(self) -> bool:
        return len(set(self._map.values())) == len(self._map)

    def is_surjective(self) -> bool:
        return set(self._map.values()) == set(self.target.points)

    def is_open_map(self) -> bool:
        return all(self.target.is_open(self.image(self.source.minimal_open(p))) for p in self.source.points)

    def is_open_embedding(self) -> bool:
        # continuous + injective + open ⇒ homeomorphism onto an open subspace
        return self.is_injective() and self.is_open_map()

    def is_homeomorphism(self) -> bool:
        return self.is_open_embedding() and self.is_surjective()

    def inverse_point(self, y: Hashable) -> Hashable:
        if self._inverse is None:
            if not self.is_injective():
                raise OpenImmersionError(f"map '{self.name}' is not injective; no partial inverse")
            self._inverse = {v: k for k, v in self._map.items()}
        try:
            return self._inverse[y]
        except KeyError:
            raise OpenImmersionError(f"{y!r} is not in the image of '{self.name}'") from None

    def then(self, g: "ContinuousMap") -> "ContinuousMap":
        """g ∘ self"""
        if g.source.points != self.target.points:
            raise ContinuityError(f"Cannot compose: '{self.name}' target ≠ '{g.name}' source")
        return ContinuousMap(self.source, g.target, {p: g(y) for p, y in self._map.items()},
                             name=f"({g.name} ∘ {self.name})")

    def equals(self, other: "ContinuousMap") -> bool:
        return self._map == other._map

    def __repr__(self):
        return f"ContinuousMap('{self.name}': {self.source!r} → {self.target!r})"


# ============================================================================
# Section 3: 拓扑余极限
# ============================================================================

@dataclass
class Coproduct:
    """⊔_k X_k with points (k, x)."""
    space: FiniteSpace
    injections: Dict[Hashable, ContinuousMap]

    def desc(self, maps: Mapping[Hashable, ContinuousMap], target: FiniteSpace, name: str = "") -> ContinuousMap:
        """Universal map ⊔ X_k → target induced by a family X_k → target."""
        missing = set(self.injections) - set(maps)
        if missing:
            raise ContinuityError(f"desc: no map for summands {_stable_sorted(missing)}")
        return ContinuousMap(self.space, target, lambda kp: maps[kp[0]](kp[1]), name=name or "desc")


def disjoint_union(family: Mapping[Hashable, FiniteSpace], name: str = "") -> Coproduct:
    minimal = {}
    for key, X in family.items():
        for p in X.points:
            minimal[(key, p)] = {(key, q) for q in X.minimal_open(p)}
    space = FiniteSpace(minimal, name=name or "⊔")
    injections = {
        key: ContinuousMap(X, space, lambda p, key=key: (key, p), name=f"in[{key!r}]")
        for key, X in family.items()
    }
    return Coproduct(space=space, injections=injections)


@dataclass
class Coequalizer:
    """Quotient of ``left.target`` by left(v) ~ right(v); points are classes."""
    space: FiniteSpace
    projection: ContinuousMap
    left: ContinuousMap
    right: ContinuousMap

    def class_of(self, p: Hashable) -> FrozenSet[Hashable]:
        return self.projection(p)

    def desc(self, h: ContinuousMap, name: str = "") -> ContinuousMap:
        """Universal map out of the quotient for h with h∘left = h∘right."""
        if not self.left.then(h).equals(self.right.then(h)):
            raise ContinuityError("desc: map does not coequalize the pair")
        return ContinuousMap(self.space, h.target, lambda cls: h(next(iter(cls))), name=name or "desc")


def coequalize(left: ContinuousMap, right: ContinuousMap, name: str = "") -> Coequalizer:
    """拓扑余等化子: generated equivalence relation + quotient topology."""
    if left.source.points != right.source.points or left.target.points != right.target.points:
        raise ContinuityError("coequalize: maps must be parallel")
    base = left.target
    parent: Dict[Hashable, Hashable] = {p: p for p in base.points}

    def _find(p):
        while parent[p] != p:
            parent[p] = parent[parent[p]]
            p = parent[p]
        return p

    for v in left.source.points_sorted():
        a, b = _find(left(v)), _find(right(v))
        if a != b:
            parent[b] = a

    members: Dict[Hashable, set] = {}
    for p in base.points:
        members.setdefault(_find(p), set()).add(p)
    class_of = {}
    for group in members.values():
        cls = frozenset(group)
        for p in group:
            class_of[p] = cls

    minimal = {}
    for cls in set(class_of.values()):
        saturated = set(cls)
        while True:
            hull = base.open_hull(saturated)
            grown = set()
            for p in hull:
                grown |= class_of[p]
            if grown == saturated:
                break
            saturated = grown
        minimal[cls] = {class_of[p] for p in saturated}

    space = FiniteSpace(minimal, name=name or "coeq")
    projection = ContinuousMap(base, space, class_of, name="π")
    return Coequalizer(space=space, projection=projection, left=left, right=right)


# ============================================================================
# Section 4: 预层
# ============================================================================

class Presheaf(ABC):
    """预层 O on a finite space, lazily evaluated and memoised.

    ``sections(W)`` is the object O(W); ``restriction(W, V)`` is O(W) → O(V)
    for opens V ⊆ W.
    """

    def __init__(self, space: FiniteSpace, category: AlgebraicCategory, name: str = ""):
        self.space = space
        self.category = category
        self.name = name
        self._sections_memo: Dict[OpenSet, Any] = {}
        self._restriction_memo: Dict[Tuple[OpenSet, OpenSet], Morphism] = {}

    @abstractmethod
    def _compute_sections(self, W: OpenSet) -> Any:
        ...

    @abstractmethod
    def _compute_restriction(self, W: OpenSet, V: OpenSet) -> Morphism:
        ...

    def sections(self, W: Iterable[Hashable]) -> Any:
        W = self.space.require_open(W, f"sections of '{self.name}'")
        obj = self._sections_memo.get(W)
        if obj is None:
            obj = self._compute_sections(W)
            self._sections_memo[W] = obj
        return obj

    def restriction(self, W: Iterable[Hashable], V: Iterable[Hashable]) -> Morphism:
        W = self.space.require_open(W, f"restriction of '{self.name}'")
        V = self.space.require_open(V, f"restriction of '{self.name}'")
        if not V <= W:
            raise TopologyError(f"restriction {format_open(W)} → {format_open(V)}: target not a subset")
        key = (W, V)
        m = self._restriction_memo.get(key)
        if m is None:
            if V == W:
                m = self.category.identity(self.sections(W))
            else:
                m = self._compute_restriction(W, V)
            self._restriction_memo[key] = m
        return m

    def stalk(self, p: Hashable) -> Any:
        """O(U_p); on a finite space the minimal open computes the stalk."""
        return self.sections(self.space.minimal_open(p))

    def generator_cone(self, W: OpenSet) -> Optional[Cone]:
        """Limit cone over generating stalks, for stalk-generated presheaves."""
        return None

    def restrict_to(self, open_set: Iterable[Hashable], subspace: Optional[FiniteSpace] = None) -> "Presheaf":
        sub = subspace if subspace is not None else self.space.subspace(open_set)
        return OpenSubPresheaf(self, sub)

    def verify_functoriality(self, opens: Optional[Sequence[OpenSet]] = None) -> List[str]:
        """Check identity and composition laws on the given opens (default: all)."""
        opens = tuple(opens) if opens is not None else self.space.opens()
        cat = self.category
        violations = []
        for W in opens:
            if not cat.equal(self.restriction(W, W), cat.identity(self.sections(W))):
                violations.append(f"identity law fails at {format_open(W)}")
        for W in opens:
            for V in opens:
                if not V <= W:
                    continue
                for U in opens:
                    if not U <= V:
                        continue
                    direct = self.restriction(W, U)
                    via = cat.compose(self.restriction(V, U), self.restriction(W, V))
                    if not cat.equal(direct, via):
                        violations.append(
                            f"composition law fails at {format_open(W)} ⊇ {format_open(V)} ⊇ {format_open(U)}"
                        )
        return violations

    def require_functorial(self, opens: Optional[Sequence[OpenSet]] = None) -> None:
        violations = self.verify_functoriality(opens)
        if violations:
            law = "identity" if violations[0].startswith("identity") else "composition"
            raise PresheafLawViolation(self.name, law, violations[0])

    @classmethod
    def from_stalks(
        cls,
        space: FiniteSpace,
        category: AlgebraicCategory,
        stalks: Mapping[Hashable, Any],
        generizations: Mapping[Tuple[Hashable, Hashable], Morphism],
        name: str = "",
    ) -> "StalkPresheaf":
        return StalkPresheaf(space, category, stalks, generizations, name=name)

    def __repr__(self):
        return f"{type(self).__name__}('{self.name}' on {self.space!r})"


class StalkPresheaf(Presheaf):
    """由茎生成的层: O(W) = lim_{p ∈ W} F_p.

    ``generizations[(p, q)]`` is F_p → F_q for every q ∈ U_p with q ≠ p
    (restriction from the smaller neighbourhood U_p to U_q ⊆ U_p).  The result
    is a sheaf by construction.
    """

    def __init__(
        self,
        space: FiniteSpace,
        category: AlgebraicCategory,
        stalks: Mapping[Hashable, Any],
        generizations: Mapping[Tuple[Hashable, Hashable], Morphism],
        name: str = "",
    ):
        if not isinstance(category, HasLimits):
            raise TypeError(f"stalk-generated presheaves need a category with limits, got {category!r}")
        super().__init__(space, category, name=name)
        self.stalks: Dict[Hashable, Any] = dict(stalks)
        self.generizations: Dict[Tuple[Hashable, Hashable], Morphism] = dict(generizations)
        self._limit_memo: Dict[OpenSet, Cone] = {}
        self._validate()

    def _validate(self) -> None:
        missing = self.space.points - set(self.stalks)
        if missing:
            raise PresheafLawViolation(self.name, "definition", f"no stalk at {format_open(missing)}")
        cat = self.category
        for p in self.space.points_sorted():
            for q in self.space.minimal_open(p):
                if q == p:
                    continue
                if (p, q) not in self.generizations:
                    raise PresheafLawViolation(self.name, "definition", f"no generization map {p!r} → {q!r}")
        for p in self.space.points_sorted():
            for q in self.space.minimal_open(p):
                if q == p:
                    continue
                for r in self.space.minimal_open(q):
                    if r == q or r == p:
                        continue
                    via = cat.compose(self.generizations[(q, r)], self.generizations[(p, q)])
                    if not cat.equal(via, self.generizations[(p, r)]):
                        raise PresheafLawViolation(
                            self.name, "composition", f"generizations {p!r} → {q!r} → {r!r} do not compose"
                        )

    def _diagram(self, W: OpenSet) -> Diagram:
        diagram = Diagram()
        ordered = _stable_sorted(W)
        for p in ordered:
            diagram.add_vertex(p, self.stalks[p])
        for p in ordered:
            for q in _stable_sorted(self.space.minimal_open(p)):
                if q != p:
                    diagram.add_edge(p, q, self.generizations[(p, q)])
        return diagram

    def generator_cone(self, W: OpenSet) -> Cone:
        W = self.space.require_open(W, f"generator cone of '{self.name}'")
        cone = self._limit_memo.get(W)
        if cone is None:
            cone = self.category.limit(self._diagram(W))
            self._limit_memo[W] = cone
        return cone

    def _compute_sections(self, W: OpenSet) -> Any:
        return self.generator_cone(W).apex

    def _compute_restriction(self, W: OpenSet, V: OpenSet) -> Morphism:
        source = self.generator_cone(W)
        target = self.generator_cone(V)
        cone = Cone(apex=source.apex, legs={p: source.legs[p] for p in V})
        return self.category.lift(target, cone)


class OpenSubPresheaf(Presheaf):
    """O|_S on an open subspace S; shares the parent's memo tables."""

    def __init__(self, parent: Presheaf, subspace: FiniteSpace):
        if not subspace.points <= parent.space.points or not parent.space.is_open(subspace.points):
            raise TopologyError(f"{subspace!r} is not an open subspace of {parent.space!r}")
        super().__init__(subspace, parent.category, name=f"{parent.name}|{subspace.name}")
        self.parent = parent

    def _compute_sections(self, W: OpenSet) -> Any:
        return self.parent.sections(W)

    def _compute_restriction(self, W: OpenSet, V: OpenSet) -> Morphism:
        return self.parent.restriction(W, V)

    def generator_cone(self, W: OpenSet) -> Optional[Cone]:
        return self.parent.generator_cone(W)


# ============================================================================
# Section 5: 层条件
# ============================================================================

def stalk_comparison(presheaf: Presheaf, W: OpenSet) -> Morphism:
    """Canonical O(W) → lim_{p∈W} O(U_p)."""
    cat = presheaf.category
    space = presheaf.space
    diagram = Diagram()
    ordered = _stable_sorted(W)
    for p in ordered:
        diagram.add_vertex(p, presheaf.stalk(p))
    for p in ordered:
        Up = space.minimal_open(p)
        for q in _stable_sorted(Up):
            if q != p:
                diagram.add_edge(p, q, presheaf.restriction(Up, space.minimal_open(q)))
    limit_cone = cat.limit(diagram)
    apex = presheaf.sections(W)
    cone = Cone(apex=apex, legs={p: presheaf.restriction(W, space.minimal_open(p)) for p in ordered})
    return cat.lift(limit_cone, cone)


def check_sheaf_condition(presheaf: Presheaf, opens: Optional[Sequence[OpenSet]] = None) -> None:
    """Raise SheafConditionViolation at the first open where gluing fails."""
    cat = presheaf.category
    if not isinstance(cat, HasLimits):
        raise TypeError(f"sheaf condition needs a category with limits, got {cat!r}")
    for W in (opens if opens is not None else presheaf.space.opens()):
        W = frozenset(W)
        try:
            comparison = stalk_comparison(presheaf, W)
        except LimitComputationError as e:
            raise SheafConditionViolation(presheaf.name, f"restrictions at {format_open(W)} are not compatible") from e
        if not cat.is_iso(comparison):
            _logger.debug("sheaf condition of '%s' fails at %s", presheaf.name, format_open(W))
            raise SheafConditionViolation(
                presheaf.name, f"O({format_open(W)}) → lim of stalks is not an isomorphism"
            )


def is_sheaf(presheaf: Presheaf, opens: Optional[Sequence[OpenSet]] = None) -> bool:
    try:
        check_sheaf_condition(presheaf, opens)
    except SheafConditionViolation:
        return False
    return True


# ============================================================================
# Section 6: 结构空间与态射
# ============================================================================

class StructuredSpace:
    """(X, O_X): finite space + presheaf."""

    def __init__(self, space: FiniteSpace, presheaf: Presheaf, name: str = ""):
        if presheaf.space.points != space.points:
            raise TopologyError(f"presheaf '{presheaf.name}' lives on a different space")
        self.space = space
        self.presheaf = presheaf
        self.name = name or space.name

    @property
    def category(self) -> AlgebraicCategory:
        return self.presheaf.category

    @property
    def points(self) -> FrozenSet[Hashable]:
        return self.space.points

    def sections(self, W: Iterable[Hashable]) -> Any:
        return self.presheaf.sections(W)

    def stalk(self, p: Hashable) -> Any:
        return self.presheaf.stalk(p)

    def identity(self) -> "SpaceHom":
        cat = self.category
        return SpaceHom(
            self, self, ContinuousMap.identity(self.space),
            lambda V: cat.identity(self.presheaf.sections(V)), name=f"id[{self.name}]",
        )

    def restrict(self, open_set: Iterable[Hashable], name: str = "") -> Tuple["StructuredSpace", "SpaceHom"]:
        """Open subspace and its inclusion (an open immersion)."""
        S = self.space.require_open(open_set, f"restrict '{self.name}'")
        sub_space = self.space.subspace(S, name=name)
        sub = StructuredSpace(sub_space, self.presheaf.restrict_to(S, sub_space), name=sub_space.name)
        inclusion = SpaceHom(
            sub, self, ContinuousMap.inclusion(sub_space, self.space),
            lambda W: self.presheaf.restriction(W, W & S), name=f"incl[{sub.name}]",
        )
        return sub, inclusion

    def __repr__(self):
        return f"StructuredSpace('{self.name}', {len(self.space)} points, {self.category.name})"


class SpaceHom:
    """结构空间态射 (f, f^#): X → Y.

    ``app(V)`` is f^#_V : O_Y(V) → O_X(f⁻¹V) for V open in Y.
    """

    def __init__(
        self,
        source: StructuredSpace,
        target: StructuredSpace,
        base: ContinuousMap,
        app_fn: Callable[[OpenSet], Morphism],
        name: str = "",
    ):
        if base.source.points != source.points or base.target.points != target.points:
            raise ContinuityError(f"SpaceHom '{name}': base map endpoints do not match the spaces")
        self.source = source
        self.target = target
        self.base = base
        self.name = name
        self._app_fn = app_fn
        self._app_memo: Dict[OpenSet, Morphism] = {}
        self._inv_app_memo: Dict[OpenSet, Morphism] = {}

    @property
    def category(self) -> AlgebraicCategory:
        return self.target.category

    def preimage(self, V: Iterable[Hashable]) -> OpenSet:
        return self.base.preimage(V)

    def app(self, V: Iterable[Hashable]) -> Morphism:
        V = self.target.space.require_open(V, f"app of '{self.name}'")
        m = self._app_memo.get(V)
        if m is None:
            m = self._app_fn(V)
            src = self.target.sections(V)
            tgt = self.source.sections(self.base.preimage(V))
            if m.source.dimension != src.dimension or m.target.dimension != tgt.dimension:
                raise ContinuityError(f"'{self.name}'.app({format_open(V)}) has the wrong shape")
            self._app_memo[V] = m
        return m

    def then(self, g: "SpaceHom") -> "SpaceHom":
        """g ∘ self"""
        return compose(g, self)

    # -- equality / naturality ---------------------------------------------

    def difference(self, other: "SpaceHom", opens: Optional[Sequence[OpenSet]] = None) -> Optional[str]:
        """First place where two parallel morphisms disagree, or None."""
        if not self.base.equals(other.base):
            for p in self.source.space.points_sorted():
                if self.base(p) != other.base(p):
                    return (f"base maps differ at {canonical_repr(p)}: "
                            f"{canonical_repr(self.base(p))} vs {canonical_repr(other.base(p))}")
        cat = self.category
        for V in (opens if opens is not None else self.target.space.opens()):
            if not cat.equal(self.app(V), other.app(V)):
                return f"app differs on {format_open(V)}"
        return None

    def equals(self, other: "SpaceHom", opens: Optional[Sequence[OpenSet]] = None) -> bool:
        return self.difference(other, opens) is None

    def verify_naturality(self, opens: Optional[Sequence[OpenSet]] = None) -> List[str]:
        """app(V') ∘ res_Y(V, V') = res_X(f⁻¹V, f⁻¹V') ∘ app(V) for V' ⊆ V."""
        cat = self.category
        opens = tuple(opens) if opens is not None else self.target.space.opens()
        problems = []
        for V in opens:
            for Vp in opens:
                if not Vp <= V or Vp == V:
                    continue
                left = cat.compose(self.app(Vp), self.target.presheaf.restriction(V, Vp))
                right = cat.compose(
                    self.source.presheaf.restriction(self.preimage(V), self.preimage(Vp)), self.app(V)
                )
                if not cat.equal(left, right):
                    problems.append(f"naturality fails for {format_open(V)} ⊇ {format_open(Vp)}")
        return problems

    # -- open immersions ---------------------------------------------------

    def open_immersion_defect(self, opens: Optional[Sequence[OpenSet]] = None) -> Optional[str]:
        """None if this is an open immersion; otherwise the first defect found."""
        if not self.base.is_injective():
            return "base map is not injective"
        if not self.base.is_open_map():
            return "base map is not open"
        cat = self.category
        for U in (opens if opens is not None else self.source.space.opens()):
            W = self.base.image(U)
            if not cat.is_iso(self.app(W)):
                return f"app on image of {format_open(U)} is not an isomorphism"
        return None

    def is_open_immersion(self, opens: Optional[Sequence[OpenSet]] = None) -> bool:
        return self.open_immersion_defect(opens) is None

    def inv_app(self, U: Iterable[Hashable]) -> Morphism:
        """部分逆: O_X(U) → O_Y(f(U)), inverse of app(f(U)) for open U ⊆ X."""
        U = self.source.space.require_open(U, f"inv_app of '{self.name}'")
        m = self._inv_app_memo.get(U)
        if m is not None:
            return m
        W = self.base.image(U)
        if not self.target.space.is_open(W):
            raise OpenImmersionError(f"'{self.name}': image of {format_open(U)} is not open")
        if self.base.preimage(W) != U:
            raise OpenImmersionError(f"'{self.name}': not injective over {format_open(U)}")
        try:
            m = self.category.inverse(self.app(W))
        except NotIsomorphismError as e:
            raise OpenImmersionError(f"'{self.name}': app on {format_open(W)} is not invertible") from e
        self._inv_app_memo[U] = m
        return m

    # -- isomorphisms / stalks ---------------------------------------------

    def is_iso(self, opens: Optional[Sequence[OpenSet]] = None) -> bool:
        if not self.base.is_homeomorphism():
            return False
        cat = self.category
        return all(cat.is_iso(self.app(V)) for V in (opens if opens is not None else self.target.space.opens()))

    def inverse(self) -> "SpaceHom":
        if not self.base.is_homeomorphism():
            raise OpenImmersionError(f"'{self.name}' is not a homeomorphism")
        back = ContinuousMap(self.target.space, self.source.space,
                             {y: self.base.inverse_point(y) for y in self.target.points},
                             name=f"{self.base.name}⁻¹")
        return SpaceHom(self.target, self.source, back, lambda U: self.inv_app(U), name=f"{self.name}⁻¹")

    def stalk_map(self, x: Hashable) -> Morphism:
        """O_Y,f(x) → O_X,x"""
        W = self.target.space.minimal_open(self.base(x))
        return self.category.compose(
            self.source.presheaf.restriction(self.preimage(W), self.source.space.minimal_open(x)),
            self.app(W),
        )

    # -- constructors ------------------------------------------------------

    @classmethod
    def from_stalk_maps(
        cls,
        source: StructuredSpace,
        target: StructuredSpace,
        base: ContinuousMap,
        stalk_maps: Mapping[Hashable, Morphism],
        name: str = "",
    ) -> "SpaceHom":
        """Morphism of stalk-generated spaces from maps F^Y_{f(p)} → F^X_p."""
        cat = target.category

        def _app(V: OpenSet) -> Morphism:
            src_cone = target.presheaf.generator_cone(V)
            pre = base.preimage(V)
            tgt_cone = source.presheaf.generator_cone(pre)
            if src_cone is None or tgt_cone is None:
                raise TypeError("from_stalk_maps needs stalk-generated presheaves on both sides")
            legs = {p: cat.compose(stalk_maps[p], src_cone.legs[base(p)]) for p in pre}
            try:
                return cat.lift(tgt_cone, Cone(apex=src_cone.apex, legs=legs))
            except LimitComputationError as e:
                raise ContinuityError(
                    f"'{name}': stalk maps are not compatible with generization over {format_open(V)}"
                ) from e

        return cls(source, target, base, _app, name=name)

    def __repr__(self):
        return f"SpaceHom('{self.name}': {self.source.name} → {self.target.name})"


def compose(g: SpaceHom, f: SpaceHom) -> SpaceHom:
    """g ∘ f, with (g∘f)^#_W = f^#_{g⁻¹W} ∘ g^#_W."""
    if f.target.points != g.source.points:
        raise ContinuityError(f"Cannot compose: '{f.name}' target ≠ '{g.name}' source")
    cat = g.category
    return SpaceHom(
        f.source, g.target, f.base.then(g.base),
        lambda W: cat.compose(f.app(g.preimage(W)), g.app(W)),
        name=f"({g.name} ∘ {f.name})",
    )


# ============================================================================
# Section 7: 开浸入演算
# ============================================================================

def lift_through_open_immersion(g: SpaceHom, f: SpaceHom, name: str = "") -> SpaceHom:
    """Factor g: T → Y through an open immersion f: X → Y (needs im g ⊆ im f).

    base: t ↦ f⁻¹(g(t));  app(S) = g^#_{f(S)} ∘ (f^#_{f(S)})⁻¹.
    """
    if g.target.points != f.target.points:
        raise OpenImmersionError("lift: maps must share a target")
    image_f = f.base.image(f.source.points)
    image_g = g.base.image(g.source.points)
    if not image_g <= image_f:
        stray = image_g - image_f
        raise OpenImmersionError(f"lift: {format_open(stray)} lies outside the image of '{f.name}'")
    base = ContinuousMap(g.source.space, f.source.space,
                         {t: f.base.inverse_point(g.base(t)) for t in g.source.points},
                         name=name or f"lift({g.name})")
    cat = g.category
    return SpaceHom(
        g.source, f.source, base,
        lambda S: cat.compose(g.app(f.base.image(S)), f.inv_app(S)),
        name=name or f"lift({g.name} | {f.name})",
    )


@dataclass
class PullbackCone:
    space: StructuredSpace
    fst: SpaceHom
    snd: SpaceHom


def pullback_of_open_immersions(f: SpaceHom, g: SpaceHom, name: str = "") -> PullbackCone:
    """A ×_X B for open immersions f: A → X, g: B → X, as an open subspace of A."""
    if f.target.points != g.target.points:
        raise OpenImmersionError("pullback: maps must share a target")
    meet = f.preimage(g.base.image(g.source.points))
    space, fst = f.source.restrict(meet, name=name or f"{f.source.name}×{g.source.name}")
    snd = lift_through_open_immersion(compose(f, fst), g, name=f"snd[{space.name}]")
    return PullbackCone(space=space, fst=fst, snd=snd)
