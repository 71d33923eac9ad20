#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
代数范畴能力层: Algebraic Category Capabilities

The gluing layer never does arithmetic on section values itself.  It talks to
an *algebraic category* through three capability traits:

1. ``AlgebraicCategory`` - identity / compose / equal / is_iso / inverse
2. ``HasLimits``         - limits of finite diagrams, factorisation through a
                           limit cone, maps into terminal objects
3. ``HasLocalObjects``   - "is this object local", "is this map local"

A ``Flavor`` (PRESHEAFED / SHEAFED / LOCALLY_RINGED) is nothing but a set of
required ``Capability`` values.  The builder checks the set once, up front;
the construction itself is the same for every flavor.

Two reference categories are provided as collaborators:

- ``RationalVectorSpaces``: finite-dimensional Q-vector spaces, exact matrices
- ``RationalAlgebras``: finite-dimensional commutative Q-algebras whose residue
  fields are Q (local iff dim A/rad(A) = 1)

工程红线:
- 禁止近似: all matrices carry ``Fraction`` entries (see ``exact_linalg``)
- 禁止部分构造: a capability mismatch aborts before anything is built
- 禁止伪锥: ``lift`` refuses families that do not satisfy every edge
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from fractions import Fraction
from typing import (
    Any, Dict, FrozenSet, Hashable, Iterable, List, Sequence, Tuple,
)

import numpy as np

from . import exact_linalg as la

_logger = logging.getLogger(__name__)


# ============================================================================
# Section 0: 异常定义
# ============================================================================

class CategoricalError(Exception):
    """Base class for every error raised by the gluing engine."""
    pass


class CapabilityMismatchError(CategoricalError):
    """The algebraic category cannot support the requested flavor."""
    def __init__(self, flavor: "Flavor", category_name: str, missing: Iterable["Capability"]):
        self.flavor = flavor
        self.category_name = category_name
        self.missing = tuple(sorted(missing, key=lambda c: c.value))
        super().__init__(
            f"Category '{category_name}' cannot carry flavor {flavor.name}: "
            f"missing {[c.value for c in self.missing]}"
        )


class LimitComputationError(CategoricalError):
    """A limit or a factorisation through a limit cone does not exist."""
    pass


class NotIsomorphismError(CategoricalError):
    """An inverse was requested for a morphism that is not invertible."""
    def __init__(self, morphism: "Morphism", details: str = ""):
        self.morphism = morphism
        super().__init__(f"{morphism!r} is not an isomorphism{': ' + details if details else ''}")


# ============================================================================
# Section 1: 能力与风味
# ============================================================================

class Capability(Enum):
    HAS_LIMITS = "has_limits"
    SHEAF_CONDITION = "sheaf_condition"
    STALK_LOCAL = "stalk_local"


class Flavor(Enum):
    """Structured-space flavor = base construction + required capabilities."""
    PRESHEAFED = "presheafed"
    SHEAFED = "sheafed"
    LOCALLY_RINGED = "locally_ringed"

    @property
    def requirements(self) -> FrozenSet[Capability]:
        if self is Flavor.PRESHEAFED:
            return frozenset({Capability.HAS_LIMITS})
        if self is Flavor.SHEAFED:
            return frozenset({Capability.HAS_LIMITS, Capability.SHEAF_CONDITION})
        return frozenset({Capability.HAS_LIMITS, Capability.SHEAF_CONDITION, Capability.STALK_LOCAL})

    @property
    def enforces_sheaf_condition(self) -> bool:
        return Capability.SHEAF_CONDITION in self.requirements

    @property
    def requires_local_stalks(self) -> bool:
        return Capability.STALK_LOCAL in self.requirements


# ============================================================================
# Section 2: 对象 / 态射 / 图 / 锥
# ============================================================================

@dataclass(frozen=True)
class VectorSpaceObject:
    """Q^n, identified by its dimension."""
    dimension: int

    def __post_init__(self):
        if self.dimension < 0:
            raise ValueError(f"dimension must be >= 0, got {self.dimension}")

    def __repr__(self):
        return f"Q^{self.dimension}"


def _frac_tuple(values: Iterable[Any]) -> Tuple[Fraction, ...]:
    return tuple(la._as_fraction_strict(v) for v in values)


@dataclass(frozen=True)
class AlgebraObject:
    """Commutative Q-algebra with basis e_0..e_{n-1}.

    ``structure[a][b]`` holds the coordinates of e_a * e_b; ``unit`` holds the
    coordinates of 1.  Only shapes and commutativity are checked eagerly;
    ``verify_axioms`` runs the full (cubic) associativity and unit check.
    """
    dimension: int
    structure: Tuple[Tuple[Tuple[Fraction, ...], ...], ...]
    unit: Tuple[Fraction, ...]

    def __post_init__(self):
        n = self.dimension
        if len(self.unit) != n or len(self.structure) != n:
            raise ValueError(f"algebra of dimension {n} has malformed structure/unit")
        for a in range(n):
            if len(self.structure[a]) != n or any(len(v) != n for v in self.structure[a]):
                raise ValueError(f"algebra structure row {a} is malformed")
            for b in range(a):
                if self.structure[a][b] != self.structure[b][a]:
                    raise ValueError(f"algebra is not commutative: e_{a}e_{b} != e_{b}e_{a}")

    # -- constructors -------------------------------------------------------

    @classmethod
    def from_table(cls, table: Sequence[Sequence[Sequence[Any]]], unit: Sequence[Any]) -> "AlgebraObject":
        structure = tuple(tuple(_frac_tuple(v) for v in row) for row in table)
        return cls(dimension=len(unit), structure=structure, unit=_frac_tuple(unit))

    @classmethod
    def zero(cls) -> "AlgebraObject":
        return cls(dimension=0, structure=(), unit=())

    @classmethod
    def rationals(cls) -> "AlgebraObject":
        return cls.truncated_polynomial(1)

    @classmethod
    def truncated_polynomial(cls, n: int) -> "AlgebraObject":
        """Q[x]/(x^n) in the monomial basis 1, x, ..., x^{n-1}."""
        if n < 1:
            raise ValueError(f"Q[x]/(x^n) needs n >= 1, got {n}")
        table = []
        for a in range(n):
            row = []
            for b in range(n):
                v = [0] * n
                if a + b < n:
                    v[a + b] = 1
                row.append(v)
            table.append(row)
        unit = [1] + [0] * (n - 1)
        return cls.from_table(table, unit)

    @classmethod
    def dual_numbers(cls) -> "AlgebraObject":
        return cls.truncated_polynomial(2)

    @classmethod
    def split(cls, n: int) -> "AlgebraObject":
        """Q x ... x Q (n factors) with orthogonal idempotent basis."""
        table = []
        for a in range(n):
            row = []
            for b in range(n):
                v = [0] * n
                if a == b:
                    v[a] = 1
                row.append(v)
            table.append(row)
        return cls.from_table(table, [1] * n)

    # -- arithmetic ---------------------------------------------------------

    def multiply(self, u: np.ndarray, v: np.ndarray) -> np.ndarray:
        """Product of two coordinate columns."""
        n = self.dimension
        out = [Fraction(0)] * n
        for a in range(n):
            ua = u[a, 0]
            if not ua:
                continue
            for b in range(n):
                vb = v[b, 0]
                if not vb:
                    continue
                coeff = ua * vb
                row = self.structure[a][b]
                for k in range(n):
                    if row[k]:
                        out[k] += coeff * row[k]
        return la.column(out)

    def unit_column(self) -> np.ndarray:
        return la.column(self.unit)

    def basis_column(self, a: int) -> np.ndarray:
        v = [0] * self.dimension
        v[a] = 1
        return la.column(v)

    def trace_form(self) -> np.ndarray:
        """G[a,b] = Tr(L_{e_a e_b}); its radical is the nilradical (char 0)."""
        n = self.dimension
        tau = [sum((self.structure[m][k][k] for k in range(n)), Fraction(0)) for m in range(n)]
        gram = la.zeros(n, n)
        for a in range(n):
            for b in range(n):
                gram[a, b] = sum((self.structure[a][b][m] * tau[m] for m in range(n)), Fraction(0))
        return gram

    def radical_basis(self) -> np.ndarray:
        return la.nullspace(self.trace_form())

    def verify_axioms(self) -> List[str]:
        """Associativity and unit law, reported as a list of violations."""
        problems: List[str] = []
        n = self.dimension
        one = self.unit_column()
        basis = [self.basis_column(a) for a in range(n)]
        for a in range(n):
            if not la.equal(self.multiply(one, basis[a]), basis[a]):
                problems.append(f"unit law fails on e_{a}")
        for a in range(n):
            for b in range(n):
                ab = self.multiply(basis[a], basis[b])
                for c in range(n):
                    left = self.multiply(ab, basis[c])
                    right = self.multiply(basis[a], self.multiply(basis[b], basis[c]))
                    if not la.equal(left, right):
                        problems.append(f"associativity fails on (e_{a}, e_{b}, e_{c})")
        return problems

    def __repr__(self):
        return f"CAlg_Q(dim={self.dimension})"


@dataclass
class Morphism:
    """态射 f: A → B, represented by a (dim B x dim A) exact matrix."""
    source: Any
    target: Any
    matrix: np.ndarray
    name: str = ""

    def __post_init__(self):
        if not (isinstance(self.matrix, np.ndarray) and self.matrix.dtype == object):
            self.matrix = la.matrix(self.matrix, shape=(self.target.dimension, self.source.dimension))
        if self.matrix.shape != (self.target.dimension, self.source.dimension):
            raise ValueError(
                f"Matrix shape {self.matrix.shape} incompatible with "
                f"morphism {self.source.dimension} → {self.target.dimension}"
            )

    def __repr__(self):
        name_str = f"'{self.name}'" if self.name else ""
        return f"Morphism{name_str}({self.source!r} → {self.target!r})"


@dataclass(frozen=True)
class DiagramEdge:
    source: Hashable
    target: Hashable
    morphism: Morphism


@dataclass
class Diagram:
    """A finite diagram: vertex key -> object, plus labelled edges.

    Vertex order is insertion order, which makes every limit computed from a
    diagram reproducible.
    """
    vertices: Dict[Hashable, Any] = field(default_factory=dict)
    edges: List[DiagramEdge] = field(default_factory=list)

    def add_vertex(self, key: Hashable, obj: Any) -> None:
        if key in self.vertices:
            raise KeyError(f"duplicate diagram vertex {key!r}")
        self.vertices[key] = obj

    def add_edge(self, source: Hashable, target: Hashable, morphism: Morphism) -> None:
        if source not in self.vertices or target not in self.vertices:
            raise KeyError(f"edge {source!r} → {target!r} references an unknown vertex")
        if morphism.source.dimension != self.vertices[source].dimension:
            raise ValueError(f"edge {source!r} → {target!r}: source dimension mismatch")
        if morphism.target.dimension != self.vertices[target].dimension:
            raise ValueError(f"edge {source!r} → {target!r}: target dimension mismatch")
        self.edges.append(DiagramEdge(source, target, morphism))

    def __len__(self):
        return len(self.vertices)


@dataclass
class Cone:
    """apex with one leg per diagram vertex.  ``witness`` is category-private."""
    apex: Any
    legs: Dict[Hashable, Morphism]
    witness: Any = None


# ============================================================================
# Section 3: 能力特征 (traits)
# ============================================================================

class AlgebraicCategory(ABC):
    """Minimal category interface consumed by the gluing layer."""

    name: str = "C"
    # Whether ``is_iso`` is an exact decision procedure; the sheaf condition
    # can only be enforced when it is.
    decides_isomorphism: bool = False

    @abstractmethod
    def identity(self, obj: Any) -> Morphism:
        ...

    @abstractmethod
    def compose(self, g: Morphism, f: Morphism) -> Morphism:
        """g ∘ f"""

    @abstractmethod
    def equal(self, f: Morphism, g: Morphism) -> bool:
        ...

    @abstractmethod
    def is_iso(self, f: Morphism) -> bool:
        ...

    @abstractmethod
    def inverse(self, f: Morphism) -> Morphism:
        ...

    def compose_all(self, *morphisms: Morphism) -> Morphism:
        """compose_all(h, g, f) = h ∘ g ∘ f"""
        if not morphisms:
            raise ValueError("compose_all needs at least one morphism")
        result = morphisms[-1]
        for m in reversed(morphisms[:-1]):
            result = self.compose(m, result)
        return result

    def cone_defects(self, cone: Cone, diagram: Diagram) -> List[DiagramEdge]:
        """Edges e: a → b with e ∘ leg_a != leg_b."""
        defects = []
        for edge in diagram.edges:
            if edge.source not in cone.legs or edge.target not in cone.legs:
                defects.append(edge)
                continue
            via = self.compose(edge.morphism, cone.legs[edge.source])
            if not self.equal(via, cone.legs[edge.target]):
                defects.append(edge)
        return defects


class HasLimits(ABC):
    """Trait: finite limits with explicit universal factorisation."""

    @abstractmethod
    def limit(self, diagram: Diagram) -> Cone:
        ...

    @abstractmethod
    def lift(self, limit_cone: Cone, cone: Cone) -> Morphism:
        """The unique u: cone.apex → limit apex with leg_v ∘ u = cone.legs[v]."""

    @abstractmethod
    def terminal_morphism(self, source: Any, target: Any) -> Morphism:
        """The unique map into ``target``, which must be terminal."""

    @abstractmethod
    def is_terminal(self, obj: Any) -> bool:
        ...


class HasLocalObjects(ABC):
    """Trait: locality of objects and morphisms (locally-ringed flavor)."""

    @abstractmethod
    def is_local(self, obj: Any) -> bool:
        ...

    @abstractmethod
    def is_local_hom(self, f: Morphism) -> bool:
        ...

    @abstractmethod
    def is_algebra_hom(self, f: Morphism) -> bool:
        """Preserves unit and product; a local hom must be one first."""


def capabilities_of(category: Any) -> FrozenSet[Capability]:
    caps = set()
    if isinstance(category, HasLimits):
        caps.add(Capability.HAS_LIMITS)
        if getattr(category, "decides_isomorphism", False):
            caps.add(Capability.SHEAF_CONDITION)
    if isinstance(category, HasLocalObjects):
        caps.add(Capability.STALK_LOCAL)
    return frozenset(caps)


def require_capabilities(category: Any, flavor: Flavor) -> None:
    missing = flavor.requirements - capabilities_of(category)
    if missing:
        raise CapabilityMismatchError(flavor, getattr(category, "name", type(category).__name__), missing)


# ============================================================================
# Section 4: 参考范畴 Vect_Q
# ============================================================================

class RationalVectorSpaces(AlgebraicCategory, HasLimits):
    """有限维 Q-向量空间范畴: composition = exact matrix product."""

    name = "Vect_Q"
    decides_isomorphism = True

    def obj(self, dimension: int) -> VectorSpaceObject:
        return VectorSpaceObject(dimension)

    def morphism(self, source: Any, target: Any, data: Any, name: str = "") -> Morphism:
        return Morphism(source, target, la.matrix(data, shape=(target.dimension, source.dimension)), name)

    def identity(self, obj: Any) -> Morphism:
        return Morphism(obj, obj, la.identity(obj.dimension), name="id")

    def compose(self, g: Morphism, f: Morphism) -> Morphism:
        if f.target.dimension != g.source.dimension:
            raise ValueError(f"Cannot compose: {f} target ≠ {g} source (dimension mismatch)")
        return Morphism(
            source=f.source,
            target=g.target,
            matrix=la.matmul(g.matrix, f.matrix),
            name=f"({g.name} ∘ {f.name})" if g.name and f.name else "",
        )

    def equal(self, f: Morphism, g: Morphism) -> bool:
        return la.equal(f.matrix, g.matrix)

    def is_iso(self, f: Morphism) -> bool:
        return la.is_invertible(f.matrix)

    def inverse(self, f: Morphism) -> Morphism:
        if not self.is_iso(f):
            raise NotIsomorphismError(f, f"rank {la.rank(f.matrix)} of {f.matrix.shape}")
        return Morphism(f.target, f.source, la.inverse(f.matrix), name=f"{f.name}⁻¹" if f.name else "")

    def is_terminal(self, obj: Any) -> bool:
        return obj.dimension == 0

    def terminal_morphism(self, source: Any, target: Any) -> Morphism:
        if not self.is_terminal(target):
            raise LimitComputationError(f"{target!r} is not terminal")
        return Morphism(source, target, la.zeros(0, source.dimension), name="!")

    # -- limits -------------------------------------------------------------

    def limit(self, diagram: Diagram) -> Cone:
        """lim D = {(x_v) : e(x_a) = x_b for every edge e: a → b} = ker(C)."""
        keys = list(diagram.vertices)
        offsets: Dict[Hashable, int] = {}
        total = 0
        for key in keys:
            offsets[key] = total
            total += diagram.vertices[key].dimension

        blocks = []
        for edge in diagram.edges:
            m = edge.morphism.matrix
            rows = m.shape[0]
            block = la.zeros(rows, total)
            a0 = offsets[edge.source]
            b0 = offsets[edge.target]
            block[:, a0:a0 + m.shape[1]] = m
            for r in range(rows):
                block[r, b0 + r] = block[r, b0 + r] - 1
            blocks.append(block)
        constraints = la.vstack(blocks, total)
        kernel = la.nullspace(constraints)
        apex = self._limit_apex(diagram, kernel, offsets)

        legs = {}
        for key in keys:
            obj = diagram.vertices[key]
            o = offsets[key]
            legs[key] = Morphism(apex, obj, kernel[o:o + obj.dimension, :].copy(), name=f"π[{key}]")
        return Cone(apex=apex, legs=legs, witness=(tuple(keys), offsets, kernel))

    def _limit_apex(self, diagram: Diagram, kernel: np.ndarray, offsets: Dict[Hashable, int]) -> Any:
        return VectorSpaceObject(kernel.shape[1])

    def lift(self, limit_cone: Cone, cone: Cone) -> Morphism:
        if limit_cone.witness is None:
            raise LimitComputationError("lift requires a cone produced by limit()")
        keys, offsets, kernel = limit_cone.witness
        width = cone.apex.dimension
        blocks = []
        for key in keys:
            if key not in cone.legs:
                raise LimitComputationError(f"cone has no leg at vertex {key!r}")
            blocks.append(cone.legs[key].matrix)
        stacked = la.vstack(blocks, width)
        try:
            coords = la.solve(kernel, stacked)
        except la.InconsistentSystemError as e:
            _logger.debug("%s: lift into limit over %d vertices failed", self.name, len(keys))
            raise LimitComputationError("family of maps is not a cone over the diagram") from e
        return Morphism(cone.apex, limit_cone.apex, coords, name="lift")


# ============================================================================
# Section 5: 参考范畴 CAlg_Q (局部对象)
# ============================================================================

class RationalAlgebras(RationalVectorSpaces, HasLocalObjects):
    """有限维交换 Q-代数, residue fields Q.

    Limits are computed on underlying vector spaces (the forgetful functor
    creates limits); the apex then inherits the componentwise product.
    """

    name = "CAlg_Q"

    def _limit_apex(self, diagram: Diagram, kernel: np.ndarray, offsets: Dict[Hashable, int]) -> Any:
        k = kernel.shape[1]
        if k == 0:
            return AlgebraObject.zero()
        keys = list(diagram.vertices)
        columns = [kernel[:, [c]] for c in range(k)]

        def _componentwise(fn) -> np.ndarray:
            parts = []
            for key in keys:
                alg = diagram.vertices[key]
                parts.append(fn(alg, offsets[key]))
            return la.vstack(parts, 1)

        table = [[None] * k for _ in range(k)]
        for a in range(k):
            for b in range(a, k):
                prod = _componentwise(
                    lambda alg, o: alg.multiply(
                        columns[a][o:o + alg.dimension, :], columns[b][o:o + alg.dimension, :]
                    )
                )
                try:
                    coords = la.solve(kernel, prod)
                except la.InconsistentSystemError as e:
                    raise LimitComputationError("diagram edges are not algebra homomorphisms") from e
                row = tuple(coords[m, 0] for m in range(k))
                table[a][b] = row
                table[b][a] = row
        unit_stack = _componentwise(lambda alg, o: alg.unit_column())
        try:
            unit = la.solve(kernel, unit_stack)
        except la.InconsistentSystemError as e:
            raise LimitComputationError("diagram edges do not preserve the unit") from e
        return AlgebraObject(
            dimension=k,
            structure=tuple(tuple(row) for row in table),
            unit=tuple(unit[m, 0] for m in range(k)),
        )

    def is_terminal(self, obj: Any) -> bool:
        return obj.dimension == 0

    def is_algebra_hom(self, f: Morphism) -> bool:
        src, tgt = f.source, f.target
        if not la.equal(la.matmul(f.matrix, src.unit_column()), tgt.unit_column()):
            return False
        for a in range(src.dimension):
            ea = src.basis_column(a)
            for b in range(a, src.dimension):
                eb = src.basis_column(b)
                left = la.matmul(f.matrix, src.multiply(ea, eb))
                right = tgt.multiply(la.matmul(f.matrix, ea), la.matmul(f.matrix, eb))
                if not la.equal(left, right):
                    return False
        return True

    def is_local(self, obj: Any) -> bool:
        if obj.dimension == 0:
            return False
        return obj.dimension - obj.radical_basis().shape[1] == 1

    def is_local_hom(self, f: Morphism) -> bool:
        """f(m_A) ⊆ m_B, where m = rad for local algebras with residue field Q."""
        rad_src = f.source.radical_basis()
        if rad_src.shape[1] == 0:
            return True
        image = la.matmul(f.matrix, rad_src)
        return la.is_zero(la.matmul(f.target.trace_form(), image))
