"""
Tests for the algebraic category capability layer.

These tests verify:
1. Composition / inverse in Vect_Q
2. Limits and the universal lift, including the empty diagram
3. Capability sets and flavor requirements
4. Algebra objects: axioms, radical, locality
"""

import pytest

from sheaf_gluing import exact_linalg as la
from sheaf_gluing.categories import (
    AlgebraObject,
    Capability,
    CapabilityMismatchError,
    Cone,
    Diagram,
    Flavor,
    LimitComputationError,
    Morphism,
    NotIsomorphismError,
    RationalAlgebras,
    RationalVectorSpaces,
    capabilities_of,
    require_capabilities,
)


# =============================================================================
# TEST FIXTURES
# =============================================================================

@pytest.fixture
def vect():
    return RationalVectorSpaces()


@pytest.fixture
def calg():
    return RationalAlgebras()


def projection_diagram(cat):
    """Q² → Q, (a, b) ↦ a."""
    diagram = Diagram()
    diagram.add_vertex("c", cat.obj(2))
    diagram.add_vertex("η", cat.obj(1))
    diagram.add_edge("c", "η", cat.morphism(cat.obj(2), cat.obj(1), [[1, 0]]))
    return diagram


# =============================================================================
# VECT_Q
# =============================================================================

class TestRationalVectorSpaces:
    def test_compose_is_matrix_product(self, vect):
        f = vect.morphism(vect.obj(1), vect.obj(2), [[1], [2]])
        g = vect.morphism(vect.obj(2), vect.obj(1), [[3, 4]])
        gf = vect.compose(g, f)
        assert gf.matrix[0, 0] == 11
        assert gf.source == vect.obj(1) and gf.target == vect.obj(1)

    def test_compose_all_order(self, vect):
        q = vect.obj(1)
        two = vect.morphism(q, q, [[2]])
        three = vect.morphism(q, q, [[3]])
        assert vect.compose_all(two, three, two).matrix[0, 0] == 12

    def test_compose_dimension_mismatch(self, vect):
        f = vect.morphism(vect.obj(1), vect.obj(2), [[1], [2]])
        with pytest.raises(ValueError, match="Cannot compose"):
            vect.compose(f, f)

    def test_morphism_shape_checked(self, vect):
        with pytest.raises(ValueError, match="incompatible"):
            Morphism(vect.obj(2), vect.obj(1), la.identity(2))

    def test_inverse(self, vect):
        f = vect.morphism(vect.obj(2), vect.obj(2), [[2, 1], [1, 1]])
        assert vect.equal(vect.compose(vect.inverse(f), f), vect.identity(vect.obj(2)))

    def test_non_iso_inverse_raises(self, vect):
        f = vect.morphism(vect.obj(2), vect.obj(1), [[1, 0]])
        assert not vect.is_iso(f)
        with pytest.raises(NotIsomorphismError):
            vect.inverse(f)


class TestLimits:
    def test_limit_cone_commutes(self, vect):
        diagram = projection_diagram(vect)
        cone = vect.limit(diagram)
        assert cone.apex.dimension == 2
        assert vect.cone_defects(cone, diagram) == []

    def test_lift_factors_cone(self, vect):
        diagram = projection_diagram(vect)
        limit = vect.limit(diagram)
        q = vect.obj(1)
        competing = Cone(apex=q, legs={
            "c": vect.morphism(q, vect.obj(2), [[5], [7]]),
            "η": vect.morphism(q, vect.obj(1), [[5]]),
        })
        u = vect.lift(limit, competing)
        for key, leg in competing.legs.items():
            assert vect.equal(vect.compose(limit.legs[key], u), leg)

    def test_lift_rejects_non_cone(self, vect):
        diagram = projection_diagram(vect)
        limit = vect.limit(diagram)
        q = vect.obj(1)
        bad = Cone(apex=q, legs={
            "c": vect.morphism(q, vect.obj(2), [[1], [0]]),
            "η": vect.morphism(q, vect.obj(1), [[2]]),
        })
        assert len(vect.cone_defects(bad, diagram)) == 1
        with pytest.raises(LimitComputationError, match="not a cone"):
            vect.lift(limit, bad)

    def test_empty_limit_is_terminal(self, vect):
        cone = vect.limit(Diagram())
        assert cone.apex.dimension == 0
        assert vect.is_terminal(cone.apex)

    def test_terminal_morphism_requires_terminal(self, vect):
        assert vect.terminal_morphism(vect.obj(3), vect.obj(0)).matrix.shape == (0, 3)
        with pytest.raises(LimitComputationError, match="not terminal"):
            vect.terminal_morphism(vect.obj(3), vect.obj(1))

    def test_edge_dimension_checked(self, vect):
        diagram = Diagram()
        diagram.add_vertex("a", vect.obj(1))
        diagram.add_vertex("b", vect.obj(2))
        with pytest.raises(ValueError, match="target dimension"):
            diagram.add_edge("a", "b", vect.morphism(vect.obj(1), vect.obj(1), [[1]]))


# =============================================================================
# CAPABILITIES / FLAVORS
# =============================================================================

class TestCapabilities:
    def test_vector_spaces_capabilities(self, vect):
        caps = capabilities_of(vect)
        assert Capability.HAS_LIMITS in caps
        assert Capability.SHEAF_CONDITION in caps
        assert Capability.STALK_LOCAL not in caps

    def test_algebras_have_local_objects(self, calg):
        assert capabilities_of(calg) == Flavor.LOCALLY_RINGED.requirements

    def test_locally_ringed_needs_locality(self, vect):
        with pytest.raises(CapabilityMismatchError) as exc:
            require_capabilities(vect, Flavor.LOCALLY_RINGED)
        assert exc.value.missing == (Capability.STALK_LOCAL,)
        assert exc.value.flavor is Flavor.LOCALLY_RINGED

    def test_plain_object_has_no_capabilities(self):
        with pytest.raises(CapabilityMismatchError, match="has_limits"):
            require_capabilities(object(), Flavor.PRESHEAFED)

    def test_flavor_requirements_nest(self):
        assert Flavor.PRESHEAFED.requirements < Flavor.SHEAFED.requirements
        assert Flavor.SHEAFED.requirements < Flavor.LOCALLY_RINGED.requirements
        assert not Flavor.PRESHEAFED.enforces_sheaf_condition
        assert Flavor.LOCALLY_RINGED.requires_local_stalks


# =============================================================================
# ALGEBRAS
# =============================================================================

class TestAlgebras:
    def test_dual_numbers_axioms(self):
        assert AlgebraObject.dual_numbers().verify_axioms() == []
        assert AlgebraObject.split(3).verify_axioms() == []

    def test_non_commutative_table_rejected(self):
        with pytest.raises(ValueError, match="not commutative"):
            AlgebraObject.from_table(
                [[[1, 0], [0, 1]], [[1, 0], [0, 0]]], [1, 0],
            )

    def test_radical_of_dual_numbers(self):
        rad = AlgebraObject.dual_numbers().radical_basis()
        assert rad.shape == (2, 1)
        assert rad[0, 0] == 0 and rad[1, 0] != 0

    def test_locality(self, calg):
        assert calg.is_local(AlgebraObject.dual_numbers())
        assert calg.is_local(AlgebraObject.rationals())
        assert calg.is_local(AlgebraObject.truncated_polynomial(3))
        assert not calg.is_local(AlgebraObject.split(2))
        assert not calg.is_local(AlgebraObject.zero())

    def test_local_homomorphisms(self, calg):
        dual, q = AlgebraObject.dual_numbers(), AlgebraObject.rationals()
        kill_eps = calg.morphism(dual, q, [[1, 0]])
        assert calg.is_algebra_hom(kill_eps)
        assert calg.is_local_hom(kill_eps)
        eps_to_unit = calg.morphism(dual, dual, [[1, 1], [0, 0]])
        assert not calg.is_local_hom(eps_to_unit)

    def test_limit_apex_is_an_algebra(self, calg):
        dual, q = AlgebraObject.dual_numbers(), AlgebraObject.rationals()
        diagram = Diagram()
        diagram.add_vertex("c", dual)
        diagram.add_vertex("η", q)
        diagram.add_edge("c", "η", calg.morphism(dual, q, [[1, 0]]))
        cone = calg.limit(diagram)
        assert isinstance(cone.apex, AlgebraObject)
        assert cone.apex.dimension == 2
        assert cone.apex.verify_axioms() == []
        assert calg.is_local(cone.apex)
        for leg in cone.legs.values():
            assert calg.is_algebra_hom(leg)

    def test_empty_limit_is_zero_algebra(self, calg):
        assert calg.limit(Diagram()).apex == AlgebraObject.zero()
