"""
Tests for GluedSpaceBuilder, the section inverter and the certificates.

These tests verify:
1. Point sets and global sections of the standard atlases
2. ι(i) is an open immersion; section isomorphisms round-trip on every open
3. V(i,j) is the pullback of ι(i), ι(j) and its universal lift
4. The charts cover X
5. Flavor / capability failures and the naturality obligation
"""

import re
from fractions import Fraction

import pytest

from sheaf_gluing.builder import GluedSpaceBuilder
from sheaf_gluing.categories import (
    AlgebraObject,
    CapabilityMismatchError,
    Flavor,
    RationalAlgebras,
    RationalVectorSpaces,
)
from sheaf_gluing.config import GluingConfig
from sheaf_gluing.glue_data import GlueData, GlueDataViolation
from sheaf_gluing.section_inverter import NaturalityObligationError
from sheaf_gluing.spaces import (
    ContinuityError,
    ContinuousMap,
    FiniteSpace,
    Presheaf,
    SheafConditionViolation,
    SpaceHom,
    StructuredSpace,
    check_sheaf_condition,
)
from sheaf_gluing.standard_atlases import (
    GENERIC,
    ORIGIN,
    doubled_origin,
    empty,
    line_space,
    projective_line,
    single_chart,
    three_point,
)
from sheaf_gluing.verifiers import PullbackLiftError


# =============================================================================
# TEST FIXTURES
# =============================================================================

TWO, HALF, ONE = Fraction(2), Fraction(1, 2), Fraction(1)
HEX64 = re.compile(r"^[0-9a-f]{64}$")


class ConstantPresheaf(Presheaf):
    """Q on every open, identity restrictions; not a sheaf."""

    def __init__(self, space):
        cat = RationalVectorSpaces()
        super().__init__(space, cat, name="const")
        self._obj = cat.obj(1)

    def _compute_sections(self, W):
        return self._obj

    def _compute_restriction(self, W, V):
        return self.category.identity(self._obj)


def build(glue, flavor=Flavor.PRESHEAFED, **kwargs):
    return GluedSpaceBuilder(glue, GluingConfig(flavor=flavor, **kwargs)).build()


def constant_chart_glue():
    S = FiniteSpace.discrete(["a", "b"], name="S")
    chart = StructuredSpace(S, ConstantPresheaf(S), name="S")
    return GlueData.from_open_subsets((0,), chart.category, {0: chart}, overlap_opens={}, name="constant")


def point_algebra_chart(algebra):
    cat = RationalAlgebras()
    space = FiniteSpace({"*": {"*"}}, name="P")
    presheaf = Presheaf.from_stalks(space, cat, {"*": algebra}, {}, name="O[P]")
    return StructuredSpace(space, presheaf, name="P")


@pytest.fixture
def doubled():
    return build(doubled_origin())


@pytest.fixture
def p1():
    return build(projective_line())


# =============================================================================
# TOPOLOGY AND SECTIONS
# =============================================================================

class TestGluedSpace:
    def test_doubled_origin_points(self, doubled):
        iota0, iota1 = doubled.chart_maps[0], doubled.chart_maps[1]
        assert len(doubled.space.space) == 6
        assert iota0(ORIGIN) != iota1(ORIGIN)
        assert iota0(TWO) == iota1(TWO)
        assert iota0(GENERIC) == iota1(GENERIC)

    def test_projective_line_points(self, p1):
        iota0, iota1 = p1.chart_maps[0], p1.chart_maps[1]
        assert len(p1.space.space) == 6
        assert iota0(TWO) == iota1(HALF)
        assert iota0(ONE) == iota1(ONE)
        assert iota0(ORIGIN) != iota1(ORIGIN)

    @pytest.mark.parametrize("factory,dimension", [
        (doubled_origin, 6),
        (projective_line, 6),
        (single_chart, 5),
        (three_point, 1),
    ])
    def test_global_sections(self, factory, dimension):
        X = build(factory()).space
        assert X.sections(X.points).dimension == dimension

    def test_single_chart_iota_is_iso(self):
        glued = build(single_chart())
        assert len(glued.space.space) == 5
        assert glued.iota(0).is_iso()

    def test_empty_atlas(self):
        glued = build(empty())
        assert len(glued.space.space) == 0
        assert glued.space.sections(frozenset()).dimension == 0
        cert = glued.jointly_surjective()
        assert cert.holds and cert.witnesses == ()

    def test_unknown_index(self, doubled):
        with pytest.raises(KeyError):
            doubled.iota(5)

    @pytest.mark.parametrize("pair", [(0, 0), (0, 1), (1, 0)])
    def test_overlap_square_commutes(self, p1, pair):
        assert p1.overlap_square_commutes(*pair)

    def test_desc_points_collapses_doubled_origin(self, doubled):
        L = line_space("T")
        maps = {i: ContinuousMap(doubled.glue.chart(i).space, L, lambda p: p) for i in (0, 1)}
        h = doubled.desc_points(maps, L)
        assert h(doubled.chart_maps[0](ORIGIN)) == ORIGIN
        assert h(doubled.chart_maps[1](ORIGIN)) == ORIGIN

    def test_desc_points_requires_agreement_on_overlaps(self, p1):
        L = line_space("T")
        maps = {i: ContinuousMap(p1.glue.chart(i).space, L, lambda p: p) for i in (0, 1)}
        with pytest.raises(ContinuityError, match="does not coequalize"):
            p1.desc_points(maps, L)

    def test_pruned_diagram_over_empty_open(self):
        sheafed = build(doubled_origin(), Flavor.SHEAFED)
        presheafed = build(doubled_origin())
        assert len(sheafed.presheaf.limit(frozenset())[0]) == 0
        assert len(presheafed.presheaf.limit(frozenset())[0]) == 4

    def test_glued_presheaf_is_a_sheaf(self):
        glued = build(projective_line(), Flavor.SHEAFED)
        check_sheaf_condition(glued.presheaf)
        assert glued.presheaf.verify_functoriality() == []


# =============================================================================
# SECTION INVERTER / OPEN IMMERSIONS
# =============================================================================

class TestSectionInverter:
    @pytest.mark.parametrize("i", [0, 1])
    def test_round_trip_on_every_open(self, p1, i):
        cat = p1.glue.category
        iota = p1.iota(i)
        for U in p1.glue.chart(i).space.opens():
            inverse = p1.section_isomorphism(i, U)
            restriction = iota.app(iota.base.image(U))
            assert cat.equal(cat.compose(restriction, inverse), cat.identity(p1.glue.chart(i).sections(U)))
            assert p1.inverter.is_discharged(i, U)

    def test_cache_returns_same_object(self, doubled):
        U = frozenset({GENERIC, ORIGIN})
        first = doubled.inverter.inversion(0, U)
        assert doubled.inverter.inversion(0, U) is first
        assert first.image == doubled.chart_maps[0].image(U)

    def test_cache_disabled(self):
        glued = build(doubled_origin(), cache_sections=False)
        U = frozenset({GENERIC})
        assert glued.inverter.inversion(0, U) is not glued.inverter.inversion(0, U)

    def test_cocycle_failure_surfaces_as_naturality(self):
        glued = build(three_point({(0, 1): 2, (1, 2): 3, (2, 0): 1}), validate_on_build=False)
        with pytest.raises(NaturalityObligationError, match="cocycle") as exc:
            glued.section_isomorphism(0, {"*"})
        assert exc.value.chart == 0
        assert exc.value.edges
        cert = glued.is_open_immersion(0)
        assert not cert
        assert [name for name, _, _ in cert.failures()] == ["sections_bijective"]


# =============================================================================
# CERTIFICATES
# =============================================================================

class TestCertificates:
    @pytest.mark.parametrize("factory", [doubled_origin, projective_line, three_point])
    def test_every_chart_is_an_open_immersion(self, factory):
        glued = build(factory())
        for i in glued.glue.indices:
            cert = glued.is_open_immersion(i)
            assert cert
            assert HEX64.match(cert.digest)
            assert cert.opens_checked == len(glued.glue.chart(i).space.opens())

    def test_digests_reproducible_across_builds(self):
        a = build(projective_line(twist=True))
        b = build(projective_line(twist=True))
        assert a.is_open_immersion(1).digest == b.is_open_immersion(1).digest
        assert a.is_pullback(0, 1).to_dict() == b.is_pullback(0, 1).to_dict()
        assert a.jointly_surjective().digest == b.jointly_surjective().digest

    def test_certificate_is_memoised(self, p1):
        assert p1.is_open_immersion(0) is p1.is_open_immersion(0)
        assert p1.is_open_immersion(0).subject == "ι(0)"

    @pytest.mark.parametrize("pair", [(0, 0), (0, 1), (1, 0), (1, 1)])
    def test_overlaps_are_pullbacks(self, p1, pair):
        cert = p1.is_pullback(*pair)
        assert cert, cert.failures()
        assert {name for name, _, _ in cert.checks} == {
            "square_commutes", "image_is_intersection", "comparison_iso", "second_leg_agrees",
        }

    def test_pullback_lift_of_the_overlap_itself(self, p1):
        glue = p1.glue
        lifted = p1.pullback_lift(0, 1, glue.f(0, 1), glue.second_leg(0, 1))
        assert lifted.equals(glue.overlap(0, 1).identity())

    def test_pullback_lift_rejects_non_cone(self, p1):
        glue = p1.glue
        with pytest.raises(PullbackLiftError, match="do not form a cone"):
            p1.pullback_lift(0, 1, glue.f(0, 1), glue.f(1, 0))

    def test_jointly_surjective(self, doubled):
        cert = doubled.jointly_surjective()
        assert cert
        assert len(cert.witnesses) == 6
        assert {chart for _, chart, _ in cert.witnesses} == {"0", "1"}


# =============================================================================
# FLAVORS
# =============================================================================

class TestFlavors:
    def test_presheafed_accepts_non_sheaf_charts(self):
        glued = build(constant_chart_glue(), validate_on_build=False)
        assert glued.space.sections(frozenset()).dimension == 1

    def test_sheafed_rejects_non_sheaf_charts(self):
        with pytest.raises(SheafConditionViolation):
            build(constant_chart_glue(), Flavor.SHEAFED, validate_on_build=False)

    def test_locally_ringed_needs_local_category(self):
        with pytest.raises(CapabilityMismatchError) as exc:
            build(doubled_origin(), Flavor.LOCALLY_RINGED)
        assert exc.value.flavor is Flavor.LOCALLY_RINGED

    def test_locally_ringed_twisted_projective_line(self):
        glued = build(projective_line(algebraic=True, twist=True), Flavor.LOCALLY_RINGED)
        assert glued.is_open_immersion(0)
        assert glued.is_open_immersion(1)
        assert glued.is_pullback(0, 1)
        X = glued.space
        assert isinstance(X.sections(X.points), AlgebraObject)

    def test_locally_ringed_rejects_non_local_stalk(self):
        chart = point_algebra_chart(AlgebraObject.split(2))
        glue = GlueData.from_open_subsets((0,), chart.category, {0: chart}, overlap_opens={})
        with pytest.raises(GlueDataViolation, match="not local"):
            build(glue, Flavor.LOCALLY_RINGED)
        build(glue, Flavor.SHEAFED)

    def test_locally_ringed_rejects_non_algebra_transition(self):
        cat = RationalAlgebras()
        dual = AlgebraObject.dual_numbers()
        doubling = cat.morphism(dual, dual, [[2, 0], [0, 2]])
        assert cat.is_local_hom(doubling)
        assert not cat.is_algebra_hom(doubling)

        def doubled_transition(i, j, V_ij, V_ji):
            if (i, j) != (0, 1):
                return None
            base = ContinuousMap(V_ij.space, V_ji.space, {"*": "*"})
            return SpaceHom.from_stalk_maps(V_ij, V_ji, base, {"*": doubling}, name="2·id")

        charts = {0: point_algebra_chart(dual), 1: point_algebra_chart(dual)}
        glue = GlueData.from_open_subsets(
            (0, 1), cat, charts, overlap_opens=lambda i, j: {"*"}, transition=doubled_transition,
        )
        glue.validate()
        with pytest.raises(GlueDataViolation, match="not an algebra homomorphism"):
            build(glue, Flavor.LOCALLY_RINGED)
