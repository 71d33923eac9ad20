"""
sheaf_gluing: gluing structured spaces from an atlas of charts.

    glue = GlueData.from_open_subsets(...)
    X = GluedSpaceBuilder(glue, GluingConfig(flavor=Flavor.SHEAFED)).build()
    X.is_open_immersion(i); X.is_pullback(i, j); X.jointly_surjective()
"""

from .builder import GluedPresheaf, GluedSpace, GluedSpaceBuilder
from .categories import (
    AlgebraObject,
    AlgebraicCategory,
    Capability,
    CapabilityMismatchError,
    CategoricalError,
    Cone,
    Diagram,
    Flavor,
    HasLimits,
    HasLocalObjects,
    LimitComputationError,
    Morphism,
    NotIsomorphismError,
    RationalAlgebras,
    RationalVectorSpaces,
    VectorSpaceObject,
    capabilities_of,
    require_capabilities,
)
from .config import GluingConfig
from .exact_linalg import InconsistentSystemError
from .glue_data import GlueAxiom, GlueData, GlueDataViolation, identity_transition
from .section_inverter import (
    NaturalityObligationError,
    SectionInverse,
    SectionInversionError,
    SectionInverter,
)
from .spaces import (
    ContinuityError,
    ContinuousMap,
    FiniteSpace,
    OpenImmersionError,
    Presheaf,
    PresheafLawViolation,
    PullbackCone,
    SheafConditionViolation,
    SpaceHom,
    StructuredSpace,
    TopologyError,
    check_sheaf_condition,
    coequalize,
    compose,
    disjoint_union,
    is_sheaf,
    lift_through_open_immersion,
    pullback_of_open_immersions,
)
from .verifiers import (
    IntersectionVerifier,
    OpenImmersionCertificate,
    OpenImmersionVerifier,
    PullbackCertificate,
    PullbackLiftError,
    SurjectivityCertificate,
    SurjectivityChecker,
)

__version__ = "0.1.0"
