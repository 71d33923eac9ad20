"""
Tests for exact linear algebra over Q.

These tests verify:
1. Float input is rejected, never rounded
2. rref / rank / nullspace on small systems
3. solve raises on inconsistent systems
4. Empty shapes behave as zero-dimensional spaces
"""

from fractions import Fraction

import pytest

from sheaf_gluing import exact_linalg as la


class TestConstruction:
    """Matrix construction and strict coercion."""

    def test_entries_are_fractions(self):
        m = la.matrix([[1, "1/2"], [Fraction(3, 4), 0]])
        assert m.shape == (2, 2)
        assert m[0, 1] == Fraction(1, 2)
        assert all(isinstance(m[idx], Fraction) for idx in [(0, 0), (0, 1), (1, 0), (1, 1)])

    def test_float_rejected(self):
        with pytest.raises(TypeError, match="float"):
            la.matrix([[0.5]])

    def test_bool_rejected(self):
        with pytest.raises(TypeError, match="bool"):
            la.matrix([[True]])

    def test_empty_requires_shape(self):
        with pytest.raises(ValueError, match="explicit shape"):
            la.matrix([])
        assert la.matrix([], shape=(0, 3)).shape == (0, 3)

    def test_ragged_rejected(self):
        with pytest.raises(ValueError, match="ragged"):
            la.matrix([[1, 2], [3]])


class TestElimination:
    """rref, rank, nullspace, solve, inverse."""

    def test_rank_of_dependent_rows(self):
        assert la.rank(la.matrix([[1, 2], [2, 4]])) == 1
        assert la.rank(la.identity(3)) == 3
        assert la.rank(la.zeros(0, 4)) == 0

    def test_nullspace_is_annihilated(self):
        a = la.matrix([[1, 2], [2, 4]])
        basis = la.nullspace(a)
        assert basis.shape == (2, 1)
        assert basis[0, 0] == -2 and basis[1, 0] == 1
        assert la.is_zero(la.matmul(a, basis))

    def test_nullspace_without_rows_is_everything(self):
        assert la.equal(la.nullspace(la.zeros(0, 3)), la.identity(3))

    def test_solve_consistent(self):
        a = la.matrix([[2, 0], [0, 4]])
        x = la.solve(a, la.column([1, 1]))
        assert x[0, 0] == Fraction(1, 2)
        assert x[1, 0] == Fraction(1, 4)

    def test_solve_inconsistent_raises(self):
        with pytest.raises(la.InconsistentSystemError):
            la.solve(la.matrix([[1], [1]]), la.matrix([[1], [2]]))

    def test_inconsistent_is_value_error(self):
        assert issubclass(la.InconsistentSystemError, ValueError)

    def test_inverse(self):
        inv = la.inverse(la.matrix([[2, 1], [1, 1]]))
        assert la.equal(inv, la.matrix([[1, -1], [-1, 2]]))

    def test_singular_inverse_raises(self):
        with pytest.raises(la.InconsistentSystemError, match="singular"):
            la.inverse(la.matrix([[1, 2], [2, 4]]))

    def test_empty_matrix_is_invertible(self):
        assert la.is_invertible(la.zeros(0, 0))
        assert not la.is_invertible(la.zeros(0, 1))


class TestArithmetic:
    def test_matmul_with_empty_inner_dimension(self):
        out = la.matmul(la.zeros(2, 0), la.zeros(0, 3))
        assert out.shape == (2, 3)
        assert la.is_zero(out)

    def test_matmul_shape_mismatch(self):
        with pytest.raises(ValueError, match="Cannot multiply"):
            la.matmul(la.zeros(2, 2), la.zeros(3, 1))

    def test_stacking(self):
        v = la.vstack([la.identity(1), la.matrix([[5]])], 1)
        assert v.shape == (2, 1) and v[1, 0] == 5
        h = la.hstack([la.identity(2), la.column([7, 8])], 2)
        assert h.shape == (2, 3) and h[1, 2] == 8
