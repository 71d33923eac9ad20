"""
精确线性代数 (Exact Linear Algebra over Q)

All matrices are numpy object arrays whose entries are ``fractions.Fraction``.
The gluing layer decides isomorphisms, kernels and factorisations through
limits, so every answer here must be exact:

- 禁止浮点: float / complex entries are rejected, never rounded.
- 禁止静默降级: an inconsistent system raises, it never returns a
  least-squares guess.
- Empty shapes (0 x n, n x 0) are first-class; limits of empty diagrams and
  sections over the empty open produce them constantly.
"""

from __future__ import annotations

from fractions import Fraction
from typing import Any, List, Sequence, Tuple

import numpy as np


class InconsistentSystemError(ValueError):
    """A x = B has no solution."""


# ============================================================================
# Section 0: 构造与强制转换
# ============================================================================

def _as_fraction_strict(x: Any, *, name: str = "entry") -> Fraction:
    """Convert a rational-like scalar to Fraction, rejecting float/complex."""
    if isinstance(x, Fraction):
        return x
    if isinstance(x, bool):
        raise TypeError(f"{name} must be rational, got bool {x!r}")
    if isinstance(x, (int, np.integer)):
        return Fraction(int(x))
    if isinstance(x, str):
        return Fraction(x)
    if isinstance(x, (float, complex, np.floating, np.complexfloating)):
        raise TypeError(f"{name}: float/complex forbidden in exact arithmetic, got {x!r}")
    raise TypeError(f"{name} must be int/Fraction/str, got {type(x).__name__}")


def matrix(data: Any, shape: Tuple[int, int] = None) -> np.ndarray:
    """Build an object array of Fractions.

    ``shape`` is required when ``data`` is empty, since numpy cannot infer
    the column count of ``[]``.
    """
    if isinstance(data, np.ndarray) and data.dtype == object and data.ndim == 2:
        rows, cols = data.shape
        out = np.empty((rows, cols), dtype=object)
        for r in range(rows):
            for c in range(cols):
                out[r, c] = _as_fraction_strict(data[r, c], name=f"[{r},{c}]")
        return out
    rows_list = [list(row) for row in data]
    if not rows_list:
        if shape is None:
            raise ValueError("empty matrix data requires an explicit shape")
        return zeros(*shape)
    n_cols = len(rows_list[0])
    if any(len(row) != n_cols for row in rows_list):
        raise ValueError("ragged matrix data")
    out = np.empty((len(rows_list), n_cols), dtype=object)
    for r, row in enumerate(rows_list):
        for c, value in enumerate(row):
            out[r, c] = _as_fraction_strict(value, name=f"[{r},{c}]")
    if shape is not None and out.shape != tuple(shape):
        raise ValueError(f"matrix shape {out.shape} does not match declared shape {shape}")
    return out


def zeros(rows: int, cols: int) -> np.ndarray:
    out = np.empty((rows, cols), dtype=object)
    out.fill(Fraction(0))
    return out


def identity(n: int) -> np.ndarray:
    out = zeros(n, n)
    for k in range(n):
        out[k, k] = Fraction(1)
    return out


def column(values: Sequence[Any]) -> np.ndarray:
    return matrix([[v] for v in values], shape=(len(values), 1))


# ============================================================================
# Section 1: 基本运算
# ============================================================================

def matmul(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """a @ b with exact entries; empty inner dimension yields the zero matrix."""
    if a.shape[1] != b.shape[0]:
        raise ValueError(f"Cannot multiply: shapes {a.shape} and {b.shape}")
    rows, inner, cols = a.shape[0], a.shape[1], b.shape[1]
    out = zeros(rows, cols)
    if inner == 0 or rows == 0 or cols == 0:
        return out
    for r in range(rows):
        for c in range(cols):
            acc = Fraction(0)
            for k in range(inner):
                x = a[r, k]
                if x:
                    y = b[k, c]
                    if y:
                        acc += x * y
            out[r, c] = acc
    return out


def equal(a: np.ndarray, b: np.ndarray) -> bool:
    if a.shape != b.shape:
        return False
    return all(a[idx] == b[idx] for idx in np.ndindex(a.shape))


def is_zero(a: np.ndarray) -> bool:
    return all(a[idx] == 0 for idx in np.ndindex(a.shape))


def vstack(blocks: Sequence[np.ndarray], cols: int) -> np.ndarray:
    """Stack blocks vertically; ``cols`` fixes the width when there are no blocks."""
    total = sum(block.shape[0] for block in blocks)
    out = zeros(total, cols)
    offset = 0
    for block in blocks:
        if block.shape[1] != cols:
            raise ValueError(f"vstack: block width {block.shape[1]} != {cols}")
        out[offset:offset + block.shape[0], :] = block
        offset += block.shape[0]
    return out


def hstack(blocks: Sequence[np.ndarray], rows: int) -> np.ndarray:
    total = sum(block.shape[1] for block in blocks)
    out = zeros(rows, total)
    offset = 0
    for block in blocks:
        if block.shape[0] != rows:
            raise ValueError(f"hstack: block height {block.shape[0]} != {rows}")
        out[:, offset:offset + block.shape[1]] = block
        offset += block.shape[1]
    return out


# ============================================================================
# Section 2: 行化简 / 核 / 求解
# ============================================================================

def rref(a: np.ndarray) -> Tuple[np.ndarray, List[int]]:
    """Reduced row echelon form and pivot columns (Gauss-Jordan over Q)."""
    work = a.copy()
    n_rows, n_cols = work.shape
    pivots: List[int] = []
    row = 0
    for col in range(n_cols):
        if row >= n_rows:
            break
        pivot = None
        for r in range(row, n_rows):
            if work[r, col] != 0:
                pivot = r
                break
        if pivot is None:
            continue
        if pivot != row:
            work[[row, pivot], :] = work[[pivot, row], :]
        inv = 1 / work[row, col]
        for c in range(n_cols):
            work[row, c] = work[row, c] * inv
        for r in range(n_rows):
            if r == row:
                continue
            factor = work[r, col]
            if factor == 0:
                continue
            for c in range(n_cols):
                work[r, c] = work[r, c] - factor * work[row, c]
        pivots.append(col)
        row += 1
    return work, pivots


def rank(a: np.ndarray) -> int:
    if a.size == 0:
        return 0
    return len(rref(a)[1])


def nullspace(a: np.ndarray) -> np.ndarray:
    """Basis of ker(a) as the columns of an (n_cols x k) matrix.

    The basis is the standard one read off the rref (one vector per free
    column), so repeated calls on equal input give identical output.
    """
    n_cols = a.shape[1]
    if a.shape[0] == 0:
        return identity(n_cols)
    reduced, pivots = rref(a)
    free = [c for c in range(n_cols) if c not in pivots]
    basis = zeros(n_cols, len(free))
    for k, f in enumerate(free):
        basis[f, k] = Fraction(1)
        for r, p in enumerate(pivots):
            basis[p, k] = -reduced[r, f]
    return basis


def solve(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """A particular solution X of a @ X = b.

    Unique whenever ``a`` has full column rank, which is the only case the
    limit machinery relies on.
    """
    n_rows, n_cols = a.shape
    if b.shape[0] != n_rows:
        raise ValueError(f"solve: a is {a.shape}, b is {b.shape}")
    k = b.shape[1]
    if n_rows == 0:
        return zeros(n_cols, k)
    augmented = hstack([a, b], n_rows)
    reduced, pivots = rref(augmented)
    if any(p >= n_cols for p in pivots):
        raise InconsistentSystemError("Linear system is inconsistent")
    out = zeros(n_cols, k)
    for r, p in enumerate(pivots):
        for c in range(k):
            out[p, c] = reduced[r, n_cols + c]
    return out


def inverse(a: np.ndarray) -> np.ndarray:
    n_rows, n_cols = a.shape
    if n_rows != n_cols:
        raise InconsistentSystemError(f"non-square matrix {a.shape} has no inverse")
    if rank(a) != n_rows:
        raise InconsistentSystemError("singular matrix has no inverse")
    return solve(a, identity(n_rows))


def is_invertible(a: np.ndarray) -> bool:
    return a.shape[0] == a.shape[1] and rank(a) == a.shape[0]
