'''
Module that defines the dense solvers used to invert the covariance matrices
built in `magi.gpcov`. Positive definite matrices are factored with a Cholesky
decomposition. When that fails, for example because rounding error leaves a
jittered covariance matrix slightly indefinite, the matrix is factored with an
LU decomposition instead. A matrix that is exactly singular raises a
`numpy.linalg.LinAlgError`.
'''
import logging
import warnings

import numpy as np
from scipy.linalg import LinAlgWarning
from scipy.linalg.lapack import (
    dpotrf, dpotrs, dtrtrs, dgetrf, dgetrs, dgecon, dlange, dlamch
    )

from magi.utils import assert_shape

LOGGER = logging.getLogger(__name__)


## Wrappers for low level LAPACK functions.
###############################################################################
def _lu(A, check_cond):
    '''
    Computes the LU factorization of `A` using `dgetrf`.
    '''
    if A.shape == (0, 0):
        return (np.zeros((0, 0), dtype=float), np.zeros((0,), dtype=np.int32))

    if check_cond:
        # Check the condition number of `A` using the same warning criteria as
        # `scipy.linalg.solve`.
        A_norm = dlange('1', A)

    fac, piv, info = dgetrf(A)
    if info < 0:
        raise ValueError('the %s-th argument had an illegal value.' % -info)
    elif info > 0:
        raise np.linalg.LinAlgError('Singular matrix.')

    if check_cond:
        rcond, _ = dgecon(fac, A_norm, norm='1')
        tol = dlamch('E')
        if rcond < tol:
            warnings.warn(
                "Ill-conditioned matrix (rcond=%.6g). The solution "
                "may not be accurate." % rcond,
                LinAlgWarning
                )

    return fac, piv


def _cholesky(A):
    '''
    Computes the Cholesky decomposition of `A` using `dpotrf`.
    '''
    if A.shape == (0, 0):
        return np.zeros((0, 0), dtype=float)

    L, info = dpotrf(A, lower=True, clean=True)
    if info < 0:
        raise ValueError('The %s-th argument has an illegal value.' % -info)
    elif info > 0:
        raise np.linalg.LinAlgError('Matrix not positive definite.')

    return L


def _solve_lu(fac, piv, b):
    '''
    Solves `Ax = b` given the LU factorization of `A` using `dgetrs`.
    '''
    if any(i == 0 for i in b.shape):
        return np.zeros(b.shape, dtype=float)

    x, info = dgetrs(fac, piv, b)
    if info < 0:
        raise ValueError('the %s-th argument had an illegal value.' % -info)

    return x


def _solve_cholesky(L, b):
    '''
    Solves `Ax = b` given the Cholesky decomposition of `A` using `dpotrs`.
    '''
    if any(i == 0 for i in b.shape):
        return np.zeros(b.shape, dtype=float)

    x, info = dpotrs(L, b, lower=True)
    if info < 0:
        raise ValueError('The %s-th argument has an illegal value.' % -info)

    return x


def _solve_triangular(L, b):
    '''
    Solves `Lx = b` for a lower triangular `L` using `dtrtrs`.
    '''
    if any(i == 0 for i in b.shape):
        return np.zeros(b.shape, dtype=float)

    x, info = dtrtrs(L, b, lower=True)
    if info < 0:
        raise ValueError('The %s-th argument had an illegal value.' % -info)
    elif info > 0:
        raise np.linalg.LinAlgError('Singular matrix.')

    return x


#####################################################################
def as_square_array(A, label='A'):
    '''
    Returns `A` as a square 2-D float array.
    '''
    A = np.asarray(A, dtype=float)
    assert_shape(A, (None, None), label)
    assert_shape(A, (A.shape[0], A.shape[0]), label)
    return A


class Solver:
    '''
    Dense matrix solver using an LAPACK LU factorization.

    Parameters
    ----------
    A : (n, n) array

    build_inverse : bool, optional
        If `True`, the inverse of `A` is built, which makes subsequent calls to
        `solve` faster.

    check_cond : bool, optional
        If `True`, a `LinAlgWarning` is raised if `A` is ill-conditioned.

    '''
    def __init__(self, A, build_inverse=False, check_cond=False):
        A = as_square_array(A)
        self.fac, self.piv = _lu(A, check_cond=check_cond)
        self.n = A.shape[0]
        if build_inverse:
            self._inverse = _solve_lu(self.fac, self.piv, np.eye(self.n))
        else:
            self._inverse = None

    def solve(self, b):
        '''
        Solves `Ax = b` for `x`.

        Parameters
        ----------
        b : (n, ...) array

        Returns
        -------
        (n, ...) array

        '''
        b = np.asarray(b, dtype=float)
        if self._inverse is not None:
            return self._inverse.dot(b)
        else:
            return _solve_lu(self.fac, self.piv, b)

    def inverse(self):
        '''Returns the inverse of `A`.'''
        if self._inverse is None:
            self._inverse = _solve_lu(self.fac, self.piv, np.eye(self.n))

        return self._inverse


class PosDefSolver:
    '''
    Dense positive definite matrix solver.

    Factors the positive definite matrix `A` as `LL^T = A` and provides an
    efficient method for solving `Ax = b` for `x`. Additionally provides a
    method to solve `Lx = b`, get the log determinant of `A`, and get `L`.

    Parameters
    ----------
    A : (n, n) array
        Positive definite matrix. Only the lower triangle is referenced.

    build_inverse : bool, optional
        If `True`, the inverse of `A` is built, which makes subsequent calls to
        `solve` faster.

    '''
    def __init__(self, A, build_inverse=False):
        A = as_square_array(A)
        self.chol = _cholesky(A)
        self.n = A.shape[0]
        if build_inverse:
            self._inverse = _solve_cholesky(self.chol, np.eye(self.n))
        else:
            self._inverse = None

    def solve(self, b):
        '''
        Solves `Ax = b` for `x`.

        Parameters
        ----------
        b : (n, ...) array

        Returns
        -------
        (n, ...) array

        '''
        b = np.asarray(b, dtype=float)
        if self._inverse is not None:
            return self._inverse.dot(b)
        else:
            return _solve_cholesky(self.chol, b)

    def solve_L(self, b):
        '''
        Solves `Lx = b` for `x`, where `L` is the Cholesky decomposition.
        '''
        b = np.asarray(b, dtype=float)
        return _solve_triangular(self.chol, b)

    def L(self):
        '''Returns the Cholesky decomposition of `A`.'''
        return self.chol

    def log_det(self):
        '''Returns the log determinant of `A`.'''
        return 2*np.sum(np.log(np.diag(self.chol)))

    def inverse(self):
        '''Returns the inverse of `A`.'''
        if self._inverse is None:
            self._inverse = _solve_cholesky(self.chol, np.eye(self.n))

        return self._inverse


def is_positive_definite(A):
    '''
    Tests if `A` is positive definite. This is done by testing whether the
    Cholesky decomposition finishes successfully. Only the lower triangle of
    `A` is referenced, so `A` should be symmetric.
    '''
    try:
        PosDefSolver(A)
    except np.linalg.LinAlgError:
        return False

    return True


def robust_inverse(A):
    '''
    Returns the inverse of the symmetric matrix `A`.

    The inverse is first computed from the Cholesky decomposition of `A`. If
    `A` is not numerically positive definite then the inverse is computed from
    an LU decomposition, and a `LinAlgWarning` is raised if `A` is
    ill-conditioned. The returned inverse is symmetrized.

    Parameters
    ----------
    A : (n, n) array

    Returns
    -------
    (n, n) array

    Raises
    ------
    numpy.linalg.LinAlgError
        If `A` is singular.

    '''
    A = as_square_array(A)
    try:
        out = PosDefSolver(A).inverse()
    except np.linalg.LinAlgError:
        LOGGER.debug(
            'Cholesky decomposition of a %s by %s matrix failed. Falling back '
            'to an LU decomposition.' % A.shape
            )
        out = Solver(A, check_cond=True).inverse()

    if not np.all(np.isfinite(out)):
        raise np.linalg.LinAlgError(
            'The inverse contains non-finite values. The matrix is '
            'numerically singular.'
            )

    out = 0.5*(out + out.T)
    return out


def condition_number(A):
    '''
    Returns the 2-norm condition number of the symmetric matrix `A`.
    '''
    A = as_square_array(A)
    if A.shape == (0, 0):
        return 1.0

    vals = np.abs(np.linalg.eigvalsh(A))
    if vals.min() == 0.0:
        return np.inf

    return vals.max()/vals.min()
