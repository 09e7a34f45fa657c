'''
This module defines `BandedMatrix`, a fixed-bandwidth container for the
compressed views of the matrices in a `GPCov` bundle, and `mat2band`, which
builds a `BandedMatrix` from a dense array.

A matrix :math:`A` with lower bandwidth :math:`l` and upper bandwidth
:math:`u` has :math:`A_{ij} = 0` whenever :math:`i - j > l` or
:math:`j - i > u`. The nonzero diagonals are stored in the LAPACK band layout
used by `scipy.linalg.solve_banded`,

.. math::
    \\mathrm{ab}[u + i - j, j] = A_{ij},

which takes :math:`O(n(l + u + 1))` memory. Entries of `ab` that do not
correspond to an entry of :math:`A` are zero.

Examples
--------
>>> import numpy as np
>>> from magi.banded import mat2band
>>> A = np.arange(1.0, 17.0).reshape(4, 4, order='F')
>>> B = mat2band(A, 2, 1)
>>> B[2, 0], B[3, 0], B[0, 1], B[0, 2]
(3.0, 0.0, 5.0, 0.0)

'''
import logging

import numpy as np
import scipy.sparse as sp
from scipy.linalg import solve_banded

from magi.utils import assert_shape

LOGGER = logging.getLogger(__name__)


def _check_bandwidth(value, label):
    if isinstance(value, (bool, np.bool_)) or not isinstance(
            value, (int, np.integer)):
        raise ValueError('`%s` must be an integer.' % label)

    if value < 0:
        raise ValueError('`%s` must be non-negative.' % label)

    return int(value)


class BandedMatrix:
    '''
    A matrix which is zero outside of a fixed band around its main diagonal.

    Parameters
    ----------
    data : (lower + upper + 1, M) float array
        The band of the matrix in LAPACK band storage, where
        `data[upper + i - j, j]` is the entry in row `i` and column `j`.

    shape : 2-tuple of int
        Shape of the matrix, `(N, M)`.

    bandwidths : 2-tuple of int
        Lower and upper bandwidth, `(lower, upper)`.

    '''
    def __init__(self, data, shape, bandwidths):
        lower, upper = bandwidths
        lower = _check_bandwidth(lower, 'lower')
        upper = _check_bandwidth(upper, 'upper')
        nrows, ncols = (int(i) for i in shape)
        data = np.asarray(data, dtype=float)
        assert_shape(data, (lower + upper + 1, ncols), 'data')
        self._data = data
        self._shape = (nrows, ncols)
        self._bandwidths = (lower, upper)

    @property
    def data(self):
        return self._data

    @property
    def shape(self):
        return self._shape

    @property
    def bandwidths(self):
        return self._bandwidths

    @property
    def T(self):
        '''The transpose, which swaps the lower and upper bandwidths.'''
        lower, upper = self._bandwidths
        return mat2band(self.toarray().T, upper, lower)

    def __repr__(self):
        return '<%s: shape=%s, bandwidths=%s>' % (
            type(self).__name__, self._shape, self._bandwidths
            )

    def __getitem__(self, key):
        if (isinstance(key, tuple) and
            len(key) == 2 and
            all(isinstance(k, (int, np.integer)) for k in key)):
            i, j = key
            nrows, ncols = self._shape
            if not ((-nrows <= i < nrows) and (-ncols <= j < ncols)):
                raise IndexError(
                    'index %s is out of bounds for a matrix with shape %s'
                    % (key, self._shape)
                    )

            i, j = i % nrows, j % ncols
            lower, upper = self._bandwidths
            if (i - j > lower) or (j - i > upper):
                return 0.0

            return float(self._data[upper + i - j, j])

        return self.toarray()[key]

    def __array__(self, dtype=None, copy=None):
        out = self.toarray()
        if dtype is not None:
            out = out.astype(dtype)

        return out

    def in_band(self, i, j):
        '''Returns `True` if the entry `(i, j)` lies within the band.'''
        lower, upper = self._bandwidths
        return (i - j <= lower) & (j - i <= upper)

    def _diagonals(self):
        # yields the offset `k = i - j` and the row and column indices of each
        # stored diagonal
        nrows, ncols = self._shape
        lower, upper = self._bandwidths
        for k in range(-upper, lower + 1):
            if k >= 0:
                size = max(min(nrows - k, ncols), 0)
                cols = np.arange(size)
            else:
                size = max(min(nrows, ncols + k), 0)
                cols = np.arange(size) - k

            yield k, cols + k, cols

    def toarray(self):
        '''
        Returns the matrix as a dense array.

        Returns
        -------
        (N, M) float array

        '''
        upper = self._bandwidths[1]
        out = np.zeros(self._shape, dtype=float)
        for k, rows, cols in self._diagonals():
            out[rows, cols] = self._data[upper + k, cols]

        return out

    def diagonal(self, k=0):
        '''
        Returns the diagonal with column offset `k`. Diagonals outside the band
        are zeros.
        '''
        return np.diagonal(self.toarray(), offset=k).copy()

    def todia(self):
        '''
        Returns the matrix as a `scipy.sparse.dia_matrix`.
        '''
        lower, upper = self._bandwidths
        offsets = np.arange(upper, -lower - 1, -1)
        return sp.dia_matrix((self._data, offsets), shape=self._shape)

    def dot(self, x):
        '''
        Returns the product of the matrix with `x`.

        Parameters
        ----------
        x : (M, ...) array

        Returns
        -------
        (N, ...) array

        '''
        x = np.asarray(x, dtype=float)
        assert_shape(x, (self._shape[1], ...), 'x')
        return self.todia().tocsr().dot(x)

    def solve(self, b):
        '''
        Solves `Ax = b` for `x` with `scipy.linalg.solve_banded`. The matrix
        must be square.

        Parameters
        ----------
        b : (N, ...) array

        Returns
        -------
        (N, ...) array

        '''
        nrows, ncols = self._shape
        if nrows != ncols:
            raise ValueError('Only square banded matrices can be solved.')

        b = np.asarray(b, dtype=float)
        assert_shape(b, (nrows, ...), 'b')
        # bandwidths larger than the matrix would be rejected by LAPACK
        lower, upper = self._bandwidths
        lower_clip = min(lower, max(nrows - 1, 0))
        upper_clip = min(upper, max(nrows - 1, 0))
        ab = self._data[upper - upper_clip:upper + lower_clip + 1]
        return solve_banded((lower_clip, upper_clip), ab, b)

    def allclose(self, other, **kwargs):
        '''
        Returns `True` if the dense form of this matrix is elementwise close
        to `other`, which can be an array or a `BandedMatrix`.
        '''
        return np.allclose(self.toarray(), np.asarray(other), **kwargs)


def mat2band(A, lower, upper):
    '''
    Compresses the dense matrix `A` into a `BandedMatrix` with the given lower
    and upper bandwidths. Entries of `A` outside the band are discarded and
    entries inside the band are copied exactly.

    Parameters
    ----------
    A : (N, M) array

    lower : int
        Number of subdiagonals to keep.

    upper : int
        Number of superdiagonals to keep.

    Returns
    -------
    BandedMatrix

    '''
    A = np.asarray(A, dtype=float)
    assert_shape(A, (None, None), 'A')
    lower = _check_bandwidth(lower, 'lower')
    upper = _check_bandwidth(upper, 'upper')

    nrows, ncols = A.shape
    data = np.zeros((lower + upper + 1, ncols), dtype=float)
    out = BandedMatrix(data, (nrows, ncols), (lower, upper))
    for k, rows, cols in out._diagonals():
        data[upper + k, cols] = A[rows, cols]

    LOGGER.debug(
        'Compressed a %s by %s matrix to bandwidths (%s, %s).'
        % (nrows, ncols, lower, upper)
        )
    return out
