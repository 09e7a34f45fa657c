'''
This module builds the Gaussian process covariance quantities that are used to
constrain a Gaussian process with an ordinary differential equation. For a
Gaussian process :math:`x(t)` with covariance function :math:`k(t, t')`,
observed at the times :math:`t_1, \\ldots, t_n`, the following quantities are
computed

.. math::
    C_{ij} = k(t_i, t_j),

.. math::
    C'_{ij} = \\frac{\\partial k(t_i, t_j)}{\\partial t_i},

.. math::
    C''_{ij} = \\frac{\\partial^2 k(t_i, t_j)}{\\partial t_i \\partial t_j}.

The conditional distribution of the derivative process given :math:`x` has the
mean :math:`m_\\phi x` and covariance :math:`K_\\phi`, where

.. math::
    m_\\phi = C' C^{-1}

and

.. math::
    K_\\phi = C'' - m_\\phi C'^T.

A small jitter is added to the diagonals of :math:`C` and :math:`K_\\phi`
before they are inverted. The inverses and :math:`m_\\phi` are also compressed
to banded matrices, which is a sparse approximation used when the time grid is
dense.

The results are returned in an immutable `GPCov` instance by
`calculate_gp_covariances`.

Examples
--------
>>> import numpy as np
>>> from magi.gpcov import calculate_gp_covariances
>>> tvec = np.linspace(0.0, 1.0, 6)
>>> cov = calculate_gp_covariances('mat52', [1.5, 0.8], tvec, bandsize=2)
>>> cov.C.shape, cov.KinvBand.bandwidths
((6, 6), (2, 2))

'''
import logging
import warnings

import numpy as np

from magi.banded import mat2band
from magi.kernels import (BoundKernel, UnsupportedDerivativeWarning,
                          get_kernel)
from magi.linalg import robust_inverse, condition_number
from magi.utils import as_time_vector

LOGGER = logging.getLogger(__name__)

DEFAULT_JITTER = 1e-6

DEFAULT_COMPLEXITY = 2


def _frozen(arr):
    '''Returns a read-only float copy of `arr`.'''
    out = np.array(arr, dtype=float, copy=True)
    out.flags.writeable = False
    return out


def _frozen_band(arr, bandsize):
    out = mat2band(arr, bandsize, bandsize)
    out.data.flags.writeable = False
    return out


def _check_integer(value, label):
    if isinstance(value, (bool, np.bool_)) or not isinstance(
            value, (int, np.integer)):
        raise ValueError('`%s` must be an integer, got %r' % (label, value))

    return int(value)


def _resolve_kernel(kernel, phi):
    '''
    Returns the `Kernel` instance and the validated hyperparameters.
    '''
    if isinstance(kernel, BoundKernel):
        if phi is None:
            phi = kernel.phi
        elif not np.array_equal(np.asarray(phi, dtype=float), kernel.phi):
            raise ValueError(
                '`phi` does not match the hyperparameters bound to %s' % kernel
                )

        kernel = kernel.kernel

    else:
        kernel = get_kernel(kernel)
        if phi is None:
            if kernel.nparams not in (None, 0):
                raise ValueError(
                    '%s requires %s hyperparameters but `phi` was not given'
                    % (kernel, kernel.nparams)
                    )

            phi = []

    phi = kernel.check_parameters(phi)
    return kernel, phi


class GPCov:
    '''
    Immutable bundle of the Gaussian process covariance quantities for one
    kernel, hyperparameter vector, and time grid. Instances are created with
    `calculate_gp_covariances`. All arrays are read-only.

    Attributes
    ----------
    phi : (P,) float array
        Kernel hyperparameters.

    tvec : (n,) float array
        Time grid.

    bandsize : int
        Half bandwidth of the banded matrices.

    complexity : int
        0 if only the regression quantities were requested, 2 if the
        derivative quantities were requested.

    jitter : float
        Value added to the diagonals of `C` and `Kphi` before inversion.

    C : (n, n) float array
        Covariance matrix.

    Cinv : (n, n) float array
        Inverse of `C + jitter*I`.

    Cprime : (n, n) float array
        Covariance between the derivative process and the process.

    Cdoubleprime : (n, n) float array
        Covariance of the derivative process.

    mphi : (n, n) float array
        Maps the process values to the conditional mean of the derivative
        process.

    Kphi : (n, n) float array
        Conditional covariance of the derivative process, with jitter.

    Kinv : (n, n) float array
        Inverse of `Kphi`.

    CinvBand, mphiBand, KinvBand : BandedMatrix
        Banded compressions of `Cinv`, `mphi`, and `Kinv` with bandwidths
        `(bandsize, bandsize)`.

    notices : tuple of str
        Non-fatal conditions that were encountered when building the bundle.

    '''
    def __init__(self, kernel, phi, tvec, bandsize, complexity, jitter, C,
                 Cinv, Cprime, Cdoubleprime, mphi, Kphi, Kinv,
                 has_derivatives, notices):
        self._kernel = kernel
        self._phi = _frozen(phi)
        self._tvec = _frozen(tvec)
        self._bandsize = bandsize
        self._complexity = complexity
        self._jitter = jitter
        self._C = _frozen(C)
        self._Cinv = _frozen(Cinv)
        self._Cprime = _frozen(Cprime)
        self._Cdoubleprime = _frozen(Cdoubleprime)
        self._mphi = _frozen(mphi)
        self._Kphi = _frozen(Kphi)
        self._Kinv = _frozen(Kinv)
        self._CinvBand = _frozen_band(Cinv, bandsize)
        self._mphiBand = _frozen_band(mphi, bandsize)
        self._KinvBand = _frozen_band(Kinv, bandsize)
        self._has_derivatives = has_derivatives
        self._notices = tuple(notices)

    def __repr__(self):
        return '<GPCov: kernel=%s, n=%s, bandsize=%s, complexity=%s>' % (
            self._kernel, self.n, self._bandsize, self._complexity
            )

    @property
    def kernel(self):
        return self._kernel

    @property
    def phi(self):
        return self._phi

    @property
    def tvec(self):
        return self._tvec

    @property
    def bandsize(self):
        return self._bandsize

    @property
    def complexity(self):
        return self._complexity

    @property
    def jitter(self):
        return self._jitter

    @property
    def C(self):
        return self._C

    @property
    def Cinv(self):
        return self._Cinv

    @property
    def Cprime(self):
        return self._Cprime

    @property
    def Cdoubleprime(self):
        return self._Cdoubleprime

    @property
    def mphi(self):
        return self._mphi

    @property
    def Kphi(self):
        return self._Kphi

    @property
    def Kinv(self):
        return self._Kinv

    @property
    def CinvBand(self):
        return self._CinvBand

    @property
    def mphiBand(self):
        return self._mphiBand

    @property
    def KinvBand(self):
        return self._KinvBand

    @property
    def notices(self):
        return self._notices

    @property
    def n(self):
        '''Number of time points.'''
        return self._tvec.shape[0]

    @property
    def has_derivatives(self):
        '''
        `True` if the derivative quantities were computed from the kernel
        derivatives, and `False` if they were skipped or replaced with zeros.
        '''
        return self._has_derivatives

    def cond_C(self):
        '''Returns the condition number of `C + jitter*I`.'''
        return condition_number(self._C + self._jitter*np.eye(self.n))

    def cond_Kphi(self):
        '''Returns the condition number of `Kphi`.'''
        return condition_number(self._Kphi)

    def replace(self, **kwargs):
        '''
        Returns a new `GPCov` built with the same inputs as this one except for
        those given as keyword arguments. The keyword arguments are those of
        `calculate_gp_covariances`.
        '''
        inputs = {
            'kernel': self._kernel,
            'phi': self._phi,
            'tvec': self._tvec,
            'bandsize': self._bandsize,
            'complexity': self._complexity,
            'jitter': self._jitter
            }
        unknown = set(kwargs).difference(inputs)
        if unknown:
            raise ValueError('Unknown arguments: %s' % sorted(unknown))

        if isinstance(kwargs.get('kernel'), BoundKernel) and 'phi' not in kwargs:
            inputs['phi'] = None

        elif isinstance(self._kernel, BoundKernel) and 'kernel' not in kwargs:
            # new hyperparameters for the same kernel family
            inputs['kernel'] = self._kernel.kernel

        inputs.update(kwargs)
        return calculate_gp_covariances(**inputs)


def calculate_gp_covariances(kernel, phi, tvec, bandsize,
                             complexity=DEFAULT_COMPLEXITY,
                             jitter=DEFAULT_JITTER):
    '''
    Computes the covariance quantities of a Gaussian process and its
    derivative over a time grid.

    Parameters
    ----------
    kernel : str, Kernel, BoundKernel, or callable
        Covariance function. A string is looked up with
        `magi.kernels.get_kernel`. A callable that is not a `Kernel` is called
        as `kernel(t1, t2)` with scalar times and is assumed to have no known
        derivatives.

    phi : (P,) float array or None
        Kernel hyperparameters. This can be `None` if `kernel` is a
        `BoundKernel` or takes no hyperparameters.

    tvec : (n,) float array
        Time grid.

    bandsize : int
        Half bandwidth of the banded matrices. This must be between 0 and
        `n - 1`.

    complexity : int, optional
        Either 0, which skips the derivative quantities, or 2, which computes
        them.

    jitter : float, optional
        Positive value added to the diagonals of `C` and `Kphi` before they
        are inverted.

    Returns
    -------
    GPCov

    Raises
    ------
    ValueError
        If any of the inputs are invalid.

    numpy.linalg.LinAlgError
        If `C + jitter*I` or `Kphi` is singular.

    Notes
    -----
    If `complexity` is 2 and the kernel does not know its derivatives, then an
    `UnsupportedDerivativeWarning` is raised and the derivative quantities are
    computed as if `complexity` were 0. In that case `Cprime`, `Cdoubleprime`,
    and `mphi` are zero, `Kphi` is `jitter*I`, and `Kinv` is `I/jitter`.

    '''
    tvec = as_time_vector(tvec, 'tvec')
    n = tvec.shape[0]
    if n == 0:
        raise ValueError('`tvec` must contain at least one time.')

    bandsize = _check_integer(bandsize, 'bandsize')
    if not (0 <= bandsize <= n - 1):
        raise ValueError(
            '`bandsize` must be between 0 and %s, got %s' % (n - 1, bandsize)
            )

    complexity = _check_integer(complexity, 'complexity')
    if complexity not in (0, 2):
        raise ValueError('`complexity` must be 0 or 2, got %s' % complexity)

    jitter = float(jitter)
    if not (np.isfinite(jitter) and jitter > 0.0):
        raise ValueError('`jitter` must be positive and finite, got %s' % jitter)

    bound = kernel
    kernel, phi = _resolve_kernel(kernel, phi)
    LOGGER.debug(
        'Computing the covariances of %s at %s times with bandsize %s and '
        'complexity %s ...' % (kernel, n, bandsize, complexity)
        )

    notices = []
    C = kernel(tvec, tvec, phi)
    Cinv = robust_inverse(C + jitter*np.eye(n))

    has_derivatives = False
    if complexity == 2:
        if kernel.is_differentiable:
            has_derivatives = True
        else:
            msg = (
                'The derivatives of %s are unknown. Cprime, Cdoubleprime, and '
                'mphi were set to zero.' % kernel
                )
            warnings.warn(msg, UnsupportedDerivativeWarning, stacklevel=2)
            notices.append(msg)

    if has_derivatives:
        Cprime = kernel(tvec, tvec, phi, diff=(1, 0))
        Cdoubleprime = kernel(tvec, tvec, phi, diff=(1, 1))
        mphi = Cprime.dot(Cinv)
        K = Cdoubleprime - mphi.dot(Cprime.T)
        Kphi = 0.5*(K + K.T) + jitter*np.eye(n)
        Kinv = robust_inverse(Kphi)

    else:
        Cprime = np.zeros((n, n), dtype=float)
        Cdoubleprime = np.zeros((n, n), dtype=float)
        mphi = np.zeros((n, n), dtype=float)
        Kphi = jitter*np.eye(n)
        Kinv = np.eye(n)/jitter

    if isinstance(bound, BoundKernel):
        kernel = bound

    out = GPCov(
        kernel, phi, tvec, bandsize, complexity, jitter, C, Cinv, Cprime,
        Cdoubleprime, mphi, Kphi, Kinv, has_derivatives, notices
        )
    LOGGER.debug('Finished computing the covariances.')
    return out
