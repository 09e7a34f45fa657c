'''
This module contains the covariance kernels used to build the matrices in a
`GPCov` bundle. A kernel is a two-point covariance function
:math:`k(t, t'; \\phi)` over scalar time, where :math:`\\phi` is a vector of
hyperparameters. Every kernel is called as

>>> kernel(t1, t2, phi, diff=(a, b))

which returns the (N, M) matrix of
:math:`\\partial^{a+b} k(t_i, t'_j) / \\partial t^a \\partial t'^b`. The
derivatives needed to constrain a Gaussian process with an ODE are
:math:`\\partial k/\\partial t` (`diff=(1, 0)`) and
:math:`\\partial^2 k/\\partial t \\partial t'` (`diff=(1, 1)`).

The predefined kernels are shown in the table below. For each expression,
:math:`r = |t - t'|`, :math:`\\sigma^2` is the variance and :math:`\\ell` is
the lengthscale, so that :math:`\\phi = [\\sigma^2, \\ell]`.

=========================  ====================================================================================  ===========================
Name                       Expression                                                                            Derivatives
=========================  ====================================================================================  ===========================
se (squared exponential)   :math:`\\sigma^2\\exp(-r^2/(2\\ell^2))`                                                all
mat12 (Matern, v = 1/2)    :math:`\\sigma^2\\exp(-r/\\ell)`                                                       first
mat32 (Matern, v = 3/2)    :math:`\\sigma^2(1 + \\sqrt{3} r/\\ell)\\exp(-\\sqrt{3} r/\\ell)`                          up to third
mat52 (Matern, v = 5/2)    :math:`\\sigma^2(1 + \\sqrt{5} r/\\ell + 5r^2/(3\\ell^2))\\exp(-\\sqrt{5} r/\\ell)`          up to fifth
white                      :math:`\\sigma^2[t = t']`                                                              none
=========================  ====================================================================================  ===========================

A Matern kernel with any smoothness :math:`\\nu` is available through
`MaternKernel`, and any user-supplied covariance function can be used through
`CovarianceFunction`. Kernels that do not know their derivatives raise an
`UnsupportedDerivativeError` when asked for one. `magi.gpcov` turns that into
an `UnsupportedDerivativeWarning` and falls back to zero derivatives.

'''
import logging

import sympy
import numpy as np
from scipy.special import gamma, kv
from sympy import lambdify

from magi.utils import (assert_shape, as_time_vector, as_parameter_vector,
                        get_arg_count)

LOGGER = logging.getLogger(__name__)


class UnsupportedDerivativeError(NotImplementedError):
    '''Raised when a kernel is asked for a derivative that it does not know.'''
    pass


class UnsupportedDerivativeWarning(UserWarning):
    '''
    Warns that a kernel has no known derivatives and that zeros were used in
    their place.
    '''
    pass


R, LS = sympy.symbols('r, l')


def _as_diff(diff):
    diff = tuple(diff)
    assert_shape(diff, (2,), 'diff')
    for d in diff:
        if isinstance(d, (bool, np.bool_)) or not isinstance(
                d, (int, np.integer)) or d < 0:
            raise ValueError(
                '`diff` must contain two non-negative integers, got %s' %
                (diff,)
                )

    return tuple(int(d) for d in diff)


class Kernel:
    '''
    Base class for two-point covariance functions over time.

    Subclasses define `nparams`, `supports`, and `_evaluate`.
    '''
    # expected number of hyperparameters. `None` means any number.
    nparams = None

    def supports(self, diff):
        '''
        Returns `True` if the derivative specified by `diff` is known.
        '''
        return _as_diff(diff) == (0, 0)

    @property
    def is_differentiable(self):
        '''
        `True` if the kernel knows the derivatives needed to build the
        derivative process, `diff=(1, 0)` and `diff=(1, 1)`.
        '''
        return self.supports((1, 0)) and self.supports((1, 1))

    def check_parameters(self, phi):
        '''
        Returns `phi` as a float array after checking that it is a valid set of
        hyperparameters for this kernel.
        '''
        phi = as_parameter_vector(phi, self.nparams)
        if not np.all(np.isfinite(phi)):
            raise ValueError('`phi` contains non-finite values.')

        return phi

    def __call__(self, t1, t2, phi, diff=(0, 0)):
        '''
        Numerically evaluates the kernel or its derivatives.

        Parameters
        ----------
        t1 : (N,) float array
            Times for the first argument.

        t2 : (M,) float array
            Times for the second argument.

        phi : (P,) float array
            Hyperparameters.

        diff : 2-tuple of int, optional
            Derivative order with respect to the first and second argument.

        Returns
        -------
        (N, M) float array
            If `t1` and `t2` are both scalars then a float is returned.

        '''
        scalar = (np.ndim(t1) == 0) and (np.ndim(t2) == 0)
        t1 = as_time_vector(t1, 't1')
        t2 = as_time_vector(t2, 't2')
        phi = self.check_parameters(phi)
        diff = _as_diff(diff)
        if not self.supports(diff):
            raise UnsupportedDerivativeError(
                '%s does not support the derivative %s' % (self, diff)
                )

        shape = (t1.shape[0], t2.shape[0])
        with np.errstate(divide='ignore', invalid='ignore'):
            out = self._evaluate(t1[:, None], t2[None, :], phi, diff)

        out = np.array(np.broadcast_to(out, shape), dtype=float)
        if scalar:
            return float(out[0, 0])

        return out

    def _evaluate(self, t1, t2, phi, diff):
        raise NotImplementedError

    def evaluate(self, t1, t2, phi):
        '''Returns :math:`k(t, t')`.'''
        return self(t1, t2, phi, diff=(0, 0))

    def first_derivative(self, t1, t2, phi):
        '''Returns :math:`\\partial k(t, t')/\\partial t`.'''
        return self(t1, t2, phi, diff=(1, 0))

    def second_derivative(self, t1, t2, phi):
        '''Returns :math:`\\partial^2 k(t, t')/\\partial t \\partial t'`.'''
        return self(t1, t2, phi, diff=(1, 1))

    def bind(self, phi):
        '''Returns a `BoundKernel` with the hyperparameters fixed to `phi`.'''
        return BoundKernel(self, phi)


class StationaryKernel(Kernel):
    '''
    Stores a symbolic expression of a stationary kernel with unit variance and
    evaluates the kernel or its derivatives numerically when called. The
    hyperparameters are `phi = [variance, lengthscale]`.

    Parameters
    ----------
    expr : sympy expression
        Sympy expression for the kernel. This must be a function of the
        symbolic variable `r`, the distance between the two times, and the
        lengthscale `l`. These can be retrieved through the module-level
        attributes `R` and `LS`.

    tol : float or sympy expression, optional
        Distance within which the kernel derivatives are not numerically
        stable. The limit at `r = 0` is returned when evaluating times that are
        within `tol` of each other. This can be a float or a sympy expression
        containing `l`.

    limits : dict, optional
        Values of the kernel or its derivatives at `r = 0`, keyed by `diff`.
        These are used instead of symbolically evaluated limits.

    order : int, optional
        The highest total derivative order, `a + b`, which is defined for the
        kernel. Defaults to no limit.

    name : str, optional
        Name used in the kernel's repr.

    '''
    nparams = 2

    @property
    def expr(self):
        return self._expr

    @property
    def tol(self):
        return self._tol

    @property
    def limits(self):
        return self._limits

    @property
    def order(self):
        return self._order

    def __init__(self, expr, tol=None, limits=None, order=None, name=None):
        if not issubclass(type(expr), sympy.Expr):
            raise ValueError('`expr` must be a sympy expression.')

        other_symbols = expr.free_symbols.difference({R, LS})
        if len(other_symbols) != 0:
            raise ValueError(
                '`expr` cannot contain any symbols other than `r` and `l`.'
                )

        if not expr.has(R):
            raise ValueError('`expr` must contain the symbol `r`.')

        self._expr = expr
        if tol is not None:
            tol = sympy.sympify(tol)
            if len(tol.free_symbols.difference({LS})) != 0:
                raise ValueError('`tol` cannot contain any symbols other than `l`.')

        self._tol = tol
        if limits is None:
            limits = {}

        self._limits = {_as_diff(k): v for k, v in limits.items()}
        self._order = order
        self._name = name
        self._cache = {}

    def __repr__(self):
        if self._name is not None:
            return '<%s: %s>' % (type(self).__name__, self._name)

        return '<%s: %s>' % (type(self).__name__, str(self.expr))

    def supports(self, diff):
        diff = _as_diff(diff)
        if self._order is None:
            return True

        return sum(diff) <= self._order

    def check_parameters(self, phi):
        phi = Kernel.check_parameters(self, phi)
        if phi[0] <= 0.0:
            raise ValueError('The variance must be positive.')

        if phi[1] <= 0.0:
            raise ValueError('The lengthscale must be positive.')

        return phi

    def _evaluate(self, t1, t2, phi, diff):
        if diff not in self._cache:
            self._add_diff_to_cache(diff)

        var, lengthscale = phi
        return var*self._cache[diff](t1, t2, lengthscale)

    def _add_diff_to_cache(self, diff):
        '''
        Symbolically differentiates the kernel and then converts the expression
        to a function which can be evaluated numerically.
        '''
        LOGGER.debug(
            'Creating a numerical function for %s with the derivative %s ...'
            % (self, str(diff))
            )

        t1, t2 = sympy.symbols('t1, t2')
        r_sym = sympy.sqrt((t1 - t2)**2)
        expr = self.expr.subs(R, r_sym)
        expr = expr.diff(t1, diff[0]).diff(t2, diff[1])

        if self.tol is not None:
            if diff in self.limits:
                lim = self.limits[diff]

            else:
                LOGGER.debug(
                    'Symbolically evaluating the limit at r = 0 ...'
                    )
                lim = expr.subs(t2, 0).limit(t1, 0)
                LOGGER.debug('Limit at r = 0: %s' % lim)

            # use `<=` so that the tolerance can be exactly zero
            expr = sympy.Piecewise((lim, r_sym <= self.tol), (expr, True))

        func = lambdify((t1, t2, LS), expr, modules=['numpy'])
        self._cache[diff] = func
        LOGGER.debug('The numeric function has been created and cached.')

    def prime_cache(self, diffs=((0, 0), (1, 0), (0, 1), (1, 1))):
        '''
        Creates the numeric functions for each supported derivative in
        `diffs`. Evaluating a primed derivative does not modify the kernel, so
        primed kernels can be shared between threads. Derivatives that are not
        primed are added to the cache on their first evaluation.
        '''
        for diff in diffs:
            diff = _as_diff(diff)
            if self.supports(diff) and (diff not in self._cache):
                self._add_diff_to_cache(diff)

    def clear_cache(self):
        '''Clears the cache of numeric functions.'''
        self._cache = {}

    def __getstate__(self):
        # the cached numerical functions are not picklable
        state = dict(self.__dict__)
        state['_cache'] = {}
        return state


class MaternKernel(Kernel):
    '''
    Matern kernel with arbitrary smoothness :math:`\\nu > 0`,

    .. math::
        k(r) = \\sigma^2 \\frac{2^{1-\\nu}}{\\Gamma(\\nu)} z^\\nu K_\\nu(z),
        \\quad z = \\sqrt{2\\nu} r/\\ell,

    where :math:`K_\\nu` is the modified Bessel function of the second kind.
    The hyperparameters are `phi = [variance, lengthscale]`.

    The derivatives use :math:`d(z^\\nu K_\\nu(z))/dz = -z^\\nu K_{\\nu-1}(z)`.
    The first derivative is defined for all :math:`\\nu` and is zero at
    :math:`r = 0`. The mixed second derivative is only finite at
    :math:`r = 0` when :math:`\\nu > 1`, where it equals
    :math:`\\sigma^2\\nu/((\\nu - 1)\\ell^2)`.

    Parameters
    ----------
    nu : float
        Smoothness parameter.

    tol : float, optional
        Scaled distances `z` at or below `tol` are treated as `r = 0`.

    '''
    nparams = 2

    def __init__(self, nu, tol=1e-8):
        nu = float(nu)
        if not (np.isfinite(nu) and nu > 0.0):
            raise ValueError('`nu` must be a positive finite number.')

        self.nu = nu
        self.tol = tol

    def __repr__(self):
        return '<%s: nu=%s>' % (type(self).__name__, self.nu)

    def supports(self, diff):
        diff = _as_diff(diff)
        if sum(diff) <= 1:
            return True

        return (diff == (1, 1)) and (self.nu > 1.0)

    check_parameters = StationaryKernel.check_parameters

    def _evaluate(self, t1, t2, phi, diff):
        var, lengthscale = phi
        nu = self.nu
        tau = t1 - t2
        c = np.sqrt(2*nu)/lengthscale
        z = c*np.abs(tau)
        center = z <= self.tol
        zp = np.where(center, 1.0, z)
        coeff = var*2**(1 - nu)/gamma(nu)
        if diff == (0, 0):
            out = coeff*zp**nu*kv(nu, zp)
            return np.where(center, var, out)

        elif diff in [(1, 0), (0, 1)]:
            # derivative with respect to `r` times the derivative of `r`
            dfdr = -coeff*c*zp**nu*kv(nu - 1, zp)
            sign = np.sign(tau) if diff == (1, 0) else -np.sign(tau)
            return np.where(center, 0.0, dfdr*sign)

        else:
            d2fdr2 = coeff*c**2*(-zp**(nu - 1)*kv(nu - 1, zp) +
                                 zp**nu*kv(nu - 2, zp))
            center_value = var*nu/((nu - 1)*lengthscale**2)
            return np.where(center, center_value, -d2fdr2)


class CovarianceFunction(Kernel):
    '''
    Wraps a user-supplied covariance function and, optionally, its
    derivatives.

    Parameters
    ----------
    covariance : function
        Covariance function. If `pointwise` is `False` this is called as
        `covariance(t1, t2, phi)` with a (N, 1) array `t1` and a (1, M) array
        `t2` and must return an array that broadcasts to (N, M). If
        `pointwise` is `True` it is called with scalar times. A function that
        takes only two arguments is called without `phi`.

    diff1 : function, optional
        Derivative of `covariance` with respect to its first argument, called
        the same way as `covariance`.

    diff12 : function, optional
        Mixed derivative of `covariance` with respect to both arguments,
        called the same way as `covariance`.

    nparams : int, optional
        Required number of hyperparameters.

    pointwise : bool, optional
        Whether the functions take scalar times.

    name : str, optional
        Name used in the kernel's repr.

    '''
    def __init__(self, covariance, diff1=None, diff12=None, nparams=None,
                 pointwise=False, name=None):
        self._funcs = {(0, 0): covariance}
        if diff1 is not None:
            self._funcs[(1, 0)] = diff1

        if diff12 is not None:
            self._funcs[(1, 1)] = diff12

        self.nparams = nparams
        self.pointwise = pointwise
        self._name = name

    def __repr__(self):
        name = self._name
        if name is None:
            name = getattr(self._funcs[(0, 0)], '__name__', 'covariance')

        return '<%s: %s>' % (type(self).__name__, name)

    def supports(self, diff):
        diff = _as_diff(diff)
        if diff == (0, 1):
            return (1, 0) in self._funcs

        return diff in self._funcs

    def _evaluate(self, t1, t2, phi, diff):
        if diff == (0, 1):
            # the kernel is symmetric, so d/dt2 k(t1, t2) = d/dt1 k(t2, t1)
            return self._evaluate(t2.T, t1.T, phi, (1, 0)).T

        func = self._funcs[diff]
        takes_phi = get_arg_count(func) != 2
        if self.pointwise:
            out = np.empty((t1.shape[0], t2.shape[1]), dtype=float)
            for i, ti in enumerate(t1[:, 0]):
                for j, tj in enumerate(t2[0, :]):
                    if takes_phi:
                        out[i, j] = func(ti, tj, phi)
                    else:
                        out[i, j] = func(ti, tj)

            return out

        if takes_phi:
            return np.asarray(func(t1, t2, phi), dtype=float)
        else:
            return np.asarray(func(t1, t2), dtype=float)


class BoundKernel:
    '''
    A kernel with its hyperparameters fixed. Calling a `BoundKernel` is the
    same as calling `kernel` with `phi`.

    Parameters
    ----------
    kernel : str or Kernel instance

    phi : (P,) float array

    '''
    def __init__(self, kernel, phi):
        self.kernel = get_kernel(kernel)
        phi = self.kernel.check_parameters(phi).copy()
        phi.flags.writeable = False
        self.phi = phi

    def __repr__(self):
        return '<%s: %s, phi=%s>' % (
            type(self).__name__, self.kernel, list(self.phi)
            )

    @property
    def is_differentiable(self):
        return self.kernel.is_differentiable

    def supports(self, diff):
        return self.kernel.supports(diff)

    def __call__(self, t1, t2, diff=(0, 0)):
        return self.kernel(t1, t2, self.phi, diff=diff)


def get_kernel(value):
    '''
    Returns the `Kernel` corresponding to `value`. If `value` is a string, then
    this returns the correspondingly named predefined kernel. If `value` is a
    `Kernel` instance then this returns `value`. Any other callable is wrapped
    as a pointwise `CovarianceFunction` without derivatives.
    '''
    if isinstance(value, Kernel):
        return value

    elif isinstance(value, str):
        if value in _PREDEFINED:
            return _PREDEFINED[value]

        raise ValueError(
            "Cannot interpret '%s' as a kernel. Use one of %s"
            % (value, sorted(_PREDEFINED.keys()))
            )

    elif callable(value):
        return CovarianceFunction(value, pointwise=True)

    else:
        raise ValueError('Cannot interpret %s as a kernel.' % (value,))


## Instantiate the predefined kernels
#####################################################################
se = StationaryKernel(
    sympy.exp(-R**2/(2*LS**2)),
    name='se'
    )

mat12 = StationaryKernel(
    sympy.exp(-R/LS),
    tol=0.0,
    # the symmetric limit of the first derivative, which has a kink at r = 0
    limits={(0, 0): 1, (1, 0): 0, (0, 1): 0},
    order=1,
    name='mat12'
    )

mat32 = StationaryKernel(
    (1 + sympy.sqrt(3)*R/LS)*sympy.exp(-sympy.sqrt(3)*R/LS),
    tol=1e-8*LS,
    limits={(0, 0): 1, (1, 0): 0, (0, 1): 0, (1, 1): 3/LS**2},
    order=3,
    name='mat32'
    )

mat52 = StationaryKernel(
    (1 + sympy.sqrt(5)*R/LS + 5*R**2/(3*LS**2))*sympy.exp(-sympy.sqrt(5)*R/LS),
    tol=1e-8*LS,
    limits={(0, 0): 1, (1, 0): 0, (0, 1): 0, (1, 1): 5/(3*LS**2)},
    order=5,
    name='mat52'
    )


for _kernel in (se, mat12, mat32, mat52):
    _kernel.prime_cache()

del _kernel


def _white_covariance(t1, t2, phi):
    return phi[0]*(t1 == t2)


white = CovarianceFunction(_white_covariance, nparams=1, name='white')

_PREDEFINED = {
    'se': se, 'rbf': se, 'mat12': mat12, 'exp': mat12, 'mat32': mat32,
    'mat52': mat52, 'white': white
    }


def create_rbf_kernel(variance, lengthscale):
    '''Returns a squared exponential `BoundKernel`.'''
    return BoundKernel(se, [variance, lengthscale])


def create_matern52_kernel(variance, lengthscale):
    '''Returns a Matern 5/2 `BoundKernel`.'''
    return BoundKernel(mat52, [variance, lengthscale])


def create_general_matern_kernel(variance, lengthscale, nu):
    '''
    Returns a Matern `BoundKernel` with smoothness `nu`. The closed form
    kernels are used when `nu` is 1/2, 3/2, or 5/2.
    '''
    closed_forms = {0.5: mat12, 1.5: mat32, 2.5: mat52}
    kernel = closed_forms.get(float(nu))
    if kernel is None:
        kernel = MaternKernel(nu)

    return BoundKernel(kernel, [variance, lengthscale])
