'''
This module contains the ODE models that are paired with the covariances in
`magi.gpcov`. Each model is written as an autonomous system

.. math::
    \\frac{dx}{dt} = f(x, \\theta),

and is described by three functions,

* `<model>_ode(theta, x, t=None)`, the drift :math:`f`,
* `<model>_ode_dx(theta, x, t=None)`, the state Jacobian
  :math:`\\partial f_i/\\partial x_j`,
* `<model>_ode_dtheta(theta, x, t=None)`, the parameter Jacobian
  :math:`\\partial f_i/\\partial \\theta_k`.

`x` can be a (D,) array, for a single state, or an (N, D) array, for the state
at N times. The drift is then a (..., D) array, the state Jacobian is a
(..., D, D) array, and the parameter Jacobian is a (..., D, P) array. The time
argument is accepted for compatibility with ODE solvers and is not used.

The models are

=============  ================================================  ======  ======
Name           Description                                       States  Params
=============  ================================================  ======  ======
fn             FitzHugh-Nagumo neuron model                      2       3
hes1           Hes1 gene regulatory oscillator                   3       7
hes1log        Hes1 with log-transformed states                  3       7
hes1log_fixg   hes1log with the decay rate of H fixed at 0.3     3       6
hes1log_fixf   hes1log with the production rate of H fixed at 20 3       6
hiv            HIV T-cell model with log-transformed states      4       9
ptrans         Protein transduction signalling pathway           5       6
=============  ================================================  ======  ======

Each model is also available as an `OdeSystem` through `get_ode`.

'''
import numpy as np

from magi.utils import assert_shape, as_parameter_vector


def _check_inputs(theta, x, nparams, nstate):
    theta = as_parameter_vector(theta, nparams, 'theta')
    x = np.asarray(x, dtype=float)
    assert_shape(x, (..., nstate), 'x')
    return theta, x


def _vector(entries, shape):
    '''
    Stacks the broadcastable `entries` along a new last axis.
    '''
    out = np.zeros(shape + (len(entries),), dtype=float)
    for i, val in enumerate(entries):
        out[..., i] = val

    return out


def _matrix(rows, shape):
    '''
    Stacks the nested list of broadcastable `rows` along two new last axes.
    '''
    out = np.zeros(shape + (len(rows), len(rows[0])), dtype=float)
    for i, row in enumerate(rows):
        for j, val in enumerate(row):
            out[..., i, j] = val

    return out


## FitzHugh-Nagumo
#####################################################################
def fn_ode(theta, x, t=None):
    '''
    FitzHugh-Nagumo model with states `(V, R)` and parameters `(a, b, c)`,

    .. math::
        \\dot{V} = c(V - V^3/3 + R)

    .. math::
        \\dot{R} = -(V - a + bR)/c

    '''
    theta, x = _check_inputs(theta, x, 3, 2)
    a, b, c = theta
    V, R = x[..., 0], x[..., 1]
    return _vector([c*(V - V**3/3 + R), -(V - a + b*R)/c], x.shape[:-1])


def fn_ode_dx(theta, x, t=None):
    theta, x = _check_inputs(theta, x, 3, 2)
    a, b, c = theta
    V = x[..., 0]
    return _matrix(
        [[c*(1 - V**2), c],
         [-1/c, -b/c]],
        x.shape[:-1]
        )


def fn_ode_dtheta(theta, x, t=None):
    theta, x = _check_inputs(theta, x, 3, 2)
    a, b, c = theta
    V, R = x[..., 0], x[..., 1]
    return _matrix(
        [[0.0, 0.0, V - V**3/3 + R],
         [1/c, -R/c, (V - a + b*R)/c**2]],
        x.shape[:-1]
        )


## Hes1
#####################################################################
def hes1_ode(theta, x, t=None):
    '''
    Hes1 model with states `(P, M, H)` and parameters `(p1, ..., p7)`,

    .. math::
        \\dot{P} = -p_1 P H + p_2 M - p_3 P

    .. math::
        \\dot{M} = -p_4 M + p_5/(1 + P^2)

    .. math::
        \\dot{H} = -p_1 P H + p_6/(1 + P^2) - p_7 H

    '''
    theta, x = _check_inputs(theta, x, 7, 3)
    p1, p2, p3, p4, p5, p6, p7 = theta
    P, M, H = x[..., 0], x[..., 1], x[..., 2]
    return _vector(
        [-p1*P*H + p2*M - p3*P,
         -p4*M + p5/(1 + P**2),
         -p1*P*H + p6/(1 + P**2) - p7*H],
        x.shape[:-1]
        )


def hes1_ode_dx(theta, x, t=None):
    theta, x = _check_inputs(theta, x, 7, 3)
    p1, p2, p3, p4, p5, p6, p7 = theta
    P, M, H = x[..., 0], x[..., 1], x[..., 2]
    # derivative of 1/(1 + P^2) with respect to P
    dq = -2*P/(1 + P**2)**2
    return _matrix(
        [[-p1*H - p3, p2, -p1*P],
         [p5*dq, -p4, 0.0],
         [-p1*H + p6*dq, 0.0, -p1*P - p7]],
        x.shape[:-1]
        )


def hes1_ode_dtheta(theta, x, t=None):
    theta, x = _check_inputs(theta, x, 7, 3)
    P, M, H = x[..., 0], x[..., 1], x[..., 2]
    q = 1/(1 + P**2)
    return _matrix(
        [[-P*H, M, -P, 0.0, 0.0, 0.0, 0.0],
         [0.0, 0.0, 0.0, -M, q, 0.0, 0.0],
         [-P*H, 0.0, 0.0, 0.0, 0.0, q, -H]],
        x.shape[:-1]
        )


## Hes1 with log-transformed states
#####################################################################
def hes1log_ode(theta, x, t=None):
    '''
    Hes1 model with the states `(log P, log M, log H)`. Each component of the
    drift is the corresponding component of `hes1_ode` divided by the state.
    '''
    theta, x = _check_inputs(theta, x, 7, 3)
    p1, p2, p3, p4, p5, p6, p7 = theta
    P, M, H = np.exp(x[..., 0]), np.exp(x[..., 1]), np.exp(x[..., 2])
    q = 1/(1 + P**2)
    return _vector(
        [-p1*H + p2*M/P - p3,
         -p4 + p5*q/M,
         -p1*P + p6*q/H - p7],
        x.shape[:-1]
        )


def hes1log_ode_dx(theta, x, t=None):
    theta, x = _check_inputs(theta, x, 7, 3)
    p1, p2, p3, p4, p5, p6, p7 = theta
    P, M, H = np.exp(x[..., 0]), np.exp(x[..., 1]), np.exp(x[..., 2])
    q = 1/(1 + P**2)
    # derivative of 1/(1 + P^2) with respect to log P
    dq = -2*P**2*q**2
    return _matrix(
        [[-p2*M/P, p2*M/P, -p1*H],
         [p5*dq/M, -p5*q/M, 0.0],
         [-p1*P + p6*dq/H, 0.0, -p6*q/H]],
        x.shape[:-1]
        )


def hes1log_ode_dtheta(theta, x, t=None):
    theta, x = _check_inputs(theta, x, 7, 3)
    P, M, H = np.exp(x[..., 0]), np.exp(x[..., 1]), np.exp(x[..., 2])
    q = 1/(1 + P**2)
    return _matrix(
        [[-H, M/P, -1.0, 0.0, 0.0, 0.0, 0.0],
         [0.0, 0.0, 0.0, -1.0, q/M, 0.0, 0.0],
         [-P, 0.0, 0.0, 0.0, 0.0, q/H, -1.0]],
        x.shape[:-1]
        )


HES1_FIXED_GAMMA = 0.3

HES1_FIXED_F = 20.0


def _hes1_fixg_theta(theta):
    theta = as_parameter_vector(theta, 6, 'theta')
    return np.hstack((theta, HES1_FIXED_GAMMA))


def _hes1_fixf_theta(theta):
    theta = as_parameter_vector(theta, 6, 'theta')
    return np.hstack((theta[:5], HES1_FIXED_F, theta[5]))


def hes1log_ode_fixg(theta, x, t=None):
    '''
    `hes1log_ode` with the parameters `(p1, ..., p6)` and `p7` fixed at 0.3.
    '''
    return hes1log_ode(_hes1_fixg_theta(theta), x)


def hes1log_ode_fixg_dx(theta, x, t=None):
    return hes1log_ode_dx(_hes1_fixg_theta(theta), x)


def hes1log_ode_fixg_dtheta(theta, x, t=None):
    return hes1log_ode_dtheta(_hes1_fixg_theta(theta), x)[..., :6]


def hes1log_ode_fixf(theta, x, t=None):
    '''
    `hes1log_ode` with the parameters `(p1, ..., p5, p7)` and `p6` fixed at
    20.
    '''
    return hes1log_ode(_hes1_fixf_theta(theta), x)


def hes1log_ode_fixf_dx(theta, x, t=None):
    return hes1log_ode_dx(_hes1_fixf_theta(theta), x)


def hes1log_ode_fixf_dtheta(theta, x, t=None):
    return hes1log_ode_dtheta(_hes1_fixf_theta(theta), x)[..., [0, 1, 2, 3, 4, 6]]


## HIV
#####################################################################
# scale of the infection rates
HIV_RATE_SCALE = 1e-6


def hiv_ode(theta, x, t=None):
    '''
    HIV model for the log populations of uninfected T-cells and of the cells
    infected by the mutant, wild type, and both virus strains,
    `(log T, log Tm, log Tw, log Tmw)`. The parameters are the net growth
    rates `theta[0]`, `theta[4]`, `theta[6]`, and `theta[8]`, and the
    infection rates `theta[1]`, `theta[2]`, `theta[3]`, `theta[5]`, and
    `theta[7]`, which are scaled by 1e-6.
    '''
    theta, x = _check_inputs(theta, x, 9, 4)
    s = HIV_RATE_SCALE
    T, Tm, Tw, Tmw = (np.exp(x[..., i]) for i in range(4))
    return _vector(
        [theta[0] - s*(theta[1]*Tm + theta[2]*Tw + theta[3]*Tmw),
         theta[4] + s*(theta[1]*T - theta[5]*Tw),
         theta[6] + s*(theta[2]*T - theta[7]*Tm),
         theta[8] + s*(theta[3]*T + theta[5]*Tm + theta[7]*Tw)],
        x.shape[:-1]
        )


def hiv_ode_dx(theta, x, t=None):
    theta, x = _check_inputs(theta, x, 9, 4)
    s = HIV_RATE_SCALE
    T, Tm, Tw, Tmw = (np.exp(x[..., i]) for i in range(4))
    return _matrix(
        [[0.0, -s*theta[1]*Tm, -s*theta[2]*Tw, -s*theta[3]*Tmw],
         [s*theta[1]*T, 0.0, -s*theta[5]*Tw, 0.0],
         [s*theta[2]*T, -s*theta[7]*Tm, 0.0, 0.0],
         [s*theta[3]*T, s*theta[5]*Tm, s*theta[7]*Tw, 0.0]],
        x.shape[:-1]
        )


def hiv_ode_dtheta(theta, x, t=None):
    theta, x = _check_inputs(theta, x, 9, 4)
    s = HIV_RATE_SCALE
    T, Tm, Tw, Tmw = (np.exp(x[..., i]) for i in range(4))
    return _matrix(
        [[1.0, -s*Tm, -s*Tw, -s*Tmw, 0.0, 0.0, 0.0, 0.0, 0.0],
         [0.0, s*T, 0.0, 0.0, 1.0, -s*Tw, 0.0, 0.0, 0.0],
         [0.0, 0.0, s*T, 0.0, 0.0, 0.0, 1.0, -s*Tm, 0.0],
         [0.0, 0.0, 0.0, s*T, 0.0, s*Tm, 0.0, s*Tw, 1.0]],
        x.shape[:-1]
        )


## Protein transduction
#####################################################################
def ptrans_ode(theta, x, t=None):
    '''
    Protein transduction model with states `(S, dS, R, RS, RPP)` and
    parameters `(k1, k2, k3, k4, V, Km)`,

    .. math::
        \\dot{S} = -k_1 S - k_2 S R + k_3 RS

    .. math::
        \\dot{dS} = k_1 S

    .. math::
        \\dot{R} = -k_2 S R + k_3 RS + V RPP/(K_m + RPP)

    .. math::
        \\dot{RS} = k_2 S R - k_3 RS - k_4 RS

    .. math::
        \\dot{RPP} = k_4 RS - V RPP/(K_m + RPP)

    '''
    theta, x = _check_inputs(theta, x, 6, 5)
    k1, k2, k3, k4, V, Km = theta
    S, R, RS, RPP = x[..., 0], x[..., 2], x[..., 3], x[..., 4]
    mm = V*RPP/(Km + RPP)
    return _vector(
        [-k1*S - k2*S*R + k3*RS,
         k1*S,
         -k2*S*R + k3*RS + mm,
         k2*S*R - k3*RS - k4*RS,
         k4*RS - mm],
        x.shape[:-1]
        )


def ptrans_ode_dx(theta, x, t=None):
    theta, x = _check_inputs(theta, x, 6, 5)
    k1, k2, k3, k4, V, Km = theta
    S, R, RPP = x[..., 0], x[..., 2], x[..., 4]
    dmm = V*Km/(Km + RPP)**2
    return _matrix(
        [[-k1 - k2*R, 0.0, -k2*S, k3, 0.0],
         [k1, 0.0, 0.0, 0.0, 0.0],
         [-k2*R, 0.0, -k2*S, k3, dmm],
         [k2*R, 0.0, k2*S, -k3 - k4, 0.0],
         [0.0, 0.0, 0.0, k4, -dmm]],
        x.shape[:-1]
        )


def ptrans_ode_dtheta(theta, x, t=None):
    theta, x = _check_inputs(theta, x, 6, 5)
    k1, k2, k3, k4, V, Km = theta
    S, R, RS, RPP = x[..., 0], x[..., 2], x[..., 3], x[..., 4]
    h = RPP/(Km + RPP)
    dKm = -V*RPP/(Km + RPP)**2
    return _matrix(
        [[-S, -S*R, RS, 0.0, 0.0, 0.0],
         [S, 0.0, 0.0, 0.0, 0.0, 0.0],
         [0.0, -S*R, RS, 0.0, h, dKm],
         [0.0, S*R, -RS, -RS, 0.0, 0.0],
         [0.0, 0.0, 0.0, RS, -h, -dKm]],
        x.shape[:-1]
        )


class OdeSystem:
    '''
    An ODE model and its Jacobians.

    Parameters
    ----------
    name : str

    f : function
        Drift with the call signature `f(theta, x, t=None)`.

    dfdx : function
        State Jacobian with the same call signature as `f`.

    dfdtheta : function
        Parameter Jacobian with the same call signature as `f`.

    nstate : int
        Number of state components, D.

    nparams : int
        Number of parameters, P.

    theta_lower, theta_upper : (P,) float array, optional
        Bounds on the parameters. Defaults to unbounded.

    state_names : sequence of str, optional

    '''
    def __init__(self, name, f, dfdx, dfdtheta, nstate, nparams,
                 theta_lower=None, theta_upper=None, state_names=None):
        self.name = name
        self.f = f
        self.dfdx = dfdx
        self.dfdtheta = dfdtheta
        self.nstate = nstate
        self.nparams = nparams
        if theta_lower is None:
            theta_lower = np.full(nparams, -np.inf)

        if theta_upper is None:
            theta_upper = np.full(nparams, np.inf)

        self.theta_lower = as_parameter_vector(theta_lower, nparams, 'theta_lower')
        self.theta_upper = as_parameter_vector(theta_upper, nparams, 'theta_upper')
        if np.any(self.theta_lower > self.theta_upper):
            raise ValueError('`theta_lower` cannot exceed `theta_upper`.')

        if state_names is not None:
            state_names = tuple(state_names)
            assert_shape(state_names, (nstate,), 'state_names')

        self.state_names = state_names

    def __repr__(self):
        return '<OdeSystem: %s, nstate=%s, nparams=%s>' % (
            self.name, self.nstate, self.nparams
            )

    def __call__(self, theta, x, t=None):
        return self.f(theta, x, t)

    def in_bounds(self, theta):
        '''Returns `True` if `theta` is within the parameter bounds.'''
        theta = as_parameter_vector(theta, self.nparams, 'theta')
        return bool(np.all((theta >= self.theta_lower) &
                           (theta <= self.theta_upper)))


_PREDEFINED = {
    'fn': OdeSystem(
        'fn', fn_ode, fn_ode_dx, fn_ode_dtheta, 2, 3,
        theta_lower=[0.0, 0.0, 0.0], state_names=['V', 'R']
        ),
    'hes1': OdeSystem(
        'hes1', hes1_ode, hes1_ode_dx, hes1_ode_dtheta, 3, 7,
        theta_lower=np.zeros(7), state_names=['P', 'M', 'H']
        ),
    'hes1log': OdeSystem(
        'hes1log', hes1log_ode, hes1log_ode_dx, hes1log_ode_dtheta, 3, 7,
        theta_lower=np.zeros(7), state_names=['logP', 'logM', 'logH']
        ),
    'hes1log_fixg': OdeSystem(
        'hes1log_fixg', hes1log_ode_fixg, hes1log_ode_fixg_dx,
        hes1log_ode_fixg_dtheta, 3, 6,
        theta_lower=np.zeros(6), state_names=['logP', 'logM', 'logH']
        ),
    'hes1log_fixf': OdeSystem(
        'hes1log_fixf', hes1log_ode_fixf, hes1log_ode_fixf_dx,
        hes1log_ode_fixf_dtheta, 3, 6,
        theta_lower=np.zeros(6), state_names=['logP', 'logM', 'logH']
        ),
    'hiv': OdeSystem(
        'hiv', hiv_ode, hiv_ode_dx, hiv_ode_dtheta, 4, 9,
        state_names=['logT', 'logTm', 'logTw', 'logTmw']
        ),
    'ptrans': OdeSystem(
        'ptrans', ptrans_ode, ptrans_ode_dx, ptrans_ode_dtheta, 5, 6,
        theta_lower=np.zeros(6), state_names=['S', 'dS', 'R', 'RS', 'RPP']
        ),
    }


def get_ode(value):
    '''
    Returns the `OdeSystem` named `value`. If `value` is already an
    `OdeSystem` then it is returned.
    '''
    if isinstance(value, OdeSystem):
        return value

    elif isinstance(value, str):
        if value in _PREDEFINED:
            return _PREDEFINED[value]

        raise ValueError(
            "Cannot interpret '%s' as an ODE model. Use one of %s"
            % (value, sorted(_PREDEFINED.keys()))
            )

    else:
        raise ValueError('Cannot interpret %s as an ODE model.' % (value,))
