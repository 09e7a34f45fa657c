'''
Gaussian process covariances for manifold-constrained inference of ordinary
differential equations.
'''
from magi._version import __version__
from magi.kernels import (get_kernel, create_rbf_kernel,
                          create_matern52_kernel, create_general_matern_kernel)
from magi.banded import mat2band, BandedMatrix
from magi.gpcov import calculate_gp_covariances, GPCov
from magi.odes import get_ode, OdeSystem
