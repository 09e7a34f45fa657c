import unittest
import warnings

import numpy as np

import magi.kernels
from magi.gpcov import calculate_gp_covariances, GPCov
from magi.kernels import UnsupportedDerivativeWarning
np.random.seed(1)

VAR = 1.5
LENGTHSCALE = 0.8
TVEC = np.linspace(0.0, 1.0, 6)
BANDSIZE = 2
JITTER = 1e-6


def _band_part(A, bandsize):
  return np.triu(np.tril(A, bandsize), -bandsize)


def _default_gpcov(**kwargs):
  inputs = dict(kernel='mat52', phi=[VAR, LENGTHSCALE], tvec=TVEC,
                bandsize=BANDSIZE, jitter=JITTER)
  inputs.update(kwargs)
  return calculate_gp_covariances(**inputs)


def _unsupported_warnings(record):
  return [w for w in record
          if issubclass(w.category, UnsupportedDerivativeWarning)]


class Test(unittest.TestCase):
  def test_shapes(self):
    cov = _default_gpcov()
    self.assertIsInstance(cov, GPCov)
    self.assertEqual(cov.n, 6)
    for M in [cov.C, cov.Cinv, cov.Cprime, cov.Cdoubleprime, cov.mphi,
              cov.Kphi, cov.Kinv]:
      self.assertEqual(M.shape, (6, 6))

    for B in [cov.CinvBand, cov.mphiBand, cov.KinvBand]:
      self.assertEqual(B.shape, (6, 6))
      self.assertEqual(B.bandwidths, (BANDSIZE, BANDSIZE))

  def test_inputs_stored(self):
    cov = _default_gpcov()
    self.assertTrue(np.array_equal(cov.phi, [VAR, LENGTHSCALE]))
    self.assertTrue(np.array_equal(cov.tvec, TVEC))
    self.assertEqual(cov.bandsize, BANDSIZE)
    self.assertEqual(cov.complexity, 2)
    self.assertEqual(cov.jitter, JITTER)
    self.assertEqual(cov.notices, ())
    self.assertTrue(cov.has_derivatives)

  def test_covariance(self):
    cov = _default_gpcov()
    self.assertTrue(np.allclose(cov.C, cov.C.T))
    self.assertTrue(np.allclose(np.diag(cov.C), VAR))
    self.assertTrue(np.all(np.linalg.eigvalsh(cov.C) > 0.0))
    r = np.abs(TVEC[:, None] - TVEC[None, :])
    z = np.sqrt(5)*r/LENGTHSCALE
    soln = VAR*(1 + z + z**2/3)*np.exp(-z)
    self.assertTrue(np.allclose(cov.C, soln))

  def test_inverse(self):
    cov = _default_gpcov()
    eye = np.eye(6)
    err = cov.Cinv.dot(cov.C + JITTER*eye) - eye
    self.assertTrue(np.max(np.abs(err)) < 1e-6)
    self.assertTrue(np.array_equal(cov.Cinv, cov.Cinv.T))

  def test_derivatives(self):
    cov = _default_gpcov()
    self.assertTrue(np.allclose(cov.Cprime, -cov.Cprime.T))
    self.assertTrue(np.all(np.diag(cov.Cprime) == 0.0))
    self.assertTrue(np.allclose(cov.Cdoubleprime, cov.Cdoubleprime.T))
    self.assertTrue(np.allclose(np.diag(cov.Cdoubleprime),
                                5*VAR/(3*LENGTHSCALE**2), rtol=1e-5))

  def test_conditional_quantities(self):
    cov = _default_gpcov()
    self.assertTrue(np.allclose(cov.mphi, cov.Cprime.dot(cov.Cinv)))
    K = cov.Cdoubleprime - cov.mphi.dot(cov.Cprime.T)
    soln = 0.5*(K + K.T) + JITTER*np.eye(6)
    self.assertTrue(np.allclose(cov.Kphi, soln))
    self.assertTrue(np.array_equal(cov.Kphi, cov.Kphi.T))
    self.assertTrue(np.all(np.linalg.eigvalsh(cov.Kphi) > 0.0))
    err = cov.Kinv.dot(cov.Kphi) - np.eye(6)
    self.assertTrue(np.max(np.abs(err)) < 1e-6)
    err = cov.Kphi.dot(cov.Kinv) - np.eye(6)
    self.assertTrue(np.max(np.abs(err)) < 1e-6)

  def test_bands(self):
    cov = _default_gpcov()
    self.assertTrue(np.array_equal(cov.CinvBand.toarray(),
                                   _band_part(cov.Cinv, BANDSIZE)))
    self.assertTrue(np.array_equal(cov.mphiBand.toarray(),
                                   _band_part(cov.mphi, BANDSIZE)))
    self.assertTrue(np.array_equal(cov.KinvBand.toarray(),
                                   _band_part(cov.Kinv, BANDSIZE)))
    self.assertEqual(cov.KinvBand[0, 3], 0.0)
    full = _default_gpcov(bandsize=5)
    self.assertTrue(np.array_equal(full.KinvBand.toarray(), full.Kinv))

  def test_immutable(self):
    cov = _default_gpcov()
    with self.assertRaises(ValueError):
      cov.C[0, 0] = 0.0

    with self.assertRaises(ValueError):
      cov.CinvBand.data[0, 0] = 0.0

    with self.assertRaises(AttributeError):
      cov.C = np.eye(6)

  def test_inputs_are_copied(self):
    tvec = TVEC.copy()
    phi = np.array([VAR, LENGTHSCALE])
    cov = _default_gpcov(tvec=tvec, phi=phi)
    tvec[0] = 10.0
    phi[0] = 10.0
    self.assertEqual(cov.tvec[0], 0.0)
    self.assertEqual(cov.phi[0], VAR)

  def test_single_point(self):
    cov = _default_gpcov(tvec=[1.0], bandsize=0)
    self.assertTrue(np.allclose(cov.C, [[VAR]]))
    self.assertTrue(np.allclose(cov.Cinv, [[1.0/(VAR + JITTER)]]))
    self.assertTrue(np.allclose(cov.Cprime, [[0.0]]))
    self.assertEqual(cov.CinvBand.bandwidths, (0, 0))

  def test_unsupported_kernel(self):
    with warnings.catch_warnings(record=True) as w:
      warnings.simplefilter('always')
      cov = _default_gpcov(kernel='white', phi=[1.0])

    self.assertEqual(len(_unsupported_warnings(w)), 1)
    self.assertEqual(len(cov.notices), 1)
    self.assertFalse(cov.has_derivatives)
    zeros = np.zeros((6, 6))
    self.assertTrue(np.array_equal(cov.Cprime, zeros))
    self.assertTrue(np.array_equal(cov.Cdoubleprime, zeros))
    self.assertTrue(np.array_equal(cov.mphi, zeros))
    self.assertTrue(np.allclose(cov.Kphi, JITTER*np.eye(6)))
    self.assertTrue(np.allclose(cov.Kinv, np.eye(6)/JITTER))
    self.assertTrue(np.allclose(cov.C, np.eye(6)))

  def test_rough_kernel_falls_back(self):
    with warnings.catch_warnings(record=True) as w:
      warnings.simplefilter('always')
      cov = _default_gpcov(kernel='mat12')

    self.assertEqual(len(_unsupported_warnings(w)), 1)
    self.assertTrue(np.array_equal(cov.mphi, np.zeros((6, 6))))

  def test_plain_callable_kernel(self):
    def cov_func(t1, t2):
      return np.exp(-(t1 - t2)**2)

    with warnings.catch_warnings(record=True) as w:
      warnings.simplefilter('always')
      cov = calculate_gp_covariances(cov_func, None, TVEC, BANDSIZE)

    self.assertEqual(len(_unsupported_warnings(w)), 1)
    soln = np.exp(-(TVEC[:, None] - TVEC[None, :])**2)
    self.assertTrue(np.allclose(cov.C, soln))

  def test_singular_covariance(self):
    # C + jitter*I is exactly zero
    def cov_func(t1, t2):
      return -JITTER*(t1 == t2)

    with warnings.catch_warnings():
      warnings.simplefilter('ignore', UnsupportedDerivativeWarning)
      with self.assertRaises(np.linalg.LinAlgError):
        calculate_gp_covariances(cov_func, None, TVEC, BANDSIZE,
                                 jitter=JITTER)

  def test_complexity_zero(self):
    with warnings.catch_warnings(record=True) as w:
      warnings.simplefilter('always')
      cov = _default_gpcov(complexity=0)

    self.assertEqual(len(_unsupported_warnings(w)), 0)
    self.assertEqual(cov.notices, ())
    self.assertFalse(cov.has_derivatives)
    self.assertTrue(np.array_equal(cov.Cprime, np.zeros((6, 6))))
    self.assertTrue(np.allclose(cov.Kphi, JITTER*np.eye(6)))
    self.assertTrue(np.allclose(cov.Kinv, np.eye(6)/JITTER))
    # the regression quantities are unaffected
    self.assertTrue(np.allclose(cov.Cinv, _default_gpcov().Cinv))

  def test_bound_kernel(self):
    k = magi.kernels.create_matern52_kernel(VAR, LENGTHSCALE)
    cov1 = calculate_gp_covariances(k, None, TVEC, BANDSIZE, jitter=JITTER)
    cov2 = _default_gpcov()
    self.assertTrue(np.array_equal(cov1.phi, cov2.phi))
    self.assertTrue(np.allclose(cov1.C, cov2.C))
    self.assertTrue(np.allclose(cov1.Kinv, cov2.Kinv))
    cov3 = calculate_gp_covariances(k, [VAR, LENGTHSCALE], TVEC, BANDSIZE)
    self.assertTrue(np.allclose(cov1.C, cov3.C))
    with self.assertRaises(ValueError):
      calculate_gp_covariances(k, [1.0, 1.0], TVEC, BANDSIZE)

  def test_kernel_families(self):
    tvec = np.linspace(0.0, 1.0, 5)
    cov_mat32 = calculate_gp_covariances('mat32', [2.5, 0.3], tvec, 2)
    cov_se = calculate_gp_covariances('se', [2.5, 0.3], tvec, 2)
    for cov in [cov_mat32, cov_se]:
      self.assertTrue(np.allclose(np.diag(cov.C), 2.5))
      self.assertTrue(cov.has_derivatives)

    self.assertFalse(np.allclose(cov_mat32.C, cov_se.C))
    self.assertTrue(np.allclose(np.diag(cov_mat32.Cdoubleprime),
                                3*2.5/0.3**2))
    self.assertTrue(np.allclose(np.diag(cov_se.Cdoubleprime), 2.5/0.3**2))

  def test_general_matern(self):
    k = magi.kernels.create_general_matern_kernel(VAR, LENGTHSCALE, 2.2)
    cov = calculate_gp_covariances(k, None, TVEC, BANDSIZE)
    self.assertTrue(cov.has_derivatives)
    self.assertTrue(np.all(np.linalg.eigvalsh(cov.Kphi) > 0.0))

  def test_jitter_sweep(self):
    tvec = np.linspace(0.0, 0.1, 11)
    phi = [1.0, 0.05]
    conds = []
    for jitter in [1e-8, 1e-6, 1e-4, 1e-2]:
      cov = calculate_gp_covariances('mat52', phi, tvec, 2, complexity=0,
                                     jitter=jitter)
      conds.append(cov.cond_C())
      if jitter >= 1e-4:
        self.assertTrue(cov.cond_C() < 1e8)

    self.assertTrue(np.all(np.diff(conds) < 0.0))

  def test_ill_conditioned_derivatives(self):
    tvec = np.linspace(0.0, 0.1, 11)
    for jitter in [1e-4, 1e-2]:
      cov = calculate_gp_covariances('mat52', [1.0, 0.05], tvec, 2,
                                     jitter=jitter)
      self.assertTrue(np.all(np.isfinite(cov.Kinv)))
      self.assertTrue(cov.cond_C() < 1e8)
      self.assertTrue(np.isfinite(cov.cond_Kphi()))

  def test_short_lengthscale(self):
    tvec = np.linspace(0.0, 0.1, 11)
    cov = calculate_gp_covariances('mat52', [1.0, 0.001], tvec, 2,
                                   jitter=0.01)
    self.assertTrue(np.all(np.isfinite(cov.Cinv)))
    self.assertTrue(np.all(np.isfinite(cov.Kinv)))
    self.assertTrue(cov.cond_C() < 1e8)

  def test_replace(self):
    cov = _default_gpcov()
    new = cov.replace(jitter=1e-4)
    self.assertEqual(new.jitter, 1e-4)
    self.assertEqual(cov.jitter, JITTER)
    self.assertTrue(np.array_equal(new.C, cov.C))
    new = cov.replace(phi=[2.0, LENGTHSCALE])
    self.assertTrue(np.allclose(np.diag(new.C), 2.0))
    with self.assertRaises(ValueError):
      cov.replace(not_an_input=1)

  def test_replace_bound_kernel(self):
    k = magi.kernels.create_rbf_kernel(1.0, 0.5)
    cov = calculate_gp_covariances(k, None, TVEC, BANDSIZE)
    new = cov.replace(phi=[2.0, 0.5])
    self.assertTrue(np.allclose(np.diag(new.C), 2.0))
    new = cov.replace(kernel=magi.kernels.create_rbf_kernel(3.0, 0.5))
    self.assertTrue(np.allclose(np.diag(new.C), 3.0))

  def test_preconditions(self):
    bad_inputs = [
      {'bandsize': 6},
      {'bandsize': -1},
      {'bandsize': 1.5},
      {'complexity': 1},
      {'jitter': 0.0},
      {'jitter': -1e-6},
      {'jitter': np.nan},
      {'tvec': []},
      {'tvec': [0.0, np.nan, 1.0]},
      {'tvec': np.zeros((3, 2))},
      {'phi': [VAR]},
      {'phi': [VAR, -LENGTHSCALE]},
      {'phi': None},
      {'kernel': 'not_a_kernel'}
      ]
    for kwargs in bad_inputs:
      with self.assertRaises(ValueError):
        _default_gpcov(**kwargs)
