import inspect
from contextlib import contextmanager

import numpy as np


_SHAPE_ASSERTIONS = True


def assert_shape(arr, shape, label='array'):
  '''
  Raises a ValueError if `arr` does not have the specified shape

  Parameters
  ----------
  arr : array-like

  shape : tuple
    The shape requirement for `arr`. This can have `None` to indicate that an
    axis can have any length. This can also have an Ellipsis to only enforce
    the shape for the first and/or last dimensions of `arr`

  label : str
    What to call `arr` in the error

  '''
  if not _SHAPE_ASSERTIONS:
    return

  if hasattr(arr, 'shape'):
    arr_shape = arr.shape
  else:
    arr_shape = np.shape(arr)

  arr_ndim = len(arr_shape)
  if Ellipsis in shape:
    start_shape = shape[:shape.index(Ellipsis)]
    end_shape = shape[shape.index(Ellipsis) + 1:]
    start_ndim = len(start_shape)
    end_ndim = len(end_shape)
    if arr_ndim < (start_ndim + end_ndim):
      raise ValueError(
        '%s is %d dimensional but it should have at least %d dimensions' %
        (label, arr_ndim, start_ndim + end_ndim))

    pairs = list(zip(range(start_ndim), arr_shape[:start_ndim], start_shape))
    pairs += list(zip(range(arr_ndim - end_ndim, arr_ndim),
                      arr_shape[arr_ndim - end_ndim:],
                      end_shape))

  else:
    if arr_ndim != len(shape):
      raise ValueError(
        '%s is %d dimensional but it should have %d dimensions'
        % (label, arr_ndim, len(shape)))

    pairs = list(zip(range(arr_ndim), arr_shape, shape))

  for axis, i, j in pairs:
    if j is None:
      continue

    if i != j:
      raise ValueError(
        'axis %d of %s has length %d but it should have length %d'
        % (axis, label, i, j))

  return


@contextmanager
def no_shape_assertions():
  '''
  Context manager that causes `assert_shape` to do nothing
  '''
  global _SHAPE_ASSERTIONS
  enter_state = _SHAPE_ASSERTIONS
  _SHAPE_ASSERTIONS = False
  try:
    yield None
  finally:
    _SHAPE_ASSERTIONS = enter_state


def as_time_vector(t, label='t'):
  '''
  Returns `t` as a 1-D float array of finite time points. Scalars are promoted
  to length one arrays.
  '''
  t = np.array(t, dtype=float, ndmin=1)
  assert_shape(t, (None,), label)
  if not np.all(np.isfinite(t)):
    raise ValueError('%s contains non-finite values' % label)

  return t


def as_parameter_vector(phi, count=None, label='phi'):
  '''
  Returns `phi` as a 1-D float array. If `count` is given then `phi` must have
  exactly that many entries.
  '''
  phi = np.array(phi, dtype=float, ndmin=1)
  assert_shape(phi, (count,), label)
  return phi


def get_arg_count(func):
  '''
  Returns the number of arguments that can be specified positionally for a
  function. If this cannot be inferred then -1 is returned.
  '''
  params = inspect.signature(func).parameters
  # if a parameter has kind 2, then it is a variable positional argument
  if any(p.kind == 2 for p in params.values()):
    return -1

  # kind 0 is positional only and kind 1 is positional or keyword
  out = sum((p.kind == 0) | (p.kind == 1) for p in params.values())
  return out
