"""lininterp: sparse linear interpolation operators with exact adjoints.

.. include:: ../README.md
"""

from __future__ import annotations

__docformat__ = 'google'
__version__ = '0.1.0'
__version_info__ = tuple(int(num) for num in __version__.split('.'))

from collections.abc import Callable, Sequence
import abc
import copy
import dataclasses
import logging
import math
import typing
from typing import Any, Union

import numpy as np
import numpy.typing as npt
import scipy.interpolate
import scipy.sparse
import scipy.sparse.linalg

if typing.TYPE_CHECKING:
  _DType = np.dtype[Any]
  _NDArray = npt.NDArray[Any]
  _DTypeLike = npt.DTypeLike
  _ArrayLike = npt.ArrayLike
else:
  _DType = Any
  _NDArray = Any
  _DTypeLike = Any  # Else `pdoc` uses a long type expression for documentation.
  _ArrayLike = Any  # Same.

_Coords = Union[_ArrayLike, Callable[..., _ArrayLike]]

_logger = logging.getLogger(__name__)


class InterpolationError(Exception):
  """Base class for the errors raised by this package."""


class InvalidLength(InterpolationError, ValueError):
  """A dimension length is not positive."""


class InvalidSupport(InterpolationError, ValueError):
  """A kernel support is not positive or does not match the limits it is used with."""


class DimensionMismatch(InterpolationError, ValueError):
  """The shapes of coordinates, source, or destination arrays disagree."""


class OutOfRangeCoordinate(InterpolationError, ValueError):
  """A coordinate lies outside the domain and the boundary policy disallows extrapolation."""


def _get_weight_dtype(dtype: _DTypeLike) -> _DType:
  """Return the floating type used for the interpolation weights."""
  dtype = np.dtype(dtype)
  if not np.issubdtype(dtype, np.floating):
    raise ValueError(f'Precision {dtype} is not floating.')
  return dtype


def _normalize_shape(shape: int | Sequence[int]) -> tuple[int, ...]:
  """Return `shape` as a tuple, accepting a scalar length for 1D arrays."""
  if np.ndim(shape) == 0:
    return (int(typing.cast(int, shape)),)
  return tuple(int(n) for n in typing.cast(Sequence[int], shape))


def _sinc(x: _ArrayLike) -> _NDArray:
  """Return `np.sinc(x)` but with exact zeros at nonzero integers.

  >>> _sinc(np.array([-2.0, -1.0, 0.0, 0.5]))
  array([0.        , 0.        , 1.        , 0.63661977])
  """
  x = np.asarray(x)
  with np.errstate(under='ignore'):
    result = np.sinc(x)
  return np.where((x == np.floor(x)) & (x != 0), 0.0, result)


@dataclasses.dataclass(frozen=True)
class Kernel:
  """Abstract base class for interpolation kernels of compact support.

  A kernel of support `S` combines `S` consecutive samples.  For a coordinate `x`, the
  neighbors are `base_index(x) + offsets` and their weights are `weights(x - base_index(x))`,
  where `base_index` rounds down for even `S` and rounds to nearest for odd `S`.

  Each kernel carries a hint `boundary` naming the boundary policy (in `BOUNDARIES`) applied
  when no policy is explicitly requested.
  """

  name: str
  """Kernel name."""

  support: int
  """Number of samples combined by each evaluation (denoted `S`)."""

  boundary: str = 'flat'
  """Name of the default boundary policy for this kernel."""

  interpolating: bool = True
  """True if self(0) == 1.0 and self(i) == 0.0 for all nonzero integers i."""

  partition_of_unity: bool = True
  """True if the weights sum to one for any fractional offset."""

  def __post_init__(self) -> None:
    if self.support < 1:
      raise InvalidSupport(f'Kernel {self.name!r} has support {self.support} < 1.')

  @abc.abstractmethod
  def __call__(self, x: _ArrayLike) -> _NDArray:
    """Return evaluation of the kernel function at locations x."""

  @property
  def offsets(self) -> _NDArray:
    """Integer offsets of the `S` neighbors relative to the base index."""
    return np.arange(self.support) - (self.support - 1) // 2

  def base_index(self, x: _ArrayLike) -> _NDArray:
    """Return the (float-valued) integer base index of each coordinate in `x`."""
    x = np.asarray(x)
    return np.floor(x + 0.5) if self.support % 2 == 1 else np.floor(x)

  def weights(self, t: _ArrayLike) -> _NDArray:
    """Return the `S` weights for fractional offsets `t`, with shape `t.shape + (S,)`."""
    t = np.asarray(t)
    return self(t[..., None] - self.offsets)

  def with_boundary(self, boundary: str) -> Kernel:
    """Return a copy of this kernel whose default boundary policy is `boundary`."""
    kernel = copy.copy(self)
    object.__setattr__(kernel, 'boundary', boundary)
    return kernel


class BoxKernel(Kernel):
  """Nearest-neighbor kernel, with value 1.0 over the half-open interval [-.5, .5)."""

  def __init__(self, *, boundary: str = 'flat') -> None:
    super().__init__(name='box', support=1, boundary=boundary)

  def __call__(self, x: _ArrayLike) -> _NDArray:
    x = np.asarray(x)
    return np.where((-0.5 <= x) & (x < 0.5), 1.0, 0.0)

  def weights(self, t: _ArrayLike) -> _NDArray:
    # Rounding in base_index() may leave t just outside [-.5, .5).
    return np.ones(np.shape(t) + (1,))


class TriangleKernel(Kernel):
  """Piecewise-linear kernel, also known as the hat or tent function."""

  def __init__(self, *, boundary: str = 'flat') -> None:
    super().__init__(name='triangle', support=2, boundary=boundary)

  def __call__(self, x: _ArrayLike) -> _NDArray:
    return (1.0 - np.abs(x)).clip(0.0, 1.0)


class BsplineKernel(Kernel):
  """B-spline of a non-negative degree, with support `degree + 1`.

  With `degree >= 2`, the kernel is no longer interpolating.
  """

  def __init__(self, *, degree: int, boundary: str = 'flat') -> None:
    super().__init__(name=f'bspline{degree}', support=degree + 1, boundary=boundary,
                     interpolating=(degree <= 1))
    self.degree = degree
    self.bspline = scipy.interpolate.BSpline.basis_element(list(range(degree + 2)))

  def __call__(self, x: _ArrayLike) -> _NDArray:
    x = np.abs(x)
    radius = self.support / 2
    return np.where(x < radius, self.bspline(x + radius), 0.0)

  def weights(self, t: _ArrayLike) -> _NDArray:
    if self.degree == 0:  # Same as BoxKernel; t may reach -.5 exactly.
      return np.ones(np.shape(t) + (1,))
    return super().weights(t)


class CubicKernel(Kernel):
  """Family of cubic kernels parameterized by two scalar parameters.

  Args:
    b: first scalar parameter.
    c: second scalar parameter.

  [D. P. Mitchell and A. N. Netravali.  Reconstruction filters in computer graphics.
  Computer Graphics (Proceedings of ACM SIGGRAPH 1988), 22(4):221-228, 1988.]

  - The kernel is interpolating iff b == 0.
  - (b=1, c=0) is the cubic B-spline basis;
  - (b=1/3, c=1/3) is the Mitchell kernel;
  - (b=0, c=0.5) is the Catmull-Rom spline.
  """

  def __init__(self, *, b: float, c: float, name: str | None = None,
               boundary: str = 'flat') -> None:
    name = f'cubic_b{b}_c{c}' if name is None else name
    super().__init__(name=name, support=4, boundary=boundary, interpolating=(b == 0))
    self.b, self.c = b, c

  def __call__(self, x: _ArrayLike) -> _NDArray:
    x = np.abs(x)
    b, c = self.b, self.c
    f3, f2, f0 = 2 - 9/6*b - c, -3 + 2*b + c, 1 - 1/3*b
    g3, g2, g1, g0 = -b/6 - c, b + 5*c, -2*b - 8*c, 8/6*b + 4*c
    v01 = ((f3 * x + f2) * x) * x + f0
    v12 = ((g3 * x + g2) * x + g1) * x + g0
    return np.where(x < 1.0, v01, np.where(x < 2.0, v12, 0.0))


class CatmullRomKernel(CubicKernel):
  """Interpolating cubic kernel with cubic precision, also known as the Keys kernel."""

  def __init__(self, *, boundary: str = 'flat') -> None:
    super().__init__(b=0, c=0.5, name='cubic', boundary=boundary)


class MitchellKernel(CubicKernel):
  """Non-interpolating cubic kernel balancing blur and ringing."""

  def __init__(self, *, boundary: str = 'flat') -> None:
    super().__init__(b=1/3, c=1/3, name='mitchell', boundary=boundary)


class LanczosKernel(Kernel):
  """Sinc function modulated by a sinc window over [-radius, radius].

  The weights of this kernel do not exactly sum to one.
  """

  def __init__(self, *, radius: int, boundary: str = 'flat') -> None:
    super().__init__(name=f'lanczos{radius}', support=2 * radius, boundary=boundary,
                     partition_of_unity=False)
    self.radius = radius

  def __call__(self, x: _ArrayLike) -> _NDArray:
    x = np.abs(x)
    return np.where(x < self.radius, _sinc(x) * _sinc(x / self.radius), 0.0)


_DEFAULT_KERNEL = 'linear'

_DICT_KERNELS: dict[str, Kernel] = {
    'nearest': BoxKernel(),
    'linear': TriangleKernel(),
    'quadratic': BsplineKernel(degree=2),
    'cubic': CatmullRomKernel(),
    'mitchell': MitchellKernel(),
    'bspline3': BsplineKernel(degree=3),
    'lanczos2': LanczosKernel(radius=2),
    'lanczos3': LanczosKernel(radius=3),
}

KERNELS = list(_DICT_KERNELS)
r"""Shortcut names for the predefined kernels:

| name          | `Kernel`                    | support | comments |
|---------------|-----------------------------|:-------:|----------|
| `'nearest'`   | `BoxKernel()`               | 1 | nearest neighbor |
| `'linear'`    | `TriangleKernel()`          | 2 | *bilinear* in 2D |
| `'quadratic'` | `BsplineKernel`(degree=2)   | 3 | non-interpolating |
| `'cubic'`     | `CatmullRomKernel()`        | 4 | *catmullrom*, *keys* |
| `'mitchell'`  | `MitchellKernel()`          | 4 | non-interpolating |
| `'bspline3'`  | `BsplineKernel`(degree=3)   | 4 | non-interpolating |
| `'lanczos2'`  | `LanczosKernel`(radius=2)   | 4 | not a partition of unity |
| `'lanczos3'`  | `LanczosKernel`(radius=3)   | 6 | not a partition of unity |
"""


def _get_kernel(kernel: str | Kernel) -> Kernel:
  """Return a `Kernel`, which can be specified as a name in `KERNELS`."""
  return kernel if isinstance(kernel, Kernel) else _DICT_KERNELS[kernel]


@dataclasses.dataclass(frozen=True)
class Limits:
  """Abstract base class for boundary policies along one dimension.

  A `Limits` combines the length `size` of a dimension with a rule deciding what becomes of
  neighbor indices outside `[0, size - 1]`.  Concrete policies implement `resolve` and may
  override `check_coordinates` to reject extrapolation.
  """

  size: int
  """Number of samples along the dimension."""

  support: int = 1
  """Support of the kernel for which these limits are built."""

  def __post_init__(self) -> None:
    if self.size < 1:
      raise InvalidLength(f'Dimension length {self.size} is not positive.')
    if self.support < 1:
      raise InvalidSupport(f'Kernel support {self.support} is not positive.')

  @property
  def first(self) -> int:
    """Index of the first sample."""
    return 0

  @property
  def last(self) -> int:
    """Index of the last sample."""
    return self.size - 1

  @property
  def inferior(self) -> int:
    """Coordinate below which all the neighbors lie before the first sample."""
    return -self.support

  @property
  def superior(self) -> int:
    """Coordinate above which all the neighbors lie after the last sample."""
    return self.size - 1 + self.support

  def clamp(self, index: _ArrayLike) -> _NDArray:
    """Return `index` clamped to `[0, size - 1]`."""
    return np.clip(index, 0, self.size - 1)

  @abc.abstractmethod
  def resolve(self, index: _NDArray) -> tuple[_NDArray, _NDArray]:
    """Map integer neighbor indices to `(valid_index, valid)`.

    All entries of `valid_index` lie in `[0, size - 1]`; entries where the boolean `valid` is
    False must contribute with zero weight.
    """

  def check_coordinates(self, x: _NDArray) -> None:
    """Raise `OutOfRangeCoordinate` if the policy disallows interpolating at `x`."""

  def apply(self, index: _NDArray, weight: _NDArray) -> tuple[_NDArray, _NDArray]:
    """Return `index, weight` with all indices in range and zero weights for dropped ones."""
    index, valid = self.resolve(index)
    weight = np.where(valid, weight, 0.0).astype(weight.dtype, copy=False)
    return index, weight


class FlatLimits(Limits):
  """Replicate the edge samples beyond the boundaries (*clamp-to-edge*)."""

  def resolve(self, index: _NDArray) -> tuple[_NDArray, _NDArray]:
    return self.clamp(index), np.ones(np.shape(index), bool)


class SafeFlatLimits(Limits):
  """Clamp to the edge but give zero weight to neighbors beyond the boundaries."""

  def resolve(self, index: _NDArray) -> tuple[_NDArray, _NDArray]:
    valid = (index >= 0) & (index < self.size)
    return self.clamp(index), valid


class StrictLimits(FlatLimits):
  """Like `FlatLimits` inside the domain, but reject coordinates outside `[0, size - 1]`."""

  def check_coordinates(self, x: _NDArray) -> None:
    outside = ~((x >= 0) & (x <= self.size - 1))
    if np.any(outside):
      value = np.asarray(x)[outside].flat[0]
      raise OutOfRangeCoordinate(
          f'Coordinate {value} lies outside the domain [0, {self.size - 1}].')


_DICT_LIMITS: dict[str, type[Limits]] = {
    'flat': FlatLimits,
    'safeflat': SafeFlatLimits,
    'strict': StrictLimits,
}

BOUNDARIES = list(_DICT_LIMITS)
"""Shortcut names for the predefined boundary policies:

| name         | comments |
|--------------|----------|
| `'flat'`     | *clamp*, *edge*, repeat the edge sample |
| `'safeflat'` | neighbors beyond the edges get zero weight |
| `'strict'`   | like `'flat'` but coordinates outside the domain raise `OutOfRangeCoordinate` |

New policies subclass `Limits`; they can be passed as a class or an instance.
"""


def _get_limits_class(boundary: str | type[Limits]) -> type[Limits]:
  """Return a `Limits` subclass, which can be specified as a name in `BOUNDARIES`."""
  if isinstance(boundary, type) and issubclass(boundary, Limits):
    return boundary
  return _DICT_LIMITS[typing.cast(str, boundary)]


def limits(kernel: str | Kernel, size: int,
           boundary: str | type[Limits] | Limits | None = None) -> Limits:
  """Return the limits for interpolating with `kernel` along a dimension of length `size`.

  Args:
    kernel: Interpolation kernel, as a name in `KERNELS` or a `Kernel` instance.
    size: Number of samples along the dimension.
    boundary: Boundary policy, as a name in `BOUNDARIES`, a `Limits` subclass, or a `Limits`
      instance.  If `None`, the policy hinted by `kernel.boundary` is used.
  """
  kernel = _get_kernel(kernel)
  boundary = kernel.boundary if boundary is None else boundary
  if isinstance(boundary, Limits):
    if boundary.size != size:
      raise DimensionMismatch(f'Limits of size {boundary.size} used for a dimension of {size}.')
    if boundary.support != kernel.support:
      raise InvalidSupport(f'Limits for support {boundary.support} used with kernel'
                           f' {kernel.name!r} of support {kernel.support}.')
    return boundary
  return _get_limits_class(boundary)(size, kernel.support)


def getcoefs(kernel: str | Kernel, lim: Limits, x: _ArrayLike,
             dtype: _DTypeLike = np.float64) -> tuple[_NDArray, _NDArray]:
  """Return the neighbor indices and weights for interpolating at coordinates `x`.

  Args:
    kernel: Interpolation kernel, as a name in `KERNELS` or a `Kernel` instance.
    lim: Limits of the interpolated dimension, e.g. as returned by `limits()`.
    x: Coordinates (of any shape), where `x == k` denotes sample `k`.
    dtype: Floating type of the computed weights.

  Returns:
    index: Integer array of shape `x.shape + (S,)` with all entries in `[0, lim.size - 1]`.
    weight: Array of shape `x.shape + (S,)`; dropped neighbors have zero weight.

  A NaN coordinate raises `OutOfRangeCoordinate` under `StrictLimits`; under other limits it
  yields NaN weights on the neighbors of index 0.

  >>> index, weight = getcoefs('linear', limits('linear', 10), 2.25)
  >>> index.tolist(), weight.tolist()
  ([2, 3], [0.75, 0.25])
  """
  kernel = _get_kernel(kernel)
  if kernel.support != lim.support:
    raise InvalidSupport(f'Kernel {kernel.name!r} of support {kernel.support} used with'
                         f' limits for support {lim.support}.')
  dtype = _get_weight_dtype(dtype)
  x = np.asarray(x, dtype)
  lim.check_coordinates(x)
  # Beyond these bounds, the neighbors are all out of range; clipping keeps the integer
  # conversion finite.
  x = x.clip(lim.inferior, lim.superior)
  # NaN coordinates get NaN weights on the neighbors of index 0.
  base = kernel.base_index(x)
  weight = np.asarray(kernel.weights(x - base), dtype)
  base = np.where(np.isnan(base), 0.0, base)
  if weight.shape != x.shape + (kernel.support,):
    raise InvalidSupport(f'Kernel {kernel.name!r} of support {kernel.support} returned weights'
                         f' of shape {weight.shape} for coordinates of shape {x.shape}.')
  index = base.astype(np.intp)[..., None] + kernel.offsets
  return lim.apply(index, weight)


def _gather(array: _NDArray, index: _NDArray, weight: _NDArray, axis: int) -> _NDArray:
  """Return the weighted combinations of the samples of `array` along `axis`.

  Arrays `index` and `weight` have shape `coord_shape + (S,)`; the result has shape
  `array.shape[:axis] + coord_shape + array.shape[axis + 1:]`.
  """
  num_coord_dims = index.ndim - 1
  a = np.moveaxis(array, axis, 0)
  rest = a.shape[1:]
  samples = a[index]  # coord_shape + (S,) + rest.
  w = weight.reshape(weight.shape + (1,) * len(rest))
  result = (w * samples).sum(axis=num_coord_dims)
  return np.moveaxis(result, tuple(range(num_coord_dims)),
                     tuple(range(axis, axis + num_coord_dims)))


def _scatter(array: _NDArray, index: _NDArray, weight: _NDArray, size: int,
             axis: int) -> _NDArray:
  """Return the transpose of `_gather`, accumulating into a dimension of length `size`."""
  num_coord_dims = index.ndim - 1
  a = np.moveaxis(array, tuple(range(axis, axis + num_coord_dims)),
                  tuple(range(num_coord_dims)))
  rest = a.shape[num_coord_dims:]
  w = weight.reshape(weight.shape + (1,) * len(rest))
  contributions = w * np.expand_dims(a, num_coord_dims)  # coord_shape + (S,) + rest.
  result = np.zeros((size,) + rest, np.result_type(a, weight))
  np.add.at(result, index, contributions)  # Unbuffered, so repeated indices accumulate.
  return np.moveaxis(result, 0, axis)


MODES = ['direct', 'adjoint']
"""Operations of an `Interpolator`: the interpolation itself and its exact transpose."""


class Interpolator:
  """Abstract base class for linear interpolation operators.

  An interpolator maps arrays of shape `input_shape` to arrays of shape `output_shape`
  (`'direct'` mode), and arrays of shape `output_shape` back to `input_shape` through the exact
  transpose of that linear map (`'adjoint'` mode).  Instances are immutable and may be applied
  to any number of arrays.
  """

  dtype: _DType
  """Floating type of the interpolation weights."""

  @property
  @abc.abstractmethod
  def input_shape(self) -> tuple[int, ...]:
    """Shape of the source arrays in `'direct'` mode."""

  @property
  @abc.abstractmethod
  def output_shape(self) -> tuple[int, ...]:
    """Shape of the result arrays in `'direct'` mode."""

  @abc.abstractmethod
  def _direct(self, src: _NDArray) -> _NDArray:
    """Return the interpolation of `src`, whose shape is already checked."""

  @abc.abstractmethod
  def _adjoint(self, src: _NDArray) -> _NDArray:
    """Return the transpose of the interpolation applied to `src`."""

  def _get_shapes(self, mode: str) -> tuple[tuple[int, ...], tuple[int, ...]]:
    """Return the source and destination shapes for `mode`."""
    if mode == 'direct':
      return self.input_shape, self.output_shape
    if mode == 'adjoint':
      return self.output_shape, self.input_shape
    raise ValueError(f'Mode {mode!r} is not in {MODES}.')

  @staticmethod
  def _check_array(array: _NDArray, shape: tuple[int, ...], what: str) -> None:
    if not np.issubdtype(array.dtype, np.number):
      raise ValueError(f'{what} type {array.dtype} is not numeric.')
    if array.shape != shape:
      raise DimensionMismatch(f'{what} has shape {array.shape} instead of {shape}.')

  def apply(self, src: _ArrayLike, mode: str = 'direct') -> _NDArray:
    """Return the result of the operation `mode` (in `MODES`) on `src`."""
    src_shape, _ = self._get_shapes(mode)
    src = np.asarray(src)
    self._check_array(src, src_shape, 'Source')
    return self._direct(src) if mode == 'direct' else self._adjoint(src)

  def __call__(self, src: _ArrayLike) -> _NDArray:
    return self.apply(src)

  def apply_into(self, dst: _NDArray, src: _ArrayLike, mode: str = 'direct', *,
                 alpha: Any = 1.0, beta: Any = 0.0) -> _NDArray:
    """Overwrite `dst` with `beta * dst + alpha * op(src)` and return it.

    Shapes and types are checked before `dst` is modified.  If `beta == 0`, the prior content of
    `dst` is ignored (it may hold garbage or NaN).  If `alpha == 0`, the operator is not evaluated.

    Args:
      dst: Destination array, modified in place.
      src: Source array.
      mode: Operation in `MODES`.
      alpha: Scale factor applied to the result of the operation.
      beta: Scale factor applied to the prior content of `dst`.
    """
    src_shape, dst_shape = self._get_shapes(mode)
    src = np.asarray(src)
    self._check_array(src, src_shape, 'Source')
    self._check_array(dst, dst_shape, 'Destination')
    if alpha == 0:
      if beta == 0:
        dst[...] = 0
      elif beta != 1:
        dst *= beta
      return dst

    result = self._direct(src) if mode == 'direct' else self._adjoint(src)
    if alpha != 1:
      result = result * alpha
    dtype = result.dtype if beta == 0 else np.result_type(dst, result, beta)
    if not np.can_cast(dtype, dst.dtype, 'same_kind'):
      raise TypeError(f'Cannot store a result of type {dtype} into a destination of type'
                      f' {dst.dtype}.')
    if beta == 0:
      dst[...] = result
    else:
      if beta != 1:
        dst *= beta
      dst += result
    return dst

  def aslinearoperator(self, dtype: _DTypeLike = None) -> scipy.sparse.linalg.LinearOperator:
    """Return a `scipy.sparse.linalg.LinearOperator` acting on flattened arrays.

    Its `matvec` is the `'direct'` operation and its `rmatvec` the `'adjoint'` one, so that the
    interpolator can be used in iterative solvers such as `scipy.sparse.linalg.lsqr`.
    """
    shape = math.prod(self.output_shape), math.prod(self.input_shape)

    def matvec(v: _NDArray) -> _NDArray:
      return self._direct(np.reshape(v, self.input_shape)).reshape(-1)

    def rmatvec(v: _NDArray) -> _NDArray:
      return self._adjoint(np.reshape(v, self.output_shape)).reshape(-1)

    dtype = self.dtype if dtype is None else np.dtype(dtype)
    return scipy.sparse.linalg.LinearOperator(shape, matvec=matvec, rmatvec=rmatvec, dtype=dtype)


class _AxisInterpolator(Interpolator):
  """Common construction of the interpolators acting along one axis of the source."""

  def __init__(self, kernel: str | Kernel, x: _Coords, src_shape: int | Sequence[int], *,
               axis: int = 0, boundary: str | type[Limits] | Limits | None = None,
               shape: Sequence[int] | None = None, dtype: _DTypeLike = np.float64) -> None:
    self.kernel = _get_kernel(kernel)
    self.dtype = _get_weight_dtype(dtype)
    src_shape = _normalize_shape(src_shape)
    if not 0 <= axis < len(src_shape):
      raise DimensionMismatch(f'Axis {axis} is invalid for source shape {src_shape}.')
    self.axis = axis
    self.limits = limits(self.kernel, src_shape[axis], boundary)
    if callable(x):
      if shape is None:
        raise ValueError('The coordinate shape must be given when coordinates are a function.')
      self.coords: Any = x
      self.coord_shape = _normalize_shape(shape)
    else:
      coords = np.array(x, self.dtype)
      coords.setflags(write=False)
      self.coords = coords
      self.coord_shape = coords.shape
      if shape is not None and _normalize_shape(shape) != self.coord_shape:
        raise DimensionMismatch(
            f'Coordinates of shape {self.coord_shape} differ from the given shape {shape}.')
    self._input_shape = src_shape
    self._output_shape = src_shape[:axis] + self.coord_shape + src_shape[axis + 1:]

  @property
  def input_shape(self) -> tuple[int, ...]:
    return self._input_shape

  @property
  def output_shape(self) -> tuple[int, ...]:
    return self._output_shape

  def coordinates(self) -> _NDArray:
    """Return the interpolation coordinates, evaluating the coordinate function if any."""
    if not callable(self.coords):
      return self.coords
    x = np.asarray(self.coords(*np.indices(self.coord_shape)), self.dtype)
    if x.shape != self.coord_shape:
      raise DimensionMismatch(
          f'Coordinate function returned shape {x.shape} instead of {self.coord_shape}.')
    return x

  def coefficients(self) -> tuple[_NDArray, _NDArray]:
    """Return the neighbor indices and weights, each of shape `coord_shape + (S,)`."""
    return getcoefs(self.kernel, self.limits, self.coordinates(), self.dtype)

  def _direct(self, src: _NDArray) -> _NDArray:
    index, weight = self.coefficients()
    return _gather(src, index, weight, self.axis)

  def _adjoint(self, src: _NDArray) -> _NDArray:
    index, weight = self.coefficients()
    return _scatter(src, index, weight, self.limits.size, self.axis)


class Interpolator1D(_AxisInterpolator):
  """Interpolation along one axis, with neighbors and weights computed at each application.

  Args:
    kernel: Interpolation kernel, as a name in `KERNELS` or a `Kernel` instance.
    x: Coordinates of the interpolated positions, as an array of any shape, or as a function
      that maps the integer index arrays `*np.indices(shape)` to the coordinates.  Coordinates
      from a function are evaluated anew for each application.
    src_shape: Shape of the source array, or its length if it is 1D.
    axis: Axis of the source along which to interpolate.
    boundary: Boundary policy (see `limits()`); if `None`, the kernel hint is used.
    shape: Shape of the coordinate grid; required if `x` is a function.
    dtype: Floating type of the weights.

  The result has shape `src_shape[:axis] + x.shape + src_shape[axis + 1:]`.

  >>> interpolator = Interpolator1D('linear', [0.5, 2.0], 3)
  >>> interpolator.apply([1.0, 3.0, 4.0]).tolist()
  [2.0, 4.0]
  >>> interpolator.apply([1.0, 1.0], 'adjoint').tolist()
  [0.5, 0.5, 1.0]
  """


class TabulatedInterpolator(_AxisInterpolator):
  """Interpolation along one axis using neighbors and weights precomputed at construction.

  The arguments are those of `Interpolator1D`.  The table costs `O(S)` memory per coordinate
  and is never updated: changing the coordinates, kernel, or limits requires a new instance.
  """

  def __init__(self, kernel: str | Kernel, x: _Coords, src_shape: int | Sequence[int],
               **kwargs: Any) -> None:
    super().__init__(kernel, x, src_shape, **kwargs)
    indices, weights = getcoefs(self.kernel, self.limits, self.coordinates(), self.dtype)
    indices.setflags(write=False)
    weights.setflags(write=False)
    self.indices = indices
    """Read-only neighbor indices, of shape `coord_shape + (S,)`."""
    self.weights = weights
    """Read-only neighbor weights, of shape `coord_shape + (S,)`."""
    _logger.debug('Tabulated %s coefficients for %d coordinates (%s limits, size %d).',
                  self.kernel.name, math.prod(self.coord_shape), type(self.limits).__name__,
                  self.limits.size)

  def coefficients(self) -> tuple[_NDArray, _NDArray]:
    return self.indices, self.weights


class SparseInterpolator(_AxisInterpolator):
  """Interpolation along one axis expressed as an explicit sparse matrix.

  The arguments are those of `Interpolator1D`.  The matrix has one row per coordinate (in C
  order of the coordinate grid) and one column per source sample along `axis`; duplicate
  entries are merged and zero weights are dropped.
  """

  def __init__(self, kernel: str | Kernel, x: _Coords, src_shape: int | Sequence[int],
               **kwargs: Any) -> None:
    super().__init__(kernel, x, src_shape, **kwargs)
    index, weight = getcoefs(self.kernel, self.limits, self.coordinates(), self.dtype)
    num_rows = math.prod(self.coord_shape)
    row = np.broadcast_to(np.arange(num_rows).reshape(self.coord_shape + (1,)), index.shape)
    values = weight.reshape(-1)
    nonzero = values != 0.0
    shape = num_rows, self.limits.size
    matrix = scipy.sparse.csr_matrix(
        (values[nonzero], (row.reshape(-1)[nonzero], index.reshape(-1)[nonzero])), shape=shape)
    matrix.sum_duplicates()
    matrix.eliminate_zeros()
    self.matrix = matrix
    """Sparse matrix of shape `(prod(coord_shape), size)` in CSR format."""
    _logger.debug('Built %dx%d sparse %s interpolation matrix with %d entries.',
                  *shape, self.kernel.name, matrix.nnz)

  @property
  def rows(self) -> _NDArray:
    """Row index of each stored coefficient."""
    return self.matrix.tocoo().row

  @property
  def columns(self) -> _NDArray:
    """Column (source sample) index of each stored coefficient."""
    return self.matrix.tocoo().col

  @property
  def values(self) -> _NDArray:
    """Value of each stored coefficient, in the order of `rows` and `columns`."""
    return self.matrix.tocoo().data

  def tosparse(self) -> scipy.sparse.csr_matrix:
    """Return a copy of the interpolation matrix."""
    return self.matrix.copy()

  def _flatten_output(self, array: _NDArray) -> _NDArray:
    """Return `array` (of `output_shape`) as a matrix with one row per coordinate."""
    num_coord_dims = len(self.coord_shape)
    a = np.moveaxis(array, tuple(range(self.axis, self.axis + num_coord_dims)),
                    tuple(range(num_coord_dims)))
    return a.reshape(math.prod(self.coord_shape), -1)

  def _direct(self, src: _NDArray) -> _NDArray:
    a = np.moveaxis(src, self.axis, 0)
    rest = a.shape[1:]
    result = (self.matrix @ a.reshape(a.shape[0], -1)).reshape(self.coord_shape + rest)
    num_coord_dims = len(self.coord_shape)
    return np.moveaxis(result, tuple(range(num_coord_dims)),
                       tuple(range(self.axis, self.axis + num_coord_dims)))

  def _adjoint(self, src: _NDArray) -> _NDArray:
    rest = self.input_shape[:self.axis] + self.input_shape[self.axis + 1:]
    result = (self.matrix.T @ self._flatten_output(src)).reshape((self.limits.size,) + rest)
    return np.moveaxis(result, 0, self.axis)


def regularize(normal: Any, mu: float) -> scipy.sparse.csr_matrix:
  """Return `normal + mu * D.T @ D`, where `D` computes first-order finite differences.

  Args:
    normal: Square (sparse or dense) matrix, typically the normal matrix `A.T @ A` of a
      least-squares problem.
    mu: Non-negative regularization weight.
  """
  if mu < 0:
    raise ValueError(f'Regularization weight {mu} is negative.')
  normal = scipy.sparse.csr_matrix(normal)
  size = normal.shape[0]
  if normal.shape[1] != size:
    raise DimensionMismatch(f'Matrix of shape {normal.shape} is not square.')
  if mu == 0 or size < 2:
    return normal
  ones = np.ones(size - 1)
  difference = scipy.sparse.diags([-ones, ones], [0, 1], shape=(size - 1, size))
  return scipy.sparse.csr_matrix(normal + mu * (difference.T @ difference))


def fit(interpolator: SparseInterpolator, y: _ArrayLike, *, weights: _ArrayLike | None = None,
        mu: float = 0.0) -> _NDArray:
  """Return the source array whose interpolation best explains the samples `y`.

  Solves `(A.T W A + mu D.T D) s = A.T W y` where `A` is the interpolation matrix, `W` the
  diagonal matrix of `weights`, and `D` the first-order finite differences along the axis.

  Args:
    interpolator: Sparse interpolator defining the sample positions.
    y: Samples, of shape `interpolator.output_shape`.
    weights: Optional non-negative weights, of shape `interpolator.coord_shape`.
    mu: Non-negative regularization weight; it is needed when some source samples are not
      constrained by the coordinates.

  Returns:
    An array of shape `interpolator.input_shape`.

  Raises:
    ValueError: If the normal equations are singular.
  """
  y = np.asarray(y)
  Interpolator._check_array(y, interpolator.output_shape, 'Samples')
  a = interpolator.matrix
  yy = interpolator._flatten_output(y)
  if weights is None:
    normal = a.T @ a
    rhs = a.T @ yy
  else:
    w = np.asarray(weights, interpolator.dtype)
    if w.shape != interpolator.coord_shape:
      raise DimensionMismatch(
          f'Weights of shape {w.shape} differ from coordinates {interpolator.coord_shape}.')
    if np.any(w < 0):
      raise ValueError('Weights must be non-negative.')
    w = w.reshape(-1)
    normal = a.T @ scipy.sparse.diags(w) @ a
    rhs = a.T @ (w[:, None] * yy)
  normal = regularize(normal, mu)
  _logger.debug('Solving %dx%d normal equations for %d right-hand sides.',
                *normal.shape, yy.shape[1])
  try:
    factor = scipy.sparse.linalg.splu(normal.tocsc())
  except RuntimeError as exc:
    raise ValueError('The normal equations are singular: some source samples are not'
                     ' constrained by the coordinates; use mu > 0.') from exc
  rhs = np.asarray(rhs)
  solution = factor.solve(np.ascontiguousarray(rhs.real, normal.dtype))
  if np.iscomplexobj(rhs):
    solution = solution + 1j * factor.solve(np.ascontiguousarray(rhs.imag, normal.dtype))
  axis = interpolator.axis
  rest = interpolator.input_shape[:axis] + interpolator.input_shape[axis + 1:]
  return np.moveaxis(np.reshape(solution, (normal.shape[0],) + rest), 0, axis)


def _get_per_axis(value: Any, ndim: int, what: str) -> list[Any]:
  """Return `value` as a list of `ndim` per-axis values, padding with its first entry."""
  if value is None or isinstance(value, (str, Kernel, Limits, type)):
    return [value] * ndim
  values = list(value)
  if not 1 <= len(values) <= ndim:
    raise DimensionMismatch(f'Expected from 1 to {ndim} {what} but got {len(values)}.')
  return values + [values[0]] * (ndim - len(values))


class SeparableInterpolator(Interpolator):
  """Separable interpolation of the leading dimensions of an array.

  Args:
    kernel: Kernel for each interpolated axis, as a single value or a sequence; a sequence
      shorter than the number of axes is padded with its first entry.
    coords: Sequence of 1D coordinate arrays, one for each leading axis of the source.
    src_shape: Shape of the source array; axes beyond `len(coords)` are carried unchanged.
    boundary: Boundary policy for each interpolated axis, as a single value or a sequence.
    dtype: Floating type of the weights.

  The direct operation interpolates axis 0, then axis 1, and so on; the adjoint applies the
  transposed 1D operations in reverse order.
  """

  def __init__(self, kernel: Any, coords: Sequence[_ArrayLike], src_shape: Sequence[int], *,
               boundary: Any = None, dtype: _DTypeLike = np.float64) -> None:
    self.dtype = _get_weight_dtype(dtype)
    src_shape = _normalize_shape(src_shape)
    coords = [np.asarray(x) for x in coords]
    ndim = len(coords)
    if not 0 < ndim <= len(src_shape):
      raise DimensionMismatch(f'Cannot interpolate {ndim} axes of source shape {src_shape}.')
    for dim, x in enumerate(coords):
      if x.ndim != 1:
        raise DimensionMismatch(f'Coordinates for axis {dim} have shape {x.shape}, not 1D.')
    kernels = _get_per_axis(kernel, ndim, 'kernels')
    boundaries = _get_per_axis(boundary, ndim, 'boundaries')
    self.interpolators: list[Interpolator1D] = []
    shape = src_shape
    for dim in range(ndim):
      interpolator = Interpolator1D(kernels[dim], coords[dim], shape, axis=dim,
                                    boundary=boundaries[dim], dtype=self.dtype)
      self.interpolators.append(interpolator)
      shape = interpolator.output_shape
    self._input_shape = src_shape
    self._output_shape = shape

  @property
  def input_shape(self) -> tuple[int, ...]:
    return self._input_shape

  @property
  def output_shape(self) -> tuple[int, ...]:
    return self._output_shape

  def _direct(self, src: _NDArray) -> _NDArray:
    array = src
    for interpolator in self.interpolators:
      array = interpolator._direct(array)
    return array

  def _adjoint(self, src: _NDArray) -> _NDArray:
    array = src
    for interpolator in reversed(self.interpolators):
      array = interpolator._adjoint(array)
    return array


@dataclasses.dataclass(frozen=True)
class AffineTransform2D:
  """Affine map from `(i, j)` to `(xx * i + xy * j + x, yx * i + yy * j + y)`."""

  xx: float = 1.0
  xy: float = 0.0
  x: float = 0.0
  yx: float = 0.0
  yy: float = 1.0
  y: float = 0.0

  @classmethod
  def identity(cls) -> AffineTransform2D:
    return cls()

  @classmethod
  def translation(cls, dx: float, dy: float) -> AffineTransform2D:
    return cls(x=dx, y=dy)

  @classmethod
  def scaling(cls, sx: float, sy: float | None = None) -> AffineTransform2D:
    return cls(xx=sx, yy=sx if sy is None else sy)

  @classmethod
  def rotation(cls, angle: float) -> AffineTransform2D:
    """Return the rotation by `angle` radians about the origin."""
    cos, sin = math.cos(angle), math.sin(angle)
    return cls(xx=cos, xy=-sin, yx=sin, yy=cos)

  def __call__(self, i: _ArrayLike, j: _ArrayLike) -> tuple[_NDArray, _NDArray]:
    i, j = np.asarray(i), np.asarray(j)
    return self.xx * i + self.xy * j + self.x, self.yx * i + self.yy * j + self.y

  @property
  def determinant(self) -> float:
    return self.xx * self.yy - self.xy * self.yx

  def inverse(self) -> AffineTransform2D:
    """Return the inverse transform."""
    det = self.determinant
    if det == 0:
      raise ValueError(f'Transform {self} is not invertible.')
    xx, xy, yx, yy = self.yy / det, -self.xy / det, -self.yx / det, self.xx / det
    return AffineTransform2D(xx=xx, xy=xy, x=-(xx * self.x + xy * self.y),
                             yx=yx, yy=yy, y=-(yx * self.x + yy * self.y))

  def __matmul__(self, other: AffineTransform2D) -> AffineTransform2D:
    """Return the composition applying `other` first and then `self`."""
    return AffineTransform2D(
        xx=self.xx * other.xx + self.xy * other.yx,
        xy=self.xx * other.xy + self.xy * other.yy,
        x=self.xx * other.x + self.xy * other.y + self.x,
        yx=self.yx * other.xx + self.yy * other.yx,
        yy=self.yx * other.xy + self.yy * other.yy,
        y=self.yx * other.x + self.yy * other.y + self.y)


class NonseparableInterpolator2D(Interpolator):
  """Interpolation of the two leading dimensions of an array at affinely mapped positions.

  Args:
    kernel: Kernel along the first source axis.
    transform: Map from destination indices `(i, j)` to fractional source coordinates `(x, y)`,
      e.g. an `AffineTransform2D`; it must accept arrays.
    src_shape: Shape of the source array; axes beyond the first two are carried unchanged.
    shape: Shape `(height, width)` of the destination grid.
    kernel2: Kernel along the second source axis; it defaults to `kernel`.
    boundary: Boundary policy for both axes, as a single value or a pair.
    dtype: Floating type of the weights.

  Both the direct and the adjoint operations derive from the same per-pixel weights
  `w1[a] * w2[b]` on source samples `(i1[a], i2[b])`; the adjoint scatters them back.
  """

  def __init__(self, kernel: str | Kernel, transform: Callable[..., Any],
               src_shape: Sequence[int], shape: Sequence[int], *,
               kernel2: str | Kernel | None = None, boundary: Any = None,
               dtype: _DTypeLike = np.float64) -> None:
    self.dtype = _get_weight_dtype(dtype)
    src_shape = _normalize_shape(src_shape)
    shape = _normalize_shape(shape)
    if len(src_shape) < 2:
      raise DimensionMismatch(f'Source shape {src_shape} has fewer than 2 dimensions.')
    if len(shape) != 2:
      raise DimensionMismatch(f'Destination grid shape {shape} is not 2D.')
    self.kernel1 = _get_kernel(kernel)
    self.kernel2 = self.kernel1 if kernel2 is None else _get_kernel(kernel2)
    boundary1, boundary2 = _get_per_axis(boundary, 2, 'boundaries')
    self.limits1 = limits(self.kernel1, src_shape[0], boundary1)
    self.limits2 = limits(self.kernel2, src_shape[1], boundary2)
    self.transform = transform
    self.shape = shape
    self._input_shape = src_shape
    self._output_shape = shape + src_shape[2:]

  @property
  def input_shape(self) -> tuple[int, ...]:
    return self._input_shape

  @property
  def output_shape(self) -> tuple[int, ...]:
    return self._output_shape

  def coefficients(self) -> tuple[tuple[_NDArray, _NDArray], _NDArray]:
    """Return `(index1, index2), weight` broadcastable to shape `(height, width, S1, S2)`."""
    i, j = np.indices(self.shape, dtype=self.dtype)
    x, y = self.transform(i, j)
    x = np.broadcast_to(x, self.shape)
    y = np.broadcast_to(y, self.shape)
    index1, weight1 = getcoefs(self.kernel1, self.limits1, x, self.dtype)
    index2, weight2 = getcoefs(self.kernel2, self.limits2, y, self.dtype)
    index = index1[..., :, None], index2[..., None, :]
    weight = weight1[..., :, None] * weight2[..., None, :]
    return index, weight

  def _direct(self, src: _NDArray) -> _NDArray:
    index, weight = self.coefficients()
    samples = src[index]  # (height, width, S1, S2) + rest.
    w = weight.reshape(weight.shape + (1,) * (src.ndim - 2))
    return (w * samples).sum(axis=(2, 3))

  def _adjoint(self, src: _NDArray) -> _NDArray:
    index, weight = self.coefficients()
    w = weight.reshape(weight.shape + (1,) * (src.ndim - 2))
    contributions = w * src[:, :, None, None]
    result = np.zeros(self.input_shape, np.result_type(src, weight))
    np.add.at(result, index, contributions)
    return result


def interpolate(array: _ArrayLike, x: _Coords, kernel: str | Kernel = _DEFAULT_KERNEL, *,
                boundary: str | type[Limits] | Limits | None = None, axis: int = 0,
                shape: Sequence[int] | None = None, dtype: _DTypeLike = np.float64) -> _NDArray:
  """Interpolate `array` along `axis` at coordinates `x`.

  See `Interpolator1D` for the arguments.

  >>> interpolate([3.0, 5.0, 8.0], [0.0, 0.5, 1.75, 9.0]).tolist()
  [3.0, 4.0, 7.25, 8.0]
  """
  array = np.asarray(array)
  interpolator = Interpolator1D(kernel, x, array.shape, axis=axis, boundary=boundary,
                                shape=shape, dtype=dtype)
  return interpolator.apply(array)


def interpolate_adjoint(array: _ArrayLike, x: _ArrayLike, size: int,
                        kernel: str | Kernel = _DEFAULT_KERNEL, *,
                        boundary: str | type[Limits] | Limits | None = None, axis: int = 0,
                        dtype: _DTypeLike = np.float64) -> _NDArray:
  """Apply the transpose of the interpolation at `x` to `array`.

  The coordinate axes of `array` (starting at `axis`) are replaced by one axis of length
  `size`, the length of the interpolated source dimension.

  >>> interpolate_adjoint([1.0, 1.0], [0.5, 2.0], 3).tolist()
  [0.5, 0.5, 1.0]
  """
  array = np.asarray(array)
  x = np.asarray(x)
  src_shape = array.shape[:axis] + (size,) + array.shape[axis + x.ndim:]
  interpolator = Interpolator1D(kernel, x, src_shape, axis=axis, boundary=boundary,
                                dtype=dtype)
  return interpolator.apply(array, 'adjoint')


def interpolate_separable(array: _ArrayLike, coords: Sequence[_ArrayLike], kernel: Any =
                          _DEFAULT_KERNEL, *, boundary: Any = None,
                          dtype: _DTypeLike = np.float64) -> _NDArray:
  """Separably interpolate the leading `len(coords)` axes of `array`.

  See `SeparableInterpolator` for the arguments.
  """
  array = np.asarray(array)
  interpolator = SeparableInterpolator(kernel, coords, array.shape, boundary=boundary,
                                       dtype=dtype)
  return interpolator.apply(array)


def interpolate_affine(array: _ArrayLike, transform: Callable[..., Any], shape: Sequence[int],
                       kernel: str | Kernel = _DEFAULT_KERNEL, *,
                       kernel2: str | Kernel | None = None, boundary: Any = None,
                       dtype: _DTypeLike = np.float64) -> _NDArray:
  """Interpolate the two leading axes of `array` onto a grid of `shape` through `transform`.

  See `NonseparableInterpolator2D` for the arguments.
  """
  array = np.asarray(array)
  interpolator = NonseparableInterpolator2D(kernel, transform, array.shape, shape,
                                            kernel2=kernel2, boundary=boundary, dtype=dtype)
  return interpolator.apply(array)
