# numeric_backend.py

"""
The numeric backend the step engine computes with. Values live in a
TensorFlow-backed arena and are referenced from the outside only through
opaque TensorHandles, so every allocation can be counted and released
explicitly. Allocations made while a scratch scope is open belong to that
scope and are released when it exits, unless they were retained.
"""

import contextlib
import copy
from typing import Dict, List, Optional, Sequence, Set, Iterator, Any

import numpy as np
import tensorflow as tf

from core_abstractions import TensorHandle, BackendAllocationError
from configurations import DEFAULT_BACKEND_CONFIG


class NumericBackend:
    """
    A handle arena over TensorFlow eager tensors.

    The arena tracks every live allocation (`live_count`), so callers can
    check that a bounded operation releases whatever it acquired.
    `release` is idempotent: releasing an already-released handle is a no-op.
    """

    def __init__(self, dtype: str = 'float32', max_live_allocations: Optional[int] = None,
                 norm_epsilon: float = 1e-9, verbose: int = 0):
        self.dtype = tf.as_dtype(dtype)
        self.max_live_allocations = max_live_allocations
        self.norm_epsilon = norm_epsilon
        self.verbose = verbose

        self._tensors: Dict[int, tf.Tensor] = {}
        self._scope_stack: List[Set[int]] = []
        self._next_id = 1
        self.total_allocations = 0
        self.total_releases = 0

    def __repr__(self) -> str:
        return (f"NumericBackend(dtype={self.dtype.name}, live={self.live_count}, "
                f"open_scopes={len(self._scope_stack)})")

    # --- Bookkeeping ---
    @property
    def live_count(self) -> int:
        """Number of allocations currently held by the arena."""
        return len(self._tensors)

    def is_live(self, handle: Optional[TensorHandle]) -> bool:
        return handle is not None and handle.id in self._tensors

    def _register(self, tensor: tf.Tensor) -> TensorHandle:
        if self.max_live_allocations is not None and len(self._tensors) >= self.max_live_allocations:
            raise BackendAllocationError(
                f"Allocation limit reached ({self.max_live_allocations} live handles).")
        handle = TensorHandle(id=self._next_id, shape=tuple(int(d) for d in tensor.shape))
        self._next_id += 1
        self._tensors[handle.id] = tensor
        self.total_allocations += 1
        if self._scope_stack:
            self._scope_stack[-1].add(handle.id)
        return handle

    def _get(self, handle: TensorHandle) -> tf.Tensor:
        tensor = self._tensors.get(handle.id) if handle is not None else None
        if tensor is None:
            raise ValueError(f"{handle} has been released or was not issued by this backend.")
        return tensor

    def _run(self, op_name: str, fn):
        """Runs a TensorFlow op and registers its output as a new allocation."""
        try:
            result = fn()
        except tf.errors.ResourceExhaustedError as e:
            raise BackendAllocationError(f"{op_name}: backend out of resources ({e.message})") from e
        return self._register(result)

    # --- Lifecycle ---
    def allocate(self, data: Any) -> TensorHandle:
        """Copies `data` (array-like or scalar) into the arena and returns its handle."""
        try:
            tensor = tf.convert_to_tensor(np.asarray(data, dtype=self.dtype.as_numpy_dtype))
        except (tf.errors.ResourceExhaustedError, MemoryError) as e:
            raise BackendAllocationError(f"allocate: could not create tensor ({e})") from e
        return self._register(tensor)

    def release(self, handle: Optional[TensorHandle]) -> bool:
        """
        Drops a handle from the arena. Safe on None and on handles that were
        already released. Returns True if something was actually released.
        """
        if handle is None or handle.id not in self._tensors:
            return False
        del self._tensors[handle.id]
        for scope in self._scope_stack:
            scope.discard(handle.id)
        self.total_releases += 1
        return True

    def retain(self, handle: TensorHandle) -> TensorHandle:
        """Detaches a handle from every open scratch scope so it outlives them."""
        self._get(handle)
        for scope in self._scope_stack:
            scope.discard(handle.id)
        return handle

    @contextlib.contextmanager
    def scratch_scope(self) -> Iterator['NumericBackend']:
        """
        Every allocation made inside the block is released when the block
        exits, on success and on error alike, unless it was retained.
        """
        scope: Set[int] = set()
        self._scope_stack.append(scope)
        try:
            yield self
        finally:
            # Scopes nest strictly, so the innermost one is always on top
            self._scope_stack.pop()
            for handle_id in list(scope):
                if self._tensors.pop(handle_id, None) is not None:
                    self.total_releases += 1
            if self.verbose >= 3 and scope:
                print(f"  [NumericBackend] Scratch scope released {len(scope)} handles (live={self.live_count}).")

    # --- Combination ---
    def concat(self, handles: Sequence[TensorHandle], axis: int = 0) -> TensorHandle:
        tensors = [self._get(h) for h in handles]
        return self._run("concat", lambda: tf.concat(tensors, axis=axis))

    def scale(self, handle: TensorHandle, factor: float) -> TensorHandle:
        tensor = self._get(handle)
        return self._run("scale", lambda: tf.multiply(tensor, tf.constant(factor, dtype=self.dtype)))

    def elementwise_mul(self, a: TensorHandle, b: TensorHandle) -> TensorHandle:
        ta, tb = self._get(a), self._get(b)
        return self._run("elementwise_mul", lambda: tf.multiply(ta, tb))

    def add(self, a: TensorHandle, b: TensorHandle) -> TensorHandle:
        ta, tb = self._get(a), self._get(b)
        return self._run("add", lambda: tf.add(ta, tb))

    def clip(self, handle: TensorHandle, min_value: float, max_value: float) -> TensorHandle:
        tensor = self._get(handle)
        return self._run("clip", lambda: tf.clip_by_value(tensor, min_value, max_value))

    # --- Reduction & readback ---
    def norm(self, handle: TensorHandle) -> float:
        """Euclidean norm, read back synchronously."""
        return float(tf.norm(self._get(handle)).numpy())

    def cosine_similarity(self, a: TensorHandle, b: TensorHandle) -> float:
        """Cosine similarity clipped to [-1, 1]; 0.0 when either vector is (near) zero."""
        ta = tf.reshape(self._get(a), [-1])
        tb = tf.reshape(self._get(b), [-1])
        norm_prod = float((tf.norm(ta) * tf.norm(tb)).numpy())
        if not np.isfinite(norm_prod) or norm_prod < self.norm_epsilon:
            return 0.0
        similarity = float((tf.tensordot(ta, tb, axes=1) / norm_prod).numpy())
        if not np.isfinite(similarity):
            return 0.0
        return float(np.clip(similarity, -1.0, 1.0))

    def is_finite(self, handle: TensorHandle) -> bool:
        return bool(tf.reduce_all(tf.math.is_finite(self._get(handle))).numpy())

    def size(self, handle: TensorHandle) -> int:
        return int(tf.size(self._get(handle)).numpy())

    def read_values(self, handle: TensorHandle) -> List[float]:
        """Flattened copy of the values as plain Python floats."""
        return [float(v) for v in tf.reshape(self._get(handle), [-1]).numpy()]


# ---------------------------------------------------------------------------
# Startup Handshake
# ---------------------------------------------------------------------------
def acquire_backend(config: Optional[Dict] = None, verbose: int = 0) -> NumericBackend:
    """
    Builds a ready NumericBackend. The driver calls this once, before
    constructing the agent; a backend that cannot run a trivial op is
    reported as a BackendAllocationError instead of being handed out.
    """
    params = copy.deepcopy(DEFAULT_BACKEND_CONFIG)
    if config:
        unknown = set(config) - set(params)
        if unknown:
            raise ValueError(f"Unknown backend config keys: {sorted(unknown)}")
        params.update(config)

    backend = NumericBackend(verbose=verbose, **params)
    try:
        with backend.scratch_scope():
            probe = backend.allocate([3.0, 4.0])
            probe_norm = backend.norm(probe)
    except tf.errors.OpError as e:
        raise BackendAllocationError(f"TensorFlow warm-up op failed: {e.message}") from e
    if abs(probe_norm - 5.0) > 1e-4:
        raise BackendAllocationError(f"TensorFlow warm-up op returned {probe_norm:.6f}, expected 5.0")

    if verbose >= 1:
        devices = [d.device_type for d in tf.config.list_logical_devices()]
        print(f"[NumericBackend] TensorFlow {tf.__version__} ready. Devices: {devices}")
    return backend
