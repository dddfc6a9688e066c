import torch


class ShapeMismatch(ValueError):
    """Raised when tensor dimensions cannot be combined by an attention op.

    Carries the offending shapes so callers can report them without
    re-inspecting the inputs.
    """

    def __init__(self, message: str, *shapes: tuple[int, ...]):
        super().__init__(message)
        self.shapes = tuple(tuple(s) for s in shapes)


def _shape(x: torch.Tensor) -> tuple[int, ...]:
    return tuple(x.shape)


def assert_floating(*tensors: torch.Tensor):
    for t in tensors:
        if not isinstance(t, torch.Tensor):
            raise TypeError(f"expected torch.Tensor, got {type(t).__name__}")
        if not t.dtype.is_floating_point:
            raise TypeError(f"expected floating point tensor, got {t.dtype}")


def assert_min_rank(x: torch.Tensor, rank: int, name: str = "tensor"):
    if x.ndim < rank:
        raise ShapeMismatch(f"{name} must have at least {rank} dims, got shape {_shape(x)}", _shape(x))


def assert_qk_shapes(q: torch.Tensor, k: torch.Tensor) -> tuple[int, int, int]:
    # q: (..., n, d_k), k: (..., m, d_k) -> (n, m, d_k); leading dims must match exactly
    assert_min_rank(q, 2, "q")
    assert_min_rank(k, 2, "k")
    if q.size(-1) != k.size(-1):
        raise ShapeMismatch(
            f"query/key depth differs: q {_shape(q)} vs k {_shape(k)}", _shape(q), _shape(k)
        )
    if q.shape[:-2] != k.shape[:-2]:
        raise ShapeMismatch(f"batch dims differ: q {_shape(q)}, k {_shape(k)}", _shape(q), _shape(k))
    return q.size(-2), k.size(-2), q.size(-1)


def assert_qkv_shapes(q: torch.Tensor, k: torch.Tensor, v: torch.Tensor) -> tuple[int, int, int, int]:
    # q: (..., n, d_k), k: (..., m, d_k), v: (..., m, d_v) -> (n, m, d_k, d_v)
    assert_min_rank(v, 2, "v")
    n, m, d_k = assert_qk_shapes(q, k)
    if k.size(-2) != v.size(-2):
        raise ShapeMismatch(
            f"key/value length differs: k {_shape(k)} vs v {_shape(v)}", _shape(k), _shape(v)
        )
    if k.shape[:-2] != v.shape[:-2]:
        raise ShapeMismatch(f"batch dims differ: k {_shape(k)}, v {_shape(v)}", _shape(k), _shape(v))
    return n, m, d_k, v.size(-1)


def assert_broadcastable(x: torch.Tensor, target_shape: tuple[int, ...]):
    xs = list(x.shape)
    ts = list(target_shape)
    if len(xs) > len(ts):
        raise ShapeMismatch(f"shape {_shape(x)} is not broadcastable to {tuple(ts)}", _shape(x), tuple(ts))
    while len(xs) < len(ts):
        xs = [1] + xs
    for a, b in zip(xs, ts):
        if a != 1 and a != b:
            raise ShapeMismatch(f"shape {_shape(x)} is not broadcastable to {tuple(ts)}", _shape(x), tuple(ts))


def assert_matmul_compatible(x: torch.Tensor, w: torch.Tensor, name: str = "weight"):
    # x: (..., d_in), w: (d_in, d_out)
    if w.ndim != 2:
        raise ShapeMismatch(f"{name} must be 2D, got shape {_shape(w)}", _shape(w))
    if x.size(-1) != w.size(0):
        raise ShapeMismatch(
            f"{name} expects input width {w.size(0)}, got {x.size(-1)} (input {_shape(x)})",
            _shape(x), _shape(w),
        )


def split_heads(x: torch.Tensor, num_heads: int) -> torch.Tensor:
    # x: (B, T, D) -> (B, H, T, Dh)
    B, T, D = x.shape
    if D % num_heads != 0:
        raise ShapeMismatch(f"Model dim {D} not divisible by heads {num_heads}", _shape(x))
    Dh = D // num_heads
    return x.view(B, T, num_heads, Dh).permute(0, 2, 1, 3).contiguous()


def merge_heads(x: torch.Tensor) -> torch.Tensor:
    # x: (B, H, T, Dh) -> (B, T, H*Dh)
    B, H, T, Dh = x.shape
    return x.permute(0, 2, 1, 3).contiguous().view(B, T, H * Dh)


def split_columns(w: torch.Tensor, num_heads: int) -> list[torch.Tensor]:
    # w: (D_in, H*Dh) -> H x (D_in, Dh)
    if w.ndim != 2:
        raise ShapeMismatch(f"packed weight must be 2D, got shape {_shape(w)}", _shape(w))
    if w.size(1) % num_heads != 0:
        raise ShapeMismatch(f"packed width {w.size(1)} not divisible by heads {num_heads}", _shape(w))
    return list(torch.chunk(w, num_heads, dim=1))
