import torch
import torch.nn.functional as F


_LOW_PRECISION = (torch.float16, torch.bfloat16)


def _min_value_for_dtype(dtype: torch.dtype) -> float:
    if dtype.is_floating_point:
        return torch.finfo(dtype).min
    # default fallback
    return -1e9


def _compute_dtype(dtype: torch.dtype) -> torch.dtype:
    # half types are upcast; float32/float64 keep their precision
    return torch.float32 if dtype in _LOW_PRECISION else dtype


def safe_softmax(x: torch.Tensor, mask: torch.Tensor | None = None, dim: int = -1) -> torch.Tensor:
    """Softmax along `dim` computed in at least float32.

    `mask` is boolean with True marking entries to exclude. Masked entries are
    filled with the dtype minimum rather than -inf, so a fully masked row comes
    out uniform instead of NaN.
    """
    x_float = x.to(dtype=_compute_dtype(x.dtype))
    if mask is not None:
        x_float = x_float.masked_fill(mask, _min_value_for_dtype(x_float.dtype))
    out = F.softmax(x_float, dim=dim)
    return out.to(dtype=x.dtype)


def entropy_from_probs(probs: torch.Tensor, dim: int = -1) -> torch.Tensor:
    p = probs.to(dtype=_compute_dtype(probs.dtype))
    ent = -(p * torch.log(p.clamp_min(torch.finfo(p.dtype).tiny))).sum(dim=dim)
    return ent.to(dtype=probs.dtype)


def is_row_stochastic(probs: torch.Tensor, dim: int = -1, atol: float = 1e-6) -> bool:
    """True if every slice along `dim` is non-negative and sums to 1 within `atol`."""
    if probs.numel() == 0:
        return True
    if bool((probs < 0).any()):
        return False
    sums = probs.to(dtype=_compute_dtype(probs.dtype)).sum(dim=dim)
    return bool(torch.allclose(sums, torch.ones_like(sums), atol=atol, rtol=0.0))
