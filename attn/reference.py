import logging
import math

import torch

from specs.config import trace_enabled
from tensor.masking import check_attention_mask
from tensor.numerics import safe_softmax
from tensor.shape import assert_floating, assert_qk_shapes, assert_qkv_shapes

logger = logging.getLogger(__name__)


def default_scale(d_k: int) -> float:
    return 1.0 / math.sqrt(float(d_k))


def compute_attention_scores(q: torch.Tensor, k: torch.Tensor, scale: float | None = None) -> torch.Tensor:
    # q: (..., n, d_k), k: (..., m, d_k) -> scores: (..., n, m)
    assert_qk_shapes(q, k)
    if scale is None:
        scale = default_scale(k.size(-1))
    scores = torch.matmul(q, k.transpose(-2, -1))
    return scores * float(scale)


def compute_attention_probs(
    q: torch.Tensor,
    k: torch.Tensor,
    mask: torch.Tensor | None = None,
    scale: float | None = None,
) -> torch.Tensor:
    scores = compute_attention_scores(q, k, scale=scale)
    if mask is not None:
        check_attention_mask(mask, tuple(scores.shape))
    return safe_softmax(scores, mask=mask, dim=-1)


def apply_attention_probs(v: torch.Tensor, probs: torch.Tensor) -> torch.Tensor:
    # v: (..., m, d_v), probs: (..., n, m) -> out: (..., n, d_v)
    return torch.matmul(probs, v)


def scaled_dot_product_attention(
    q: torch.Tensor,
    k: torch.Tensor,
    v: torch.Tensor,
    *,
    mask: torch.Tensor | None = None,
    scale: float | None = None,
    return_weights: bool = False,
):
    """softmax(Q K^T / sqrt(d_k)) V.

    q: (..., n, d_k), k: (..., m, d_k), v: (..., m, d_v) -> (..., n, d_v).
    Leading dims must match exactly. `mask` is boolean, True where a query may
    not attend to a key, broadcastable to (..., n, m). `scale` replaces the
    default 1/sqrt(d_k) multiplier.

    Each output row is a convex combination of the rows of `v`. With
    `return_weights=True` the row-stochastic weight matrix is returned too.
    Raises ShapeMismatch when d_k or m disagree.
    """
    assert_floating(q, k, v)
    n, m, d_k, d_v = assert_qkv_shapes(q, k, v)
    if scale is None:
        scale = default_scale(d_k)
    if trace_enabled():
        logger.info("sdpa q=%s k=%s v=%s scale=%.6g masked=%s", tuple(q.shape), tuple(k.shape), tuple(v.shape), scale, mask is not None)
    else:
        logger.debug("sdpa n=%d m=%d d_k=%d d_v=%d scale=%.6g", n, m, d_k, d_v, scale)

    probs = compute_attention_probs(q, k, mask=mask, scale=scale)
    out = apply_attention_probs(v, probs.to(dtype=v.dtype))
    if return_weights:
        return out, probs
    return out


def attention_scores(q: torch.Tensor, k: torch.Tensor, scale: float | None = None) -> torch.Tensor:
    """Scaled raw scores (..., n, m) before the softmax."""
    assert_floating(q, k)
    return compute_attention_scores(q, k, scale=scale)


def attention_weights(
    q: torch.Tensor,
    k: torch.Tensor,
    mask: torch.Tensor | None = None,
    scale: float | None = None,
) -> torch.Tensor:
    """Row-stochastic weights (..., n, m)."""
    assert_floating(q, k)
    return compute_attention_probs(q, k, mask=mask, scale=scale)
