from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional, Sequence, Union
import logging

import torch

from specs.config import default_max_workers, default_parallel_heads, trace_enabled
from tensor.masking import check_attention_mask
from tensor.shape import (
    ShapeMismatch,
    assert_floating,
    assert_matmul_compatible,
    assert_min_rank,
    split_columns,
)
from .reference import scaled_dot_product_attention

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HeadWeights:
    """Projection matrices for one head: (d_model, d_k), (d_model, d_k), (d_model, d_v)."""

    w_q: torch.Tensor
    w_k: torch.Tensor
    w_v: torch.Tensor

    @property
    def d_k(self) -> int:
        return int(self.w_q.size(-1))

    @property
    def d_v(self) -> int:
        return int(self.w_v.size(-1))


HeadLike = Union[HeadWeights, Sequence[torch.Tensor]]


def as_head_weights(head: HeadLike) -> HeadWeights:
    if isinstance(head, HeadWeights):
        return head
    parts = tuple(head)
    if len(parts) != 3:
        raise TypeError(f"head must be (w_q, w_k, w_v), got {len(parts)} items")
    return HeadWeights(*parts)


def split_head_weights(w_q: torch.Tensor, w_k: torch.Tensor, w_v: torch.Tensor, n_heads: int) -> list[HeadWeights]:
    """Slice packed (d_model, H*d) projections into H per-head triples, in head order."""
    qs = split_columns(w_q, n_heads)
    ks = split_columns(w_k, n_heads)
    vs = split_columns(w_v, n_heads)
    return [HeadWeights(a, b, c) for a, b, c in zip(qs, ks, vs)]


def _check_inputs(
    q: torch.Tensor,
    k: torch.Tensor,
    v: torch.Tensor,
    heads: list[HeadWeights],
    w_o: torch.Tensor,
    mask: Optional[torch.Tensor] = None,
):
    assert_min_rank(q, 2, "q")
    assert_min_rank(k, 2, "k")
    assert_min_rank(v, 2, "v")
    if k.size(-2) != v.size(-2):
        raise ShapeMismatch(
            f"key/value length differs: k {tuple(k.shape)} vs v {tuple(v.shape)}", tuple(k.shape), tuple(v.shape)
        )
    if not (q.shape[:-2] == k.shape[:-2] == v.shape[:-2]):
        raise ShapeMismatch(
            f"batch dims differ: q {tuple(q.shape)}, k {tuple(k.shape)}, v {tuple(v.shape)}",
            tuple(q.shape), tuple(k.shape), tuple(v.shape),
        )
    if not heads:
        raise ShapeMismatch("multi-head attention needs at least one head")
    total_v = 0
    for i, h in enumerate(heads):
        assert_floating(h.w_q, h.w_k, h.w_v)
        assert_matmul_compatible(q, h.w_q, f"head {i} w_q")
        assert_matmul_compatible(k, h.w_k, f"head {i} w_k")
        assert_matmul_compatible(v, h.w_v, f"head {i} w_v")
        if h.w_q.size(1) != h.w_k.size(1):
            raise ShapeMismatch(
                f"head {i}: w_q projects to {h.w_q.size(1)} but w_k projects to {h.w_k.size(1)}",
                tuple(h.w_q.shape), tuple(h.w_k.shape),
            )
        total_v += h.d_v
    if w_o.ndim != 2:
        raise ShapeMismatch(f"w_o must be 2D, got shape {tuple(w_o.shape)}", tuple(w_o.shape))
    if w_o.size(0) != total_v:
        raise ShapeMismatch(
            f"concatenated head width {total_v} does not match w_o input width {w_o.size(0)}",
            (total_v,), tuple(w_o.shape),
        )
    if mask is not None:
        # every head produces (..., n, m) scores
        check_attention_mask(mask, tuple(q.shape[:-2]) + (q.size(-2), k.size(-2)))


def _run_head(
    q: torch.Tensor,
    k: torch.Tensor,
    v: torch.Tensor,
    head: HeadWeights,
    mask: Optional[torch.Tensor],
    scale: Optional[float],
) -> tuple[torch.Tensor, torch.Tensor]:
    qh = torch.matmul(q, head.w_q)
    kh = torch.matmul(k, head.w_k)
    vh = torch.matmul(v, head.w_v)
    return scaled_dot_product_attention(qh, kh, vh, mask=mask, scale=scale, return_weights=True)


def multi_head_attention(
    q: torch.Tensor,
    k: torch.Tensor,
    v: torch.Tensor,
    heads: Sequence[HeadLike],
    w_o: torch.Tensor,
    *,
    mask: Optional[torch.Tensor] = None,
    scale: Optional[float] = None,
    parallel: Optional[bool] = None,
    max_workers: Optional[int] = None,
    return_weights: bool = False,
):
    """Concat(head_1, ..., head_h) W_O with head_i = Attention(Q W_Q_i, K W_K_i, V W_V_i).

    q: (..., n, d_model), k/v: (..., m, d_model). Each head runs scaled
    dot-product attention on its own projections; outputs are concatenated in
    the order of `heads` along the value axis and projected by `w_o` of shape
    (sum d_v_i, d_model_out).

    Heads share no state, so `parallel=True` runs them on a thread pool and
    yields the same result as sequential execution. When `parallel` or
    `max_workers` are None, ATTN_PARALLEL / ATTN_MAX_WORKERS decide.

    With `return_weights=True` returns (output, weights) where weights has
    shape (..., h, n, m).
    """
    assert_floating(q, k, v, w_o)
    head_list = [as_head_weights(h) for h in heads]
    _check_inputs(q, k, v, head_list, w_o, mask)

    if parallel is None:
        parallel = default_parallel_heads()
    if max_workers is None:
        max_workers = default_max_workers()
    if trace_enabled():
        logger.info("mha heads=%d q=%s k=%s v=%s w_o=%s parallel=%s", len(head_list), tuple(q.shape), tuple(k.shape), tuple(v.shape), tuple(w_o.shape), parallel)
    else:
        logger.debug("mha heads=%d parallel=%s", len(head_list), parallel)

    if parallel and len(head_list) > 1:
        with ThreadPoolExecutor(max_workers=int(max_workers or len(head_list))) as ex:
            futures = [ex.submit(_run_head, q, k, v, h, mask, scale) for h in head_list]
            # collect in submission order so concatenation follows head order
            results = [fut.result() for fut in futures]
    else:
        results = [_run_head(q, k, v, h, mask, scale) for h in head_list]

    concat = torch.cat([out for out, _ in results], dim=-1)  # (..., n, sum d_v)
    out = torch.matmul(concat, w_o.to(dtype=concat.dtype))
    if return_weights:
        weights = torch.stack([w for _, w in results], dim=-3)  # (..., h, n, m)
        return out, weights
    return out
