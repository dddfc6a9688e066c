from __future__ import annotations

from typing import Optional, Sequence

import torch

from attn.eager import MultiHeadSelfAttention
from attn.multihead import HeadLike, as_head_weights
from attn.reference import attention_weights
from tensor.numerics import entropy_from_probs
from tensor.shape import ShapeMismatch, assert_matmul_compatible


@torch.inference_mode()
def head_attention_weights(
    q: torch.Tensor,
    k: torch.Tensor,
    heads: Sequence[HeadLike],
    *,
    mask: Optional[torch.Tensor] = None,
    scale: Optional[float] = None,
) -> torch.Tensor:
    """Return per-head attention probabilities (..., H, n, m).

    Only the query/key projections of each head are used; values and the
    output projection do not affect the weights.
    """
    head_list = [as_head_weights(h) for h in heads]
    if not head_list:
        raise ShapeMismatch("need at least one head")
    probs = []
    for i, h in enumerate(head_list):
        assert_matmul_compatible(q, h.w_q, f"head {i} w_q")
        assert_matmul_compatible(k, h.w_k, f"head {i} w_k")
        qh = torch.matmul(q, h.w_q)
        kh = torch.matmul(k, h.w_k)
        probs.append(attention_weights(qh, kh, mask=mask, scale=scale))
    return torch.stack(probs, dim=-3)


@torch.inference_mode()
def module_attention_weights(
    module: MultiHeadSelfAttention,
    x: torch.Tensor,
    kv: Optional[torch.Tensor] = None,
    mask: Optional[torch.Tensor] = None,
) -> torch.Tensor:
    """Return attention probabilities (B, H, T, S) from a MultiHeadSelfAttention."""
    _, probs = module(x, kv, mask, return_weights=True)
    return probs


def attention_entropy(weights: torch.Tensor) -> torch.Tensor:
    """Per-query entropy (..., n) of row-stochastic weights (..., n, m).

    0 means the query attends to a single key; log(m) means uniform.
    """
    return entropy_from_probs(weights, dim=-1)
