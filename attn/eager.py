from typing import Optional
import logging

import torch
import torch.nn as nn

from specs.config import AttentionConfig
from tensor.init import init_out_proj_, init_qkv_proj_, make_generator
from tensor.shape import ShapeMismatch, merge_heads, split_heads
from .multihead import HeadWeights, multi_head_attention, split_head_weights
from .reference import scaled_dot_product_attention

logger = logging.getLogger(__name__)


class MultiHeadSelfAttention(nn.Module):
    """Packed-projection multi-head attention built from an AttentionConfig.

    Holds W_Q, W_K, W_V as (d_model -> H*Dh) linears and W_O as
    (H*Dv -> d_model). Parameters are initialised once and frozen; the module
    only evaluates. `heads()` / `output_weight()` export the same weights in
    the layout `multi_head_attention` takes, so both paths agree.
    """

    def __init__(self, cfg: AttentionConfig):
        super().__init__()
        self.cfg = cfg
        self.d_model = int(cfg.d_model)
        self.n_heads = int(cfg.n_heads)
        self.head_dim = int(cfg.head_dim)
        self.v_head_dim = int(cfg.v_head_dim)
        self.scaling = cfg.softmax_scale

        self.w_q = nn.Linear(self.d_model, self.n_heads * self.head_dim, bias=False)
        self.w_k = nn.Linear(self.d_model, self.n_heads * self.head_dim, bias=False)
        self.w_v = nn.Linear(self.d_model, self.n_heads * self.v_head_dim, bias=False)
        self.w_o = nn.Linear(self.n_heads * self.v_head_dim, self.d_model, bias=False)

        g = make_generator(cfg.seed)
        for lin in (self.w_q, self.w_k, self.w_v):
            init_qkv_proj_(lin, self.d_model, generator=g)
        init_out_proj_(self.w_o, generator=g)
        self.to(dtype=cfg.torch_dtype())
        self.requires_grad_(False)
        logger.debug("MultiHeadSelfAttention d_model=%d heads=%d head_dim=%d v_head_dim=%d scale=%.6g", self.d_model, self.n_heads, self.head_dim, self.v_head_dim, self.scaling)

    def heads(self) -> list[HeadWeights]:
        # nn.Linear stores (out, in); the functional API takes (in, out)
        return split_head_weights(self.w_q.weight.t(), self.w_k.weight.t(), self.w_v.weight.t(), self.n_heads)

    def output_weight(self) -> torch.Tensor:
        return self.w_o.weight.t()

    def forward(
        self,
        x: torch.Tensor,
        kv: Optional[torch.Tensor] = None,
        mask: Optional[torch.Tensor] = None,
        *,
        return_weights: bool = False,
    ):
        """x: (B, T, D) queries; kv: (B, S, D) keys/values, defaults to x."""
        if x.ndim != 3:
            raise ShapeMismatch(f"expected (B, T, D) input, got {tuple(x.shape)}", tuple(x.shape))
        src = x if kv is None else kv
        if src.ndim != 3 or src.shape[0] != x.shape[0] or src.shape[2] != x.shape[2]:
            raise ShapeMismatch(f"kv {tuple(src.shape)} incompatible with x {tuple(x.shape)}", tuple(src.shape), tuple(x.shape))
        if x.size(-1) != self.d_model:
            raise ShapeMismatch(f"input width {x.size(-1)} != d_model {self.d_model}", tuple(x.shape))

        qh = split_heads(self.w_q(x), self.n_heads)    # (B, H, T, Dh)
        kh = split_heads(self.w_k(src), self.n_heads)  # (B, H, S, Dh)
        vh = split_heads(self.w_v(src), self.n_heads)  # (B, H, S, Dv)
        if mask is not None and mask.ndim == 3:
            # (B, T, S) -> (B, 1, T, S) so it broadcasts over heads
            mask = mask.unsqueeze(1)
        out, probs = scaled_dot_product_attention(qh, kh, vh, mask=mask, scale=self.scaling, return_weights=True)
        y = self.w_o(merge_heads(out))
        if return_weights:
            return y, probs
        return y

    def functional(self, x: torch.Tensor, kv: Optional[torch.Tensor] = None, mask: Optional[torch.Tensor] = None, parallel: Optional[bool] = None):
        """Same computation routed through multi_head_attention with per-head weights."""
        src = x if kv is None else kv
        if parallel is None:
            parallel = self.cfg.parallel_heads
        return multi_head_attention(
            x, src, src, self.heads(), self.output_weight(),
            mask=mask, scale=self.scaling, parallel=parallel, max_workers=self.cfg.max_workers,
        )
