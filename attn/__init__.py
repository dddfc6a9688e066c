from tensor.shape import ShapeMismatch
from .reference import (
    scaled_dot_product_attention,
    attention_scores,
    attention_weights,
    default_scale,
)
from .multihead import HeadWeights, multi_head_attention, split_head_weights
from .eager import MultiHeadSelfAttention

__all__ = [
    "ShapeMismatch",
    "scaled_dot_product_attention",
    "attention_scores",
    "attention_weights",
    "default_scale",
    "HeadWeights",
    "multi_head_attention",
    "split_head_weights",
    "MultiHeadSelfAttention",
]
