import torch

from attn import multi_head_attention, scaled_dot_product_attention, MultiHeadSelfAttention
from specs.config import AttentionConfig

# "I", "love", "deep", "learning" as 2-d embeddings, Q = K = V
x = torch.tensor([[1.0, 0.0], [0.0, 1.0], [1.0, 1.0], [0.0, 0.0]])
out, weights = scaled_dot_product_attention(x, x, x, return_weights=True)
print("weights:\n", weights)
print("output:\n", out)

# Multi-head with packed weights from a config
cfg = AttentionConfig(d_model=8, n_heads=2, seed=0)
mha = MultiHeadSelfAttention(cfg)
h = torch.randn(1, 4, 8)
y = mha(h)
y_ref = multi_head_attention(h, h, h, mha.heads(), mha.output_weight(), parallel=True)
print("max |module - functional|:", (y - y_ref).abs().max().item())
