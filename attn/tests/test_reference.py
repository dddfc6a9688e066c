import math

import pytest
import torch

from attn.reference import attention_scores, attention_weights, scaled_dot_product_attention
from tensor.masking import build_causal_mask
from tensor.numerics import is_row_stochastic
from tensor.shape import ShapeMismatch


def _embeddings():
    # "I", "love", "deep", "learning"
    return torch.tensor([[1.0, 0.0], [0.0, 1.0], [1.0, 1.0], [0.0, 0.0]], dtype=torch.float64)


def test_worked_example_scores_weights_output():
    x = _embeddings()
    scores = attention_scores(x, x)
    expected_scores = torch.tensor(
        [[1, 0, 1, 0], [0, 1, 1, 0], [1, 1, 2, 0], [0, 0, 0, 0]], dtype=torch.float64
    ) / math.sqrt(2.0)
    assert torch.allclose(scores, expected_scores)

    out, w = scaled_dot_product_attention(x, x, x, return_weights=True)
    assert is_row_stochastic(w, atol=1e-6)
    # "learning" has a zero embedding, so it attends uniformly
    assert torch.allclose(w[3], torch.full((4,), 0.25, dtype=torch.float64))

    s = 1.0 / (1.0 + math.exp(-1.0 / math.sqrt(2.0)))
    assert abs(s - 0.669762) < 1e-5
    expected_out = torch.tensor([[s, 0.5], [0.5, s], [s, s], [0.5, 0.5]], dtype=torch.float64)
    assert torch.allclose(out, expected_out, atol=1e-9)


def test_weight_rows_sum_to_one():
    g = torch.Generator().manual_seed(0)
    q = torch.randn(7, 16, generator=g, dtype=torch.float64)
    k = torch.randn(11, 16, generator=g, dtype=torch.float64)
    w = attention_weights(q, k)
    assert w.shape == (7, 11)
    assert torch.all(w >= 0)
    assert is_row_stochastic(w, atol=1e-6)


def test_output_rows_are_convex_combinations_of_values():
    g = torch.Generator().manual_seed(1)
    q = torch.randn(5, 4, generator=g)
    k = torch.randn(6, 4, generator=g)
    v = torch.randn(6, 3, generator=g)
    out = scaled_dot_product_attention(q, k, v)
    assert out.shape == (5, 3)
    assert torch.all(out <= v.max(dim=0).values + 1e-5)
    assert torch.all(out >= v.min(dim=0).values - 1e-5)


def test_scaling_reduces_score_variance_for_wide_inputs():
    g = torch.Generator().manual_seed(2)
    d_k = 512
    q = torch.randn(32, d_k, generator=g, dtype=torch.float64)
    k = torch.randn(32, d_k, generator=g, dtype=torch.float64)
    raw = q @ k.T
    scaled = attention_scores(q, k)
    assert torch.allclose(scaled, raw / math.sqrt(d_k))
    assert scaled.var() < raw.var()
    # unit-variance entries give unit-variance scores once divided by sqrt(d_k)
    assert 0.5 < float(scaled.var()) < 2.0


def test_single_key_returns_value_row_for_every_query():
    g = torch.Generator().manual_seed(3)
    q = torch.randn(5, 8, generator=g)
    k = torch.randn(1, 8, generator=g)
    v = torch.randn(1, 3, generator=g)
    out, w = scaled_dot_product_attention(q, k, v, return_weights=True)
    assert torch.equal(w, torch.ones(5, 1))
    assert torch.allclose(out, v.expand(5, 3))


def test_permuting_keys_and_values_permutes_weight_columns_only():
    g = torch.Generator().manual_seed(4)
    q = torch.randn(4, 8, generator=g, dtype=torch.float64)
    k = torch.randn(6, 8, generator=g, dtype=torch.float64)
    v = torch.randn(6, 5, generator=g, dtype=torch.float64)
    perm = torch.randperm(6, generator=g)
    inv = torch.argsort(perm)

    out, w = scaled_dot_product_attention(q, k, v, return_weights=True)
    out_p, w_p = scaled_dot_product_attention(q, k[perm], v[perm], return_weights=True)
    assert torch.allclose(out_p, out)
    assert torch.allclose(w_p[:, inv], w)


def test_explicit_scale_overrides_default():
    x = _embeddings()
    scores = attention_scores(x, x, scale=1.0)
    assert torch.allclose(scores, x @ x.T)


def test_leading_batch_dims():
    g = torch.Generator().manual_seed(5)
    q = torch.randn(2, 3, 4, 8, generator=g)
    k = torch.randn(2, 3, 6, 8, generator=g)
    v = torch.randn(2, 3, 6, 5, generator=g)
    out = scaled_dot_product_attention(q, k, v)
    assert out.shape == (2, 3, 4, 5)
    assert torch.allclose(out[1, 2], scaled_dot_product_attention(q[1, 2], k[1, 2], v[1, 2]), atol=1e-6)


def test_masked_keys_get_zero_weight():
    g = torch.Generator().manual_seed(6)
    x = torch.randn(4, 8, generator=g)
    mask = build_causal_mask(4)
    out, w = scaled_dot_product_attention(x, x, x, mask=mask, return_weights=True)
    assert torch.all(w[mask] == 0)
    assert is_row_stochastic(w)
    # first query can only see itself
    assert torch.allclose(out[0], x[0], atol=1e-6)


def test_fully_masked_row_is_uniform_not_nan():
    x = torch.randn(3, 4)
    mask = torch.zeros(3, 3, dtype=torch.bool)
    mask[1] = True
    _, w = scaled_dot_product_attention(x, x, x, mask=mask, return_weights=True)
    assert torch.isfinite(w).all()
    assert torch.allclose(w[1], torch.full((3,), 1.0 / 3.0))


def test_half_precision_inputs_keep_dtype():
    x = torch.randn(4, 8).to(torch.bfloat16)
    out, w = scaled_dot_product_attention(x, x, x, return_weights=True)
    assert out.dtype == torch.bfloat16
    assert w.dtype == torch.bfloat16


def test_shape_errors():
    q = torch.randn(4, 8)
    with pytest.raises(ShapeMismatch):
        scaled_dot_product_attention(q, torch.randn(5, 7), torch.randn(5, 3))
    with pytest.raises(ShapeMismatch):
        scaled_dot_product_attention(q, torch.randn(5, 8), torch.randn(6, 3))
    with pytest.raises(ShapeMismatch):
        scaled_dot_product_attention(torch.randn(8), torch.randn(5, 8), torch.randn(5, 3))
    with pytest.raises(ShapeMismatch):
        scaled_dot_product_attention(torch.randn(2, 4, 8), torch.randn(3, 5, 8), torch.randn(3, 5, 3))
    with pytest.raises(ShapeMismatch):
        scaled_dot_product_attention(q, q, q, mask=torch.zeros(4, 5, dtype=torch.bool))
    # ShapeMismatch is a ValueError so generic callers can catch it
    with pytest.raises(ValueError):
        attention_scores(q, torch.randn(5, 7))


def test_type_errors():
    with pytest.raises(TypeError):
        scaled_dot_product_attention(torch.ones(2, 2, dtype=torch.long), torch.ones(2, 2), torch.ones(2, 2))
    with pytest.raises(TypeError):
        scaled_dot_product_attention([[1.0]], torch.ones(1, 1), torch.ones(1, 1))
    x = torch.randn(3, 4)
    with pytest.raises(TypeError):
        scaled_dot_product_attention(x, x, x, mask=torch.zeros(3, 3))


def test_score_helpers_share_batch_contract():
    q = torch.randn(2, 4, 8)
    with pytest.raises(ShapeMismatch):
        attention_weights(q, torch.randn(3, 5, 8))
    with pytest.raises(ShapeMismatch):
        attention_scores(q, torch.randn(3, 5, 8))
    # broadcastable leading dims are rejected just as scaled_dot_product_attention rejects them
    with pytest.raises(ShapeMismatch):
        attention_scores(torch.randn(1, 4, 8), torch.randn(3, 5, 8))
    with pytest.raises(ShapeMismatch):
        scaled_dot_product_attention(torch.randn(1, 4, 8), torch.randn(3, 5, 8), torch.randn(3, 5, 2))
    with pytest.raises(ShapeMismatch):
        attention_weights(torch.randn(8), torch.randn(5, 8))
    assert attention_scores(q, torch.randn(2, 5, 8)).shape == (2, 4, 5)
