import math

import torch

from tensor.numerics import entropy_from_probs, is_row_stochastic, safe_softmax


def test_safe_softmax_matches_torch_in_double():
    x = torch.randn(3, 5, dtype=torch.float64)
    p = safe_softmax(x)
    assert p.dtype == torch.float64
    assert torch.allclose(p, torch.softmax(x, dim=-1))
    assert torch.allclose(p.sum(dim=-1), torch.ones(3, dtype=torch.float64), atol=1e-12)


def test_safe_softmax_upcasts_half():
    x = torch.randn(2, 4).to(torch.float16)
    p = safe_softmax(x)
    assert p.dtype == torch.float16
    assert torch.allclose(p.float().sum(dim=-1), torch.ones(2), atol=1e-2)


def test_safe_softmax_mask_and_fully_masked_row():
    x = torch.randn(2, 3)
    mask = torch.tensor([[False, True, False], [True, True, True]])
    p = safe_softmax(x, mask=mask)
    assert p[0, 1] == 0
    assert torch.isfinite(p).all()
    assert torch.allclose(p[1], torch.full((3,), 1.0 / 3.0))


def test_entropy_bounds():
    uniform = torch.full((2, 4), 0.25)
    onehot = torch.tensor([[1.0, 0.0, 0.0, 0.0]])
    assert torch.allclose(entropy_from_probs(uniform), torch.full((2,), math.log(4.0)))
    assert torch.allclose(entropy_from_probs(onehot), torch.zeros(1))


def test_is_row_stochastic():
    assert is_row_stochastic(torch.softmax(torch.randn(4, 6), dim=-1))
    assert not is_row_stochastic(torch.full((2, 2), 0.6))
    assert not is_row_stochastic(torch.tensor([[1.5, -0.5]]))
