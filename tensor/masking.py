import torch

from tensor.shape import ShapeMismatch, assert_broadcastable


def build_causal_mask(seq_len: int, device=None, dtype=torch.bool) -> torch.Tensor:
    # True above the diagonal: query i may not see key j > i
    mask = torch.ones(seq_len, seq_len, device=device, dtype=torch.bool)
    mask = torch.triu(mask, diagonal=1)
    return mask.to(dtype)


def build_padding_mask(attention_mask: torch.Tensor) -> torch.Tensor:
    # attention_mask: (..., S) where 1=token, 0=pad -> (..., 1, S) broadcastable over queries
    return (attention_mask == 0).unsqueeze(-2)


def check_attention_mask(mask: torch.Tensor, scores_shape: tuple[int, ...]) -> torch.Tensor:
    """Validate a boolean mask against scores of shape (..., n, m) and return it."""
    if mask.dtype != torch.bool:
        raise TypeError(f"mask must be boolean (True = masked), got {mask.dtype}")
    try:
        assert_broadcastable(mask, tuple(scores_shape))
    except ShapeMismatch as e:
        raise ShapeMismatch(f"attention mask: {e}", tuple(mask.shape), tuple(scores_shape)) from e
    return mask
