import math
import torch
import torch.nn as nn


def init_qkv_proj_(linear: nn.Linear, d_model: int, std: float | None = None, generator: torch.Generator | None = None):
    # N(0, 1/d_model) keeps projected q.k dot products O(1) before scaling
    s = std if std is not None else (1.0 / math.sqrt(d_model))
    nn.init.normal_(linear.weight, mean=0.0, std=s, generator=generator)
    if linear.bias is not None:
        nn.init.zeros_(linear.bias)
    return linear


def init_out_proj_(linear: nn.Linear, gain: float = 1.0, generator: torch.Generator | None = None):
    nn.init.xavier_uniform_(linear.weight, gain=gain, generator=generator)
    if linear.bias is not None:
        nn.init.zeros_(linear.bias)
    return linear


def make_generator(seed: int | None) -> torch.Generator | None:
    if seed is None:
        return None
    g = torch.Generator()
    g.manual_seed(int(seed))
    return g
