from __future__ import annotations

import argparse
import json
import logging

import torch

from specs.config import AttentionConfig
from .eager import MultiHeadSelfAttention
from .reference import attention_scores, scaled_dot_product_attention

DEMO_TOKENS = ("I", "love", "deep", "learning")
DEMO_EMBEDDINGS = ((1.0, 0.0), (0.0, 1.0), (1.0, 1.0), (0.0, 0.0))


def demo_embeddings(dtype: torch.dtype = torch.float64) -> torch.Tensor:
    return torch.tensor(DEMO_EMBEDDINGS, dtype=dtype)


def run_demo() -> dict:
    """Self-attention over the four-token example with Q = K = V = embeddings."""
    x = demo_embeddings()
    scores = attention_scores(x, x)
    out, weights = scaled_dot_product_attention(x, x, x, return_weights=True)
    return {
        "tokens": list(DEMO_TOKENS),
        "d_k": int(x.size(-1)),
        "scores": scores.tolist(),
        "weights": weights.tolist(),
        "row_sums": weights.sum(dim=-1).tolist(),
        "output": out.tolist(),
    }


def run_mha(d_model: int, n_heads: int, seq_len: int, seed: int, parallel: bool) -> dict:
    cfg = AttentionConfig.from_env(d_model=d_model, n_heads=n_heads, seed=seed, dtype="float64")
    if parallel:
        cfg.parallel_heads = True
    mod = MultiHeadSelfAttention(cfg)
    g = torch.Generator().manual_seed(seed)
    x = torch.randn(1, seq_len, d_model, generator=g, dtype=torch.float64)
    y, probs = mod(x, return_weights=True)
    y_func = mod.functional(x)
    return {
        "d_model": d_model,
        "n_heads": n_heads,
        "head_dim": cfg.head_dim,
        "scale": cfg.softmax_scale,
        "output_shape": list(y.shape),
        "weights_shape": list(probs.shape),
        "functional_max_abs_diff": float((y - y_func).abs().max()),
    }


def main(argv: list[str] | None = None) -> None:
    p = argparse.ArgumentParser(prog="attn", description="Scaled dot-product and multi-head attention utilities")
    p.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="cmd")

    p_demo = sub.add_parser("demo", help="Run the 'I love deep learning' self-attention example")
    p_demo.add_argument("--heatmap", type=str, default=None, help="Write the weight heatmap to this HTML file")

    p_mha = sub.add_parser("mha", help="Run a randomly initialised multi-head self-attention")
    p_mha.add_argument("--d-model", type=int, default=8)
    p_mha.add_argument("--heads", type=int, default=2)
    p_mha.add_argument("--seq-len", type=int, default=4)
    p_mha.add_argument("--seed", type=int, default=0)
    p_mha.add_argument("--parallel", action="store_true", help="Compute heads on a thread pool")

    args = p.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
    )

    if args.cmd == "demo":
        result = run_demo()
        if args.heatmap:
            from viz.attention import write_attention_heatmap

            out = write_attention_heatmap(
                torch.tensor(result["weights"]),
                args.heatmap,
                query_labels=result["tokens"],
                key_labels=result["tokens"],
            )
            result["heatmap"] = str(out)
        print(json.dumps(result, indent=2))
        return

    if args.cmd == "mha":
        print(json.dumps(run_mha(args.d_model, args.heads, args.seq_len, args.seed, args.parallel), indent=2))
        return

    p.print_help()


if __name__ == "__main__":  # pragma: no cover
    main()
