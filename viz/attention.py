from __future__ import annotations

from typing import Optional, Sequence

import torch


def attention_heatmap_figure(
    attn: torch.Tensor,
    *,
    head: Optional[int] = None,
    query_labels: Optional[Sequence[str]] = None,
    key_labels: Optional[Sequence[str]] = None,
):
    """Create a Plotly heatmap for an attention matrix.

    attn: Tensor of shape [H, n, m] or [n, m].
    """
    import plotly.graph_objects as go  # type: ignore

    if attn.ndim == 3:
        if head is None:
            head = 0
        if not 0 <= head < attn.shape[0]:
            raise IndexError(f"head {head} out of range for {attn.shape[0]} heads")
        mat = attn[head]
    elif attn.ndim == 2:
        mat = attn
        head = None
    else:
        raise ValueError("attention tensor must be [H, n, m] or [n, m]")
    n, m = mat.shape
    if query_labels is not None and len(query_labels) != n:
        raise ValueError(f"expected {n} query labels, got {len(query_labels)}")
    if key_labels is not None and len(key_labels) != m:
        raise ValueError(f"expected {m} key labels, got {len(key_labels)}")
    z = mat.detach().float().cpu().numpy()
    fig = go.Figure(
        data=go.Heatmap(
            z=z,
            x=list(key_labels) if key_labels is not None else None,
            y=list(query_labels) if query_labels is not None else None,
            colorscale="Viridis",
            zmin=0.0,
            zmax=1.0,
        )
    )
    fig.update_layout(
        title=f"Attention Heatmap{'' if head is None else f' (head {head})'}",
        xaxis_title="Key position",
        yaxis_title="Query position",
        template="plotly_white",
    )
    fig.update_yaxes(autorange="reversed")
    return fig


def write_attention_heatmap(attn: torch.Tensor, path, **kwargs):
    """Render the heatmap to a standalone HTML file and return its path."""
    from pathlib import Path

    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    attention_heatmap_figure(attn, **kwargs).write_html(str(out), include_plotlyjs="cdn")
    return out
