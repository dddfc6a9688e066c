from .attention import attention_heatmap_figure, write_attention_heatmap

__all__ = [
    "attention_heatmap_figure",
    "write_attention_heatmap",
]
