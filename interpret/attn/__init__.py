from .weights import attention_entropy, head_attention_weights, module_attention_weights

__all__ = [
    "attention_entropy",
    "head_attention_weights",
    "module_attention_weights",
]
