import LunarNorm.core.backend.backend as backend


class TrainingContext:
    """
    Per-layer buffers of one training step, owned by the training loop.

    The loop writes the batch into `input` and the upstream gradient into
    `errors`; the layer reads them during `backward` and writes the gradients
    of its parameters into `w_grad` and `b_grad`. The layer never keeps a
    reference to the context.

    Args:
        layer: an initialized layer exposing `input_shape`, `output_shape`,
            `n_C` and `dtype`.
        batch_size (int): number of samples per step, fixed for the network.
    """
    def __init__(self, layer, batch_size):
        if isinstance(batch_size, bool) or not isinstance(batch_size, (int, backend.xp.integer)) or batch_size <= 0:
            raise ValueError(f"batch_size must be a positive int, got {batch_size!r}")
        if not layer.is_initialized():
            raise RuntimeError(
                f"{layer.__class__.__name__} is not initialized; call initialize(input_shape) first"
            )

        self.batch_size = int(batch_size)
        dtype = layer.dtype

        self.input = backend.xp.zeros((batch_size, *layer.input_shape), dtype=dtype)
        self.output = backend.xp.zeros((batch_size, *layer.output_shape), dtype=dtype)
        self.errors = backend.xp.zeros((batch_size, *layer.output_shape), dtype=dtype)

        self.w_grad = backend.xp.zeros(layer.n_C, dtype=dtype)
        self.b_grad = backend.xp.zeros(layer.n_C, dtype=dtype)

    def zero_grad(self):
        """Reset the gradient slots."""
        self.w_grad[...] = 0
        self.b_grad[...] = 0

    def __repr__(self):
        return (f"TrainingContext(batch_size={self.batch_size}, input={self.input.shape}, "
                f"grads={self.w_grad.shape})")
