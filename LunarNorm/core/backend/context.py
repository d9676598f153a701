class device_scope:
    """Context manager to temporarily switch computations to another device."""
    def __init__(self, device="cpu"):
        if device not in ("cpu", "gpu"):
            raise ValueError(f"Invalid device '{device}'. Must be 'cpu' or 'gpu'")
        self.device = device

    def __enter__(self):
        import LunarNorm.core.backend.backend as backend
        self.prev_using = backend.USING

        if self.device == "gpu":
            if not backend.gpu_available():
                raise RuntimeError("GPU not available.")
            backend.use_gpu()
        else:
            backend.use_cpu()
        return backend.xp

    def __exit__(self, exc_type, exc_value, tb):
        import LunarNorm.core.backend.backend as backend
        if backend.USING == "gpu":
            backend.synchronize()
        if self.prev_using == "gpu":
            backend.use_gpu()
        else:
            backend.use_cpu()


class precision_scope:
    """
    Temporarily change the global floating-point precision (dtype) inside a `with` block.

    Layers initialized inside the block allocate their parameters and
    statistics in this dtype and keep it afterwards.

    Args:
        dtype (str): Precision to use ("float32" or "float64").
    """
    def __init__(self, dtype="float32"):
        if dtype not in ("float32", "float64"):
            raise ValueError(f"Unsupported dtype '{dtype}'. Use one of: ['float32', 'float64']")
        self.new_dtype = dtype

    def __enter__(self):
        import LunarNorm.core.backend.backend as backend
        self.prev_dtype = backend.DTYPE
        backend.set_dtype(self.new_dtype)
        return backend.DTYPE

    def __exit__(self, exc_type, exc_value, tb):
        import LunarNorm.core.backend.backend as backend
        backend.DTYPE = self.prev_dtype


class _mode_scope:
    """Set the `training` flag on a group of layers and restore it on exit."""
    training = True

    def __init__(self, *layers):
        self.layers = layers

    def __enter__(self):
        self.prev_modes = [layer.training for layer in self.layers]
        for layer in self.layers:
            if self.training:
                layer.train()
            else:
                layer.eval()
        return self.layers[0] if len(self.layers) == 1 else self.layers

    def __exit__(self, exc_type, exc_value, tb):
        for layer, was_training in zip(self.layers, self.prev_modes):
            if was_training:
                layer.train()
            else:
                layer.eval()


class train_mode(_mode_scope):
    """
    Put layers into training mode inside a `with` block.

        >>> with train_mode(bn):
        ...     y = bn(x)   # batch statistics, running stats updated
    """
    training = True


class eval_mode(_mode_scope):
    """
    Put layers into inference mode inside a `with` block.

        >>> with eval_mode(bn):
        ...     y = bn(x)   # running statistics only, no state change
    """
    training = False
