from LunarNorm.nn.stateful import Stateful
from LunarNorm.core.parameter import Parameter


class BaseLayer(Stateful):
    """
    Base class for layers with an explicit forward/backward contract.

    Subclasses allocate their parameters in `initialize(input_shape)`, compute
    outputs in `forward`, and take part in backpropagation through
    `adapt_errors`, `backward` and `accumulate_param_grads`, all of which
    receive the training context owned by the training loop.
    """

    def __init__(self, trainable: bool = False):
        self.trainable = trainable
        self.training = True

        # Shape/hyperparameters
        self.input_shape, self.output_shape = None, None
        self.n_C, self.n_H, self.n_W = None, None, None

        self.frozen = False

        # Hook system
        self.custom_hook_metrics = []

        self._state_fields = [
            "training",
            "frozen",
        ]

    def is_initialized(self):
        for k, v in self.__dict__.items():
            if isinstance(v, Parameter):
                return True
        return False

    def _check_initialized(self):
        if not self.is_initialized():
            raise RuntimeError(
                f"{self.__class__.__name__} is not initialized; call initialize(input_shape) first"
            )

    def _named_state_items(self):
        for name, v in self.__dict__.items():
            if isinstance(v, Stateful):
                yield name, v

    def state_dict(self):
        out = {"_type": self.__class__.__name__}
        for name, obj in self._named_state_items():
            out[name] = obj.state_dict()
        for name in self._state_fields:
            val = getattr(self, name, None)
            if val is not None:
                out[name] = val
        return out

    def load_state_dict(self, state):
        if not self.is_initialized():
            self._pending_state = state
            return

        for name, obj in self._named_state_items():
            if name in state:
                obj.load_state_dict(state[name])

        for name in self._state_fields:
            if name in state:
                setattr(self, name, state[name])

    def apply_pending_state_if_any(self):
        ps = getattr(self, "_pending_state", None)
        if ps is None:
            return
        self.load_state_dict(ps)
        del self._pending_state

    def __call__(self, x, *args, **kwargs):
        return self.forward(x, *args, **kwargs)

    def __repr__(self):
        class_name = self.__class__.__name__
        extra = self.extra_repr()
        if extra:
            return f"{class_name}({extra})"
        return f"{class_name}()"

    def extra_repr(self) -> str:
        """
        Override in subclasses to provide custom layer-specific
        information for __repr__. By default, shows input/output shape.
        """
        if self.input_shape and self.output_shape:
            return f"in={self.input_shape}, out={self.output_shape}"
        return ""

    def parameter_count(self) -> int:
        """Return the total number of parameters held by this layer."""
        self._check_initialized()
        return sum(p.size for p in self.parameters())

    def input_size(self) -> int:
        """Number of values in one sample of the input."""
        self._check_initialized()
        size = 1
        for d in self.input_shape:
            size *= d
        return size

    def output_size(self) -> int:
        """Number of values in one sample of the output."""
        self._check_initialized()
        size = 1
        for d in self.output_shape:
            size *= d
        return size

    def train(self):
        """
        Set this layer to training mode.

        Layers like BatchNorm use this flag to change their forward-pass
        behavior. By default, just sets the internal `training` flag to True.
        """
        self.training = True

    def eval(self):
        """
        Set this layer to evaluation mode.

        Layers like BatchNorm use this flag to change their forward-pass
        behavior. By default, just sets the internal `training` flag to False.
        """
        self.training = False

    def freeze(self):
        """Freeze all parameters in this layer."""
        self.frozen = True
        for p in self.parameters():
            p.frozen = True

    def unfreeze(self):
        """Unfreeze all parameters in this layer."""
        self.frozen = False
        for p in self.parameters():
            p.frozen = False

    # -------------------------------
    # Parameter collection
    # -------------------------------
    def parameters(self):
        return [p for _, p in self.named_parameters()]

    def named_parameters(self, prefix: str = ""):
        params = []
        for name, v in self.__dict__.items():
            if isinstance(v, Parameter):
                params.append((f"{prefix}{name}", v))
        return params

    def param_slots(self, context):
        """
        Pair each trainable parameter with its gradient slot in `context`.

        Returns a list of (Parameter, gradient array) tuples an optimizer can
        walk without knowing what the parameters are called.
        """
        return []

    # -------------------------------
    # Abstracts (implemented in child)
    # -------------------------------
    def initialize(self, input_shape):
        raise NotImplementedError

    def forward(self, x):
        raise NotImplementedError

    def adapt_errors(self, context):
        """Fold the layer's own nonlinearity into `context.errors`. No-op by default."""
        return None

    def backward(self, context):
        raise NotImplementedError

    def accumulate_param_grads(self, context):
        raise NotImplementedError
