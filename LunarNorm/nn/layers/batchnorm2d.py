import LunarNorm.core.backend.backend as backend
from LunarNorm.core.backend.config import CONFIG
from LunarNorm.core.parameter import Parameter
from LunarNorm.core import ops
from LunarNorm.nn.stateful import Stateful
from LunarNorm.nn.layers.base_layer import BaseLayer


DEFAULT_MOMENTUM = 0.9
DEFAULT_EPSILON = 1e-8


class RunningStats(Stateful):
    """
    Exponential moving averages of per-channel mean and variance.

    Long-lived state: written by the training forward pass, read by
    inference. Never holds per-step values.
    """
    def __init__(self, channels, dtype):
        self.mean = backend.xp.zeros(channels, dtype=dtype)
        self.var = backend.xp.zeros(channels, dtype=dtype)

    def update(self, batch_mean, batch_var, momentum, n):
        ops.update_running_stats(self.mean, self.var, batch_mean, batch_var, momentum, n)

    def state_dict(self):
        return {"mean": self.mean.copy(), "var": self.var.copy()}

    def load_state_dict(self, state):
        for name in ("mean", "var"):
            if name not in state:
                continue
            current = getattr(self, name)
            value = backend.xp.asarray(state[name], dtype=current.dtype)
            if value.shape != current.shape:
                raise ValueError(
                    f"running {name} shape mismatch: expected {current.shape}, got {value.shape}"
                )
            current[...] = value


class StepCache:
    """
    Scratch values of one training step.

    Produced by `BatchNorm2D.train_forward` and consumed by `backward` and
    `accumulate_param_grads` of the same step.
    """
    __slots__ = ("mean", "var", "inv_std", "x_hat")

    def __init__(self, mean, var, inv_std, x_hat):
        self.mean = mean
        self.var = var
        self.inv_std = inv_std
        self.x_hat = x_hat

    @property
    def shape(self):
        return self.x_hat.shape


class BatchNorm2D(BaseLayer):
    """
    Batch normalization for 4D activations (batch, channels, height, width).

    In training mode each channel is normalized with the mean and biased
    variance of the current batch over its B*H*W values, then scaled by
    `gamma` and shifted by `beta`. The batch statistics are folded into
    running statistics with an exponential moving average; the variance
    folded in is unbiased with Bessel's correction. In inference mode the
    running statistics are used instead and no state changes.

    Parameters
    ----------
    momentum : float, optional
        Decay of the running statistics, in (0, 1). Defaults to the
        `momentum` config key, then 0.9.
    epsilon : float, optional
        Added to the variance before the square root. Defaults to the
        `epsilon` config key, then 1e-8.

    Attributes
    ----------
    gamma : Parameter
        Scale, shape (channels,), initialized to 1.
    beta : Parameter
        Shift, shape (channels,), initialized to 0.
    running : RunningStats
        Running mean and variance, shape (channels,), initialized to 0.
    cache : StepCache or None
        Per-step statistics and normalized input of the last training
        forward pass.

    Examples
    --------
    >>> bn = BatchNorm2D()
    >>> bn.initialize((3, 8, 8))
    >>> ctx = TrainingContext(bn, batch_size=16)
    >>> y = bn.train_forward(ctx.input)
    >>> dx = bn.backward(ctx)
    >>> bn.accumulate_param_grads(ctx)
    """
    def __init__(self, momentum=None, epsilon=None):
        if momentum is None:
            momentum = CONFIG.get("momentum", DEFAULT_MOMENTUM)
        if epsilon is None:
            epsilon = CONFIG.get("epsilon", DEFAULT_EPSILON)

        # Validate momentum
        if isinstance(momentum, bool) or not isinstance(momentum, (float, int)):
            raise ValueError("momentum must be a float")
        if not (0 < momentum < 1):
            raise ValueError("momentum must be in the range (0, 1)")

        # Validate epsilon
        if isinstance(epsilon, bool) or not isinstance(epsilon, (float, int)):
            raise ValueError("epsilon must be a float")
        if epsilon <= 0:
            raise ValueError("epsilon must be > 0")

        super().__init__(trainable=True)

        self.momentum = float(momentum)
        self.epsilon = float(epsilon)
        self.dtype = None

        self.running = None
        self.cache = None
        self._backup = None

        self.custom_hook_metrics = ["running_mean", "running_var"]
        self._state_fields += ["momentum", "epsilon"]

    @staticmethod
    def short_name():
        return "batch_norm"

    def get_config(self):
        return {"momentum": self.momentum, "epsilon": self.epsilon}

    def extra_repr(self) -> str:
        shape = f"in={self.input_shape}, out={self.output_shape}, " if self.input_shape else ""
        return f"{shape}momentum={self.momentum}, epsilon={self.epsilon}"

    def initialize(self, input_shape):

        # Validate input_shape
        if input_shape is None:
            raise ValueError("input_shape must be provided to initialize the layer")
        if self.is_initialized():
            raise RuntimeError(f"{self.__class__.__name__} is already initialized with input_shape={self.input_shape}")
        if len(input_shape) != 3:
            raise ValueError(f"input_shape must be (channels, height, width), got {input_shape}")
        if any(isinstance(d, bool) or not isinstance(d, (int, backend.xp.integer)) or d <= 0 for d in input_shape):
            raise ValueError(f"input_shape dimensions must be positive ints, got {input_shape}")

        input_shape = tuple(int(d) for d in input_shape)
        self.n_C, self.n_H, self.n_W = input_shape
        self.dtype = backend.DTYPE

        self.gamma = Parameter(backend.xp.ones(self.n_C), dtype=self.dtype)
        self.beta = Parameter(backend.xp.zeros(self.n_C), dtype=self.dtype)

        self.running = RunningStats(self.n_C, self.dtype)
        self.cache = None

        self.input_shape = input_shape
        self.output_shape = input_shape

        try:
            self.apply_pending_state_if_any()
        except Exception:
            # Back to the uninitialized layer; the pending state is kept
            self._release_allocation()
            raise

    def _release_allocation(self):
        del self.gamma, self.beta
        self.running = None
        self.cache = None
        self.dtype = None
        self.n_C, self.n_H, self.n_W = None, None, None
        self.input_shape, self.output_shape = None, None

    # -------------------------------
    # Introspection
    # -------------------------------
    @property
    def running_mean(self):
        return self.running.mean if self.running is not None else None

    @property
    def running_var(self):
        return self.running.var if self.running is not None else None

    def parameter_count(self) -> int:
        """gamma, beta, running mean and running variance: 4 values per channel."""
        self._check_initialized()
        return 4 * self.n_C

    def param_slots(self, context):
        return [(self.gamma, context.w_grad), (self.beta, context.b_grad)]

    # -------------------------------
    # Validation
    # -------------------------------
    def _check_input(self, x, name="input"):
        self._check_initialized()
        if x.ndim != 4:
            raise ValueError(
                f"shape mismatch: {name} must be 4D (batch, channels, height, width), got shape {x.shape}"
            )
        if tuple(x.shape[1:]) != self.input_shape:
            raise ValueError(
                f"shape mismatch: {name} has (channels, height, width)={tuple(x.shape[1:])}, "
                f"layer expects {self.input_shape}"
            )

    def _check_cache(self, errors):
        self._check_initialized()
        if self.cache is None:
            raise RuntimeError(
                "no cached forward pass: call train_forward before backward/accumulate_param_grads in the same step"
            )
        if errors.shape != self.cache.shape:
            raise ValueError(
                f"shape mismatch: errors have shape {errors.shape}, cached forward pass has {self.cache.shape}"
            )

    # -------------------------------
    # Forward
    # -------------------------------
    def forward(self, x):
        """Dispatch on the layer mode: batch statistics when training, running statistics otherwise."""
        if self.training:
            return self.train_forward(x)
        return self.infer(x)

    def infer(self, x):
        """
        Normalize with the running statistics.

        Reads only parameters and running statistics, so concurrent calls are
        safe as long as no training step runs on the same layer.
        """
        x = backend.xp.asarray(x, dtype=self.dtype)
        self._check_input(x)
        return ops.batch_norm_infer(
            x, self.gamma.data, self.beta.data, self.running.mean, self.running.var, self.epsilon
        )

    def train_forward(self, x):
        """
        Normalize with the batch statistics, cache the normalized input and
        update the running statistics.

        Raises ValueError when the batch holds a single value per channel,
        since the running variance cannot be unbiased.
        """
        x = backend.xp.asarray(x, dtype=self.dtype)
        self._check_input(x)

        S = ops.samples_per_channel(x)
        if S <= 1:
            raise ValueError(
                f"degenerate batch: {S} sample per channel (batch * height * width); need at least 2"
            )

        out, x_hat, batch_mean, batch_var, inv_std = ops.batch_norm_train(
            x, self.gamma.data, self.beta.data, self.epsilon
        )

        self.running.update(batch_mean, batch_var, self.momentum, S)
        self.cache = StepCache(batch_mean, batch_var, inv_std, x_hat)

        return out

    def release_cache(self):
        """Drop the step cache; backward then fails until the next training forward pass."""
        self.cache = None

    # -------------------------------
    # Backward
    # -------------------------------
    def backward(self, context):
        """
        Gradient with respect to the layer input.

        Args:
            context: training context whose `errors` hold the gradient of the
                loss with respect to this layer's output.

        Returns:
            Array with the shape of the forward input.
        """
        errors = backend.xp.asarray(context.errors, dtype=self.dtype)
        self._check_cache(errors)
        return ops.batch_norm_backward(errors, self.cache.x_hat, self.gamma.data, self.cache.inv_std)

    def accumulate_param_grads(self, context):
        """Write the gradients of gamma and beta into `context.w_grad` and `context.b_grad`."""
        errors = backend.xp.asarray(context.errors, dtype=self.dtype)
        self._check_cache(errors)
        gamma_grad, beta_grad = ops.batch_norm_param_grads(errors, self.cache.x_hat)
        context.w_grad[...] = gamma_grad
        context.b_grad[...] = beta_grad

    # -------------------------------
    # Backup / restore
    # -------------------------------
    @property
    def has_snapshot(self):
        return self._backup is not None

    def snapshot(self):
        """Keep an owned copy of gamma and beta, e.g. to return to the best epoch later."""
        self._check_initialized()
        self._backup = {"gamma": self.gamma.copy(), "beta": self.beta.copy()}

    def restore(self):
        """Copy the last snapshot back into gamma and beta."""
        if self._backup is None:
            raise RuntimeError("no snapshot to restore; call snapshot() first")
        self.gamma.assign(self._backup["gamma"])
        self.beta.assign(self._backup["beta"])
