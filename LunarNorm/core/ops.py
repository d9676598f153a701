import LunarNorm.core.backend.backend as backend

# Axes reduced for per-channel statistics of a (B, C, H, W) tensor
CHANNEL_AXES = (0, 2, 3)


# ======================================================
# Per-channel helpers
# ======================================================
def per_channel(v):
    """Reshape a (C,) vector to (1, C, 1, 1) so it broadcasts over a batch."""
    return v.reshape(1, -1, 1, 1)


def samples_per_channel(x) -> int:
    """Number of values each channel reduces over: B * H * W."""
    B, _, H, W = x.shape
    return B * H * W


def channel_sum(x):
    """Sum a (B, C, H, W) tensor over batch and spatial axes -> (C,)."""
    return backend.xp.sum(x, axis=CHANNEL_AXES)


def channel_mean(x):
    """Mean of a (B, C, H, W) tensor over batch and spatial axes -> (C,)."""
    return backend.xp.mean(x, axis=CHANNEL_AXES)


def channel_var(x, mean=None):
    """
    Biased (population) variance per channel.

    Computed as the mean squared deviation from `mean`, which is
    recomputed when not given.
    """
    if mean is None:
        mean = channel_mean(x)
    centered = x - per_channel(mean)
    return channel_mean(centered * centered)


def inverse_std(var, epsilon):
    """1 / sqrt(var + epsilon). Epsilon also absorbs tiny negative noise in var."""
    return 1.0 / backend.xp.sqrt(var + epsilon)


# ======================================================
# Batch normalization kernels
# ======================================================
def batch_norm_infer(x, gamma, beta, mean, var, epsilon):
    """
    Normalize with fixed statistics.

    Args:
        x: input of shape (B, C, H, W).
        gamma, beta: scale and shift, shape (C,).
        mean, var: statistics to normalize with, shape (C,).
        epsilon: added to the variance before the square root.

    Returns:
        Array of shape (B, C, H, W).
    """
    inv_std = inverse_std(var, epsilon)
    x_hat = (x - per_channel(mean)) * per_channel(inv_std)
    return per_channel(gamma) * x_hat + per_channel(beta)


def batch_norm_train(x, gamma, beta, epsilon):
    """
    Normalize with the statistics of the batch itself.

    Returns:
        tuple: (out, x_hat, batch_mean, batch_var, inv_std) where `x_hat` is
        the normalized input before scale and shift and `batch_var` is the
        biased variance used for normalization.
    """
    batch_mean = channel_mean(x)
    batch_var = channel_var(x, batch_mean)
    inv_std = inverse_std(batch_var, epsilon)

    x_hat = (x - per_channel(batch_mean)) * per_channel(inv_std)
    out = per_channel(gamma) * x_hat + per_channel(beta)
    return out, x_hat, batch_mean, batch_var, inv_std


def update_running_stats(running_mean, running_var, batch_mean, batch_var, momentum, n):
    """
    Fold batch statistics into running statistics in place.

    The variance folded in is unbiased with Bessel's correction n / (n - 1);
    the normalization itself keeps using the biased batch variance.
    """
    if n <= 1:
        raise ValueError(f"degenerate batch: need more than 1 sample per channel to unbias variance, got {n}")
    unbiased_var = batch_var * (n / (n - 1))

    running_mean *= momentum
    running_mean += (1 - momentum) * batch_mean
    running_var *= momentum
    running_var += (1 - momentum) * unbiased_var


def batch_norm_backward(errors, x_hat, gamma, inv_std):
    """
    Gradient of the batch-normalized output with respect to its input.

    dx = inv_std / S * (S * dxhat - sum(dxhat) - x_hat * sum(dxhat * x_hat))
    with dxhat = errors * gamma and sums taken per channel over S = B*H*W
    values. Both sums have to be complete before the elementwise pass.

    Args:
        errors: upstream gradient, shape (B, C, H, W).
        x_hat: normalized input cached by the training forward pass.
        gamma: scale, shape (C,).
        inv_std: inverse standard deviation of the batch, shape (C,).

    Returns:
        Array of shape (B, C, H, W).
    """
    S = samples_per_channel(errors)

    dxhat = errors * per_channel(gamma)
    dxhat_sum = channel_sum(dxhat)
    dxhat_xhat_sum = channel_sum(dxhat * x_hat)

    return per_channel(inv_std / S) * (
        S * dxhat - per_channel(dxhat_sum) - x_hat * per_channel(dxhat_xhat_sum)
    )


def batch_norm_param_grads(errors, x_hat):
    """
    Gradients of scale and shift.

    Returns:
        tuple: (gamma_grad, beta_grad), each of shape (C,).
    """
    gamma_grad = channel_sum(x_hat * errors)
    beta_grad = channel_sum(errors)
    return gamma_grad, beta_grad
