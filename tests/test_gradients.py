import numpy as np
import pytest

from LunarNorm import BatchNorm2D, TrainingContext
from LunarNorm.core import ops


def numerical_grad(f, x, h=1e-6):
    """Central finite differences of a scalar function over every entry of x."""
    grad = np.zeros_like(x)
    for idx in np.ndindex(x.shape):
        orig = x[idx]
        x[idx] = orig + h
        plus = f(x)
        x[idx] = orig - h
        minus = f(x)
        x[idx] = orig
        grad[idx] = (plus - minus) / (2 * h)
    return grad


@pytest.mark.parametrize("input_shape,batch_size", [((3, 2, 2), 4), ((2, 1, 1), 5), ((1, 3, 2), 2)])
def test_backward_matches_finite_differences(rng, make_step, input_shape, batch_size):
    bn, ctx = make_step(input_shape, batch_size=batch_size, epsilon=1e-5)
    C = input_shape[0]
    bn.gamma.assign(rng.uniform(0.5, 1.5, size=C))
    bn.beta.assign(rng.normal(size=C))
    bn.train_forward(ctx.input)

    dx = bn.backward(ctx)

    gamma, beta = bn.gamma.data.copy(), bn.beta.data.copy()
    loss = lambda x: np.sum(ops.batch_norm_train(x, gamma, beta, bn.epsilon)[0] * ctx.errors)
    expected = numerical_grad(loss, ctx.input.copy())

    assert dx.shape == ctx.input.shape
    assert np.allclose(dx, expected, atol=1e-6)


def test_param_grads_match_finite_differences(rng, make_step):
    bn, ctx = make_step((3, 2, 2), batch_size=4, epsilon=1e-5)
    bn.gamma.assign(rng.uniform(0.5, 1.5, size=3))
    bn.train_forward(ctx.input)
    bn.accumulate_param_grads(ctx)

    x = ctx.input.copy()
    gamma, beta = bn.gamma.data.copy(), bn.beta.data.copy()
    loss_gamma = lambda g: np.sum(ops.batch_norm_train(x, g, beta, bn.epsilon)[0] * ctx.errors)
    loss_beta = lambda b: np.sum(ops.batch_norm_train(x, gamma, b, bn.epsilon)[0] * ctx.errors)

    assert np.allclose(ctx.w_grad, numerical_grad(loss_gamma, gamma.copy()), atol=1e-6)
    assert np.allclose(ctx.b_grad, numerical_grad(loss_beta, beta.copy()), atol=1e-6)


def test_zero_errors_give_zero_gradients(make_step):
    bn, ctx = make_step((3, 2, 2))
    ctx.errors[...] = 0.0
    ctx.w_grad[...] = 5.0
    ctx.b_grad[...] = 5.0

    dx = bn.backward(ctx)
    bn.accumulate_param_grads(ctx)

    assert dx.shape == ctx.input.shape
    assert not dx.any()
    assert not ctx.w_grad.any()
    assert not ctx.b_grad.any()


def test_input_gradient_sums_to_zero_per_channel(make_step):
    bn, ctx = make_step((3, 2, 2), batch_size=6)
    dx = bn.backward(ctx)
    assert np.allclose(dx.sum(axis=(0, 2, 3)), 0.0, atol=1e-10)


def test_backward_uses_cached_step_not_running_statistics(make_step):
    bn, ctx = make_step((2, 2, 2))
    dx = bn.backward(ctx)

    bn.running.mean[...] = 100.0
    bn.running.var[...] = 50.0
    assert np.array_equal(bn.backward(ctx), dx)


def test_gradients_write_into_context_slots_in_place(make_step):
    bn, ctx = make_step((3, 2, 2))
    w_grad, b_grad = ctx.w_grad, ctx.b_grad
    bn.accumulate_param_grads(ctx)
    assert ctx.w_grad is w_grad and ctx.b_grad is b_grad
    assert np.allclose(ctx.b_grad, ctx.errors.sum(axis=(0, 2, 3)))


def test_param_slots_pair_parameters_with_context_gradients(make_step):
    bn, ctx = make_step((3, 2, 2))
    bn.accumulate_param_grads(ctx)
    slots = bn.param_slots(ctx)

    assert [p for p, _ in slots] == [bn.gamma, bn.beta]
    assert slots[0][1] is ctx.w_grad
    assert slots[1][1] is ctx.b_grad

    before = bn.gamma.data.copy()
    for param, grad in slots:
        param.data -= 0.1 * grad
    assert np.allclose(bn.gamma.data, before - 0.1 * ctx.w_grad)


def test_adapt_errors_is_passthrough(make_step):
    bn, ctx = make_step((2, 2, 2))
    errors = ctx.errors.copy()
    assert bn.adapt_errors(ctx) is None
    assert np.array_equal(ctx.errors, errors)


def test_backward_without_forward_is_rejected(make_layer):
    bn = make_layer((2, 2, 2), dtype="float64")
    ctx = TrainingContext(bn, batch_size=3)
    with pytest.raises(RuntimeError, match="no cached forward"):
        bn.backward(ctx)
    with pytest.raises(RuntimeError, match="no cached forward"):
        bn.accumulate_param_grads(ctx)


def test_backward_after_release_cache_is_rejected(make_step):
    bn, ctx = make_step((2, 2, 2))
    bn.release_cache()
    with pytest.raises(RuntimeError, match="no cached forward"):
        bn.backward(ctx)


def test_backward_with_other_batch_size_is_rejected(make_step):
    bn, _ = make_step((2, 2, 2), batch_size=4)
    other = TrainingContext(bn, batch_size=3)
    with pytest.raises(ValueError, match="shape mismatch"):
        bn.backward(other)
    with pytest.raises(ValueError, match="shape mismatch"):
        bn.accumulate_param_grads(other)


def test_backward_before_initialize_is_rejected():
    class _Ctx:
        errors = np.zeros((2, 1, 1, 1))

    with pytest.raises(RuntimeError, match="not initialized"):
        BatchNorm2D().backward(_Ctx())
