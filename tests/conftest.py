import numpy as np
import pytest

from LunarNorm import BatchNorm2D, TrainingContext, precision_scope


@pytest.fixture
def rng():
    return np.random.default_rng(0)


@pytest.fixture
def make_layer():
    """Build an initialized BatchNorm2D, optionally in float64."""
    def _make(input_shape=(2, 3, 3), dtype="float32", **kwargs):
        bn = BatchNorm2D(**kwargs)
        with precision_scope(dtype):
            bn.initialize(input_shape)
        return bn
    return _make


@pytest.fixture
def make_step(rng, make_layer):
    """Layer plus a context filled with random input and errors, forward already run."""
    def _make(input_shape=(3, 2, 2), batch_size=4, dtype="float64", **kwargs):
        bn = make_layer(input_shape, dtype=dtype, **kwargs)
        ctx = TrainingContext(bn, batch_size=batch_size)
        ctx.input[...] = rng.normal(loc=1.0, scale=2.0, size=ctx.input.shape)
        ctx.errors[...] = rng.normal(size=ctx.errors.shape)
        ctx.output[...] = bn.train_forward(ctx.input)
        return bn, ctx
    return _make
