import LunarNorm.core.backend.backend as backend
from LunarNorm.nn.stateful import Stateful


class Parameter(Stateful):
    """
    Trainable parameter vector.

    Holds the array an optimizer updates in place. Gradients are not stored
    here: they live in the training context of the step that produced them,
    and layers hand out (parameter, gradient) pairs through `param_slots`.
    """
    def __init__(self, data, requires_grad=True, dtype=None):
        self.data = backend.xp.array(data, dtype=dtype or backend.DTYPE)
        self.requires_grad = requires_grad
        self.frozen = False

        self._state_fields = [
            "requires_grad",
            "frozen"
        ]

    def state_dict(self):
        out = {
            "data": self.data.copy(),
            "dtype": str(self.data.dtype),
        }
        for name in self._state_fields:
            out[name] = getattr(self, name)
        return out

    def load_state_dict(self, state):
        if "data" in state:
            # restore in place so optimizer references stay valid
            self.assign(state["data"])

        for name in self._state_fields:
            if name in state:
                setattr(self, name, state[name])

    @property
    def shape(self):
        return self.data.shape

    @property
    def dtype(self):
        return self.data.dtype

    @property
    def size(self):
        return self.data.size

    def copy(self):
        """Return an owned copy of the parameter values."""
        return self.data.copy()

    def assign(self, values):
        """Overwrite the parameter values in place."""
        values = backend.xp.asarray(values, dtype=self.data.dtype)
        if values.shape != self.data.shape:
            raise ValueError(
                f"Parameter shape mismatch: expected {self.data.shape}, got {values.shape}"
            )
        self.data[...] = values

    def __repr__(self):
        return f"Parameter(shape={self.shape}, dtype={self.dtype}, frozen={self.frozen})"
