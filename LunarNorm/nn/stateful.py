class Stateful:
    """
    Anything whose state can be saved and restored.

    `state_dict` returns plain values and arrays (parameters, running
    statistics, hyperparameters); `load_state_dict` writes them back into an
    existing object. `get_config` holds only constructor arguments, so
    `from_config(obj.get_config())` builds a fresh, uninitialized copy.
    """
    def state_dict(self):
        return {}

    def load_state_dict(self, state):
        pass

    def get_config(self):
        return {}

    @classmethod
    def from_config(cls, cfg):
        return cls(**cfg)
