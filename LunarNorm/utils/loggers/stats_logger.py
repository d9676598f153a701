import os
import copy
import csv
import json
import threading
import LunarNorm.core.backend.backend as backend


class BatchNormStatsLogger:
    """
    Statistics logger for tracking batch-normalization layers during training.

    Records, per layer, summaries of the running statistics (every attribute
    listed in the layer's `custom_hook_metrics`), the norms of gamma and beta,
    the smallest batch variance of the last training step and, when the
    step's training context is passed, the norms of the parameter gradients.
    Can automatically save logs to JSON or CSV at epoch or batch intervals.

    Attributes:
        log_mode (str): Logging mode, either "batch" or "epoch".
        log_every (int): Frequency of batch logging (if mode="batch").
        autosave (str or None): Format for autosaving logs ("json" or "csv").
        save_path (str): Directory path for saving logs.
        records (dict): Logged statistics.
        last_epoch (int): Tracks last epoch index for aggregation.
    """
    def __init__(self, log_mode="epoch", log_every=1, autosave=None, save_path="bn_stats_logs"):
        if log_mode not in ("epoch", "batch"):
            raise ValueError("log_mode must be 'epoch' or 'batch'")
        if autosave not in (None, "json", "csv"):
            raise ValueError("autosave must be None, 'json' or 'csv'")

        self.log_mode = log_mode
        self.log_every = log_every

        self.records = {}
        self.last_epoch = -1
        self.epoch_accums = None

        self.autosave = autosave
        self.save_path = save_path
        self.autosave_thread = None
        if autosave:
            os.makedirs(save_path, exist_ok=True)

    # -------------------------------
    # Core Computations
    # -------------------------------
    def _collect_layer_stats(self, layer, context=None):
        """Collect scalar statistics for a single layer."""
        stats = {}

        for name in layer.custom_hook_metrics:
            arr = getattr(layer, name, None)
            if arr is None:
                continue
            stats[f"{name}_mean"] = float(backend.xp.mean(arr))
            stats[f"{name}_std"] = float(backend.xp.std(arr))
            stats[f"{name}_min"] = float(backend.xp.min(arr))
            stats[f"{name}_max"] = float(backend.xp.max(arr))

        stats["gamma_norm"] = float(backend.xp.linalg.norm(layer.gamma.data))
        stats["beta_norm"] = float(backend.xp.linalg.norm(layer.beta.data))

        if layer.cache is not None:
            stats["batch_var_min"] = float(backend.xp.min(layer.cache.var))

        if context is not None:
            stats["w_grad_norm"] = float(backend.xp.linalg.norm(context.w_grad))
            stats["b_grad_norm"] = float(backend.xp.linalg.norm(context.b_grad))

        return stats

    def _collect(self, layers, contexts):
        out = {}
        for i, layer in enumerate(layers):
            context = contexts[i] if contexts is not None else None
            for k, v in self._collect_layer_stats(layer, context).items():
                out[f"layer_{i}_{k}"] = v
        return out

    # -------------------------------
    # Logging
    # -------------------------------
    def add(self, layers, epoch, batch, n_batches, contexts=None):
        """
        Collect and log statistics for the given layers.

        Args:
            layers: A layer or a list of layers.
            epoch (int): Current epoch number.
            batch (int): Current batch index.
            n_batches (int): Total batches per epoch.
            contexts: Optional training context (or list matching `layers`)
                of the current step, for gradient norms.
        """
        if not isinstance(layers, (list, tuple)):
            layers = [layers]
            contexts = [contexts] if contexts is not None else None
        if contexts is not None and len(contexts) != len(layers):
            raise ValueError("contexts must match layers one to one")

        if self.log_mode == "epoch":
            if epoch > self.last_epoch:
                self.epoch_accums = {"sums": {}, "count": 0}
                self.last_epoch = epoch

            for k, v in self._collect(layers, contexts).items():
                self.epoch_accums["sums"][k] = self.epoch_accums["sums"].get(k, 0.0) + v
            self.epoch_accums["count"] += 1

            if batch + 1 == n_batches:
                count = self.epoch_accums["count"]
                self.records[f"Epoch_{epoch}"] = {
                    k: v / count for k, v in self.epoch_accums["sums"].items()
                }
                self._autosave_async()

        elif self.log_mode == "batch":
            if self.log_every is None or batch % self.log_every == 0:
                if f"Epoch_{epoch}" not in self.records:
                    self.records[f"Epoch_{epoch}"] = {}
                self.records[f"Epoch_{epoch}"][f"batch_{batch}"] = self._collect(layers, contexts)
                self._autosave_async()

    # -------------------------------
    # Export
    # -------------------------------
    def to_json(self, filepath, records=None):
        """Save all logged statistics (or the given `records`) to a JSON file."""
        if records is None:
            records = self.records
        with open(filepath, "w") as f:
            json.dump(records, f, indent=4)

    def to_csv(self, filepath, records=None):
        """Save flattened log data to CSV."""
        if records is None:
            records = self.records
        flat_records = []
        for epoch, data in records.items():
            if isinstance(data, dict) and any("batch_" in k for k in data):
                for batch, vals in data.items():
                    row = {"epoch": epoch, "batch": batch}
                    row.update(vals)
                    flat_records.append(row)
            else:
                row = {"epoch": epoch}
                row.update(data)
                flat_records.append(row)

        keys = sorted({k for row in flat_records for k in row.keys()})
        with open(filepath, "w", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=keys)
            writer.writeheader()
            writer.writerows(flat_records)

    def _autosave(self, records):
        """Write `records` in the autosave format."""
        if self.autosave == "json":
            filepath = os.path.join(self.save_path, "bn_stats_logs.json")
            self.to_json(filepath, records)
        elif self.autosave == "csv":
            filepath = os.path.join(self.save_path, "bn_stats_logs.csv")
            self.to_csv(filepath, records)

    def _autosave_async(self):
        """
        Run autosave in a non-blocking background thread.

        The thread writes a copy of the records taken here, and a new write
        starts only after the previous one has finished.
        """
        if not self.autosave:
            return
        records = copy.deepcopy(self.records)
        self.wait()
        self.autosave_thread = threading.Thread(target=self._autosave, args=(records,), daemon=True)
        self.autosave_thread.start()

    def wait(self):
        """Block until the pending autosave, if any, has been written."""
        if self.autosave_thread is not None:
            self.autosave_thread.join()
