"""Run a field simulation from the command line.

Usage:
    python -m detfield.simulate --ticks 1000
    python -m detfield.simulate --config.field.dim 128 --config.field.seed 7 \
        --ticks 500 --snapshot-interval 100 --config.log.audit-path audits/run.msgpack.gz
"""

import sys
from dataclasses import dataclass
from dataclasses import field as dataclass_field

from tqdm import tqdm

from detfield.audit.trail import AuditTrail
from detfield.configs import Config
from detfield.engine import Engine
from detfield.field.hashing import hexdigest
from detfield.persistence.snapshots import save_snapshot, snapshot_path
from detfield.utils.logging import setup_logging


@dataclass
class SimulateArgs:
    """Arguments for a simulation run."""
    config: Config = dataclass_field(default_factory=Config)
    config_file: str | None = None
    """YAML config to load; replaces the config section defaults."""
    ticks: int = 100
    """Total number of steps to run."""
    chunk: int = 10
    """Steps per engine call (progress bar granularity)."""
    snapshot_interval: int = 0
    """Save a snapshot every N steps (0 = only the final state is reported)."""
    progress: bool = True


def simulate(args: SimulateArgs) -> Engine:
    """Initialize an engine from the config and run args.ticks steps.

    Snapshots and the audit trail are written according to args. The final
    step and digest are printed.

    Returns:
        The engine holding the final state.
    """
    config = Config.from_yaml(args.config_file) if args.config_file else args.config
    setup_logging(config.log.level)

    if args.ticks < 0:
        raise ValueError(f"ticks must be non-negative, got {args.ticks}")
    chunk = max(1, args.chunk)

    trail = AuditTrail(metadata={"source": "simulate"}) if config.log.audit_path else None
    engine = Engine(trail=trail)
    engine.initialize(config.field.dim, config.field.seed, config.field.alpha)
    print(f"Initialized dim={config.field.dim} seed={config.field.seed} alpha={config.field.alpha}")
    print(f"  step 0 hash {hexdigest(engine.state)}")

    pbar = tqdm(
        total=args.ticks,
        desc="Simulating",
        unit="step",
        file=sys.stderr,
        disable=not args.progress,
    )
    remaining = args.ticks
    while remaining > 0:
        n = min(chunk, remaining)
        if args.snapshot_interval > 0:
            # Never step past the next snapshot boundary.
            to_boundary = args.snapshot_interval - engine.get_step() % args.snapshot_interval
            n = min(n, to_boundary)
        engine.tick(n)
        remaining -= n
        pbar.update(n)

        step = engine.get_step()
        if args.snapshot_interval > 0 and step % args.snapshot_interval == 0:
            path = save_snapshot(
                snapshot_path(config.log.snapshot_dir, step),
                engine.state,
                max_snapshots=config.log.max_snapshots,
            )
            tqdm.write(f"Snapshot at step {step} -> {path}")
    pbar.close()

    print(f"Final step {engine.get_step()} hash {hexdigest(engine.state)}")

    if trail is not None:
        path = trail.save(config.log.audit_path)
        print(f"Audit trail ({len(trail)} entries) saved to {path}")

    return engine


def main() -> None:
    """CLI entry point using tyro for argument parsing."""
    import tyro

    args = tyro.cli(SimulateArgs)
    simulate(args)


if __name__ == "__main__":
    main()
