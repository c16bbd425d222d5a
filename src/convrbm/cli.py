#!/usr/bin/env python
"""convrbm command-line interface."""

import argparse
import logging
import sys
from pathlib import Path


def _load(args):
    """Load config and build the layer, or return None after printing an error."""
    from convrbm.config import load_config
    from convrbm.errors import ConfigurationError
    from convrbm.model import ConvRBM
    from convrbm.utils import resolve_device, set_seed

    config_path = Path(args.config)
    if not config_path.exists():
        print(f"Error: Config file not found: {config_path}")
        return None, None

    try:
        cfg = load_config(config_path)
        set_seed(cfg.get("seed"))
        model = ConvRBM(cfg)
    except ConfigurationError as e:
        print(f"Error: {e}")
        return None, None

    if not model.initialized:
        print("Error: config must set nc, nv1, nv2, k, nh1 and nh2 under 'model'")
        return None, None

    device = resolve_device(cfg.get("device", "auto"))
    model = model.to(device)
    print(f"Using device: {device}")
    return model, cfg


def cmd_summary(args):
    """Print the layer configuration."""
    model, _ = _load(args)
    if model is None:
        return 1

    print(model.to_short_string())
    print(f"  Visible units: {model.visible_unit.value}")
    print(f"  Hidden units:  {model.hidden_unit.value}")
    print(f"  Input size:    {model.input_size():,}")
    print(f"  Output size:   {model.output_size():,}")
    print(f"  Parameters:    {model.parameters_count():,}")
    return 0


def cmd_gibbs(args):
    """Run a Gibbs chain from random visible data and report free energy."""
    import torch

    from convrbm.pool import WorkerPool
    from convrbm.tester import EnergyTester
    from convrbm.units import UnitType

    model, cfg = _load(args)
    if model is None:
        return 1

    gibbs_cfg = cfg.get("gibbs", {})
    steps = args.steps or gibbs_cfg.get("steps", 10)
    batch_size = args.batch_size or gibbs_cfg.get("batch_size", 8)

    v = torch.rand((batch_size,) + model.visible_shape, device=model.W.device)
    if model.visible_unit is UnitType.BINARY:
        v = torch.bernoulli(v)

    print(f"Running {steps} Gibbs steps on {batch_size} random samples")
    print("=" * 60)

    tester = EnergyTester(model, progress=True)
    with WorkerPool(cfg.get("workers")) as pool:
        history = tester.gibbs_monitor(v, steps=steps, pool=pool)

    for step, fe, mse in zip(history["step"], history["free_energy"], history["recon_mse"]):
        print(f"Step {step:04d} | FE={fe:.4f} | recon_mse={mse:.4f}")

    return 0


def cmd_filters(args):
    """Save a picture of the (freshly initialized) filters."""
    from convrbm.visualize import plot_filters

    model, _ = _load(args)
    if model is None:
        return 1

    plot_filters(model, save_path=args.out, show=False, channel=args.channel)
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="convrbm - Convolutional RBM layer toolkit",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Log timings and shape resolution at DEBUG level",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # summary command
    summary_parser = subparsers.add_parser(
        "summary",
        help="Show layer dimensions",
    )
    summary_parser.add_argument(
        "--config", "-c",
        type=str,
        required=True,
        help="Path to config file",
    )

    # gibbs command
    gibbs_parser = subparsers.add_parser(
        "gibbs",
        help="Run a Gibbs chain and monitor free energy",
    )
    gibbs_parser.add_argument(
        "--config", "-c",
        type=str,
        required=True,
        help="Path to config file",
    )
    gibbs_parser.add_argument(
        "--steps", "-s",
        type=int,
        default=None,
        help="Number of Gibbs steps (overrides config)",
    )
    gibbs_parser.add_argument(
        "--batch-size", "-b",
        type=int,
        default=None,
        help="Number of chains (overrides config)",
    )

    # filters command
    filters_parser = subparsers.add_parser(
        "filters",
        help="Save the filter grid as an image",
    )
    filters_parser.add_argument(
        "--config", "-c",
        type=str,
        required=True,
        help="Path to config file",
    )
    filters_parser.add_argument(
        "--out", "-o",
        type=str,
        required=True,
        help="Output image path",
    )
    filters_parser.add_argument(
        "--channel",
        type=int,
        default=0,
        help="Input channel to draw",
    )

    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "summary":
        return cmd_summary(args)
    elif args.command == "gibbs":
        return cmd_gibbs(args)
    elif args.command == "filters":
        return cmd_filters(args)

    return 0


if __name__ == "__main__":
    sys.exit(main())
