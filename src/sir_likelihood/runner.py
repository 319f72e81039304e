#!/usr/bin/env python3
# src/sir_likelihood/runner.py: command line runner (simulate | filter | scan)

import argparse
import logging
import time
from typing import Optional, Tuple

import numpy as np

from .simulate.step_kernel import ModelState, ParameterVector
from .simulate import generate_observations as gen
from .particle_filter.bootstrap import bootstrap_filter
from .scan import parameter_scan as ps
from .scan import plot_profile as pp
from .scan.emulator import LikelihoodEmulator

logger = logging.getLogger(__name__)

# used when neither a flag nor the observation CSV metadata gives a value
DEFAULT_MODEL = {"beta": 0.5, "gamma": 0.25, "N": 1000, "I0": 10}


# Parser for figsize like 8,5
def parse_figsize(s: Optional[str]) -> Optional[Tuple[float, float]]:
    if not s:
        return None
    w, h = [float(x) for x in s.split(",")]
    return (w, h)


def make_grid(start: float, stop: float, step: float, integer: bool = False):
    """Inclusive grid start, start+step, ..., stop."""
    if step <= 0:
        raise ValueError("--step must be > 0")
    if stop < start:
        raise ValueError("--stop must be >= --start")
    n = int(np.floor((stop - start) / step + 1e-9)) + 1
    grid = start + step * np.arange(n)
    if integer:
        return sorted(set(int(round(v)) for v in grid))
    return np.round(grid, 10).tolist()


def add_model_args(p: argparse.ArgumentParser):
    # None means: take it from the --obs metadata if present, else DEFAULT_MODEL
    p.add_argument("--beta", type=float, default=None, help="Infection rate (default: 0.5)")
    p.add_argument("--gamma", type=float, default=None, help="Recovery rate (default: 0.25)")
    p.add_argument("--N", type=int, default=None, help="Population size (default: 1000)")
    p.add_argument("--I0", type=int, default=None, help="Initial infected (default: 10)")
    p.add_argument("--nsub", type=int, default=10, help="Substeps per reporting interval (default: 10)")
    p.add_argument("--seed", type=int, default=42, metavar="SEED",
                   help="RNG seed for reproducibility (default: 42)")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Particle-filter likelihoods for a stochastic SIR model")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = p.add_subparsers(dest="cmd", required=True)

    # ---------- simulate ----------
    sim_p = sub.add_parser("simulate", help="Generate a synthetic observed case series")
    add_model_args(sim_p)
    sim_p.add_argument("--steps", type=int, default=40, metavar="T",
                       help="Number of reporting intervals (default: 40)")
    sim_p.add_argument("--out", default="data/observed_cases.csv", metavar="PATH",
                       help="Output CSV path (default: data/observed_cases.csv)")

    # ---------- filter ----------
    filt_p = sub.add_parser("filter", help="Log-likelihood of an observed series at one parameter value")
    add_model_args(filt_p)
    filt_p.add_argument("--obs", default="data/observed_cases.csv", metavar="PATH")
    filt_p.add_argument("--particles", type=int, default=100_000)
    filt_p.add_argument("--jobs", type=int, default=1, help="Threads for particle advancement")

    # ---------- scan ----------
    scan_p = sub.add_parser("scan", help="Likelihood profile over a grid of one coordinate")
    add_model_args(scan_p)
    scan_p.add_argument("--obs", default="data/observed_cases.csv", metavar="PATH")
    scan_p.add_argument("--coordinate", choices=ps.COORDINATES, default="beta")
    scan_p.add_argument("--start", type=float, default=0.35)
    scan_p.add_argument("--stop", type=float, default=0.70)
    scan_p.add_argument("--step", type=float, default=0.005)
    scan_p.add_argument("--particles", type=int, default=100_000)
    scan_p.add_argument("--seed-mode", choices=ps.SEED_MODES, default="fixed")
    scan_p.add_argument("--repeats", type=int, default=1)
    scan_p.add_argument("--jobs", type=int, default=1, help="Threads across grid points")
    scan_p.add_argument("--frac", type=float, default=0.3, help="LOESS span (default: 0.3)")
    scan_p.add_argument("--out", default="data/likelihood_scan.csv", metavar="PATH")
    scan_p.add_argument("--plot", default=None, metavar="PNG", help="Optional profile figure")
    scan_p.add_argument("--figsize", type=str, default=None)
    scan_p.add_argument("--emulator", action="store_true",
                        help="Fit a Gaussian-process emulator to the profile and report its maximum")

    return p


def resolve_model(args) -> Tuple[ParameterVector, ModelState]:
    """Model parameters and initial state for a parsed command.

    Precedence: explicit flag, then the metadata rows of --obs (filter, scan),
    then DEFAULT_MODEL.
    """
    values = dict(DEFAULT_MODEL)
    obs = getattr(args, "obs", None)
    if obs is not None:
        meta = gen.read_metadata(obs)
        if "params" in meta:
            p = meta["params"]
            values.update(beta=p.beta, gamma=p.gamma, N=int(p.N))
        if "initial_state" in meta:
            values["I0"] = meta["initial_state"].I

    for key in DEFAULT_MODEL:
        flag = getattr(args, key)
        if flag is not None:
            values[key] = flag

    params = ParameterVector(beta=values["beta"], gamma=values["gamma"], N=values["N"])
    return params, ModelState.from_counts(values["N"], values["I0"])


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    t0 = time.perf_counter()

    params, u0 = resolve_model(args)
    logger.info("Model: %s, initial state %s", params, u0.as_tuple())

    if args.cmd == "simulate":
        observed = gen.simulate_observations(params, u0, args.steps, seed=args.seed, nsub=args.nsub)
        gen.write_observations_csv(observed, params, u0, seed=args.seed, out_path=args.out)
        print("Simulation done ->", args.out)

    elif args.cmd == "filter":
        observed = gen.load_observations_csv(args.obs)
        res = bootstrap_filter(params, u0, observed, args.particles, seed=args.seed,
                               nsub=args.nsub, n_jobs=args.jobs)
        if res.failed:
            print(f"filter failure at step {res.failed_step}")
        else:
            print(f"log-likelihood = {res.log_likelihood:.6f}")

    elif args.cmd == "scan":
        observed = gen.load_observations_csv(args.obs)
        integer = args.coordinate in ("N", "I0")
        cfg = ps.ScanConfig(
            beta=params.beta,
            gamma=params.gamma,
            N=int(params.N),
            I0=u0.I,
            coordinate=args.coordinate,
            grid=make_grid(args.start, args.stop, args.step, integer=integer),
            nparticles=args.particles,
            seed=args.seed,
            seed_mode=args.seed_mode,
            repeats=args.repeats,
            n_jobs=args.jobs,
            frac=args.frac,
            nsub=args.nsub,
            out_path=args.out,
        )
        result = ps.run_scan(cfg, observed)
        print(f"Best {args.coordinate} = {result.best_value} ->", args.out)
        emulator = None
        if args.emulator:
            if np.isfinite(result.log_likelihoods).sum() < 2:
                print("Emulator skipped: fewer than 2 finite log-likelihoods")
            else:
                emulator = LikelihoodEmulator.from_scan(result)
                _, std = emulator.predict(result.values)
                print(f"Emulator best {args.coordinate} = {emulator.argmax(result.values)} "
                      f"(max std {float(np.max(std)):.3f})")
        if args.plot:
            reference_value = getattr(cfg, args.coordinate)
            pp.plot_profile(result, out_png=args.plot, reference_value=reference_value,
                            figsize=parse_figsize(args.figsize), emulator=emulator)
            print("Profile plot ->", args.plot)

    print(f"Done in {time.perf_counter() - t0:.2f}s")


if __name__ == "__main__":
    main()
