#!/usr/bin/env python3
"""Production script: calibrate a SABR swaption volatility cube from CSV quotes.

Usage
-----
    python scripts/calibrate_cube.py --input quotes.csv --atm atm.csv --output cube.json
    python scripts/calibrate_cube.py --input quotes.csv --atm atm.csv --output cube.json \
        --rate 0.03 --no-atm-calibration --plot smile.png

Quote CSV format (vol spreads over the ATM vol)
-----------------------------------------------
    option_tenor,swap_tenor,strike_spread,vol_spread
    1Y,5Y,-0.01,0.012
    1Y,5Y,0.0,0.0
    ...

ATM CSV format
--------------
    option_tenor,swap_tenor,vol
    1Y,5Y,0.20
    ...

Output JSON format
------------------
    {
      "reference_date": "2024-01-15",
      "dense": [{"option_time": ..., "swap_length": ..., "alpha": ..., ...}, ...],
      "atm_calibrated": [...]            # only when ATM calibration is on
    }
"""

from __future__ import annotations
import argparse
import csv
import json
import logging
import sys
from datetime import date
from pathlib import Path

import numpy as np

# Allow running from repo root: python scripts/calibrate_cube.py
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from ratevol import AtmVolMatrix, CubeConfig, SabrVolCube, SwapIndex
from ratevol.core import Period
from ratevol.cube import LAYER_NAMES
from ratevol.errors import SmileCalibrationError

logger = logging.getLogger("calibrate_cube")


def _sorted_tenors(labels) -> list[Period]:
    return sorted({Period.parse(s) for s in labels}, key=lambda p: p.years)


def _read_quotes(path: str):
    """Read vol-spread quotes into ``(option_tenors, swap_tenors, spreads, rows)``."""
    quotes: dict[tuple[Period, Period, float], float] = {}
    with open(path, newline="") as f:
        for row in csv.DictReader(f):
            key = (Period.parse(row["option_tenor"]), Period.parse(row["swap_tenor"]),
                   float(row["strike_spread"]))
            quotes[key] = float(row["vol_spread"])

    option_tenors = _sorted_tenors(str(k[0]) for k in quotes)
    swap_tenors = _sorted_tenors(str(k[1]) for k in quotes)
    spreads = sorted({k[2] for k in quotes})
    rows = []
    for o in option_tenors:
        for s in swap_tenors:
            try:
                rows.append([quotes[o, s, k] for k in spreads])
            except KeyError as exc:
                raise SystemExit(f"missing quote for {o} x {s} at spread {exc.args[0][2]}")
    return option_tenors, swap_tenors, spreads, rows


def _read_atm(path: str, reference_date: date) -> AtmVolMatrix:
    vols: dict[tuple[Period, Period], float] = {}
    with open(path, newline="") as f:
        for row in csv.DictReader(f):
            vols[Period.parse(row["option_tenor"]), Period.parse(row["swap_tenor"])] = float(row["vol"])
    option_tenors = _sorted_tenors(str(k[0]) for k in vols)
    swap_tenors = _sorted_tenors(str(k[1]) for k in vols)
    try:
        matrix = [[vols[o, s] for s in swap_tenors] for o in option_tenors]
    except KeyError as exc:
        raise SystemExit(f"ATM matrix is missing {exc.args[0][0]} x {exc.args[0][1]}")
    return AtmVolMatrix(reference_date, option_tenors, swap_tenors, matrix)


def _browse_records(table: np.ndarray) -> list[dict]:
    names = ("option_time", "swap_length") + LAYER_NAMES
    return [dict(zip(names, map(float, row))) for row in table]


def main():
    parser = argparse.ArgumentParser(
        description="Calibrate a SABR swaption volatility cube to vol-spread quotes."
    )
    parser.add_argument("--input", required=True, help="Path to vol-spread quotes CSV")
    parser.add_argument("--atm", required=True, help="Path to ATM vol matrix CSV")
    parser.add_argument("--output", required=True, help="Path to output JSON")
    parser.add_argument("--rate", type=float, default=0.03,
                        help="Flat continuously-compounded discount rate (default 0.03)")
    parser.add_argument("--reference-date", type=date.fromisoformat, default=date.today(),
                        help="Valuation date, YYYY-MM-DD (default today)")
    parser.add_argument("--no-atm-calibration", action="store_true",
                        help="Skip the exact ATM alpha re-solve")
    parser.add_argument("--plot", default=None, help="Save fitted-vs-market smiles to PNG")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Read data
    option_tenors, swap_tenors, spreads, rows = _read_quotes(args.input)
    atm = _read_atm(args.atm, args.reference_date)
    print(f"Loaded {len(rows) * len(spreads)} quotes on {len(option_tenors)} option x "
          f"{len(swap_tenors)} swap tenors, {len(spreads)} strike spreads.")

    cube = SabrVolCube(
        atm, option_tenors, swap_tenors, spreads, rows, SwapIndex(args.rate),
        config=CubeConfig(is_atm_calibrated=not args.no_atm_calibration),
    )
    try:
        cube.calculate()
    except SmileCalibrationError as exc:
        logger.error("calibration failed: %s", exc)
        for o, s, detail in exc.cells:
            print(f"  {o} x {s}: {detail}")
        sys.exit(1)

    sparse = cube.sparse_sabr_parameters()
    for row in _browse_records(sparse):
        print(f"  t={row['option_time']:.3f} l={row['swap_length']:.2f}: "
              f"alpha={row['alpha']:.4f} beta={row['beta']:.3f} nu={row['nu']:.4f} "
              f"rho={row['rho']:.4f} max_err={row['max_error']:.2e}")

    # Write JSON
    results = {
        "reference_date": args.reference_date.isoformat(),
        "dense": _browse_records(cube.dense_sabr_parameters()),
    }
    if not args.no_atm_calibration:
        results["atm_calibrated"] = _browse_records(cube.vol_cube_atm_calibrated())
    with open(args.output, "w") as f:
        json.dump(results, f, indent=2)
    print(f"\nCube parameters written to {args.output}")

    # Optional plot
    if args.plot:
        try:
            import matplotlib.pyplot as plt
        except ImportError:
            print("matplotlib not installed, skipping plot.")
            return

        swap = swap_tenors[0]
        smiles = cube.sparse_smiles
        fig, axes = plt.subplots(1, len(option_tenors), figsize=(5 * len(option_tenors), 4),
                                 squeeze=False)
        for i, opt in enumerate(option_tenors):
            ax = axes[0, i]
            market = smiles[str(opt), str(swap)]
            fitted = cube.smile_section(market.expiry, swap.years)
            k_fine = np.linspace(market.strikes[0], market.strikes[-1], 200)
            k_fine = k_fine[k_fine > 0]

            ax.plot(market.strikes, market.std_devs / np.sqrt(market.expiry), "o",
                    label="Market", markersize=4)
            ax.plot(k_fine, fitted.volatility(k_fine), "-", label="SABR")
            ax.set_title(f"{opt} x {swap}")
            ax.set_xlabel("strike")
            ax.set_ylabel("Black vol")
            ax.legend()

        plt.tight_layout()
        plt.savefig(args.plot, dpi=150)
        print(f"Plot saved to {args.plot}")


if __name__ == "__main__":
    main()
