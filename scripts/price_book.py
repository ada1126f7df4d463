#!/usr/bin/env python3
"""Production script: batch-price a book of American options.

Usage
-----
    python scripts/price_book.py --input book.csv --output prices.csv
    python scripts/price_book.py --input book.csv --output prices.json --greeks

Input CSV format
----------------
    id,S0,K,T,r,sigma,q,kind,method
    1,100,110,0.5,0.03,0.20,0.0,put,accurate
    2,100,95,1.0,-0.005,0.08,-0.01,put,fd
    3,100,105,0.5,0.01,0.20,0.02,call,european

``method`` is one of ``fd``, ``fast``, ``accurate``, ``high_precision`` or
``european``; rows without it use ``accurate``.  Boundaries are reported
for every American row.

Output
------
    CSV or JSON with columns: id, method, price, upper, lower, and with
    ``--greeks`` also delta, gamma, vega, theta, rho
"""

from __future__ import annotations
import argparse
import csv
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from amerpricer import (
    OptionSpec, FDEngine, SpectralEngine, SPECTRAL_SCHEMES,
    AmerPricerError, bs_greeks, solve_boundaries,
)

GREEKS = ("delta", "gamma", "vega", "theta", "rho")


def _engine(method: str):
    if method == "fd":
        return FDEngine()
    if method in SPECTRAL_SCHEMES:
        return SpectralEngine(method)
    raise ValueError(f"Unknown method: {method!r}")


def _price_row(row: dict, compute_greeks: bool) -> dict:
    """Price a single book row and return result dict."""
    opt = OptionSpec(
        S0=float(row["S0"]),
        K=float(row["K"]),
        T=float(row["T"]),
        r=float(row["r"]),
        sigma=float(row["sigma"]),
        q=float(row.get("q") or 0.0),
        kind=row["kind"].strip().lower(),
    )
    method = (row.get("method") or "accurate").strip().lower()
    result = {"id": row.get("id", ""), "method": method}

    if method == "european":
        g = bs_greeks(opt)
        result["price"] = g["price"]
        if compute_greeks:
            result.update({k: g[k] for k in GREEKS})
        return result

    inputs = (opt.S0, opt.K, opt.T, opt.r, opt.q, opt.sigma, opt.kind)
    engine = _engine(method)
    if compute_greeks:
        res = engine.price_with_greeks(*inputs)
        result["price"] = res.price
        result.update({k: getattr(res, k) for k in GREEKS})
    else:
        result["price"] = engine.price(*inputs)

    sol = solve_boundaries(opt)
    result["upper"] = sol.upper
    result["lower"] = sol.lower
    return result


def main():
    parser = argparse.ArgumentParser(
        description="Batch-price a book of American options."
    )
    parser.add_argument("--input", required=True, help="Path to book CSV")
    parser.add_argument("--output", required=True, help="Output path (.csv or .json)")
    parser.add_argument("--greeks", action="store_true", help="Compute Greeks")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(levelname)s %(message)s")
    log = logging.getLogger("price_book")

    with open(args.input, newline="") as f:
        rows = list(csv.DictReader(f))

    log.info("Pricing %d positions...", len(rows))

    results = []
    for i, row in enumerate(rows):
        try:
            results.append(_price_row(row, args.greeks))
        except (AmerPricerError, ValueError, KeyError) as e:
            log.error("Row %d (id=%s): %s", i, row.get("id", "?"), e)
            results.append({"id": row.get("id", ""), "price": None, "error": str(e)})

    output_path = Path(args.output)
    if output_path.suffix == ".json":
        with open(output_path, "w") as f:
            json.dump(results, f, indent=2, default=str)
    else:
        if not results:
            log.warning("No results to write.")
            return
        fieldnames = list(results[0].keys())
        for r in results:
            for k in r:
                if k not in fieldnames:
                    fieldnames.append(k)
        with open(output_path, "w", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=fieldnames, extrasaction="ignore")
            writer.writeheader()
            writer.writerows(results)

    priced = [r for r in results if r.get("price") is not None]
    log.info("Results written to %s  |  priced: %d  failed: %d",
             args.output, len(priced), len(results) - len(priced))


if __name__ == "__main__":
    main()
