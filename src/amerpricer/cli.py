import argparse
import logging
import sys

from .batch import chain_greeks, GREEK_FIELDS
from .black_scholes import greeks as bs_greeks
from .boundary import solve_boundaries
from .config import SPECTRAL_SCHEMES
from .core import OptionSpec, CALL, PUT
from .exceptions import AmerPricerError
from .pde import FDEngine
from .regime import classify_regime
from .spectral import SpectralEngine

ENGINES = ("fd", *SPECTRAL_SCHEMES, "european")


def _kind(s: str):
    s = s.lower()
    if s in {"call", "c"}:
        return CALL
    if s in {"put", "p"}:
        return PUT
    raise argparse.ArgumentTypeError("kind must be 'call' or 'put'")


def _floats(s: str):
    try:
        return [float(x) for x in s.split(",") if x.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected comma-separated numbers, got {s!r}")


def add_common(parser: argparse.ArgumentParser, *, strike: bool = True):
    parser.add_argument("--S0", type=float, required=True)
    if strike:
        parser.add_argument("--K", type=float, required=True)
    parser.add_argument("--T", type=float, required=True, help="years")
    parser.add_argument("--r", type=float, required=True, help="cont. risk-free, any sign")
    parser.add_argument("--sigma", type=float, required=True)
    parser.add_argument("--q", type=float, default=0.0, help="cont. dividend yield, any sign")
    parser.add_argument("--kind", type=_kind, default=PUT, help="call|put")


def _option(args) -> OptionSpec:
    return OptionSpec(args.S0, args.K, args.T, args.r, args.sigma, args.q, args.kind)


def cmd_boundary(args):
    opt = _option(args)
    sol = solve_boundaries(opt, refine=not args.no_refine, collocation_points=args.points)
    print(f"regime  {classify_regime(opt.r, opt.q, opt.kind)}")
    print(f"method  {sol.method}")
    print(f"upper   {sol.upper:.10f}")
    print(f"lower   {sol.lower:.10f}")
    print(f"valid   {sol.is_valid}")
    if sol.is_refined:
        print(f"qd+     {sol.qd_boundaries.upper:.10f} {sol.qd_boundaries.lower:.10f}")
        print(f"iters   {sol.iterations}")


def cmd_price(args):
    opt = _option(args)
    if args.engine == "european":
        g = bs_greeks(opt)
    else:
        engine = FDEngine() if args.engine == "fd" else SpectralEngine(args.engine)
        inputs = (opt.S0, opt.K, opt.T, opt.r, opt.q, opt.sigma, opt.kind)
        if not args.greeks:
            print(f"{engine.price(*inputs):.10f}")
            return
        g = engine.price_with_greeks(*inputs).as_dict()
    if not args.greeks:
        print(f"{g['price']:.10f}")
        return
    for f in GREEK_FIELDS:
        print(f"{f:<6} {g[f]:.10f}")


def cmd_chain(args):
    strikes = args.strikes
    n = len(strikes)
    res = chain_greeks(args.S0, strikes, [args.T] * n, [args.sigma] * n,
                       args.kind, args.r, args.q)
    print("strike".rjust(10) + "".join(f.rjust(14) for f in GREEK_FIELDS))
    for i, K in enumerate(strikes):
        print(f"{K:10.4f}" + "".join(f"{res[f][i]:14.6f}" for f in GREEK_FIELDS))


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="amerpricer",
                                description="American option pricing under any rate sign")
    p.add_argument("-v", "--verbose", action="store_true", help="debug logging to stderr")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_bd = sub.add_parser("boundary", help="QD+ / Kim exercise boundaries")
    add_common(p_bd)
    p_bd.add_argument("--no-refine", action="store_true", help="skip Kim refinement")
    p_bd.add_argument("--points", type=int, default=50, help="Kim collocation points")
    p_bd.set_defaults(func=cmd_boundary)

    p_px = sub.add_parser("price", help="American price")
    add_common(p_px)
    p_px.add_argument("--engine", choices=ENGINES, default="accurate")
    p_px.add_argument("--greeks", action="store_true")
    p_px.set_defaults(func=cmd_price)

    p_ch = sub.add_parser("chain", help="European Greeks across strikes")
    add_common(p_ch, strike=False)
    p_ch.add_argument("--strikes", type=_floats, required=True, help="e.g. 90,100,110")
    p_ch.set_defaults(func=cmd_chain)
    return p


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG,
                            format="%(asctime)s %(name)s %(levelname)s %(message)s")
    try:
        args.func(args)
    except AmerPricerError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
